from __future__ import annotations

import logging
import re
from datetime import date
from pathlib import Path
from typing import Iterable

from werkzeug.security import generate_password_hash

from ..core.constants import DEFAULT_LEAVE_TYPES
from .connection import DatabaseConnection, DBConfig

logger = logging.getLogger(__name__)

DEMO_PASSWORD = "demo12345"


def _strip_create_db_and_use(sql: str) -> str:
    # Keep schema.sql compatible regardless of DB name.
    sql = re.sub(r"(?im)^\s*CREATE\s+DATABASE\b.*?;\s*$", "", sql)
    sql = re.sub(r"(?im)^\s*USE\b.*?;\s*$", "", sql)
    return sql


def _strip_line_comments(sql: str) -> str:
    return "\n".join(line for line in sql.splitlines() if not line.lstrip().startswith("--"))


def iter_sql_statements(sql: str) -> Iterable[str]:
    """Split a script on ';' outside of quotes."""
    buf: list[str] = []
    quote = None
    escape = False

    for ch in sql:
        buf.append(ch)
        if escape:
            escape = False
            continue
        if ch == "\\":
            escape = True
            continue
        if ch in ("'", '"'):
            if quote is None:
                quote = ch
            elif quote == ch:
                quote = None
            continue
        if ch == ";" and quote is None:
            buf.pop()
            stmt = "".join(buf).strip()
            buf.clear()
            if stmt:
                yield stmt

    tail = "".join(buf).strip()
    if tail:
        yield tail


def _run_script(conn_factory: DatabaseConnection, path: str | Path) -> int:
    sql = _strip_create_db_and_use(_strip_line_comments(Path(path).read_text(encoding="utf-8")))
    conn = conn_factory.connect()
    count = 0
    try:
        cur = conn.cursor()
        for stmt in iter_sql_statements(sql):
            cur.execute(stmt)
            count += 1
        conn.commit()
    finally:
        conn.close()
    return count


def ensure_database_exists(db_config: dict) -> None:
    conn_factory = DatabaseConnection(DBConfig.from_dict(db_config))
    database = conn_factory.config.database
    conn = conn_factory.connect(with_database=False)
    try:
        cur = conn.cursor()
        cur.execute(
            f"CREATE DATABASE IF NOT EXISTS `{database}` CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
        )
        conn.commit()
    finally:
        conn.close()


def apply_schema(db_config: dict, *, schema_path: str | Path) -> None:
    ensure_database_exists(db_config)
    count = _run_script(DatabaseConnection(DBConfig.from_dict(db_config)), schema_path)
    logger.info("Applied %s (%d statements)", Path(schema_path).name, count)


def apply_seed_sql(db_config: dict, *, seed_path: str | Path) -> None:
    count = _run_script(DatabaseConnection(DBConfig.from_dict(db_config)), seed_path)
    logger.info("Applied %s (%d statements)", Path(seed_path).name, count)


def ensure_demo_users(db_config: dict, *, year: int | None = None) -> None:
    """Create demo admin/employee accounts in the demo workspace with leave balances."""
    year = year or date.today().year
    conn = DatabaseConnection(DBConfig.from_dict(db_config)).connect()
    try:
        cur = conn.cursor(dictionary=True)

        cur.execute("SELECT organization_id FROM organizations WHERE name=%s", ("Demo Workspace",))
        row = cur.fetchone()
        if not row:
            raise RuntimeError("Missing 'Demo Workspace' organization; apply seed.sql first")
        org_id = int(row["organization_id"])

        for name, days, requires_balance, requires_approval, is_paid in DEFAULT_LEAVE_TYPES:
            cur.execute(
                """
                INSERT IGNORE INTO leave_types
                    (organization_id, name, days_per_year, requires_balance, requires_approval, is_paid)
                VALUES (%s, %s, %s, %s, %s, %s)
                """,
                (org_id, name, days, int(requires_balance), int(requires_approval), int(is_paid)),
            )

        def upsert_user(full_name: str, email: str, role: str) -> int:
            password_hash = generate_password_hash(DEMO_PASSWORD)
            cur.execute("SELECT user_id FROM users WHERE email=%s", (email,))
            existing = cur.fetchone()
            if existing:
                user_id = int(existing["user_id"])
                cur.execute(
                    "UPDATE users SET full_name=%s, password_hash=%s, is_active=1 WHERE user_id=%s",
                    (full_name, password_hash, user_id),
                )
            else:
                cur.execute(
                    "INSERT INTO users (email, full_name, password_hash) VALUES (%s, %s, %s)",
                    (email, full_name, password_hash),
                )
                user_id = int(cur.lastrowid)

            cur.execute(
                """
                INSERT INTO user_organizations (user_id, organization_id, role, status)
                VALUES (%s, %s, %s, 'active')
                ON DUPLICATE KEY UPDATE role=VALUES(role), status='active', removal_effective_date=NULL
                """,
                (user_id, org_id, role),
            )
            cur.execute(
                """
                INSERT IGNORE INTO leave_balances (organization_id, user_id, leave_type_id, year, entitled_days, used_days)
                SELECT %s, %s, leave_type_id, %s, days_per_year, 0
                FROM leave_types
                WHERE organization_id=%s AND requires_balance=1
                """,
                (org_id, user_id, year, org_id),
            )
            return user_id

        upsert_user("Demo Admin", "admin@demo.test", "admin")
        upsert_user("Demo Manager", "manager@demo.test", "manager")
        upsert_user("Demo Employee", "employee@demo.test", "employee")

        conn.commit()
    finally:
        conn.close()


def list_tables(db_config: dict) -> list[str]:
    conn = DatabaseConnection(DBConfig.from_dict(db_config)).connect()
    try:
        cur = conn.cursor()
        cur.execute("SHOW TABLES")
        return [row[0] for row in cur.fetchall()]
    finally:
        conn.close()
