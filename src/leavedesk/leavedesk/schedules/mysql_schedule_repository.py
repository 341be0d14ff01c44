from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone
from .model import Holiday
from .repository import ScheduleRepository


def _parse_days(value: str) -> tuple[int, ...]:
    return tuple(sorted(int(v) for v in (value or "").split(",") if v.strip() != ""))


class MySQLScheduleRepository(ScheduleRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_working_days(self, *, organization_id: int, user_id: int = 0) -> Optional[tuple[int, ...]]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT working_days FROM work_schedules WHERE organization_id=%s AND user_id=%s",
                (int(organization_id), int(user_id)),
            )
            r = fetchone(cur)
            return _parse_days(r["working_days"]) if r else None

    def set_working_days(self, *, organization_id: int, working_days: Sequence[int], user_id: int = 0) -> None:
        value = ",".join(str(int(d)) for d in sorted(set(working_days)))
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO work_schedules(organization_id, user_id, working_days)
                VALUES(%s,%s,%s)
                ON DUPLICATE KEY UPDATE working_days=VALUES(working_days)
                """,
                (int(organization_id), int(user_id), value),
            )

    def list_holidays(
        self,
        *,
        organization_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Sequence[Holiday]:
        clauses = ["organization_id=%s"]
        params: list[object] = [int(organization_id)]
        if start is not None:
            clauses.append("holiday_date >= %s")
            params.append(start)
        if end is not None:
            clauses.append("holiday_date <= %s")
            params.append(end)

        where = " AND ".join(clauses)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT holiday_id, organization_id, holiday_date, name
                FROM holidays
                WHERE {where}
                ORDER BY holiday_date
                """,
                tuple(params),
            )
            return [
                Holiday(
                    holiday_id=int(r["holiday_id"]),
                    organization_id=int(r["organization_id"]),
                    holiday_date=r["holiday_date"],
                    name=r["name"],
                )
                for r in fetchall(cur)
            ]

    def add_holiday(self, *, organization_id: int, holiday_date: date, name: str) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO holidays(organization_id, holiday_date, name)
                VALUES(%s,%s,%s)
                ON DUPLICATE KEY UPDATE name=VALUES(name)
                """,
                (int(organization_id), holiday_date, name),
            )

            # If it was an update, lastrowid can be 0; fetch holiday_id.
            if cur.lastrowid:
                return int(cur.lastrowid)

            cur.execute(
                "SELECT holiday_id FROM holidays WHERE organization_id=%s AND holiday_date=%s",
                (int(organization_id), holiday_date),
            )
            r = fetchone(cur)
            return int(r["holiday_id"]) if r else 0

    def delete_holiday(self, *, organization_id: int, holiday_id: int) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "DELETE FROM holidays WHERE holiday_id=%s AND organization_id=%s",
                (int(holiday_id), int(organization_id)),
            )
            return cur.rowcount > 0
