from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Sequence

from ..core.enums import MembershipStatus, Role
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetch_count, fetchall, fetchone, in_clause
from .model import Membership
from .repository import MembershipRepository


def _row_to_membership(r: dict) -> Membership:
    return Membership(
        user_id=int(r["user_id"]),
        organization_id=int(r["organization_id"]),
        role=Role(r["role"]),
        status=MembershipStatus(r["status"]),
        removal_effective_date=r.get("removal_effective_date"),
        joined_at=r.get("joined_at"),
        email=r.get("email"),
        full_name=r.get("full_name"),
    )


class MySQLMembershipRepository(MembershipRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get(self, *, organization_id: int, user_id: int) -> Optional[Membership]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT uo.user_id, uo.organization_id, uo.role, uo.status,
                       uo.removal_effective_date, uo.joined_at, u.email, u.full_name
                FROM user_organizations uo
                JOIN users u ON u.user_id = uo.user_id
                WHERE uo.organization_id=%s AND uo.user_id=%s
                """,
                (int(organization_id), int(user_id)),
            )
            r = fetchone(cur)
            return _row_to_membership(r) if r else None

    def add(
        self,
        *,
        organization_id: int,
        user_id: int,
        role: Role,
        status: MembershipStatus = MembershipStatus.ACTIVE,
    ) -> None:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO user_organizations(user_id, organization_id, role, status)
                VALUES(%s,%s,%s,%s)
                ON DUPLICATE KEY UPDATE role=VALUES(role), status=VALUES(status), removal_effective_date=NULL
                """,
                (int(user_id), int(organization_id), role.value, status.value),
            )

    def set_status(
        self,
        *,
        organization_id: int,
        user_id: int,
        status: MembershipStatus,
        removal_effective_date: Optional[datetime] = None,
    ) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE user_organizations
                SET status=%s, removal_effective_date=%s
                WHERE organization_id=%s AND user_id=%s
                """,
                (status.value, removal_effective_date, int(organization_id), int(user_id)),
            )
            return cur.rowcount > 0

    def set_role(self, *, organization_id: int, user_id: int, role: Role) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "UPDATE user_organizations SET role=%s WHERE organization_id=%s AND user_id=%s",
                (role.value, int(organization_id), int(user_id)),
            )
            return cur.rowcount > 0

    def count(self, *, organization_id: int, statuses: Iterable[MembershipStatus]) -> int:
        values = [s.value for s in statuses]
        if not values:
            return 0
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT COUNT(*) AS n
                FROM user_organizations
                WHERE organization_id=%s AND status IN ({in_clause(values)})
                """,
                (int(organization_id), *values),
            )
            return fetch_count(cur)

    def list_members(
        self,
        *,
        organization_id: int,
        statuses: Optional[Iterable[MembershipStatus]] = None,
    ) -> Sequence[Membership]:
        clauses = ["uo.organization_id=%s"]
        params: list[object] = [int(organization_id)]
        if statuses is not None:
            values = [s.value for s in statuses]
            if not values:
                return []
            clauses.append(f"uo.status IN ({in_clause(values)})")
            params.extend(values)

        where = " AND ".join(clauses)
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT uo.user_id, uo.organization_id, uo.role, uo.status,
                       uo.removal_effective_date, uo.joined_at, u.email, u.full_name
                FROM user_organizations uo
                JOIN users u ON u.user_id = uo.user_id
                WHERE {where}
                ORDER BY u.full_name
                """,
                tuple(params),
            )
            return [_row_to_membership(r) for r in fetchall(cur)]

    def find_member_emails(self, *, organization_id: int, emails: Sequence[str]) -> set[str]:
        if not emails:
            return set()
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT u.email
                FROM user_organizations uo
                JOIN users u ON u.user_id = uo.user_id
                WHERE uo.organization_id=%s AND u.email IN ({in_clause(emails)})
                """,
                (int(organization_id), *emails),
            )
            return {str(r["email"]).lower() for r in fetchall(cur)}

    def archive_pending_removals(self, *, organization_id: int) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE user_organizations
                SET status=%s
                WHERE organization_id=%s AND status=%s
                """,
                (MembershipStatus.ARCHIVED.value, int(organization_id), MembershipStatus.PENDING_REMOVAL.value),
            )
            return int(cur.rowcount)

    def archive_lapsed_removals(self, *, now: datetime) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                UPDATE user_organizations
                SET status=%s
                WHERE status=%s AND removal_effective_date IS NOT NULL AND removal_effective_date <= %s
                """,
                (MembershipStatus.ARCHIVED.value, MembershipStatus.PENDING_REMOVAL.value, now),
            )
            return int(cur.rowcount)
