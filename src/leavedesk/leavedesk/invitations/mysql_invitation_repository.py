from __future__ import annotations

from datetime import datetime
from typing import Optional, Sequence

from ..core.enums import InvitationStatus, Role
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetch_count, fetchall, fetchone, in_clause
from .model import Invitation, NewInvitation
from .repository import InvitationRepository

_COLUMNS = """
    invitation_id, organization_id, email, full_name, role, token, status,
    personal_message, invited_by, expires_at, accepted_at, created_at
"""


def _row_to_invitation(r: dict) -> Invitation:
    return Invitation(
        invitation_id=int(r["invitation_id"]),
        organization_id=int(r["organization_id"]),
        email=r["email"],
        role=Role(r["role"]),
        token=r["token"],
        status=InvitationStatus(r["status"]),
        invited_by=int(r["invited_by"]),
        expires_at=r["expires_at"],
        full_name=r.get("full_name"),
        personal_message=r.get("personal_message"),
        accepted_at=r.get("accepted_at"),
        created_at=r.get("created_at"),
    )


class MySQLInvitationRepository(InvitationRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def create_many(
        self,
        *,
        organization_id: int,
        invited_by: int,
        invitations: Sequence[NewInvitation],
    ) -> list[int]:
        ids: list[int] = []
        with db_cursor(self._conn_factory) as (_, cur):
            for inv in invitations:
                cur.execute(
                    """
                    INSERT INTO invitations(
                        organization_id, email, full_name, role, token, status,
                        personal_message, invited_by, expires_at
                    )
                    VALUES(%s,%s,%s,%s,%s,%s,%s,%s,%s)
                    """,
                    (
                        int(organization_id),
                        inv.email,
                        inv.full_name,
                        inv.role.value,
                        inv.token,
                        InvitationStatus.PENDING.value,
                        inv.personal_message,
                        int(invited_by),
                        inv.expires_at,
                    ),
                )
                ids.append(int(cur.lastrowid))
        return ids

    def get_by_id(self, invitation_id: int) -> Optional[Invitation]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_COLUMNS} FROM invitations WHERE invitation_id=%s", (int(invitation_id),))
            r = fetchone(cur)
            return _row_to_invitation(r) if r else None

    def get_by_token(self, token: str) -> Optional[Invitation]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_COLUMNS} FROM invitations WHERE token=%s", (token,))
            r = fetchone(cur)
            return _row_to_invitation(r) if r else None

    def find_pending_emails(self, *, organization_id: int, emails: Sequence[str]) -> set[str]:
        if not emails:
            return set()
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT email FROM invitations
                WHERE organization_id=%s AND status=%s AND email IN ({in_clause(emails)})
                """,
                (int(organization_id), InvitationStatus.PENDING.value, *emails),
            )
            return {str(r["email"]).lower() for r in fetchall(cur)}

    def list_pending(self, *, organization_id: int) -> Sequence[Invitation]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM invitations
                WHERE organization_id=%s AND status=%s
                ORDER BY created_at DESC
                """,
                (int(organization_id), InvitationStatus.PENDING.value),
            )
            return [_row_to_invitation(r) for r in fetchall(cur)]

    def count_pending(self, *, organization_id: int) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT COUNT(*) AS n FROM invitations WHERE organization_id=%s AND status=%s",
                (int(organization_id), InvitationStatus.PENDING.value),
            )
            return fetch_count(cur)

    def set_status(
        self,
        *,
        invitation_id: int,
        status: InvitationStatus,
        accepted_at: Optional[datetime] = None,
    ) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "UPDATE invitations SET status=%s, accepted_at=COALESCE(%s, accepted_at) WHERE invitation_id=%s",
                (status.value, accepted_at, int(invitation_id)),
            )
            return cur.rowcount > 0

    def expire_stale(self, *, now: datetime) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "UPDATE invitations SET status=%s WHERE status=%s AND expires_at < %s",
                (InvitationStatus.EXPIRED.value, InvitationStatus.PENDING.value, now),
            )
            return int(cur.rowcount)
