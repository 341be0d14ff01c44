from __future__ import annotations

from typing import Optional, Sequence

from ..common.datetime_utils import utcnow
from ..core.enums import MembershipStatus, SubscriptionTier
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetchall, fetchone
from .model import Organization
from .repository import OrganizationRepository


class MySQLOrganizationRepository(OrganizationRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_by_id(self, organization_id: int) -> Optional[Organization]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT organization_id, name, paid_seats, subscription_tier,
                       billing_override_seats, billing_override_expires_at, created_at
                FROM organizations
                WHERE organization_id=%s
                """,
                (int(organization_id),),
            )
            r = fetchone(cur)
            if not r:
                return None
            return Organization(
                organization_id=int(r["organization_id"]),
                name=r["name"],
                paid_seats=int(r["paid_seats"] or 0),
                subscription_tier=SubscriptionTier(r["subscription_tier"]),
                billing_override_seats=r.get("billing_override_seats"),
                billing_override_expires_at=r.get("billing_override_expires_at"),
                created_at=r.get("created_at"),
            )

    def create_organization(self, *, name: str) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "INSERT INTO organizations(name, paid_seats, subscription_tier) VALUES(%s, 0, %s)",
                (name, SubscriptionTier.FREE.value),
            )
            return int(cur.lastrowid)

    def update_billing(
        self,
        *,
        organization_id: int,
        paid_seats: int,
        subscription_tier: SubscriptionTier,
    ) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "UPDATE organizations SET paid_seats=%s, subscription_tier=%s WHERE organization_id=%s",
                (int(paid_seats), subscription_tier.value, int(organization_id)),
            )
            return cur.rowcount > 0

    def list_for_user(self, *, user_id: int) -> Sequence[dict]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                SELECT o.organization_id, o.name, o.subscription_tier, uo.role, uo.status
                FROM user_organizations uo
                JOIN organizations o ON o.organization_id = uo.organization_id
                WHERE uo.user_id=%s
                  AND (uo.status=%s OR (uo.status=%s AND (uo.removal_effective_date IS NULL OR uo.removal_effective_date > %s)))
                ORDER BY o.name
                """,
                (int(user_id), MembershipStatus.ACTIVE.value, MembershipStatus.PENDING_REMOVAL.value, utcnow()),
            )
            return [
                {
                    "organization_id": int(r["organization_id"]),
                    "name": r["name"],
                    "subscription_tier": r["subscription_tier"],
                    "role": r["role"],
                    "status": r["status"],
                }
                for r in fetchall(cur)
            ]
