from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from ..core.constants import LIVE_SUBSCRIPTION_STATUSES
from ..core.enums import BillingEventStatus, BillingPeriod, BillingType, SubscriptionStatus
from ..database.connection import DatabaseConnection
from ..database.mysql_base import db_cursor, fetch_count, fetchall, fetchone, in_clause, to_json
from .model import Subscription
from .repository import UPDATABLE_FIELDS, BillingEventRepository, SubscriptionRepository

_COLUMNS = """
    subscription_id, organization_id, provider_subscription_id, provider_subscription_item_id,
    provider_customer_id, variant_id, billing_type, billing_period, status, quantity,
    current_seats, pending_seats, quantity_synced, renews_at, ends_at, trial_ends_at,
    created_at, updated_at
"""


def _db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool):
        return int(value)
    return value


def _row_to_subscription(r: dict) -> Subscription:
    return Subscription(
        subscription_id=int(r["subscription_id"]),
        organization_id=int(r["organization_id"]),
        provider_subscription_id=str(r["provider_subscription_id"]),
        status=SubscriptionStatus(r["status"]),
        billing_type=BillingType(r["billing_type"]),
        quantity=int(r["quantity"] or 0),
        current_seats=int(r["current_seats"] or 0),
        pending_seats=int(r["pending_seats"]) if r.get("pending_seats") is not None else None,
        quantity_synced=bool(r.get("quantity_synced", True)),
        provider_subscription_item_id=r.get("provider_subscription_item_id"),
        provider_customer_id=r.get("provider_customer_id"),
        variant_id=r.get("variant_id"),
        billing_period=BillingPeriod(r["billing_period"]) if r.get("billing_period") else None,
        renews_at=r.get("renews_at"),
        ends_at=r.get("ends_at"),
        trial_ends_at=r.get("trial_ends_at"),
        created_at=r.get("created_at"),
        updated_at=r.get("updated_at"),
    )


class MySQLSubscriptionRepository(SubscriptionRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def get_by_id(self, subscription_id: int) -> Optional[Subscription]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"SELECT {_COLUMNS} FROM subscriptions WHERE subscription_id=%s", (int(subscription_id),))
            r = fetchone(cur)
            return _row_to_subscription(r) if r else None

    def get_by_provider_id(self, provider_subscription_id: str) -> Optional[Subscription]:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"SELECT {_COLUMNS} FROM subscriptions WHERE provider_subscription_id=%s",
                (str(provider_subscription_id),),
            )
            r = fetchone(cur)
            return _row_to_subscription(r) if r else None

    def get_for_organization(
        self,
        *,
        organization_id: int,
        statuses: Iterable[SubscriptionStatus] = LIVE_SUBSCRIPTION_STATUSES,
    ) -> Optional[Subscription]:
        values = [s.value for s in statuses]
        if not values:
            return None
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM subscriptions
                WHERE organization_id=%s AND status IN ({in_clause(values)})
                ORDER BY updated_at DESC, subscription_id DESC
                LIMIT 1
                """,
                (int(organization_id), *values),
            )
            r = fetchone(cur)
            return _row_to_subscription(r) if r else None

    def create(self, *, organization_id: int, provider_subscription_id: str, **fields: Any) -> int:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown subscription fields: {sorted(unknown)}")

        columns = ["organization_id", "provider_subscription_id", *fields.keys()]
        values = [int(organization_id), str(provider_subscription_id), *(_db_value(v) for v in fields.values())]
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"INSERT INTO subscriptions({', '.join(columns)}) VALUES({in_clause(values)})",
                tuple(values),
            )
            return int(cur.lastrowid)

    def update(self, subscription_id: int, **changes: Any) -> bool:
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown subscription fields: {sorted(unknown)}")
        if not changes:
            return False

        sets = ", ".join(f"{column}=%s" for column in changes)
        params = [_db_value(v) for v in changes.values()]
        params.append(int(subscription_id))
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(f"UPDATE subscriptions SET {sets} WHERE subscription_id=%s", tuple(params))
            # rowcount is 0 when values are unchanged; treat an existing row as success.
            if cur.rowcount > 0:
                return True
            cur.execute("SELECT COUNT(*) AS n FROM subscriptions WHERE subscription_id=%s", (int(subscription_id),))
            return fetch_count(cur) > 0

    def list_live(self) -> Sequence[Subscription]:
        values = [s.value for s in LIVE_SUBSCRIPTION_STATUSES]
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM subscriptions
                WHERE status IN ({in_clause(values)}) AND provider_subscription_id IS NOT NULL
                ORDER BY subscription_id
                """,
                tuple(values),
            )
            return [_row_to_subscription(r) for r in fetchall(cur)]

    def list_pending_changes(self, *, window_start: datetime, window_end: datetime) -> Sequence[Subscription]:
        values = [s.value for s in LIVE_SUBSCRIPTION_STATUSES]
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                f"""
                SELECT {_COLUMNS} FROM subscriptions
                WHERE pending_seats IS NOT NULL
                  AND quantity_synced = 0
                  AND status IN ({in_clause(values)})
                  AND renews_at >= %s AND renews_at <= %s
                ORDER BY renews_at
                """,
                (*values, window_start, window_end),
            )
            return [_row_to_subscription(r) for r in fetchall(cur)]


class MySQLBillingEventRepository(BillingEventRepository):
    def __init__(self, conn_factory: DatabaseConnection):
        self._conn_factory = conn_factory

    def is_processed(self, provider_event_id: str) -> bool:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                "SELECT COUNT(*) AS n FROM billing_events WHERE provider_event_id=%s AND status=%s",
                (provider_event_id, BillingEventStatus.PROCESSED.value),
            )
            return fetch_count(cur) > 0

    def record(
        self,
        *,
        event_type: str,
        provider_event_id: str,
        status: BillingEventStatus,
        payload: Optional[Any] = None,
        error_message: Optional[str] = None,
    ) -> int:
        with db_cursor(self._conn_factory) as (_, cur):
            cur.execute(
                """
                INSERT INTO billing_events(event_type, provider_event_id, payload, status, error_message)
                VALUES(%s,%s,%s,%s,%s)
                """,
                (event_type, provider_event_id, to_json(payload), status.value, error_message),
            )
            return int(cur.lastrowid)
