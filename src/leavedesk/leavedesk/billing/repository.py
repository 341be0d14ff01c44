from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional, Protocol, Sequence

from ..core.constants import LIVE_SUBSCRIPTION_STATUSES
from ..core.enums import BillingEventStatus, SubscriptionStatus
from .model import Subscription

# Columns a caller may change through ``SubscriptionRepository.update``.
UPDATABLE_FIELDS = frozenset(
    {
        "provider_subscription_item_id",
        "provider_customer_id",
        "variant_id",
        "billing_type",
        "billing_period",
        "status",
        "quantity",
        "current_seats",
        "pending_seats",
        "quantity_synced",
        "renews_at",
        "ends_at",
        "trial_ends_at",
    }
)


class SubscriptionRepository(Protocol):
    def get_by_id(self, subscription_id: int) -> Optional[Subscription]:
        raise NotImplementedError

    def get_by_provider_id(self, provider_subscription_id: str) -> Optional[Subscription]:
        raise NotImplementedError

    def get_for_organization(
        self,
        *,
        organization_id: int,
        statuses: Iterable[SubscriptionStatus] = LIVE_SUBSCRIPTION_STATUSES,
    ) -> Optional[Subscription]:
        """Most recently updated subscription of the organization in one of ``statuses``."""

        raise NotImplementedError

    def create(self, *, organization_id: int, provider_subscription_id: str, **fields: Any) -> int:
        raise NotImplementedError

    def update(self, subscription_id: int, **changes: Any) -> bool:
        raise NotImplementedError

    def list_live(self) -> Sequence[Subscription]:
        raise NotImplementedError

    def list_pending_changes(self, *, window_start: datetime, window_end: datetime) -> Sequence[Subscription]:
        """Live, unsynced subscriptions with pending seats renewing inside the window."""

        raise NotImplementedError


class BillingEventRepository(Protocol):
    def is_processed(self, provider_event_id: str) -> bool:
        raise NotImplementedError

    def record(
        self,
        *,
        event_type: str,
        provider_event_id: str,
        status: BillingEventStatus,
        payload: Optional[Any] = None,
        error_message: Optional[str] = None,
    ) -> int:
        raise NotImplementedError
