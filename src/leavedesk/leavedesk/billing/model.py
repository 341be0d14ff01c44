from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from ..core.constants import LIVE_SUBSCRIPTION_STATUSES
from ..core.enums import BillingEventStatus, BillingPeriod, BillingType, SubscriptionStatus


@dataclass(frozen=True)
class Subscription:
    """Local mirror of a provider subscription.

    ``quantity`` is what the provider bills, ``current_seats`` what the
    organization may use now, ``pending_seats`` the quantity to apply at the
    next renewal (``None`` when nothing is scheduled).
    """

    subscription_id: int
    organization_id: int
    provider_subscription_id: str
    status: SubscriptionStatus
    billing_type: BillingType
    quantity: int = 0
    current_seats: int = 0
    pending_seats: Optional[int] = None
    quantity_synced: bool = True
    provider_subscription_item_id: Optional[str] = None
    provider_customer_id: Optional[str] = None
    variant_id: Optional[str] = None
    billing_period: Optional[BillingPeriod] = None
    renews_at: Optional[datetime] = None
    ends_at: Optional[datetime] = None
    trial_ends_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_SUBSCRIPTION_STATUSES


@dataclass(frozen=True)
class BillingEvent:
    billing_event_id: int
    event_type: str
    provider_event_id: str
    status: BillingEventStatus
    payload: Optional[Any] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
