from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..common.datetime_utils import utcnow
from ..core.enums import MembershipStatus, Role, SubscriptionTier


@dataclass(frozen=True)
class Organization:
    organization_id: int
    name: str
    paid_seats: int
    subscription_tier: SubscriptionTier
    billing_override_seats: Optional[int] = None
    billing_override_expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Membership:
    """A user's seat in one organization.

    ``email``/``full_name`` are only filled by listing queries (joined with users).
    """

    user_id: int
    organization_id: int
    role: Role
    status: MembershipStatus
    removal_effective_date: Optional[datetime] = None
    joined_at: Optional[datetime] = None
    email: Optional[str] = None
    full_name: Optional[str] = None

    def has_access_at(self, now: datetime) -> bool:
        if self.status == MembershipStatus.ACTIVE:
            return True
        if self.status == MembershipStatus.PENDING_REMOVAL:
            # Access ends at the renewal the removal was scheduled for.
            return self.removal_effective_date is None or self.removal_effective_date > now
        return False

    @property
    def has_access(self) -> bool:
        return self.has_access_at(utcnow())
