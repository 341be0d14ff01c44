from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    """Member role inside one organization."""

    ADMIN = "admin"
    MANAGER = "manager"
    EMPLOYEE = "employee"


class MembershipStatus(str, Enum):
    """Lifecycle of a user inside an organization (seat occupancy)."""

    ACTIVE = "active"
    PENDING_REMOVAL = "pending_removal"
    ARCHIVED = "archived"


class InvitationStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class LeaveRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class SubscriptionStatus(str, Enum):
    """Statuses reported by the billing provider."""

    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    ON_TRIAL = "on_trial"
    PAUSED = "paused"


class BillingType(str, Enum):
    VOLUME = "volume"
    USAGE_BASED = "usage_based"
    QUANTITY_BASED = "quantity_based"


class BillingPeriod(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionTier(str, Enum):
    FREE = "free"
    ACTIVE = "active"


class SeatStatus(str, Enum):
    SAFE = "safe"
    WARNING = "warning"
    FULL = "full"
    OVER = "over"


class BillingEventStatus(str, Enum):
    PROCESSED = "processed"
    FAILED = "failed"
    SKIPPED = "skipped"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"
