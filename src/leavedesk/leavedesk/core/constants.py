"""Constants and defaults.

Note: Keep constants here to avoid magic numbers spread across code.
"""

from .enums import Role, SubscriptionStatus

FREE_SEATS = 3
MIN_PAID_SEATS = 1
SEAT_WARNING_UTILIZATION = 80

# Subscriptions that grant seats.
LIVE_SUBSCRIPTION_STATUSES = frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.ON_TRIAL})
# Subscriptions whose quantity may still be changed by an admin.
MUTABLE_SUBSCRIPTION_STATUSES = frozenset(
    {
        SubscriptionStatus.ACTIVE,
        SubscriptionStatus.ON_TRIAL,
        SubscriptionStatus.PAUSED,
        SubscriptionStatus.PAST_DUE,
    }
)

DEFAULT_INVITATION_TTL_DAYS = 7
MAX_INVITATIONS_PER_REQUEST = 50
MAX_PERSONAL_MESSAGE_LENGTH = 500

DEFAULT_PROVIDER_MAX_RETRIES = 3
DEFAULT_PROVIDER_RETRY_DELAY = 1.0
DEFAULT_PROVIDER_TIMEOUT = 10.0
RECONCILE_PAUSE_SECONDS = 0.1

WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS = 300

# Pending seat changes are pushed to the provider this long before renewal.
PENDING_CHANGE_WINDOW_START_HOURS = 24
PENDING_CHANGE_WINDOW_END_HOURS = 48

DEFAULT_WORKING_DAYS = (0, 1, 2, 3, 4)  # Monday..Friday (date.weekday())

DEFAULT_LEAVE_TYPES = (
    # name, days_per_year, requires_balance, requires_approval, is_paid
    ("Annual leave", 20, True, True, True),
    ("Sick leave", 10, True, True, True),
    ("Unpaid leave", 0, False, True, False),
    ("Remote work", 0, False, False, True),
)


def is_admin(role: Role) -> bool:
    return role == Role.ADMIN


def can_manage_leave(role: Role) -> bool:
    return role in {Role.ADMIN, Role.MANAGER}
