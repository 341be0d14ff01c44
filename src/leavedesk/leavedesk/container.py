from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .alerts.mysql_alert_repository import MySQLAlertRepository
from .alerts.service import AlertService
from .billing.client import LemonSqueezyClient, create_client
from .billing.jobs import BillingJobs
from .billing.mysql_billing_repository import MySQLBillingEventRepository, MySQLSubscriptionRepository
from .billing.seat_management import SeatManagementService
from .billing.seat_validation import SeatValidator
from .billing.settings import billing_config_from_settings
from .billing.subscriptions import SubscriptionService
from .billing.webhooks import WebhookProcessor
from .core.constants import DEFAULT_INVITATION_TTL_DAYS
from .database.connection import DBConfig, DatabaseConnection
from .invitations.mysql_invitation_repository import MySQLInvitationRepository
from .invitations.service import InvitationService
from .leave.mysql_leave_repository import MySQLLeaveRepository
from .leave.service import LeaveService
from .organizations.mysql_membership_repository import MySQLMembershipRepository
from .organizations.mysql_organization_repository import MySQLOrganizationRepository
from .organizations.service import OrganizationService
from .schedules.mysql_schedule_repository import MySQLScheduleRepository
from .schedules.service import ScheduleService
from .users.mysql_user_repository import MySQLUserRepository
from .users.service import AuthService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Container:
    auth_service: AuthService
    organization_service: OrganizationService
    schedule_service: ScheduleService
    leave_service: LeaveService
    invitation_service: InvitationService
    seat_validator: SeatValidator
    seat_management_service: SeatManagementService
    subscription_service: SubscriptionService
    webhook_processor: WebhookProcessor
    alert_service: AlertService
    # None when no provider API key is configured.
    billing_jobs: Optional[BillingJobs]

    cron_secret: Optional[str] = None
    webhook_secret: Optional[str] = None
    conn: Optional[DatabaseConnection] = None


def _setting(settings: Any, name: str, default: Any = None) -> Any:
    value = getattr(settings, name, default) if settings is not None else default
    return value if value not in ("", None) else default


def build_container(*, db_config: dict, settings: Any = None) -> Container:
    conn = DatabaseConnection.get_instance(DBConfig.from_dict(db_config))

    users_repo = MySQLUserRepository(conn)
    organizations_repo = MySQLOrganizationRepository(conn)
    memberships_repo = MySQLMembershipRepository(conn)
    schedules_repo = MySQLScheduleRepository(conn)
    leave_repo = MySQLLeaveRepository(conn)
    invitations_repo = MySQLInvitationRepository(conn)
    subscriptions_repo = MySQLSubscriptionRepository(conn)
    billing_events_repo = MySQLBillingEventRepository(conn)
    alerts_repo = MySQLAlertRepository(conn)

    client: Optional[LemonSqueezyClient] = None
    if _setting(settings, "LEMONSQUEEZY_API_KEY"):
        billing_config_from_settings(settings)
        client = create_client(settings)
    else:
        logger.warning("LEMONSQUEEZY_API_KEY is not set; billing provider calls are disabled")

    monthly_variant_id = _setting(settings, "LEMONSQUEEZY_MONTHLY_VARIANT_ID")
    yearly_variant_id = _setting(settings, "LEMONSQUEEZY_YEARLY_VARIANT_ID")

    schedule_service = ScheduleService(schedules_repo, memberships_repo)
    leave_service = LeaveService(leave_repo, schedule_service, memberships_repo)
    seat_validator = SeatValidator(memberships_repo, invitations_repo, organizations_repo, subscriptions_repo)
    alert_service = AlertService(alerts_repo, slack_webhook_url=_setting(settings, "SLACK_ALERT_WEBHOOK_URL"))

    return Container(
        auth_service=AuthService(users_repo),
        organization_service=OrganizationService(organizations_repo, memberships_repo, leave_service, schedule_service),
        schedule_service=schedule_service,
        leave_service=leave_service,
        invitation_service=InvitationService(
            invitations_repo,
            memberships_repo,
            organizations_repo,
            users_repo,
            leave_service,
            seat_validator,
            ttl_days=int(_setting(settings, "INVITATION_TTL_DAYS", DEFAULT_INVITATION_TTL_DAYS)),
        ),
        seat_validator=seat_validator,
        seat_management_service=SeatManagementService(
            memberships_repo, organizations_repo, subscriptions_repo, seat_validator
        ),
        subscription_service=SubscriptionService(
            subscriptions_repo,
            organizations_repo,
            memberships_repo,
            seat_validator,
            client,
            monthly_variant_id=monthly_variant_id,
            yearly_variant_id=yearly_variant_id,
        ),
        webhook_processor=WebhookProcessor(
            subscriptions_repo,
            billing_events_repo,
            organizations_repo,
            memberships_repo,
            client,
            monthly_variant_id=monthly_variant_id,
            yearly_variant_id=yearly_variant_id,
        ),
        alert_service=alert_service,
        billing_jobs=(
            BillingJobs(subscriptions_repo, client, alert_service, memberships=memberships_repo) if client else None
        ),
        cron_secret=_setting(settings, "CRON_SECRET"),
        webhook_secret=_setting(settings, "LEMONSQUEEZY_WEBHOOK_SECRET"),
        conn=conn,
    )
