"""Removing and reactivating members against a seat-based subscription.

A removed member becomes ``pending_removal`` and keeps access until the
subscription renews; the reduced quantity is stored as ``pending_seats`` and
pushed to the provider by the pending-changes job.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..core.enums import MembershipStatus, Role
from ..core.exceptions import AuthorizationError, NotFoundError, SeatLimitError, ValidationError
from ..organizations.access import require_member
from ..organizations.model import Membership
from ..organizations.repository import MembershipRepository, OrganizationRepository
from .model import Subscription
from .repository import SubscriptionRepository
from .seat_validation import SeatValidator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RemovalResult:
    user_id: int
    organization_id: int
    removal_effective_date: datetime
    current_seats: int
    pending_seats: int


@dataclass(frozen=True)
class ReactivationResult:
    user_id: int
    organization_id: int
    current_seats: int
    pending_seats: Optional[int]


@dataclass(frozen=True)
class SeatUsage:
    active_seats: int  # includes pending_removal, they still have access
    pending_removals: int
    current_seats: int
    pending_seats: Optional[int]
    renews_at: Optional[datetime]


class SeatManagementService:
    def __init__(
        self,
        memberships: MembershipRepository,
        organizations: OrganizationRepository,
        subscriptions: SubscriptionRepository,
        seat_validator: SeatValidator,
    ):
        self._memberships = memberships
        self._organizations = organizations
        self._subscriptions = subscriptions
        self._seats = seat_validator

    def _require_admin(self, organization_id: int, requester_id: int, action: str) -> None:
        requester = require_member(self._memberships, organization_id=organization_id, user_id=requester_id)
        if requester.role != Role.ADMIN:
            raise AuthorizationError(f"Only admins can {action} users")

    def _live_subscription(self, organization_id: int) -> Subscription:
        subscription = self._subscriptions.get_for_organization(organization_id=int(organization_id))
        if not subscription:
            raise NotFoundError("Active subscription not found")
        return subscription

    def _member(self, organization_id: int, user_id: int) -> Membership:
        member = self._memberships.get(organization_id=int(organization_id), user_id=int(user_id))
        if not member:
            raise NotFoundError("User not found in organization")
        return member

    def _set_pending_seats(
        self,
        subscription: Subscription,
        pending_seats: Optional[int],
        *,
        organization_id: int,
        user_id: int,
        restore: MembershipStatus,
        restore_date: Optional[datetime] = None,
    ) -> None:
        """Store the new pending quantity, putting the membership back if that fails."""
        try:
            updated = self._subscriptions.update(
                subscription.subscription_id,
                pending_seats=pending_seats,
                quantity_synced=False,
            )
        except Exception:
            logger.exception("Subscription %s update failed, restoring member %s", subscription.subscription_id, user_id)
            self._memberships.set_status(
                organization_id=organization_id,
                user_id=user_id,
                status=restore,
                removal_effective_date=restore_date,
            )
            raise
        if not updated:
            self._memberships.set_status(
                organization_id=organization_id,
                user_id=user_id,
                status=restore,
                removal_effective_date=restore_date,
            )
            raise NotFoundError("Subscription not found")

    def remove_user(self, *, organization_id: int, user_id: int, requester_id: int) -> RemovalResult:
        organization_id, user_id = int(organization_id), int(user_id)
        self._require_admin(organization_id, requester_id, "remove")
        if user_id == int(requester_id):
            raise ValidationError("Cannot remove your own account")

        subscription = self._live_subscription(organization_id)
        if not subscription.renews_at:
            raise ValidationError("Subscription renewal date not found")

        member = self._member(organization_id, user_id)
        if member.status != MembershipStatus.ACTIVE:
            raise ValidationError(f"User is already {member.status.value}")

        # Only truly active members count; earlier removals are already excluded.
        pending_seats = self._seats.active_user_count(organization_id) - 1

        self._memberships.set_status(
            organization_id=organization_id,
            user_id=user_id,
            status=MembershipStatus.PENDING_REMOVAL,
            removal_effective_date=subscription.renews_at,
        )
        self._set_pending_seats(
            subscription,
            pending_seats,
            organization_id=organization_id,
            user_id=user_id,
            restore=MembershipStatus.ACTIVE,
        )

        logger.info(
            "User %s marked for removal from org %s. Pending seats: %d, effective: %s",
            user_id,
            organization_id,
            pending_seats,
            subscription.renews_at,
        )
        return RemovalResult(
            user_id=user_id,
            organization_id=organization_id,
            removal_effective_date=subscription.renews_at,
            current_seats=subscription.current_seats,
            pending_seats=pending_seats,
        )

    def reactivate_user(self, *, organization_id: int, user_id: int, requester_id: int) -> ReactivationResult:
        """Undo a pending removal before it takes effect."""
        organization_id, user_id = int(organization_id), int(user_id)
        self._require_admin(organization_id, requester_id, "reactivate")
        subscription = self._live_subscription(organization_id)

        member = self._member(organization_id, user_id)
        if member.status != MembershipStatus.PENDING_REMOVAL:
            raise ValidationError(f"Cannot reactivate user with status: {member.status.value}")

        self._memberships.set_status(
            organization_id=organization_id,
            user_id=user_id,
            status=MembershipStatus.ACTIVE,
        )

        pending_seats: Optional[int] = None
        remaining = self._memberships.count(
            organization_id=organization_id, statuses=[MembershipStatus.PENDING_REMOVAL]
        )
        if remaining > 0:
            pending_seats = self._seats.active_user_count(organization_id)

        self._set_pending_seats(
            subscription,
            pending_seats,
            organization_id=organization_id,
            user_id=user_id,
            restore=MembershipStatus.PENDING_REMOVAL,
            restore_date=member.removal_effective_date,
        )

        logger.info("User %s reactivated in org %s. Pending seats: %s", user_id, organization_id, pending_seats)
        return ReactivationResult(
            user_id=user_id,
            organization_id=organization_id,
            current_seats=subscription.current_seats,
            pending_seats=pending_seats,
        )

    def reactivate_archived_user(self, *, organization_id: int, user_id: int, requester_id: int) -> ReactivationResult:
        """Bring an archived member back; the extra seat is billed from the next renewal."""
        organization_id, user_id = int(organization_id), int(user_id)
        self._require_admin(organization_id, requester_id, "reactivate")
        subscription = self._live_subscription(organization_id)

        member = self._member(organization_id, user_id)
        if member.status != MembershipStatus.ARCHIVED:
            raise ValidationError(f"Cannot reactivate user with status: {member.status.value}")

        org = self._organizations.get_by_id(organization_id)
        if not org:
            raise NotFoundError("Organization not found")
        check = self._seats.can_unarchive_user(organization_id, self._seats.paid_seats(org))
        if not check.can_unarchive:
            raise SeatLimitError(
                check.reason or "No available seats",
                seat_limit=check.active_users + check.pending_invitations + check.available_seats,
                available_seats=check.available_seats,
            )

        with_access = self._memberships.count(
            organization_id=organization_id,
            statuses=[MembershipStatus.ACTIVE, MembershipStatus.PENDING_REMOVAL],
        )
        pending_seats = with_access + 1

        self._memberships.set_status(
            organization_id=organization_id,
            user_id=user_id,
            status=MembershipStatus.ACTIVE,
        )
        self._set_pending_seats(
            subscription,
            pending_seats,
            organization_id=organization_id,
            user_id=user_id,
            restore=MembershipStatus.ARCHIVED,
        )

        logger.info("Archived user %s reactivated in org %s. Pending seats: %d", user_id, organization_id, pending_seats)
        return ReactivationResult(
            user_id=user_id,
            organization_id=organization_id,
            current_seats=subscription.current_seats,
            pending_seats=pending_seats,
        )

    def seat_usage(self, *, organization_id: int) -> SeatUsage:
        organization_id = int(organization_id)
        subscription = self._subscriptions.get_for_organization(organization_id=organization_id)
        return SeatUsage(
            active_seats=self._memberships.count(
                organization_id=organization_id,
                statuses=[MembershipStatus.ACTIVE, MembershipStatus.PENDING_REMOVAL],
            ),
            pending_removals=self._memberships.count(
                organization_id=organization_id,
                statuses=[MembershipStatus.PENDING_REMOVAL],
            ),
            current_seats=subscription.current_seats if subscription else 0,
            pending_seats=subscription.pending_seats if subscription else None,
            renews_at=subscription.renews_at if subscription else None,
        )
