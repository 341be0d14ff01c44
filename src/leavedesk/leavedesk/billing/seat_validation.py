"""Seat checks backed by the database.

Occupied seats are active members, members marked ``pending_removal`` and
pending invitations. Pending removals keep access until renewal, so they hold
a seat for new invitations, but they never block a downgrade.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..core.enums import MembershipStatus
from ..core.exceptions import NotFoundError
from ..invitations.repository import InvitationRepository
from ..organizations.model import Organization
from ..organizations.repository import MembershipRepository, OrganizationRepository
from .repository import SubscriptionRepository
from .seats import InvitationCheck, total_seats, validate_invitation


@dataclass(frozen=True)
class OccupiedSeats:
    active_users: int
    pending_invitations: int
    pending_removals: int = 0

    @property
    def total(self) -> int:
        return self.active_users + self.pending_removals + self.pending_invitations


@dataclass(frozen=True)
class ReduceCheck:
    can_reduce: bool
    active_users: int
    reason: Optional[str] = None


@dataclass(frozen=True)
class UnarchiveCheck:
    can_unarchive: bool
    active_users: int
    pending_invitations: int
    available_seats: int
    reason: Optional[str] = None


@dataclass(frozen=True)
class SeatOverview:
    total_seats: int
    paid_seats: int
    active_users: int
    pending_invitations: int
    pending_removal_users: int
    archived_users: int
    available_seats: int


class SeatValidator:
    def __init__(
        self,
        memberships: MembershipRepository,
        invitations: InvitationRepository,
        organizations: OrganizationRepository,
        subscriptions: SubscriptionRepository,
    ):
        self._memberships = memberships
        self._invitations = invitations
        self._organizations = organizations
        self._subscriptions = subscriptions

    def _count(self, organization_id: int, status: MembershipStatus) -> int:
        return self._memberships.count(organization_id=int(organization_id), statuses=[status])

    def active_user_count(self, organization_id: int) -> int:
        """Only ``active`` members; this is the number a downgrade is checked against."""
        return self._count(organization_id, MembershipStatus.ACTIVE)

    def pending_invitations_count(self, organization_id: int) -> int:
        return self._invitations.count_pending(organization_id=int(organization_id))

    def occupied_seats(self, organization_id: int) -> OccupiedSeats:
        return OccupiedSeats(
            active_users=self.active_user_count(organization_id),
            pending_invitations=self.pending_invitations_count(organization_id),
            pending_removals=self._count(organization_id, MembershipStatus.PENDING_REMOVAL),
        )

    def paid_seats(self, organization: Organization) -> int:
        """Seats from the live subscription when there is one, else the organization's cached value."""
        subscription = self._subscriptions.get_for_organization(organization_id=organization.organization_id)
        if subscription:
            return subscription.current_seats
        return organization.paid_seats

    def can_reduce_seats(self, organization_id: int, target_seats: int) -> ReduceCheck:
        active = self.active_user_count(organization_id)
        if active <= int(target_seats):
            return ReduceCheck(can_reduce=True, active_users=active)
        return ReduceCheck(
            can_reduce=False,
            active_users=active,
            reason=(
                f"Cannot reduce to {target_seats} seats. You have {active} active users. "
                "Archive users in Team Management first."
            ),
        )

    def can_unarchive_user(self, organization_id: int, paid_seats: int) -> UnarchiveCheck:
        occupied = self.occupied_seats(organization_id)
        available = max(0, total_seats(paid_seats) - occupied.total)
        reason = None
        if available < 1:
            reason = (
                f"No available seats. You have {occupied.active_users} active users and "
                f"{occupied.pending_invitations} pending invitations. "
                "Upgrade your plan or archive users first."
            )
        return UnarchiveCheck(
            can_unarchive=available >= 1,
            active_users=occupied.active_users,
            pending_invitations=occupied.pending_invitations,
            available_seats=available,
            reason=reason,
        )

    def seat_overview(self, organization_id: int, paid_seats: int) -> SeatOverview:
        occupied = self.occupied_seats(organization_id)
        total = total_seats(paid_seats)
        return SeatOverview(
            total_seats=total,
            paid_seats=paid_seats,
            active_users=occupied.active_users,
            pending_invitations=occupied.pending_invitations,
            pending_removal_users=occupied.pending_removals,
            archived_users=self._count(organization_id, MembershipStatus.ARCHIVED),
            available_seats=max(0, total - occupied.total),
        )

    def invitation_check(self, organization_id: int, new_invitations: int, now: datetime) -> InvitationCheck:
        org = self._organizations.get_by_id(int(organization_id))
        if not org:
            raise NotFoundError("Organization not found")
        occupied = self.occupied_seats(org.organization_id)
        return validate_invitation(
            occupied.total,
            self.paid_seats(org),
            new_invitations,
            org.billing_override_seats,
            org.billing_override_expires_at,
            now,
        )
