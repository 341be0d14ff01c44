from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

from ..core.enums import MembershipStatus, Role, SubscriptionTier
from .model import Membership, Organization


class OrganizationRepository(Protocol):
    def get_by_id(self, organization_id: int) -> Optional[Organization]:
        raise NotImplementedError

    def create_organization(self, *, name: str) -> int:
        raise NotImplementedError

    def update_billing(
        self,
        *,
        organization_id: int,
        paid_seats: int,
        subscription_tier: SubscriptionTier,
    ) -> bool:
        raise NotImplementedError

    def list_for_user(self, *, user_id: int) -> Sequence[dict]:
        """Organizations the user can access, with their role in each."""

        raise NotImplementedError


class MembershipRepository(Protocol):
    def get(self, *, organization_id: int, user_id: int) -> Optional[Membership]:
        raise NotImplementedError

    def add(
        self,
        *,
        organization_id: int,
        user_id: int,
        role: Role,
        status: MembershipStatus = MembershipStatus.ACTIVE,
    ) -> None:
        raise NotImplementedError

    def set_status(
        self,
        *,
        organization_id: int,
        user_id: int,
        status: MembershipStatus,
        removal_effective_date: Optional[datetime] = None,
    ) -> bool:
        raise NotImplementedError

    def set_role(self, *, organization_id: int, user_id: int, role: Role) -> bool:
        raise NotImplementedError

    def count(self, *, organization_id: int, statuses: Iterable[MembershipStatus]) -> int:
        raise NotImplementedError

    def list_members(
        self,
        *,
        organization_id: int,
        statuses: Optional[Iterable[MembershipStatus]] = None,
    ) -> Sequence[Membership]:
        raise NotImplementedError

    def find_member_emails(self, *, organization_id: int, emails: Sequence[str]) -> set[str]:
        raise NotImplementedError

    def archive_pending_removals(self, *, organization_id: int) -> int:
        raise NotImplementedError

    def archive_lapsed_removals(self, *, now: datetime) -> int:
        """Archive ``pending_removal`` members whose effective date has passed, across organizations."""
        raise NotImplementedError
