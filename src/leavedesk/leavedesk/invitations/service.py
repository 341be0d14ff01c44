from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, Sequence

from ..billing.seat_validation import SeatValidator
from ..common.datetime_utils import utcnow
from ..common.validators import normalize_email, require_max_length
from ..core.constants import (
    DEFAULT_INVITATION_TTL_DAYS,
    MAX_INVITATIONS_PER_REQUEST,
    MAX_PERSONAL_MESSAGE_LENGTH,
)
from ..core.enums import InvitationStatus, Role
from ..core.exceptions import AuthorizationError, NotFoundError, SeatLimitError, ValidationError
from ..leave.service import LeaveService
from ..organizations.access import require_admin
from ..organizations.model import Membership
from ..organizations.repository import MembershipRepository, OrganizationRepository
from ..users.repository import UserRepository
from .model import Invitation, NewInvitation
from .repository import InvitationRepository

logger = logging.getLogger(__name__)


def _new_token() -> str:
    return secrets.token_urlsafe(32)


class InvitationService:
    """Inviting people into an organization; pending invitations occupy seats."""

    def __init__(
        self,
        invitations: InvitationRepository,
        memberships: MembershipRepository,
        organizations: OrganizationRepository,
        users: UserRepository,
        leave_service: LeaveService,
        seat_validator: SeatValidator,
        *,
        ttl_days: int = DEFAULT_INVITATION_TTL_DAYS,
        token_factory: Callable[[], str] = _new_token,
    ):
        self._invitations = invitations
        self._memberships = memberships
        self._organizations = organizations
        self._users = users
        self._leave = leave_service
        self._seats = seat_validator
        self._ttl = timedelta(days=int(ttl_days))
        self._token_factory = token_factory

    @staticmethod
    def _parse_item(item: Mapping[str, Any], index: int) -> dict:
        if not isinstance(item, Mapping):
            raise ValidationError(f"Invitation #{index + 1} must be an object")

        email = normalize_email(str(item.get("email") or ""))
        try:
            role = Role(str(item.get("role") or "").strip().lower())
        except ValueError:
            raise ValidationError("Role must be admin, manager, or employee")

        full_name = (item.get("full_name") or item.get("fullName") or "").strip() or None
        message = (item.get("personal_message") or item.get("personalMessage") or "").strip() or None
        if message:
            require_max_length(message, "Personal message", MAX_PERSONAL_MESSAGE_LENGTH)

        return {"email": email, "role": role, "full_name": full_name, "personal_message": message}

    def create_bulk(
        self,
        *,
        organization_id: int,
        requester_id: int,
        items: Sequence[Mapping[str, Any]],
        now: Optional[datetime] = None,
    ) -> list[Invitation]:
        require_admin(self._memberships, organization_id=organization_id, user_id=requester_id)

        if not items:
            raise ValidationError("At least one invitation is required")
        if len(items) > MAX_INVITATIONS_PER_REQUEST:
            raise ValidationError(f"Maximum {MAX_INVITATIONS_PER_REQUEST} invitations per request")

        parsed = [self._parse_item(item, i) for i, item in enumerate(items)]
        emails = [p["email"] for p in parsed]

        seen: set[str] = set()
        duplicates = []
        for email in emails:
            if email in seen:
                duplicates.append(email)
            seen.add(email)
        if duplicates:
            raise ValidationError("Duplicate emails found in request", details={"duplicates": duplicates})

        existing = self._memberships.find_member_emails(organization_id=int(organization_id), emails=emails)
        if existing:
            raise ValidationError(
                "Some emails are already members of this organization",
                details={"existing_members": sorted(existing)},
            )

        pending = self._invitations.find_pending_emails(organization_id=int(organization_id), emails=emails)
        if pending:
            raise ValidationError(
                "Some emails already have pending invitations",
                details={"pending_invitations": sorted(pending)},
            )

        org = self._organizations.get_by_id(int(organization_id))
        if not org:
            raise NotFoundError("Organization not found")

        now = now or utcnow()
        check = self._seats.invitation_check(org.organization_id, len(parsed), now)
        if not check.can_invite:
            logger.info(
                "Seat limit blocks %d invitation(s) for org %s (limit=%d, available=%d)",
                len(parsed),
                org.organization_id,
                check.seat_limit,
                check.available_seats,
            )
            raise SeatLimitError(
                check.reason or "Not enough seats available",
                seat_limit=check.seat_limit,
                available_seats=max(0, check.available_seats),
                seats_required=len(parsed),
            )

        expires_at = now + self._ttl
        new = [
            NewInvitation(
                email=p["email"],
                role=p["role"],
                token=self._token_factory(),
                expires_at=expires_at,
                full_name=p["full_name"],
                personal_message=p["personal_message"],
            )
            for p in parsed
        ]
        ids = self._invitations.create_many(
            organization_id=org.organization_id,
            invited_by=int(requester_id),
            invitations=new,
        )
        logger.info("Created %d invitation(s) for org %s", len(ids), org.organization_id)
        return [inv for inv in (self._invitations.get_by_id(i) for i in ids) if inv]

    def list_pending(self, *, organization_id: int, requester_id: int) -> Sequence[Invitation]:
        require_admin(self._memberships, organization_id=organization_id, user_id=requester_id)
        return self._invitations.list_pending(organization_id=int(organization_id))

    def _expire_if_stale(self, invitation: Invitation, now: datetime) -> Invitation:
        if invitation.status == InvitationStatus.PENDING and invitation.is_expired(now):
            self._invitations.set_status(invitation_id=invitation.invitation_id, status=InvitationStatus.EXPIRED)
            raise ValidationError("This invitation has expired")
        return invitation

    def lookup(self, *, token: str, now: Optional[datetime] = None) -> dict:
        invitation = self._invitations.get_by_token((token or "").strip())
        if not invitation:
            raise NotFoundError("Invitation not found")
        self._expire_if_stale(invitation, now or utcnow())
        if invitation.status != InvitationStatus.PENDING:
            raise ValidationError(f"This invitation is {invitation.status.value}")

        org = self._organizations.get_by_id(invitation.organization_id)
        return {
            "email": invitation.email,
            "full_name": invitation.full_name,
            "role": invitation.role.value,
            "organization_id": invitation.organization_id,
            "organization_name": org.name if org else None,
            "personal_message": invitation.personal_message,
            "expires_at": invitation.expires_at.isoformat(),
            "user_exists": self._users.get_by_email(invitation.email) is not None,
        }

    def accept(self, *, token: str, user_id: int, now: Optional[datetime] = None) -> Membership:
        now = now or utcnow()
        user = self._users.get_by_id(int(user_id))
        if not user:
            raise NotFoundError("User not found")

        invitation = self._invitations.get_by_token((token or "").strip())
        if not invitation or invitation.status != InvitationStatus.PENDING:
            raise ValidationError("Invalid or expired invitation")
        if invitation.email.lower() != user.email.lower():
            raise AuthorizationError("This invitation was sent to a different email address")
        self._expire_if_stale(invitation, now)

        org = self._organizations.get_by_id(invitation.organization_id)
        if not org:
            raise ValidationError("The organization for this invitation no longer exists")

        existing = self._memberships.get(organization_id=org.organization_id, user_id=user.user_id)
        if existing and existing.has_access_at(now):
            raise ValidationError("You are already a member of this organization")

        # create_bulk refuses existing rows, so an old row here was archived after
        # the invitation went out. add() upserts it back to active.
        self._memberships.add(organization_id=org.organization_id, user_id=user.user_id, role=invitation.role)
        self._leave.provision_member(organization_id=org.organization_id, user_id=user.user_id)
        self._invitations.set_status(
            invitation_id=invitation.invitation_id,
            status=InvitationStatus.ACCEPTED,
            accepted_at=now,
        )
        logger.info("User %s joined org %s as %s", user.user_id, org.organization_id, invitation.role.value)

        member = self._memberships.get(organization_id=org.organization_id, user_id=user.user_id)
        if not member:
            raise NotFoundError("Membership not found")
        return member

    def cancel(self, *, organization_id: int, invitation_id: int, requester_id: int) -> None:
        require_admin(self._memberships, organization_id=organization_id, user_id=requester_id)
        invitation = self._invitations.get_by_id(int(invitation_id))
        if not invitation or invitation.organization_id != int(organization_id):
            raise NotFoundError("Invitation not found")
        if invitation.status != InvitationStatus.PENDING:
            raise ValidationError(f"Cannot cancel an invitation that is {invitation.status.value}")
        self._invitations.set_status(invitation_id=invitation.invitation_id, status=InvitationStatus.CANCELLED)
        logger.info("Invitation %s for %s cancelled", invitation.invitation_id, invitation.email)

    def expire_stale(self, *, now: Optional[datetime] = None) -> int:
        count = self._invitations.expire_stale(now=now or utcnow())
        if count:
            logger.info("Expired %d stale invitation(s)", count)
        return count
