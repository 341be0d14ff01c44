from __future__ import annotations

from ..core.enums import Role
from ..core.exceptions import AuthorizationError
from .model import Membership
from .repository import MembershipRepository


def require_member(memberships: MembershipRepository, *, organization_id: int, user_id: int) -> Membership:
    """Membership of a user who can still access the organization."""
    member = memberships.get(organization_id=int(organization_id), user_id=int(user_id))
    if not member or not member.has_access:
        raise AuthorizationError("You are not a member of this organization")
    return member


def require_admin(memberships: MembershipRepository, *, organization_id: int, user_id: int) -> Membership:
    member = require_member(memberships, organization_id=organization_id, user_id=user_id)
    if member.role != Role.ADMIN:
        raise AuthorizationError("Admin access required")
    return member
