from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..common.validators import require_max_length, require_non_empty
from ..core.constants import can_manage_leave
from ..core.enums import MembershipStatus, Role
from ..core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ..leave.service import LeaveService
from ..schedules.service import ScheduleService
from .access import require_member
from .model import Membership
from .repository import MembershipRepository, OrganizationRepository

logger = logging.getLogger(__name__)


class OrganizationService:
    def __init__(
        self,
        organizations: OrganizationRepository,
        memberships: MembershipRepository,
        leave_service: LeaveService,
        schedule_service: ScheduleService,
    ):
        self._organizations = organizations
        self._memberships = memberships
        self._leave = leave_service
        self._schedules = schedule_service

    def create_workspace(self, *, user_id: int, name: str) -> int:
        """Create an organization on the free tier with the creator as its admin."""
        name = require_max_length(require_non_empty(name, "Workspace name"), "Workspace name", 150)

        organization_id = self._organizations.create_organization(name=name)
        self._memberships.add(organization_id=organization_id, user_id=int(user_id), role=Role.ADMIN)
        self._schedules.ensure_default(organization_id=organization_id)
        self._leave.create_default_types(organization_id=organization_id)
        self._leave.provision_member(organization_id=organization_id, user_id=int(user_id))

        logger.info("Workspace %s (%s) created by user %s", organization_id, name, user_id)
        return organization_id

    def list_for_user(self, *, user_id: int) -> Sequence[dict]:
        return self._organizations.list_for_user(user_id=int(user_id))

    def list_members(
        self,
        *,
        organization_id: int,
        requester_id: int,
        status: Optional[MembershipStatus] = None,
    ) -> Sequence[Membership]:
        require_member(self._memberships, organization_id=organization_id, user_id=requester_id)
        statuses = [status] if status else None
        return self._memberships.list_members(organization_id=int(organization_id), statuses=statuses)

    def change_role(self, *, organization_id: int, requester_id: int, user_id: int, role: Role) -> Membership:
        requester = require_member(self._memberships, organization_id=organization_id, user_id=requester_id)
        if not can_manage_leave(requester.role):
            raise AuthorizationError("You do not have permission to change member roles")
        if int(user_id) == int(requester_id):
            raise ValidationError("You cannot change your own role")
        if role == Role.ADMIN and requester.role != Role.ADMIN:
            raise AuthorizationError("Only administrators can promote members to admin role")

        member = self._memberships.get(organization_id=int(organization_id), user_id=int(user_id))
        if not member:
            raise NotFoundError("Member not found")
        if member.role == Role.ADMIN and requester.role != Role.ADMIN:
            raise AuthorizationError("Only administrators can change the role of other administrators")

        self._memberships.set_role(organization_id=int(organization_id), user_id=int(user_id), role=role)
        logger.info("User %s role in org %s: %s -> %s", user_id, organization_id, member.role.value, role.value)
        updated = self._memberships.get(organization_id=int(organization_id), user_id=int(user_id))
        if not updated:
            raise NotFoundError("Member not found")
        return updated
