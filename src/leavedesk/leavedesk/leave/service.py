from __future__ import annotations

import logging
from datetime import date
from typing import Optional, Sequence

from ..common.datetime_utils import utcnow
from ..common.validators import require_max_length
from ..core.constants import DEFAULT_LEAVE_TYPES, can_manage_leave
from ..core.enums import LeaveRequestStatus
from ..core.exceptions import AuthorizationError, NotFoundError, ValidationError
from ..organizations.access import require_admin, require_member
from ..organizations.repository import MembershipRepository
from ..schedules.service import ScheduleService
from .model import LeaveBalance, LeaveRequest, LeaveType
from .repository import LeaveRepository

logger = logging.getLogger(__name__)

MAX_REASON_LENGTH = 500


class LeaveService:
    """Leave requests, their approval workflow and the balances they consume."""

    def __init__(self, leave: LeaveRepository, schedules: ScheduleService, memberships: MembershipRepository):
        self._leave = leave
        self._schedules = schedules
        self._memberships = memberships

    # -------- Setup --------
    def create_default_types(self, *, organization_id: int) -> list[int]:
        ids = []
        for name, days, requires_balance, requires_approval, is_paid in DEFAULT_LEAVE_TYPES:
            ids.append(
                self._leave.create_type(
                    organization_id=int(organization_id),
                    name=name,
                    days_per_year=days,
                    requires_balance=requires_balance,
                    requires_approval=requires_approval,
                    is_paid=is_paid,
                )
            )
        return ids

    def provision_member(self, *, organization_id: int, user_id: int, year: Optional[int] = None) -> int:
        """Create missing balances for every balance-tracked leave type."""
        year = year or date.today().year
        created = 0
        for leave_type in self._leave.list_types(organization_id=int(organization_id)):
            if not leave_type.requires_balance:
                continue
            if self._leave.get_balance(user_id=int(user_id), leave_type_id=leave_type.leave_type_id, year=year):
                continue
            self._leave.create_balance(
                organization_id=int(organization_id),
                user_id=int(user_id),
                leave_type_id=leave_type.leave_type_id,
                year=year,
                entitled_days=leave_type.days_per_year,
            )
            created += 1
        return created

    def list_types(self, *, organization_id: int, requester_id: int) -> Sequence[LeaveType]:
        require_member(self._memberships, organization_id=organization_id, user_id=requester_id)
        return self._leave.list_types(organization_id=int(organization_id))

    # -------- Helpers --------
    def _get_type(self, organization_id: int, leave_type_id: int) -> LeaveType:
        leave_type = self._leave.get_type(leave_type_id=int(leave_type_id))
        if not leave_type or leave_type.organization_id != int(organization_id):
            raise ValidationError("Invalid leave type")
        return leave_type

    def _get_request(self, request_id: int) -> LeaveRequest:
        req = self._leave.get_request(request_id=int(request_id))
        if not req:
            raise NotFoundError("Leave request not found")
        return req

    def _count_days(self, organization_id: int, user_id: int, start_date: date, end_date: date) -> float:
        if end_date < start_date:
            raise ValidationError("End date must be on or after start date")
        days = self._schedules.working_days_between(
            organization_id=organization_id,
            user_id=user_id,
            start=start_date,
            end=end_date,
        )
        if days <= 0:
            raise ValidationError("Selected dates contain no working days")
        return float(days)

    def _check_overlap(
        self,
        organization_id: int,
        user_id: int,
        start_date: date,
        end_date: date,
        exclude_request_id: Optional[int] = None,
    ) -> None:
        overlapping = self._leave.find_overlapping(
            organization_id=int(organization_id),
            user_id=int(user_id),
            start_date=start_date,
            end_date=end_date,
            exclude_request_id=exclude_request_id,
        )
        if overlapping:
            raise ValidationError("You already have a pending or approved leave request for these dates")

    def _check_balance(
        self,
        leave_type: LeaveType,
        user_id: int,
        year: int,
        days: float,
        *,
        already_reserved: float = 0,
    ) -> None:
        if not leave_type.requires_balance:
            return
        balance = self._leave.get_balance(user_id=int(user_id), leave_type_id=leave_type.leave_type_id, year=year)
        remaining = balance.remaining_days if balance else float(leave_type.days_per_year)
        remaining += already_reserved
        if days > remaining:
            raise ValidationError(
                f"Insufficient leave balance: {remaining:g} days remaining, {days:g} requested"
            )

    def _apply_balance_change(self, req: LeaveRequest, days_change: float) -> None:
        """Positive ``days_change`` gives days back, negative deducts them."""
        leave_type = self._leave.get_type(leave_type_id=req.leave_type_id)
        if not leave_type or not leave_type.requires_balance:
            return

        year = req.start_date.year
        balance = self._leave.get_balance(user_id=req.user_id, leave_type_id=leave_type.leave_type_id, year=year)
        if not balance:
            self._leave.create_balance(
                organization_id=req.organization_id,
                user_id=req.user_id,
                leave_type_id=leave_type.leave_type_id,
                year=year,
                entitled_days=leave_type.days_per_year,
                used_days=max(0.0, -days_change),
            )
            return

        new_used = max(0.0, balance.used_days - days_change)
        logger.info(
            "Balance %s (user=%s type=%s): used %s -> %s",
            balance.balance_id,
            req.user_id,
            leave_type.leave_type_id,
            balance.used_days,
            new_used,
        )
        self._leave.update_balance(balance_id=balance.balance_id, used_days=new_used)

    # -------- Workflow --------
    def create_request(
        self,
        *,
        organization_id: int,
        user_id: int,
        leave_type_id: int,
        start_date: date,
        end_date: date,
        reason: str = "",
    ) -> LeaveRequest:
        require_member(self._memberships, organization_id=organization_id, user_id=user_id)
        leave_type = self._get_type(organization_id, leave_type_id)
        reason = require_max_length((reason or "").strip(), "Reason", MAX_REASON_LENGTH) or None

        days = self._count_days(int(organization_id), int(user_id), start_date, end_date)
        self._check_overlap(organization_id, user_id, start_date, end_date)
        self._check_balance(leave_type, user_id, start_date.year, days)

        status = LeaveRequestStatus.PENDING if leave_type.requires_approval else LeaveRequestStatus.APPROVED
        request_id = self._leave.create_request(
            organization_id=int(organization_id),
            user_id=int(user_id),
            leave_type_id=leave_type.leave_type_id,
            start_date=start_date,
            end_date=end_date,
            days_requested=days,
            reason=reason,
            status=status,
        )
        req = self._get_request(request_id)
        if status == LeaveRequestStatus.APPROVED:
            self._apply_balance_change(req, -days)
            logger.info("Leave request %s auto-approved (%s)", request_id, leave_type.name)
        return req

    def approve(self, *, request_id: int, reviewer_id: int) -> LeaveRequest:
        req = self._get_request(request_id)
        reviewer = require_member(self._memberships, organization_id=req.organization_id, user_id=reviewer_id)
        if not can_manage_leave(reviewer.role):
            raise AuthorizationError("Only admins and managers can review leave requests")
        if req.status != LeaveRequestStatus.PENDING:
            raise ValidationError("Leave request has already been processed")

        decided = self._leave.decide_request(
            request_id=req.request_id,
            status=LeaveRequestStatus.APPROVED,
            reviewed_by=int(reviewer_id),
            reviewed_at=utcnow(),
        )
        if not decided:
            raise ValidationError("Leave request has already been processed")

        self._apply_balance_change(req, -req.days_requested)
        return self._get_request(request_id)

    def reject(self, *, request_id: int, reviewer_id: int, rejection_reason: str = "") -> LeaveRequest:
        req = self._get_request(request_id)
        reviewer = require_member(self._memberships, organization_id=req.organization_id, user_id=reviewer_id)
        if not can_manage_leave(reviewer.role):
            raise AuthorizationError("Only admins and managers can review leave requests")
        if req.status != LeaveRequestStatus.PENDING:
            raise ValidationError("Leave request has already been processed")

        rejection_reason = require_max_length((rejection_reason or "").strip(), "Rejection reason", MAX_REASON_LENGTH)
        decided = self._leave.decide_request(
            request_id=req.request_id,
            status=LeaveRequestStatus.REJECTED,
            reviewed_by=int(reviewer_id),
            reviewed_at=utcnow(),
            rejection_reason=rejection_reason or None,
        )
        if not decided:
            raise ValidationError("Leave request has already been processed")
        return self._get_request(request_id)

    def cancel(self, *, request_id: int, requester_id: int, today: Optional[date] = None) -> LeaveRequest:
        req = self._get_request(request_id)
        requester = require_member(self._memberships, organization_id=req.organization_id, user_id=requester_id)
        is_owner = req.user_id == int(requester_id)
        privileged = can_manage_leave(requester.role)

        if not is_owner and not privileged:
            raise AuthorizationError("You can only cancel your own leave requests")
        if req.status not in (LeaveRequestStatus.PENDING, LeaveRequestStatus.APPROVED):
            raise ValidationError(f"Cannot cancel a {req.status.value} leave request")
        if not privileged and req.start_date <= (today or date.today()):
            raise ValidationError("Leave requests can only be cancelled before they start")

        self._leave.set_request_status(request_id=req.request_id, status=LeaveRequestStatus.CANCELLED)
        if req.status == LeaveRequestStatus.APPROVED:
            self._apply_balance_change(req, req.days_requested)
        return self._get_request(request_id)

    def edit(
        self,
        *,
        request_id: int,
        requester_id: int,
        leave_type_id: Optional[int] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        reason: Optional[str] = None,
        today: Optional[date] = None,
    ) -> LeaveRequest:
        req = self._get_request(request_id)
        requester = require_member(self._memberships, organization_id=req.organization_id, user_id=requester_id)
        is_owner = req.user_id == int(requester_id)
        privileged = can_manage_leave(requester.role)

        if req.status == LeaveRequestStatus.CANCELLED:
            raise ValidationError("Cannot edit a cancelled leave request")
        if not privileged:
            if not is_owner:
                raise AuthorizationError("You can only edit your own leave requests")
            if req.status != LeaveRequestStatus.PENDING:
                raise ValidationError("Only pending leave requests can be edited")
            if req.start_date <= (today or date.today()):
                raise ValidationError("Leave requests can only be edited before they start")

        new_type = self._get_type(req.organization_id, leave_type_id or req.leave_type_id)
        new_start = start_date or req.start_date
        new_end = end_date or req.end_date
        new_reason = req.reason if reason is None else (require_max_length(reason.strip(), "Reason", MAX_REASON_LENGTH) or None)

        days = self._count_days(req.organization_id, req.user_id, new_start, new_end)
        self._check_overlap(req.organization_id, req.user_id, new_start, new_end, exclude_request_id=req.request_id)

        approved = req.status == LeaveRequestStatus.APPROVED
        reserved = req.days_requested if approved and new_type.leave_type_id == req.leave_type_id else 0
        self._check_balance(new_type, req.user_id, new_start.year, days, already_reserved=reserved)

        self._leave.update_request(
            request_id=req.request_id,
            leave_type_id=new_type.leave_type_id,
            start_date=new_start,
            end_date=new_end,
            days_requested=days,
            reason=new_reason,
            edited_by=None if is_owner else int(requester_id),
            edited_at=None if is_owner else utcnow(),
        )

        if approved:
            # Give back the old reservation, then charge the edited one.
            self._apply_balance_change(req, req.days_requested)
            updated = self._get_request(request_id)
            self._apply_balance_change(updated, -days)
            return updated
        return self._get_request(request_id)

    # -------- Queries --------
    def list_for_user(
        self,
        *,
        organization_id: int,
        requester_id: int,
        user_id: Optional[int] = None,
        status: Optional[LeaveRequestStatus] = None,
    ) -> Sequence[dict]:
        requester = require_member(self._memberships, organization_id=organization_id, user_id=requester_id)
        target = int(user_id or requester_id)
        if target != int(requester_id) and not can_manage_leave(requester.role):
            raise AuthorizationError("You can only view your own leave requests")
        return self._leave.list_requests(organization_id=int(organization_id), user_id=target, status=status)

    def list_pending(self, *, organization_id: int, requester_id: int) -> Sequence[dict]:
        requester = require_member(self._memberships, organization_id=organization_id, user_id=requester_id)
        if not can_manage_leave(requester.role):
            raise AuthorizationError("Only admins and managers can review leave requests")
        return self._leave.list_requests(organization_id=int(organization_id), status=LeaveRequestStatus.PENDING)

    def balances_for_user(
        self,
        *,
        organization_id: int,
        requester_id: int,
        user_id: Optional[int] = None,
        year: Optional[int] = None,
    ) -> Sequence[LeaveBalance]:
        requester = require_member(self._memberships, organization_id=organization_id, user_id=requester_id)
        target = int(user_id or requester_id)
        if target != int(requester_id) and not can_manage_leave(requester.role):
            raise AuthorizationError("You can only view your own leave balances")
        return self._leave.list_balances(
            organization_id=int(organization_id),
            user_id=target,
            year=int(year or date.today().year),
        )

    def admin_set_balance(
        self,
        *,
        organization_id: int,
        requester_id: int,
        user_id: int,
        leave_type_id: int,
        entitled_days: float,
        year: Optional[int] = None,
    ) -> LeaveBalance:
        require_admin(self._memberships, organization_id=organization_id, user_id=requester_id)
        require_member(self._memberships, organization_id=organization_id, user_id=user_id)
        leave_type = self._get_type(organization_id, leave_type_id)
        if not leave_type.requires_balance:
            raise ValidationError(f"{leave_type.name} does not track a balance")

        try:
            entitled = float(entitled_days)
        except (TypeError, ValueError):
            raise ValidationError("Entitled days must be a number")
        if entitled < 0:
            raise ValidationError("Entitled days cannot be negative")

        year = int(year or date.today().year)
        balance = self._leave.get_balance(user_id=int(user_id), leave_type_id=leave_type.leave_type_id, year=year)
        if balance:
            self._leave.update_balance(balance_id=balance.balance_id, entitled_days=entitled)
        else:
            self._leave.create_balance(
                organization_id=int(organization_id),
                user_id=int(user_id),
                leave_type_id=leave_type.leave_type_id,
                year=year,
                entitled_days=entitled,
            )
        logger.info("Admin %s set %s balance of user %s to %s (%s)", requester_id, leave_type.name, user_id, entitled, year)
        updated = self._leave.get_balance(user_id=int(user_id), leave_type_id=leave_type.leave_type_id, year=year)
        if not updated:
            raise NotFoundError("Leave balance not found")
        return updated
