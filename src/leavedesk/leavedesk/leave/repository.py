from __future__ import annotations

from datetime import date, datetime
from typing import Optional, Protocol, Sequence

from ..core.enums import LeaveRequestStatus
from .model import LeaveBalance, LeaveRequest, LeaveType


class LeaveRepository(Protocol):
    # Leave types
    def list_types(self, *, organization_id: int) -> Sequence[LeaveType]:
        raise NotImplementedError

    def get_type(self, *, leave_type_id: int) -> Optional[LeaveType]:
        raise NotImplementedError

    def create_type(
        self,
        *,
        organization_id: int,
        name: str,
        days_per_year: int,
        requires_balance: bool,
        requires_approval: bool,
        is_paid: bool,
    ) -> int:
        raise NotImplementedError

    # Balances
    def get_balance(self, *, user_id: int, leave_type_id: int, year: int) -> Optional[LeaveBalance]:
        raise NotImplementedError

    def list_balances(self, *, organization_id: int, user_id: int, year: int) -> Sequence[LeaveBalance]:
        raise NotImplementedError

    def create_balance(
        self,
        *,
        organization_id: int,
        user_id: int,
        leave_type_id: int,
        year: int,
        entitled_days: float,
        used_days: float = 0,
    ) -> int:
        raise NotImplementedError

    def update_balance(
        self,
        *,
        balance_id: int,
        entitled_days: Optional[float] = None,
        used_days: Optional[float] = None,
    ) -> bool:
        raise NotImplementedError

    # Requests
    def create_request(
        self,
        *,
        organization_id: int,
        user_id: int,
        leave_type_id: int,
        start_date: date,
        end_date: date,
        days_requested: float,
        reason: Optional[str],
        status: LeaveRequestStatus,
    ) -> int:
        raise NotImplementedError

    def get_request(self, *, request_id: int) -> Optional[LeaveRequest]:
        raise NotImplementedError

    def list_requests(
        self,
        *,
        organization_id: int,
        user_id: Optional[int] = None,
        status: Optional[LeaveRequestStatus] = None,
        limit: int = 200,
    ) -> Sequence[dict]:
        """Return API rows (joined with user and leave type)."""

        raise NotImplementedError

    def find_overlapping(
        self,
        *,
        organization_id: int,
        user_id: int,
        start_date: date,
        end_date: date,
        exclude_request_id: Optional[int] = None,
    ) -> Sequence[LeaveRequest]:
        """Pending or approved requests of the user intersecting [start_date, end_date]."""

        raise NotImplementedError

    def decide_request(
        self,
        *,
        request_id: int,
        status: LeaveRequestStatus,
        reviewed_by: int,
        reviewed_at: datetime,
        rejection_reason: Optional[str] = None,
    ) -> bool:
        raise NotImplementedError

    def set_request_status(self, *, request_id: int, status: LeaveRequestStatus) -> bool:
        raise NotImplementedError

    def update_request(
        self,
        *,
        request_id: int,
        leave_type_id: int,
        start_date: date,
        end_date: date,
        days_requested: float,
        reason: Optional[str],
        edited_by: Optional[int] = None,
        edited_at: Optional[datetime] = None,
    ) -> bool:
        raise NotImplementedError
