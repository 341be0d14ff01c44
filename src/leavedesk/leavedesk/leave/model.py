from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from ..core.enums import LeaveRequestStatus


@dataclass(frozen=True)
class LeaveType:
    leave_type_id: int
    organization_id: int
    name: str
    days_per_year: int
    requires_balance: bool = True
    requires_approval: bool = True
    is_paid: bool = True


@dataclass(frozen=True)
class LeaveBalance:
    balance_id: int
    organization_id: int
    user_id: int
    leave_type_id: int
    year: int
    entitled_days: float
    used_days: float
    leave_type_name: Optional[str] = None

    @property
    def remaining_days(self) -> float:
        return self.entitled_days - self.used_days


@dataclass(frozen=True)
class LeaveRequest:
    request_id: int
    organization_id: int
    user_id: int
    leave_type_id: int
    start_date: date
    end_date: date
    days_requested: float
    status: LeaveRequestStatus
    reason: Optional[str] = None
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    edited_by: Optional[int] = None
    edited_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
