from __future__ import annotations

from datetime import date, timedelta
from typing import Optional, Sequence

from ..common.validators import require_non_empty
from ..core.constants import DEFAULT_WORKING_DAYS
from ..core.exceptions import NotFoundError, ValidationError
from ..organizations.access import require_admin, require_member
from ..organizations.repository import MembershipRepository
from .repository import ScheduleRepository


class ScheduleService:
    """Working days and holidays used to count leave days."""

    def __init__(self, schedules: ScheduleRepository, memberships: MembershipRepository):
        self._schedules = schedules
        self._memberships = memberships

    def working_days_for(self, *, organization_id: int, user_id: Optional[int] = None) -> tuple[int, ...]:
        days = None
        if user_id:
            days = self._schedules.get_working_days(organization_id=int(organization_id), user_id=int(user_id))
        if days is None:
            days = self._schedules.get_working_days(organization_id=int(organization_id))
        return tuple(days) if days is not None else DEFAULT_WORKING_DAYS

    def working_days_between(self, *, organization_id: int, user_id: Optional[int], start: date, end: date) -> int:
        """Inclusive count of working days, excluding weekends and holidays."""
        if end < start:
            return 0

        weekdays = set(self.working_days_for(organization_id=organization_id, user_id=user_id))
        holidays = {
            h.holiday_date
            for h in self._schedules.list_holidays(organization_id=int(organization_id), start=start, end=end)
        }

        count = 0
        day = start
        while day <= end:
            if day.weekday() in weekdays and day not in holidays:
                count += 1
            day += timedelta(days=1)
        return count

    def ensure_default(self, *, organization_id: int) -> None:
        if self._schedules.get_working_days(organization_id=int(organization_id)) is None:
            self._schedules.set_working_days(organization_id=int(organization_id), working_days=DEFAULT_WORKING_DAYS)

    def get_schedule(self, *, organization_id: int, requester_id: int, year: Optional[int] = None) -> dict:
        require_member(self._memberships, organization_id=organization_id, user_id=requester_id)
        year = year or date.today().year
        holidays = self._schedules.list_holidays(
            organization_id=int(organization_id),
            start=date(year, 1, 1),
            end=date(year, 12, 31),
        )
        return {
            "organization_id": int(organization_id),
            "working_days": list(self.working_days_for(organization_id=organization_id)),
            "holidays": [
                {"id": h.holiday_id, "date": h.holiday_date.isoformat(), "name": h.name} for h in holidays
            ],
        }

    def set_working_days(
        self,
        *,
        organization_id: int,
        requester_id: int,
        working_days: Sequence[int],
        user_id: Optional[int] = None,
    ) -> tuple[int, ...]:
        require_admin(self._memberships, organization_id=organization_id, user_id=requester_id)

        try:
            days = sorted({int(d) for d in working_days})
        except (TypeError, ValueError):
            raise ValidationError("Working days must be weekday numbers (0=Monday .. 6=Sunday)")
        if not days:
            raise ValidationError("At least one working day is required")
        if any(d < 0 or d > 6 for d in days):
            raise ValidationError("Working days must be weekday numbers (0=Monday .. 6=Sunday)")

        if user_id:
            require_member(self._memberships, organization_id=organization_id, user_id=user_id)

        self._schedules.set_working_days(
            organization_id=int(organization_id),
            working_days=days,
            user_id=int(user_id or 0),
        )
        return tuple(days)

    def add_holiday(self, *, organization_id: int, requester_id: int, holiday_date: date, name: str) -> int:
        require_admin(self._memberships, organization_id=organization_id, user_id=requester_id)
        name = require_non_empty(name, "Holiday name")
        return self._schedules.add_holiday(organization_id=int(organization_id), holiday_date=holiday_date, name=name)

    def remove_holiday(self, *, organization_id: int, requester_id: int, holiday_id: int) -> None:
        require_admin(self._memberships, organization_id=organization_id, user_id=requester_id)
        if not self._schedules.delete_holiday(organization_id=int(organization_id), holiday_id=int(holiday_id)):
            raise NotFoundError("Holiday not found")
