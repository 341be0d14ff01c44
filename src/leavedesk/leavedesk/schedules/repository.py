from __future__ import annotations

from datetime import date
from typing import Optional, Protocol, Sequence

from .model import Holiday


class ScheduleRepository(Protocol):
    def get_working_days(self, *, organization_id: int, user_id: int = 0) -> Optional[tuple[int, ...]]:
        """Weekday numbers (Monday=0); ``user_id=0`` is the organization default."""

        raise NotImplementedError

    def set_working_days(self, *, organization_id: int, working_days: Sequence[int], user_id: int = 0) -> None:
        raise NotImplementedError

    def list_holidays(
        self,
        *,
        organization_id: int,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> Sequence[Holiday]:
        raise NotImplementedError

    def add_holiday(self, *, organization_id: int, holiday_date: date, name: str) -> int:
        raise NotImplementedError

    def delete_holiday(self, *, organization_id: int, holiday_id: int) -> bool:
        raise NotImplementedError
