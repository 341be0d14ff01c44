from __future__ import annotations

from datetime import datetime
from typing import Optional, Protocol, Sequence

from ..core.enums import InvitationStatus
from .model import Invitation, NewInvitation


class InvitationRepository(Protocol):
    def create_many(
        self,
        *,
        organization_id: int,
        invited_by: int,
        invitations: Sequence[NewInvitation],
    ) -> list[int]:
        """Insert all invitations in one transaction."""

        raise NotImplementedError

    def get_by_id(self, invitation_id: int) -> Optional[Invitation]:
        raise NotImplementedError

    def get_by_token(self, token: str) -> Optional[Invitation]:
        raise NotImplementedError

    def find_pending_emails(self, *, organization_id: int, emails: Sequence[str]) -> set[str]:
        raise NotImplementedError

    def list_pending(self, *, organization_id: int) -> Sequence[Invitation]:
        raise NotImplementedError

    def count_pending(self, *, organization_id: int) -> int:
        raise NotImplementedError

    def set_status(
        self,
        *,
        invitation_id: int,
        status: InvitationStatus,
        accepted_at: Optional[datetime] = None,
    ) -> bool:
        raise NotImplementedError

    def expire_stale(self, *, now: datetime) -> int:
        raise NotImplementedError
