from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from ..core.enums import InvitationStatus, Role


@dataclass(frozen=True)
class NewInvitation:
    email: str
    role: Role
    token: str
    expires_at: datetime
    full_name: Optional[str] = None
    personal_message: Optional[str] = None


@dataclass(frozen=True)
class Invitation:
    invitation_id: int
    organization_id: int
    email: str
    role: Role
    token: str
    status: InvitationStatus
    invited_by: int
    expires_at: datetime
    full_name: Optional[str] = None
    personal_message: Optional[str] = None
    accepted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at < now
