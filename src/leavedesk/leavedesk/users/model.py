from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class User:
    """Account that can belong to several organizations.

    Roles live on the membership, not on the user.
    """

    user_id: int
    email: str
    full_name: str
    password_hash: str
    is_active: bool = True
    created_at: Optional[datetime] = None
