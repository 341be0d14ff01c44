from __future__ import annotations

import logging
from dataclasses import dataclass

from werkzeug.security import check_password_hash, generate_password_hash

from ..common.validators import normalize_email, require_min_length, require_non_empty
from ..core.exceptions import AuthenticationError, ValidationError
from .repository import UserRepository

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


@dataclass(frozen=True)
class SessionUser:
    """What we store into Flask session after login."""

    user_id: int
    email: str
    full_name: str


class AuthService:
    """Use cases: authenticate (login) and register accounts."""

    def __init__(self, users: UserRepository):
        self._users = users

    def authenticate(self, email: str, password: str) -> SessionUser:
        try:
            email = normalize_email(email)
        except ValidationError:
            raise AuthenticationError("Invalid email or password")

        user = self._users.get_by_email(email)
        if not user or not user.is_active:
            raise AuthenticationError("Invalid email or password")

        try:
            ok = check_password_hash(user.password_hash, password or "")
        except ValueError:
            # e.g. placeholder hashes like 'CHANGE_ME' or corrupted values
            ok = False

        if not ok:
            logger.info("Failed login for %s", email)
            raise AuthenticationError("Invalid email or password")

        return SessionUser(user_id=user.user_id, email=user.email, full_name=user.full_name)

    def register_user(self, *, email: str, full_name: str, password: str) -> int:
        email = normalize_email(email)
        full_name = require_non_empty(full_name, "Full name")
        require_min_length(password, "Password", MIN_PASSWORD_LENGTH)

        if self._users.get_by_email(email):
            raise ValidationError("An account with this email already exists")

        user_id = self._users.create_user(
            email=email,
            full_name=full_name,
            password_hash=generate_password_hash(password),
        )
        logger.info("Registered user %s (%s)", user_id, email)
        return user_id
