from __future__ import annotations

from typing import Any, Optional


class DomainError(Exception):
    """Base exception for business rule violations.

    ``status_code`` is the HTTP status the API layer answers with; ``details``
    is merged into the JSON error body.
    """

    status_code = 400

    def __init__(self, message: str = "", *, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.details = dict(details or {})


class ValidationError(DomainError):
    """Raised when input data is invalid or violates domain rules."""


class AuthenticationError(DomainError):
    """Raised when login credentials are invalid."""

    status_code = 401


class AuthorizationError(DomainError):
    """Raised when a user lacks permission for an action."""

    status_code = 403


class NotFoundError(DomainError):
    status_code = 404


class SeatLimitError(DomainError):
    """Raised when an action would exceed the organization's seat limit."""

    status_code = 409

    def __init__(self, message: str, *, seat_limit: int, available_seats: int, seats_required: int = 1):
        super().__init__(
            message,
            details={
                "seat_limit": seat_limit,
                "available_seats": available_seats,
                "seats_required": seats_required,
                "upgrade_required": True,
            },
        )
        self.seat_limit = seat_limit
        self.available_seats = available_seats
        self.seats_required = seats_required


class ConfigurationError(DomainError):
    status_code = 503


class BillingProviderError(DomainError):
    """Raised when the subscription provider API fails."""

    status_code = 502

    def __init__(self, message: str, *, http_status: Optional[int] = None, retryable: bool = False):
        super().__init__(message)
        self.http_status = http_status
        self.retryable = retryable
