"""Seat arithmetic shared by billing endpoints, invitations and jobs.

Pricing is graduated: up to ``FREE_SEATS`` users are free, past that every
seat is paid (the free seats are included in the paid quantity, not added
on top of it).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from ..common.datetime_utils import utcnow
from ..core.constants import FREE_SEATS, SEAT_WARNING_UTILIZATION
from ..core.enums import SeatStatus


@dataclass(frozen=True)
class SeatInfo:
    total_seats: int
    paid_seats: int
    free_seats: int
    active_members: int
    pending_invitations: int
    used_seats: int
    available_seats: int
    utilization: int
    can_add_more: bool


@dataclass(frozen=True)
class InvitationCheck:
    can_invite: bool
    reason: Optional[str]
    available_seats: int
    total_after_invite: int
    seat_limit: int


@dataclass(frozen=True)
class BillingImpact:
    needs_upgrade: bool
    required_paid_seats: int
    additional_seats: int
    can_add_without_upgrade: bool


@dataclass(frozen=True)
class BillingOverride:
    is_active: bool
    is_expired: bool
    effective_seats: Optional[int]


@dataclass(frozen=True)
class VariantOption:
    quantity: int
    name: str
    price: float


@dataclass(frozen=True)
class UpgradeSuggestion:
    variant: VariantOption
    suitability: str  # minimum | recommended | growth
    total_seats: int
    additional_seats: int


def _plural(n: int, word: str) -> str:
    return f"{n} {word}{'s' if n > 1 else ''}"


def required_paid_seats(users: int) -> int:
    return users if users > FREE_SEATS else 0


def total_seats(paid_seats: int) -> int:
    return paid_seats if paid_seats > 0 else FREE_SEATS


def remaining_seats(paid_seats: int, used: int) -> int:
    return max(0, total_seats(paid_seats) - used)


def needs_upgrade(used: int, paid_seats: int) -> bool:
    return used >= total_seats(paid_seats)


def validate_variant_for_employee_count(users: int, variant_seats: int) -> bool:
    return variant_seats >= required_paid_seats(users)


def minimum_variant_size(users: int) -> int:
    return required_paid_seats(users)


def seat_utilization(used: int, paid_seats: int) -> int:
    total = total_seats(paid_seats)
    if total == 0:
        return 0
    return int(round(used / total * 100))


def seat_status(used: int, paid_seats: int) -> SeatStatus:
    total = total_seats(paid_seats)
    if used > total:
        return SeatStatus.OVER
    if used == total:
        return SeatStatus.FULL
    if seat_utilization(used, paid_seats) >= SEAT_WARNING_UTILIZATION:
        return SeatStatus.WARNING
    return SeatStatus.SAFE


def seat_status_message(used: int, paid_seats: int) -> str:
    status = seat_status(used, paid_seats)
    remaining = remaining_seats(paid_seats, used)
    if status == SeatStatus.OVER:
        overage = used - total_seats(paid_seats)
        return f"Over capacity by {_plural(overage, 'seat')}. Upgrade required."
    if status == SeatStatus.FULL:
        return "At full capacity. Upgrade to add more employees."
    if status == SeatStatus.WARNING:
        return f"{_plural(remaining, 'seat')} remaining. Consider upgrading soon."
    return f"{_plural(remaining, 'seat')} available."


def billing_impact(current_users: int, new_users: int, paid_seats: int) -> BillingImpact:
    required = required_paid_seats(current_users + new_users)
    additional = max(0, required - paid_seats)
    return BillingImpact(
        needs_upgrade=required > paid_seats,
        required_paid_seats=required,
        additional_seats=additional,
        can_add_without_upgrade=additional == 0,
    )


def upgrade_suggestions(
    current_users: int, paid_seats: int, variants: Sequence[VariantOption]
) -> list[UpgradeSuggestion]:
    required = required_paid_seats(current_users)
    suggestions = []
    for variant in variants:
        if variant.quantity <= paid_seats:
            continue
        if variant.quantity == required:
            suitability = "minimum"
        elif variant.quantity <= required + 2:
            suitability = "recommended"
        else:
            suitability = "growth"
        suggestions.append(
            UpgradeSuggestion(
                variant=variant,
                suitability=suitability,
                total_seats=total_seats(variant.quantity),
                additional_seats=variant.quantity - paid_seats,
            )
        )
    return sorted(suggestions, key=lambda s: s.variant.quantity)


def check_billing_override(
    override_seats: Optional[int],
    expires_at: Optional[datetime],
    now: Optional[datetime] = None,
) -> BillingOverride:
    if not override_seats or override_seats <= 0:
        return BillingOverride(is_active=False, is_expired=False, effective_seats=None)

    now = now or utcnow()
    is_expired = bool(expires_at and expires_at < now)
    return BillingOverride(
        is_active=not is_expired,
        is_expired=is_expired,
        effective_seats=None if is_expired else int(override_seats),
    )


def effective_seat_limit(
    paid_seats: int,
    override_seats: Optional[int] = None,
    override_expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> int:
    override = check_billing_override(override_seats, override_expires_at, now)
    if override.is_active and override.effective_seats:
        return total_seats(override.effective_seats)
    return total_seats(paid_seats)


def comprehensive_seat_info(
    paid_seats: int,
    active_members: int,
    pending_invitations: int,
    override_seats: Optional[int] = None,
    override_expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> SeatInfo:
    """Seat numbers for an organization; pending invitations occupy seats."""
    limit = effective_seat_limit(paid_seats, override_seats, override_expires_at, now)
    used = active_members + pending_invitations
    available = max(0, limit - used)
    return SeatInfo(
        total_seats=limit,
        paid_seats=paid_seats,
        free_seats=FREE_SEATS,
        active_members=active_members,
        pending_invitations=pending_invitations,
        used_seats=used,
        available_seats=available,
        utilization=int(round(used / limit * 100)) if limit > 0 else 0,
        can_add_more=available > 0,
    )


def validate_invitation(
    current_users: int,
    paid_seats: int,
    new_invitations: int = 1,
    override_seats: Optional[int] = None,
    override_expires_at: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> InvitationCheck:
    """``current_users`` must already include pending invitations."""
    limit = effective_seat_limit(paid_seats, override_seats, override_expires_at, now)
    total_after = current_users + new_invitations
    available = limit - current_users
    can_invite = total_after <= limit

    reason = None
    if not can_invite:
        if available <= 0:
            reason = "No available seats. Upgrade required to invite more employees."
        else:
            reason = (
                f"Only {_plural(available, 'seat')} available. "
                f"Cannot invite {_plural(new_invitations, 'employee')}."
            )

    return InvitationCheck(
        can_invite=can_invite,
        reason=reason,
        available_seats=available,
        total_after_invite=total_after,
        seat_limit=limit,
    )
