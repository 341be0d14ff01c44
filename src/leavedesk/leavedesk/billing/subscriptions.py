from __future__ import annotations

import logging
from typing import Optional

from ..common.datetime_utils import isoformat_or_none
from ..core.constants import FREE_SEATS, MUTABLE_SUBSCRIPTION_STATUSES
from ..core.enums import BillingPeriod, BillingType, MembershipStatus, SubscriptionTier
from ..core.exceptions import BillingProviderError, ConfigurationError, NotFoundError, ValidationError
from ..organizations.access import require_admin
from ..organizations.repository import MembershipRepository, OrganizationRepository
from .client import LemonSqueezyClient
from .model import Subscription
from .repository import SubscriptionRepository
from .seat_validation import SeatValidator
from .seats import comprehensive_seat_info, required_paid_seats

logger = logging.getLogger(__name__)


def billing_type_for_variant(
    variant_id: Optional[str],
    *,
    monthly_variant_id: Optional[str],
    yearly_variant_id: Optional[str],
) -> Optional[BillingType]:
    """Monthly plans report usage records, yearly plans patch the item quantity."""
    if variant_id is None:
        return None
    if monthly_variant_id and str(variant_id) == str(monthly_variant_id):
        return BillingType.USAGE_BASED
    if yearly_variant_id and str(variant_id) == str(yearly_variant_id):
        return BillingType.QUANTITY_BASED
    return None


def billing_period_for_variant(
    variant_id: Optional[str],
    *,
    monthly_variant_id: Optional[str],
    yearly_variant_id: Optional[str],
) -> Optional[BillingPeriod]:
    billing_type = billing_type_for_variant(
        variant_id, monthly_variant_id=monthly_variant_id, yearly_variant_id=yearly_variant_id
    )
    if billing_type == BillingType.USAGE_BASED:
        return BillingPeriod.MONTHLY
    if billing_type == BillingType.QUANTITY_BASED:
        return BillingPeriod.YEARLY
    return None


class SubscriptionService:
    """Admin-facing subscription changes pushed to Lemon Squeezy."""

    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        organizations: OrganizationRepository,
        memberships: MembershipRepository,
        seat_validator: SeatValidator,
        client: Optional[LemonSqueezyClient] = None,
        *,
        monthly_variant_id: Optional[str] = None,
        yearly_variant_id: Optional[str] = None,
    ):
        self._subscriptions = subscriptions
        self._organizations = organizations
        self._memberships = memberships
        self._seats = seat_validator
        self._client = client
        self._monthly_variant_id = monthly_variant_id
        self._yearly_variant_id = yearly_variant_id

    def _require_client(self) -> LemonSqueezyClient:
        if self._client is None:
            raise ConfigurationError("Billing provider is not configured")
        return self._client

    def _ensure_item_id(self, subscription: Subscription) -> str:
        """Subscription item id, fetched from the provider and stored when missing locally."""
        if subscription.provider_subscription_item_id:
            return subscription.provider_subscription_item_id

        data = self._require_client().get_subscription(subscription.provider_subscription_id)
        attributes = (data.get("data") or {}).get("attributes") or {}
        item = attributes.get("first_subscription_item") or {}
        item_id = item.get("id")
        if not item_id:
            raise BillingProviderError("Subscription item not found")

        item_id = str(item_id)
        self._subscriptions.update(subscription.subscription_id, provider_subscription_item_id=item_id)
        logger.info("Stored subscription item %s for subscription %s", item_id, subscription.subscription_id)
        return item_id

    def update_quantity(self, *, organization_id: int, requester_id: int, new_quantity: int) -> dict:
        require_admin(self._memberships, organization_id=organization_id, user_id=requester_id)
        try:
            new_quantity = int(new_quantity)
        except (TypeError, ValueError):
            raise ValidationError("Invalid quantity. Must be at least 1.")
        if new_quantity < 1:
            raise ValidationError("Invalid quantity. Must be at least 1.")

        subscription = self._subscriptions.get_for_organization(
            organization_id=int(organization_id),
            statuses=MUTABLE_SUBSCRIPTION_STATUSES,
        )
        if not subscription:
            raise NotFoundError("No active subscription found")
        if subscription.billing_type == BillingType.VOLUME:
            logger.warning(
                "Attempted to update legacy subscription %s for org %s",
                subscription.provider_subscription_id,
                organization_id,
            )
            raise ValidationError(
                "This subscription was created before usage-based billing was enabled",
                details={"legacy_subscription": True, "action_required": "create_new_subscription"},
            )

        if new_quantity < subscription.current_seats:
            check = self._seats.can_reduce_seats(subscription.organization_id, new_quantity)
            if not check.can_reduce:
                raise ValidationError(check.reason or "Cannot reduce seats", details={"active_users": check.active_users})

        client = self._require_client()
        item_id = self._ensure_item_id(subscription)
        billable = required_paid_seats(new_quantity)

        logger.info(
            "Updating quantity for subscription %s (org %s): %d -> %d (billable %d, %s)",
            subscription.provider_subscription_id,
            organization_id,
            subscription.current_seats,
            new_quantity,
            billable,
            subscription.billing_type.value,
        )
        if subscription.billing_type == BillingType.USAGE_BASED:
            if new_quantity <= FREE_SEATS:
                description = f"Free tier: {new_quantity} seats for organization {organization_id}"
            else:
                description = f"Seat count updated to {billable} for organization {organization_id}"
            client.create_usage_record(item_id, billable, description)
        else:
            client.update_subscription_item(item_id, new_quantity)

        self._subscriptions.update(
            subscription.subscription_id,
            quantity=new_quantity,
            current_seats=new_quantity,
        )
        org = self._organizations.get_by_id(subscription.organization_id)
        self._organizations.update_billing(
            organization_id=subscription.organization_id,
            paid_seats=billable,
            subscription_tier=org.subscription_tier if org else SubscriptionTier.ACTIVE,
        )
        logger.info("Subscription %s now at %d seats", subscription.provider_subscription_id, new_quantity)

        return {
            "success": True,
            "new_quantity": new_quantity,
            "billable_quantity": billable,
            "subscription_id": subscription.provider_subscription_id,
        }

    def change_billing_period(self, *, organization_id: int, requester_id: int, period: BillingPeriod) -> dict:
        require_admin(self._memberships, organization_id=organization_id, user_id=requester_id)
        new_variant_id = self._monthly_variant_id if period == BillingPeriod.MONTHLY else self._yearly_variant_id
        if not new_variant_id:
            raise ConfigurationError(f"Variant for {period.value} billing is not configured")

        subscription = self._subscriptions.get_for_organization(organization_id=int(organization_id))
        if not subscription:
            raise NotFoundError("No active subscription found")
        if subscription.variant_id and str(subscription.variant_id) == str(new_variant_id):
            raise ValidationError("Already on requested variant")

        logger.info(
            "Changing billing period of subscription %s (org %s): variant %s -> %s",
            subscription.provider_subscription_id,
            organization_id,
            subscription.variant_id,
            new_variant_id,
        )
        data = self._require_client().update_subscription_variant(
            subscription.provider_subscription_id, new_variant_id
        )
        attributes = (data.get("data") or {}).get("attributes") or {}
        item = attributes.get("first_subscription_item") or {}
        preserved = int(item.get("quantity") or subscription.current_seats)

        billing_type = billing_type_for_variant(
            new_variant_id,
            monthly_variant_id=self._monthly_variant_id,
            yearly_variant_id=self._yearly_variant_id,
        )
        self._subscriptions.update(
            subscription.subscription_id,
            variant_id=str(new_variant_id),
            billing_type=billing_type,
            billing_period=period,
        )
        logger.info(
            "Billing period of subscription %s is now %s (%s), %d seats preserved",
            subscription.provider_subscription_id,
            period.value,
            billing_type.value if billing_type else None,
            preserved,
        )

        return {
            "success": True,
            "billing_period": period.value,
            "new_variant_id": str(new_variant_id),
            "subscription_id": subscription.provider_subscription_id,
            "preserved_seats": preserved,
        }

    def seat_info(self, *, organization_id: int, requester_id: int) -> dict:
        require_admin(self._memberships, organization_id=organization_id, user_id=requester_id)
        org = self._organizations.get_by_id(int(organization_id))
        if not org:
            raise NotFoundError("Organization not found")

        subscription = self._subscriptions.get_for_organization(organization_id=org.organization_id)
        paid_seats = self._seats.paid_seats(org)
        occupied = self._seats.occupied_seats(org.organization_id)
        info = comprehensive_seat_info(
            paid_seats,
            occupied.active_users,
            occupied.pending_invitations,
            org.billing_override_seats,
            org.billing_override_expires_at,
        )
        marked = self._memberships.list_members(
            organization_id=org.organization_id,
            statuses=[MembershipStatus.PENDING_REMOVAL],
        )

        billing_cycle = None
        price_per_seat = None
        currency = None
        if subscription and subscription.variant_id:
            period = billing_period_for_variant(
                subscription.variant_id,
                monthly_variant_id=self._monthly_variant_id,
                yearly_variant_id=self._yearly_variant_id,
            )
            if period:
                billing_cycle = period.value
                if self._client is not None:
                    try:
                        price = self._client.get_variant(subscription.variant_id)
                    except BillingProviderError as e:
                        logger.error("Failed to fetch variant pricing for %s: %s", subscription.variant_id, e)
                    else:
                        price_per_seat = price.price
                        currency = price.currency

        result = {
            "current_seats": info.used_seats,
            "max_seats": info.total_seats,
            "available_seats": info.available_seats,
            "free_tier_seats": FREE_SEATS,
            "paid_seats": paid_seats,
            "active_user_count": occupied.active_users,
            "pending_invitations": info.pending_invitations,
            "users_marked_for_removal": len(marked),
            "users_marked_for_removal_details": [
                {"email": m.email or "", "effective_date": isoformat_or_none(m.removal_effective_date)}
                for m in marked
            ],
            "plan": "business" if paid_seats > 0 else "free",
            "billing_cycle": billing_cycle,
            "renewal_date": isoformat_or_none(subscription.renews_at) if subscription else None,
        }
        if price_per_seat is not None:
            result["price_per_seat"] = price_per_seat
            result["currency"] = currency
        return result
