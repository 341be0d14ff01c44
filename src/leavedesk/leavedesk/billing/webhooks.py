"""Lemon Squeezy webhook verification and event handling.

Every delivery is recorded in ``billing_events`` keyed by the provider event
id, so redeliveries are answered without touching subscriptions again.
"""
from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from ..common.datetime_utils import parse_provider_datetime
from ..core.constants import WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS
from ..core.enums import BillingEventStatus, BillingPeriod, BillingType, SubscriptionStatus, SubscriptionTier
from ..core.exceptions import AuthenticationError, BillingProviderError, ConfigurationError
from ..organizations.repository import MembershipRepository, OrganizationRepository
from .client import LemonSqueezyClient
from .model import Subscription
from .repository import BillingEventRepository, SubscriptionRepository
from .seats import required_paid_seats
from .subscriptions import billing_period_for_variant, billing_type_for_variant

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="
PAYMENT_LOOKUP_RETRIES = 3
PAYMENT_LOOKUP_DELAY = 2.0


class WebhookError(Exception):
    """A delivery that cannot be applied; recorded as ``failed``."""


@dataclass(frozen=True)
class WebhookResult:
    success: bool
    event_type: str
    event_id: str
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


def extract_signature(header_value: Optional[str]) -> Optional[str]:
    if not header_value:
        return None
    value = header_value.strip()
    if value.startswith(SIGNATURE_PREFIX):
        value = value[len(SIGNATURE_PREFIX):]
    return value or None


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """HMAC-SHA256 hex digest of the raw body, compared in constant time."""
    if not body or not signature or not secret:
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected.encode("ascii"), signature.strip().lower().encode("utf-8", "replace"))


def check_timestamp(
    payload: dict,
    *,
    now_ms: Optional[int] = None,
    tolerance_seconds: int = WEBHOOK_TIMESTAMP_TOLERANCE_SECONDS,
) -> bool:
    """``meta.timestamp`` (epoch ms) must be within tolerance; deliveries without one pass."""
    timestamp = (payload.get("meta") or {}).get("timestamp")
    if not timestamp:
        return True
    try:
        timestamp = float(timestamp)
    except (TypeError, ValueError):
        return False
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return abs(now_ms - timestamp) / 1000 <= tolerance_seconds


def validate_payload(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    meta = payload.get("meta")
    data = payload.get("data")
    if not isinstance(meta, dict) or not isinstance(data, dict):
        return False
    attributes = data.get("attributes")
    return bool(
        meta.get("event_name")
        and data.get("id")
        and isinstance(attributes, dict)
        and isinstance(attributes.get("status"), str)
    )


def ensure_event_id(payload: dict, *, now_ms: Optional[int] = None) -> str:
    meta = payload.get("meta") or {}
    if meta.get("event_id"):
        return str(meta["event_id"])
    event_name = meta.get("event_name") or "unknown"
    data_id = (payload.get("data") or {}).get("id") or "unknown"
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    return f"{event_name}-{data_id}-{now_ms}"


def authenticate_request(
    body: bytes,
    signature_header: Optional[str],
    secret: Optional[str],
    *,
    now_ms: Optional[int] = None,
) -> dict:
    """Verify a raw webhook delivery and return its parsed JSON payload."""
    if not secret:
        logger.error("Webhook secret not configured")
        raise ConfigurationError("Webhook secret not configured")

    signature = extract_signature(signature_header)
    if not signature:
        logger.warning("Webhook rejected: missing signature")
        raise AuthenticationError("Webhook validation failed")
    if not verify_signature(body, signature, secret):
        logger.warning("Webhook rejected: invalid signature (body %d bytes)", len(body or b""))
        raise AuthenticationError("Webhook validation failed")

    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning("Webhook rejected: invalid JSON payload")
        raise AuthenticationError("Webhook validation failed")
    if not isinstance(payload, dict):
        raise AuthenticationError("Webhook validation failed")

    if not check_timestamp(payload, now_ms=now_ms):
        logger.warning("Webhook rejected: timestamp too old (%s)", (payload.get("meta") or {}).get("timestamp"))
        raise AuthenticationError("Webhook validation failed")
    return payload


def organization_billing(users: int, status: SubscriptionStatus) -> tuple[int, SubscriptionTier]:
    """Paid seats and tier an organization gets for ``users`` seats on a subscription in ``status``."""
    paid = required_paid_seats(users)
    tier = SubscriptionTier.ACTIVE if status == SubscriptionStatus.ACTIVE and users > 0 else SubscriptionTier.FREE
    return paid, tier


def _parse_status(value: Any) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(str(value))
    except ValueError:
        raise WebhookError(f"Invalid subscription status: {value}")


def _optional_status(value: Any, default: SubscriptionStatus) -> SubscriptionStatus:
    try:
        return SubscriptionStatus(str(value))
    except ValueError:
        return default


def _int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


class WebhookProcessor:
    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        events: BillingEventRepository,
        organizations: OrganizationRepository,
        memberships: MembershipRepository,
        client: Optional[LemonSqueezyClient] = None,
        *,
        monthly_variant_id: Optional[str] = None,
        yearly_variant_id: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._subscriptions = subscriptions
        self._events = events
        self._organizations = organizations
        self._memberships = memberships
        self._client = client
        self._monthly_variant_id = monthly_variant_id
        self._yearly_variant_id = yearly_variant_id
        self._sleep = sleep
        self._handlers: dict[str, Callable[[dict], dict]] = {
            "subscription_created": self._subscription_created,
            "subscription_updated": self._subscription_updated,
            "subscription_cancelled": self._subscription_cancelled,
            "subscription_expired": self._subscription_cancelled,
            "subscription_payment_success": self._payment_success,
            "subscription_payment_failed": self._payment_failed,
            "subscription_paused": self._paused,
            "subscription_resumed": self._resumed,
        }

    def _record(
        self,
        event_type: str,
        event_id: str,
        payload: Any,
        status: BillingEventStatus,
        error_message: Optional[str] = None,
    ) -> None:
        try:
            self._events.record(
                event_type=event_type,
                provider_event_id=event_id,
                status=status,
                payload=payload,
                error_message=error_message,
            )
        except Exception:
            logger.exception("Failed to record billing event %s (%s)", event_id, status.value)

    def process(self, payload: dict, *, now_ms: Optional[int] = None) -> WebhookResult:
        meta = payload.get("meta") or {}
        event_type = str(meta.get("event_name") or "unknown")
        event_id = ensure_event_id(payload, now_ms=now_ms)
        logger.info("Received webhook: %s (%s)", event_type, event_id)

        handler = self._handlers.get(event_type)
        if handler is None:
            message = f"Unsupported event type: {event_type}"
            logger.info(message)
            self._record(event_type, event_id, payload, BillingEventStatus.SKIPPED, message)
            return WebhookResult(success=True, event_type=event_type, event_id=event_id, message="Event type not supported")

        if not validate_payload(payload):
            error = f"Invalid payload structure for {event_type} event"
            logger.error(error)
            self._record(event_type, event_id, payload, BillingEventStatus.FAILED, error)
            return WebhookResult(success=False, event_type=event_type, event_id=event_id, error=error)

        if self._events.is_processed(event_id):
            logger.info("Webhook %s already processed", event_id)
            self._record(event_type, event_id, payload, BillingEventStatus.SKIPPED, "Event already processed")
            return WebhookResult(success=True, event_type=event_type, event_id=event_id, message="Event already processed")

        try:
            data = handler(payload)
        except WebhookError as e:
            logger.error("Webhook %s (%s) failed: %s", event_type, event_id, e)
            self._record(event_type, event_id, payload, BillingEventStatus.FAILED, str(e))
            return WebhookResult(success=False, event_type=event_type, event_id=event_id, error=str(e))
        except Exception as e:
            logger.exception("Webhook %s (%s) crashed", event_type, event_id)
            self._record(event_type, event_id, payload, BillingEventStatus.FAILED, str(e))
            raise

        note = data.pop("note", None)
        self._record(event_type, event_id, payload, BillingEventStatus.PROCESSED, note)
        logger.info("Webhook %s (%s) processed", event_type, event_id)
        return WebhookResult(
            success=True,
            event_type=event_type,
            event_id=event_id,
            message="Webhook processed successfully",
            data=data,
        )

    def _sync_organization(self, organization_id: int, users: int, status: SubscriptionStatus) -> None:
        paid, tier = organization_billing(users, status)
        self._organizations.update_billing(organization_id=organization_id, paid_seats=paid, subscription_tier=tier)
        logger.info(
            "Organization %s: users=%d, paid_seats=%d, tier=%s",
            organization_id,
            users,
            paid,
            tier.value,
        )

    def _existing(self, provider_subscription_id: Any, event_type: str) -> Subscription:
        subscription = self._subscriptions.get_by_provider_id(str(provider_subscription_id))
        if not subscription:
            raise WebhookError(f"Subscription not found for {event_type}")
        return subscription

    # -------- Handlers --------
    def _subscription_created(self, payload: dict) -> dict:
        meta, data = payload["meta"], payload["data"]
        attributes = data["attributes"]
        provider_id = str(data["id"])
        status = _parse_status(attributes.get("status"))
        custom = meta.get("custom_data") or {}

        organization_id = _int(custom.get("organization_id"))
        if not organization_id:
            raise WebhookError("Missing organization_id in webhook custom_data")
        org = self._organizations.get_by_id(organization_id)
        if not org:
            raise WebhookError(f"Organization not found: {organization_id}")

        variant_id = str(attributes["variant_id"]) if attributes.get("variant_id") is not None else None
        billing_type = billing_type_for_variant(
            variant_id,
            monthly_variant_id=self._monthly_variant_id,
            yearly_variant_id=self._yearly_variant_id,
        )
        if billing_type is None:
            raise WebhookError(
                f"Unknown variant ID: {variant_id}. Expected {self._monthly_variant_id} (monthly) "
                f"or {self._yearly_variant_id} (yearly)"
            )

        tier = custom.get("tier")
        if tier == "monthly":
            billing_period: Optional[BillingPeriod] = BillingPeriod.MONTHLY
        elif tier in ("annual", "yearly"):
            billing_period = BillingPeriod.YEARLY
        else:
            billing_period = billing_period_for_variant(
                variant_id,
                monthly_variant_id=self._monthly_variant_id,
                yearly_variant_id=self._yearly_variant_id,
            )

        item = attributes.get("first_subscription_item") or {}
        item_id = str(item["id"]) if item.get("id") else None
        quantity = _int(item.get("quantity"))
        user_count = _int(custom.get("user_count"))
        if not item_id:
            logger.error("Subscription %s created without a subscription item id", provider_id)

        fields = dict(
            provider_subscription_item_id=item_id,
            provider_customer_id=str(attributes["customer_id"]) if attributes.get("customer_id") else None,
            variant_id=variant_id,
            billing_type=billing_type,
            billing_period=billing_period,
            status=status,
            quantity=quantity,
            current_seats=user_count,
            renews_at=parse_provider_datetime(attributes.get("renews_at")),
            ends_at=parse_provider_datetime(attributes.get("ends_at")),
            trial_ends_at=parse_provider_datetime(attributes.get("trial_ends_at")),
        )
        existing = self._subscriptions.get_by_provider_id(provider_id)
        if existing:
            self._subscriptions.update(existing.subscription_id, **fields)
            subscription_id = existing.subscription_id
        else:
            subscription_id = self._subscriptions.create(
                organization_id=organization_id,
                provider_subscription_id=provider_id,
                **fields,
            )
        self._sync_organization(organization_id, user_count, status)
        logger.info(
            "Subscription %s created for org %s: %s, status=%s, seats=%d",
            provider_id,
            organization_id,
            billing_type.value,
            status.value,
            user_count,
        )

        usage_recorded = False
        if user_count > 0 and item_id and billing_type == BillingType.USAGE_BASED and self._client is not None:
            try:
                self._client.create_usage_record(
                    item_id,
                    required_paid_seats(user_count),
                    f"Initial seat count {user_count} for organization {organization_id}",
                )
                usage_recorded = True
            except BillingProviderError as e:
                logger.error("Failed to create initial usage record for %s: %s", provider_id, e)

        return {
            "subscription_id": subscription_id,
            "organization_id": organization_id,
            "quantity": quantity,
            "initial_usage_record_created": usage_recorded,
        }

    def _subscription_updated(self, payload: dict) -> dict:
        data = payload["data"]
        attributes = data["attributes"]
        status = _parse_status(attributes.get("status"))
        existing = self._existing(data["id"], "update")

        item = attributes.get("first_subscription_item") or {}
        quantity = _int(item.get("quantity"))
        changes: dict[str, Any] = dict(
            status=status,
            quantity=quantity,
            renews_at=parse_provider_datetime(attributes.get("renews_at")),
            ends_at=parse_provider_datetime(attributes.get("ends_at")),
            trial_ends_at=parse_provider_datetime(attributes.get("trial_ends_at")),
        )
        if attributes.get("variant_id") is not None:
            changes["variant_id"] = str(attributes["variant_id"])

        # Usage-based subscriptions report quantity 0; seats are managed locally.
        is_usage_based = existing.billing_type == BillingType.USAGE_BASED
        if not is_usage_based:
            changes["current_seats"] = quantity

        logger.info(
            "Subscription %s before update: status=%s quantity=%d current_seats=%d",
            existing.provider_subscription_id,
            existing.status.value,
            existing.quantity,
            existing.current_seats,
        )
        self._subscriptions.update(existing.subscription_id, **changes)
        seats = existing.current_seats if is_usage_based else quantity
        self._sync_organization(existing.organization_id, seats, status)
        logger.info(
            "Subscription %s after update: status=%s quantity=%d current_seats=%d",
            existing.provider_subscription_id,
            status.value,
            quantity,
            seats,
        )
        return {
            "subscription_id": existing.subscription_id,
            "organization_id": existing.organization_id,
            "previous_quantity": existing.quantity,
            "new_quantity": quantity,
        }

    def _subscription_cancelled(self, payload: dict) -> dict:
        data = payload["data"]
        attributes = data["attributes"]
        status = _optional_status(attributes.get("status"), SubscriptionStatus.CANCELLED)
        existing = self._existing(data["id"], "cancellation")

        self._subscriptions.update(
            existing.subscription_id,
            status=status,
            quantity=0,
            current_seats=0,
            ends_at=parse_provider_datetime(attributes.get("ends_at")),
            renews_at=None,
        )
        self._sync_organization(existing.organization_id, 0, status)
        logger.info(
            "Subscription %s %s; org %s back to free (was %d seats)",
            existing.provider_subscription_id,
            status.value,
            existing.organization_id,
            existing.current_seats,
        )
        return {
            "subscription_id": existing.subscription_id,
            "organization_id": existing.organization_id,
            "status": status.value,
        }

    def _find_for_payment(self, provider_subscription_id: str) -> Subscription:
        """The payment event can arrive before ``subscription_created`` has been stored."""
        for attempt in range(1, PAYMENT_LOOKUP_RETRIES + 1):
            subscription = self._subscriptions.get_by_provider_id(provider_subscription_id)
            if subscription:
                return subscription
            if attempt < PAYMENT_LOOKUP_RETRIES:
                self._sleep(PAYMENT_LOOKUP_DELAY * attempt)
        raise WebhookError(
            f"Subscription not found for payment success event after {PAYMENT_LOOKUP_RETRIES} retries"
        )

    def _payment_success(self, payload: dict) -> dict:
        attributes = payload["data"]["attributes"]
        provider_id = str(attributes.get("subscription_id") or payload["data"]["id"])
        existing = self._find_for_payment(provider_id)
        status = _optional_status(attributes.get("status"), existing.status)
        base = {"subscription_id": existing.subscription_id, "organization_id": existing.organization_id}

        if existing.billing_type in (BillingType.USAGE_BASED, BillingType.QUANTITY_BASED):
            return {
                **base,
                "billing_type": existing.billing_type.value,
                "note": f"{existing.billing_type.value} billing payment confirmed",
            }

        if existing.pending_seats is None and existing.current_seats != existing.quantity:
            previous, new = existing.current_seats, existing.quantity
            self._subscriptions.update(existing.subscription_id, current_seats=new, status=status)
            self._sync_organization(existing.organization_id, new, status)
            logger.info("Immediate upgrade confirmed for %s: %d -> %d seats", provider_id, previous, new)
            return {
                **base,
                "previous_seats": previous,
                "new_seats": new,
                "upgrade_type": "immediate",
                "note": f"Immediate upgrade confirmed: {previous} -> {new} seats",
            }

        if existing.pending_seats is not None:
            previous, new = existing.current_seats, existing.pending_seats
            self._subscriptions.update(
                existing.subscription_id,
                current_seats=new,
                quantity=new,
                pending_seats=None,
                quantity_synced=True,
                status=status,
            )
            archived = self._memberships.archive_pending_removals(organization_id=existing.organization_id)
            self._sync_organization(existing.organization_id, new, status)
            logger.info(
                "Deferred downgrade applied for %s: %d -> %d seats, archived %d users",
                provider_id,
                previous,
                new,
                archived,
            )
            return {
                **base,
                "previous_seats": previous,
                "new_seats": new,
                "users_archived": archived,
                "upgrade_type": "deferred",
                "note": f"Deferred downgrade applied: {previous} -> {new} seats, archived {archived} users",
            }

        return {**base, "note": "No pending changes to apply"}

    def _set_status(self, payload: dict, event_type: str, default: SubscriptionStatus, **changes: Any) -> Subscription:
        data = payload["data"]
        attributes = data["attributes"]
        # Invoice-shaped payloads carry the subscription id as an attribute.
        existing = self._existing(attributes.get("subscription_id") or data["id"], event_type)
        status = _optional_status(attributes.get("status"), default)
        self._subscriptions.update(existing.subscription_id, status=status, **changes)
        logger.info(
            "Subscription %s status %s -> %s",
            existing.provider_subscription_id,
            existing.status.value,
            status.value,
        )
        return existing

    def _payment_failed(self, payload: dict) -> dict:
        existing = self._set_status(payload, "payment failure event", SubscriptionStatus.PAST_DUE)
        return {"subscription_id": existing.subscription_id, "organization_id": existing.organization_id}

    def _paused(self, payload: dict) -> dict:
        existing = self._set_status(payload, "paused event", SubscriptionStatus.PAUSED, renews_at=None)
        return {"subscription_id": existing.subscription_id, "organization_id": existing.organization_id}

    def _resumed(self, payload: dict) -> dict:
        attributes = payload["data"]["attributes"]
        status = _optional_status(attributes.get("status"), SubscriptionStatus.ACTIVE)
        existing = self._set_status(
            payload,
            "resumed event",
            SubscriptionStatus.ACTIVE,
            renews_at=parse_provider_datetime(attributes.get("renews_at")),
        )
        self._sync_organization(existing.organization_id, existing.current_seats, status)
        return {"subscription_id": existing.subscription_id, "organization_id": existing.organization_id}
