"""Scheduled billing jobs, triggered by the cron endpoints or the scripts.

``apply_pending_changes`` archives members whose removal date has passed and
pushes scheduled seat reductions to the provider a day before renewal;
``reconcile`` compares provider quantities with local seats and raises alerts
on drift.
"""
from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from ..alerts.service import AlertService
from ..common.datetime_utils import isoformat_or_none, parse_provider_datetime, utcnow
from ..core.constants import (
    PENDING_CHANGE_WINDOW_END_HOURS,
    PENDING_CHANGE_WINDOW_START_HOURS,
    RECONCILE_PAUSE_SECONDS,
)
from ..core.enums import BillingType, SubscriptionStatus
from ..core.exceptions import BillingProviderError, NotFoundError
from ..organizations.repository import MembershipRepository
from .client import LemonSqueezyClient
from .model import Subscription
from .repository import SubscriptionRepository

logger = logging.getLogger(__name__)


def provider_quantity(data: dict) -> int:
    attributes = (data.get("data") or {}).get("attributes") or {}
    item = attributes.get("first_subscription_item") or {}
    quantity = item.get("quantity", attributes.get("quantity"))
    return int(quantity or 0)


class BillingJobs:
    def __init__(
        self,
        subscriptions: SubscriptionRepository,
        client: LemonSqueezyClient,
        alerts: AlertService,
        *,
        memberships: Optional[MembershipRepository] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._subscriptions = subscriptions
        self._client = client
        self._alerts = alerts
        self._memberships = memberships
        self._sleep = sleep

    def archive_lapsed_removals(self, *, now: Optional[datetime] = None) -> int:
        if self._memberships is None:
            return 0
        count = self._memberships.archive_lapsed_removals(now=now or utcnow())
        if count:
            logger.info("Archived %d member(s) whose removal date has passed", count)
        return count

    def _push_pending(self, subscription: Subscription) -> None:
        if not subscription.provider_subscription_item_id:
            raise BillingProviderError("Subscription item id is missing")
        self._client.update_subscription_item(subscription.provider_subscription_item_id, int(subscription.pending_seats))
        self._subscriptions.update(subscription.subscription_id, quantity_synced=True)

    def apply_pending_changes(self, *, now: Optional[datetime] = None) -> dict[str, Any]:
        now = now or utcnow()
        archived = self.archive_lapsed_removals(now=now)
        window_start = now + timedelta(hours=PENDING_CHANGE_WINDOW_START_HOURS)
        window_end = now + timedelta(hours=PENDING_CHANGE_WINDOW_END_HOURS)
        due = self._subscriptions.list_pending_changes(window_start=window_start, window_end=window_end)
        if not due:
            logger.info("No pending subscription changes between %s and %s", window_start, window_end)
            return {
                "success": True,
                "message": "No pending subscription changes need processing",
                "processed": 0,
                "archived_users": archived,
            }

        results: list[dict[str, Any]] = []
        errors: list[dict[str, Any]] = []
        for subscription in due:
            try:
                self._push_pending(subscription)
            except Exception as e:
                logger.exception("Failed to apply pending seats for subscription %s", subscription.provider_subscription_id)
                errors.append(
                    {
                        "subscription_id": subscription.subscription_id,
                        "provider_subscription_id": subscription.provider_subscription_id,
                        "error": str(e),
                    }
                )
                self._alerts.critical(
                    f"Failed to update subscription {subscription.provider_subscription_id} in Lemon Squeezy",
                    {
                        "subscription_id": subscription.subscription_id,
                        "organization_id": subscription.organization_id,
                        "pending_quantity": subscription.pending_seats,
                        "renews_at": isoformat_or_none(subscription.renews_at),
                        "error": str(e),
                        "job": "apply_pending_changes",
                    },
                )
                continue

            logger.info(
                "Subscription %s synced: %d -> %d seats",
                subscription.provider_subscription_id,
                subscription.current_seats,
                subscription.pending_seats,
            )
            self._alerts.info(
                f"Subscription {subscription.provider_subscription_id} updated in Lemon Squeezy: "
                f"{subscription.current_seats} -> {subscription.pending_seats} seats",
                {
                    "subscription_id": subscription.subscription_id,
                    "organization_id": subscription.organization_id,
                    "previous_quantity": subscription.current_seats,
                    "new_quantity": subscription.pending_seats,
                    "renews_at": isoformat_or_none(subscription.renews_at),
                    "job": "apply_pending_changes",
                },
            )
            results.append(
                {
                    "subscription_id": subscription.subscription_id,
                    "provider_subscription_id": subscription.provider_subscription_id,
                    "previous_quantity": subscription.current_seats,
                    "new_quantity": subscription.pending_seats,
                    "status": "success",
                }
            )

        return {
            "success": True,
            "message": "Pending subscription changes processed",
            "processed": len(results),
            "failed": len(errors),
            "archived_users": archived,
            "results": results,
            "errors": errors,
        }

    def reconcile(self, *, now: Optional[datetime] = None, pause: float = RECONCILE_PAUSE_SECONDS) -> dict[str, Any]:
        now = now or utcnow()
        subscriptions = self._subscriptions.list_live()
        if not subscriptions:
            return {
                "success": True,
                "message": "No active subscriptions to reconcile",
                "checked": 0,
                "matches": 0,
                "mismatches": 0,
            }

        matches = 0
        mismatches: list[dict[str, Any]] = []
        errors: list[dict[str, Any]] = []
        for index, subscription in enumerate(subscriptions):
            if index and pause:
                self._sleep(pause)
            try:
                remote = provider_quantity(self._client.get_subscription(subscription.provider_subscription_id))
            except BillingProviderError as e:
                logger.error("Failed to reconcile subscription %s: %s", subscription.provider_subscription_id, e)
                errors.append(
                    {
                        "subscription_id": subscription.subscription_id,
                        "provider_subscription_id": subscription.provider_subscription_id,
                        "error": str(e),
                    }
                )
                self._alerts.warning(
                    f"Failed to reconcile subscription {subscription.provider_subscription_id}",
                    {
                        "subscription_id": subscription.subscription_id,
                        "organization_id": subscription.organization_id,
                        "error": str(e),
                        "job": "reconcile",
                    },
                )
                continue

            local = subscription.current_seats
            if remote == local:
                matches += 1
                continue

            logger.warning(
                "Subscription %s out of sync: provider=%d database=%d",
                subscription.provider_subscription_id,
                remote,
                local,
            )
            mismatches.append(
                {
                    "subscription_id": subscription.subscription_id,
                    "provider_subscription_id": subscription.provider_subscription_id,
                    "database_quantity": local,
                    "provider_quantity": remote,
                    "details": f"Database shows {local} seats, Lemon Squeezy shows {remote} seats",
                }
            )
            self._alerts.critical(
                f"Subscription {subscription.provider_subscription_id} out of sync! LS: {remote}, DB: {local}",
                {
                    "subscription_id": subscription.subscription_id,
                    "organization_id": subscription.organization_id,
                    "provider_quantity": remote,
                    "database_quantity": local,
                    "difference": abs(remote - local),
                    "job": "reconcile",
                    "detected_at": now.isoformat(),
                },
            )

        if not mismatches and not errors:
            self._alerts.info(
                f"Daily reconciliation complete: All {len(subscriptions)} subscriptions in sync",
                {"checked": len(subscriptions), "matches": matches, "job": "reconcile"},
            )
        logger.info(
            "Reconciliation done: checked=%d matches=%d mismatches=%d errors=%d",
            len(subscriptions),
            matches,
            len(mismatches),
            len(errors),
        )

        return {
            "success": True,
            "message": "Subscription reconciliation complete",
            "checked": len(subscriptions),
            "matches": matches,
            "mismatches": len(mismatches),
            "errors": len(errors),
            "results": mismatches,
            "error_details": errors,
        }

    def sync_subscription(self, provider_subscription_id: str) -> Subscription:
        """Overwrite the local mirror of one subscription with what the provider reports."""
        subscription = self._subscriptions.get_by_provider_id(str(provider_subscription_id))
        if not subscription:
            raise NotFoundError(f"Subscription {provider_subscription_id} not found")

        data = self._client.get_subscription(subscription.provider_subscription_id)
        attributes = (data.get("data") or {}).get("attributes") or {}
        item = attributes.get("first_subscription_item") or {}
        quantity = provider_quantity(data)

        changes: dict[str, Any] = {
            "quantity": quantity,
            "renews_at": parse_provider_datetime(attributes.get("renews_at")),
            "ends_at": parse_provider_datetime(attributes.get("ends_at")),
            "trial_ends_at": parse_provider_datetime(attributes.get("trial_ends_at")),
        }
        try:
            changes["status"] = SubscriptionStatus(str(attributes.get("status")))
        except ValueError:
            logger.warning("Unknown provider status %r for %s", attributes.get("status"), provider_subscription_id)
        if attributes.get("variant_id") is not None:
            changes["variant_id"] = str(attributes["variant_id"])
        if item.get("id"):
            changes["provider_subscription_item_id"] = str(item["id"])
        if subscription.billing_type != BillingType.USAGE_BASED:
            changes["current_seats"] = quantity

        self._subscriptions.update(subscription.subscription_id, **changes)
        logger.info(
            "Subscription %s synced from provider: quantity %d -> %d",
            provider_subscription_id,
            subscription.quantity,
            quantity,
        )
        updated = self._subscriptions.get_by_id(subscription.subscription_id)
        if not updated:
            raise NotFoundError(f"Subscription {provider_subscription_id} not found")
        return updated
