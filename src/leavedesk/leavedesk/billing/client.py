"""Lemon Squeezy REST client (JSON:API) with a small retry loop."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Optional

import requests

from ..core.constants import (
    DEFAULT_PROVIDER_MAX_RETRIES,
    DEFAULT_PROVIDER_RETRY_DELAY,
    DEFAULT_PROVIDER_TIMEOUT,
)
from ..core.exceptions import BillingProviderError, ConfigurationError

logger = logging.getLogger(__name__)

BASE_URL = "https://api.lemonsqueezy.com/v1"
JSON_API = "application/vnd.api+json"
DEFAULT_CURRENCY = "PLN"


@dataclass(frozen=True)
class VariantPrice:
    variant_id: str
    price: float  # currency units, not cents
    currency: str


class LemonSqueezyClient:
    def __init__(
        self,
        api_key: str,
        *,
        max_retries: int = DEFAULT_PROVIDER_MAX_RETRIES,
        retry_delay: float = DEFAULT_PROVIDER_RETRY_DELAY,
        timeout: float = DEFAULT_PROVIDER_TIMEOUT,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        base_url: str = BASE_URL,
    ):
        if not api_key:
            raise ConfigurationError("Lemon Squeezy API key is required")

        self._base_url = base_url.rstrip("/")
        self._max_retries = max(1, int(max_retries))
        self._retry_delay = float(retry_delay)
        self._timeout = timeout
        self._sleep = sleep
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Accept": JSON_API,
                "Content-Type": JSON_API,
                "Authorization": f"Bearer {api_key}",
            }
        )

    # -------- Subscriptions --------
    def get_subscription(self, subscription_id: str) -> dict:
        return self._request("GET", f"/subscriptions/{subscription_id}", operation="get subscription")

    def update_subscription_variant(self, subscription_id: str, variant_id: str) -> dict:
        body = {
            "data": {
                "type": "subscriptions",
                "id": str(subscription_id),
                "attributes": {"variant_id": int(variant_id)},
            }
        }
        return self._request(
            "PATCH",
            f"/subscriptions/{subscription_id}",
            body=body,
            operation="update subscription variant",
        )

    # -------- Subscription items --------
    def get_subscription_item(self, item_id: str) -> dict:
        return self._request("GET", f"/subscription-items/{item_id}", operation="get subscription item")

    def update_subscription_item(self, item_id: str, quantity: int) -> dict:
        body = {
            "data": {
                "type": "subscription-items",
                "id": str(item_id),
                "attributes": {"quantity": int(quantity), "disable_prorations": True},
            }
        }
        return self._request(
            "PATCH",
            f"/subscription-items/{item_id}",
            body=body,
            operation="update subscription item",
        )

    def create_usage_record(self, item_id: str, quantity: int, description: str = "") -> dict:
        body = {
            "data": {
                "type": "usage-records",
                "attributes": {
                    "quantity": int(quantity),
                    "action": "set",
                    "description": description,
                },
                "relationships": {
                    "subscription-item": {
                        "data": {"type": "subscription-items", "id": str(item_id)},
                    }
                },
            }
        }
        return self._request("POST", "/usage-records", body=body, operation="create usage record")

    # -------- Variants --------
    def get_variant(self, variant_id: str) -> VariantPrice:
        data = self._request("GET", f"/variants/{variant_id}", operation="get variant")
        attributes = (data.get("data") or {}).get("attributes") or {}
        cents = float(attributes.get("price") or 0)
        formatted = str(attributes.get("price_formatted") or "")
        parts = formatted.split(" ")
        currency = parts[1] if len(parts) > 1 and parts[1] else DEFAULT_CURRENCY
        return VariantPrice(variant_id=str(variant_id), price=cents / 100, currency=currency)

    # -------- Transport --------
    def _request(self, method: str, path: str, *, operation: str, body: Optional[dict] = None) -> dict:
        url = f"{self._base_url}{path}"
        last_error: Optional[Exception] = None

        for attempt in range(1, self._max_retries + 1):
            logger.info("[LemonSqueezy] %s %s (attempt %d)", method, path, attempt)
            try:
                response = self._session.request(method, url, json=body, timeout=self._timeout)
            except requests.exceptions.RequestException as e:
                last_error = e
                if attempt < self._max_retries:
                    logger.warning(
                        "[LemonSqueezy] Retry %d/%d for %s %s: %s",
                        attempt,
                        self._max_retries,
                        method,
                        path,
                        e,
                    )
                    self._sleep(self._retry_delay * attempt)
                continue

            payload = self._parse_json(response)
            if not response.ok:
                detail = self._error_detail(payload) or response.reason or f"HTTP {response.status_code}"
                logger.error("[LemonSqueezy] ERROR %s %s: %s %s", method, path, response.status_code, detail)
                # API errors are final; only transport failures are retried.
                raise BillingProviderError(
                    f"Lemon Squeezy API error: {detail}",
                    http_status=response.status_code,
                    retryable=False,
                )

            logger.info("[LemonSqueezy] %s %s -> %s", method, path, response.status_code)
            return payload

        raise BillingProviderError(
            f"Failed to {operation} after {self._max_retries} attempts: {last_error}",
            retryable=True,
        )

    @staticmethod
    def _parse_json(response: requests.Response) -> dict:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _error_detail(payload: dict) -> Optional[str]:
        errors = payload.get("errors") or []
        if errors and isinstance(errors[0], dict):
            return errors[0].get("detail") or errors[0].get("title")
        return None


def create_client(settings: Any, **kwargs: Any) -> LemonSqueezyClient:
    """Build a client from a settings module/object; needs ``LEMONSQUEEZY_API_KEY``."""
    api_key = getattr(settings, "LEMONSQUEEZY_API_KEY", None)
    if not api_key:
        raise ConfigurationError("LEMONSQUEEZY_API_KEY environment variable is not set")
    return LemonSqueezyClient(api_key, **kwargs)
