from __future__ import annotations

import pytest
import requests

from src.leavedesk.leavedesk.billing.client import LemonSqueezyClient, create_client
from src.leavedesk.leavedesk.core.exceptions import BillingProviderError, ConfigurationError


class FakeResponse:
    def __init__(self, status_code=200, payload=None, reason="OK"):
        self.status_code = status_code
        self._payload = payload
        self.reason = reason

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    def __init__(self, outcomes):
        self.headers = {}
        self.outcomes = list(outcomes)
        self.requests = []

    def request(self, method, url, json=None, timeout=None):
        self.requests.append({"method": method, "url": url, "json": json, "timeout": timeout})
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _client(session, sleeps=None):
    return LemonSqueezyClient(
        "key-123",
        session=session,
        sleep=(sleeps.append if sleeps is not None else lambda _s: None),
        retry_delay=1.0,
        max_retries=3,
    )


def test_sets_json_api_headers():
    session = FakeSession([])
    _client(session)
    assert session.headers["Authorization"] == "Bearer key-123"
    assert session.headers["Accept"] == "application/vnd.api+json"


def test_update_subscription_item_sends_quantity_without_prorations():
    session = FakeSession([FakeResponse(payload={"data": {"id": "9"}})])
    _client(session).update_subscription_item("9", 7)

    sent = session.requests[0]
    assert sent["method"] == "PATCH"
    assert sent["url"].endswith("/subscription-items/9")
    assert sent["json"]["data"]["attributes"] == {"quantity": 7, "disable_prorations": True}


def test_usage_record_uses_set_action():
    session = FakeSession([FakeResponse(payload={"data": {}})])
    _client(session).create_usage_record("9", 5, "Seat count updated")

    body = session.requests[0]["json"]["data"]
    assert body["type"] == "usage-records"
    assert body["attributes"]["action"] == "set"
    assert body["relationships"]["subscription-item"]["data"]["id"] == "9"


def test_transport_errors_are_retried_with_linear_backoff():
    sleeps = []
    session = FakeSession(
        [
            requests.exceptions.ConnectionError("boom"),
            requests.exceptions.Timeout("slow"),
            FakeResponse(payload={"data": {"id": "1"}}),
        ]
    )
    data = _client(session, sleeps).get_subscription("1")

    assert data == {"data": {"id": "1"}}
    assert sleeps == [1.0, 2.0]
    assert len(session.requests) == 3


def test_gives_up_after_max_retries():
    session = FakeSession([requests.exceptions.ConnectionError("down")] * 3)
    with pytest.raises(BillingProviderError) as exc:
        _client(session).get_subscription("1")
    assert exc.value.retryable is True
    assert "after 3 attempts" in str(exc.value)


def test_api_errors_are_not_retried():
    session = FakeSession([FakeResponse(422, {"errors": [{"detail": "Quantity invalid"}]}, "Unprocessable")])
    with pytest.raises(BillingProviderError) as exc:
        _client(session).update_subscription_item("9", 0)

    assert str(exc.value) == "Lemon Squeezy API error: Quantity invalid"
    assert exc.value.http_status == 422
    assert len(session.requests) == 1


def test_get_variant_converts_cents_and_currency():
    session = FakeSession([FakeResponse(payload={"data": {"attributes": {"price": 1900, "price_formatted": "19.00 USD"}}})])
    price = _client(session).get_variant("1001")
    assert price.price == 19.0
    assert price.currency == "USD"

    session = FakeSession([FakeResponse(payload={"data": {"attributes": {"price": 500, "price_formatted": ""}}})])
    assert _client(session).get_variant("1001").currency == "PLN"


def test_create_client_requires_api_key():
    class Settings:
        LEMONSQUEEZY_API_KEY = ""

    with pytest.raises(ConfigurationError):
        create_client(Settings())


def test_variant_switch_and_item_lookup_paths():
    session = FakeSession([FakeResponse(payload={"data": {}}), FakeResponse(payload={"data": {"id": "9"}})])
    client = _client(session)

    client.update_subscription_variant("77", "1002")
    client.get_subscription_item("9")

    assert session.requests[0]["url"].endswith("/subscriptions/77")
    assert session.requests[0]["json"]["data"]["attributes"] == {"variant_id": 1002}
    assert session.requests[1]["method"] == "GET"
    assert session.requests[1]["url"].endswith("/subscription-items/9")
