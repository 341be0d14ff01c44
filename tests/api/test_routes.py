from __future__ import annotations

import dataclasses
import gc
import hashlib
import hmac
import json

import pytest
from werkzeug.security import generate_password_hash

from src.leavedesk.leavedesk.alerts.service import AlertService
from src.leavedesk.leavedesk.billing.jobs import BillingJobs
from src.leavedesk.leavedesk.container import Container
from src.leavedesk.leavedesk.core.enums import Role
from src.leavedesk.leavedesk.main import create_app

CRON_SECRET = "test-cron-secret"
WEBHOOK_SECRET = "test-webhook-secret"
PASSWORD = "correct-horse"


def _container(stack, **overrides):
    container = Container(
        auth_service=stack.auth_service,
        organization_service=stack.organization_service,
        schedule_service=stack.schedule_service,
        leave_service=stack.leave_service,
        invitation_service=stack.invitation_service,
        seat_validator=stack.seat_validator,
        seat_management_service=stack.seat_management_service,
        subscription_service=stack.subscription_service,
        webhook_processor=stack.webhook_processor,
        alert_service=stack.alert_service,
        billing_jobs=BillingJobs(stack.subscriptions, stack.client, AlertService(stack.alerts), sleep=lambda _s: None),
        cron_secret=CRON_SECRET,
        webhook_secret=WEBHOOK_SECRET,
    )
    return dataclasses.replace(container, **overrides)


@pytest.fixture
def make_app(stack, monkeypatch):
    monkeypatch.setenv("APP_ENV", "testing")

    def factory(**overrides):
        return create_app(container=_container(stack, **overrides))

    return factory


@pytest.fixture
def http(make_app):
    return make_app().test_client()


def _login(http, stack, email="admin@x.test"):
    if not stack.users.get_by_email(email):
        stack.users.create_user(email=email, full_name="Admin", password_hash=generate_password_hash(PASSWORD))
    res = http.post("/api/auth/login", json={"email": email, "password": PASSWORD})
    assert res.status_code == 200
    return stack.users.get_by_email(email).user_id


def _signed(payload):
    body = json.dumps(payload).encode()
    return body, hmac.new(WEBHOOK_SECRET.encode(), body, hashlib.sha256).hexdigest()


# -------- App --------
def test_health(http):
    res = http.get("/health")
    assert res.status_code == 200
    assert res.get_json() == {"status": "ok"}


def test_unknown_route_is_json(http):
    res = http.get("/api/nope")
    assert res.status_code == 404
    assert "error" in res.get_json()


@pytest.mark.parametrize(
    "method, path",
    [
        ("get", "/api/auth/me"),
        ("post", "/api/organizations"),
        ("get", "/api/organizations/1/members"),
        ("post", "/api/organizations/1/invitations"),
        ("get", "/api/organizations/1/leave-requests"),
        ("put", "/api/organizations/1/schedule"),
        ("post", "/api/organizations/1/billing/quantity"),
    ],
)
def test_protected_routes_require_session(http, method, path):
    res = getattr(http, method)(path, json={})
    assert res.status_code == 401
    assert res.get_json() == {"error": "Authentication required"}


# -------- Auth --------
def test_register_login_and_me(http):
    res = http.post(
        "/api/auth/register", json={"email": "new@x.test", "full_name": "New Person", "password": PASSWORD}
    )
    assert res.status_code == 201

    res = http.post("/api/auth/login", json={"email": "new@x.test", "password": PASSWORD, "remember_me": True})
    assert res.get_json()["user"]["email"] == "new@x.test"

    res = http.post("/api/organizations", json={"name": "Acme"})
    assert res.status_code == 201

    me = http.get("/api/auth/me").get_json()
    assert me["user"]["full_name"] == "New Person"
    assert [o["name"] for o in me["organizations"]] == ["Acme"]

    http.post("/api/auth/logout")
    assert http.get("/api/auth/me").status_code == 401


def test_bad_login_maps_to_401(http):
    res = http.post("/api/auth/login", json={"email": "ghost@x.test", "password": "whatever"})
    assert res.status_code == 401
    assert res.get_json() == {"error": "Invalid email or password"}


# -------- Domain errors --------
def test_seat_limit_maps_to_409_with_details(http, stack):
    admin_id = _login(http, stack)
    org_id = stack.organizations.add()
    stack.memberships.add(organization_id=org_id, user_id=admin_id, role=Role.ADMIN)
    items = [{"email": f"u{i}@x.test", "role": "employee"} for i in range(3)]

    res = http.post(f"/api/organizations/{org_id}/invitations", json={"invitations": items})

    assert res.status_code == 409
    body = res.get_json()
    assert body["available_seats"] == 2
    assert body["upgrade_required"] is True


def test_invitations_round_trip_hides_tokens_in_listing(http, stack):
    admin_id = _login(http, stack)
    org_id = stack.organizations.add()
    stack.memberships.add(organization_id=org_id, user_id=admin_id, role=Role.ADMIN)

    res = http.post(
        f"/api/organizations/{org_id}/invitations", json={"invitations": [{"email": "a@x.test", "role": "employee"}]}
    )
    assert res.status_code == 201
    assert res.get_json()["invitations"][0]["token"] == "token-1"

    listed = http.get(f"/api/organizations/{org_id}/invitations").get_json()["invitations"]
    assert listed[0]["email"] == "a@x.test"
    assert "token" not in listed[0]

    assert http.post(f"/api/organizations/{org_id}/invitations", json={"invitations": "a@x.test"}).status_code == 400


def test_leave_request_over_http(http, stack):
    admin_id = _login(http, stack)
    org_id = stack.organization_service.create_workspace(user_id=admin_id, name="Acme")
    annual = stack.leave.list_types(organization_id=org_id)[0].leave_type_id

    res = http.post(
        f"/api/organizations/{org_id}/leave-requests",
        json={"leave_type_id": annual, "start_date": "2030-03-04", "end_date": "2030-03-08"},
    )
    assert res.status_code == 201
    assert res.get_json()["request"]["days_requested"] == 5.0
    assert res.get_json()["request"]["status"] == "pending"

    res = http.post(
        f"/api/organizations/{org_id}/leave-requests",
        json={"leave_type_id": annual, "start_date": "03/04/2030", "end_date": "2030-03-08"},
    )
    assert res.status_code == 400


def test_remove_member_without_subscription_is_404(http, stack):
    admin_id = _login(http, stack)
    org_id = stack.organizations.add()
    stack.memberships.add(organization_id=org_id, user_id=admin_id, role=Role.ADMIN)
    other = stack.users.create_user(email="e@x.test", full_name="E", password_hash="x")
    stack.memberships.add(organization_id=org_id, user_id=other, role=Role.EMPLOYEE)

    res = http.post(f"/api/organizations/{org_id}/members/{other}/remove")

    assert res.status_code == 404
    assert res.get_json() == {"error": "Active subscription not found"}


def test_invalid_billing_period_is_400(http, stack):
    _login(http, stack)
    res = http.post("/api/organizations/1/billing/period", json={"billing_period": "weekly"})
    assert res.status_code == 400


# -------- Webhooks --------
def test_webhook_requires_valid_signature(http):
    body, _ = _signed({"meta": {"event_name": "subscription_updated"}, "data": {"id": "1"}})

    res = http.post("/api/webhooks/lemonsqueezy", data=body, headers={"X-Signature": "deadbeef"})
    assert res.status_code == 401
    res = http.post("/api/webhooks/lemonsqueezy", data=body)
    assert res.status_code == 401


def test_non_ascii_signature_is_rejected(http):
    body, _ = _signed({"meta": {"event_name": "subscription_updated"}, "data": {"id": "1"}})
    res = http.post("/api/webhooks/lemonsqueezy", data=body, headers={"X-Signature": "sha256=\u00e9t\u00e9"})
    assert res.status_code == 401


def test_rate_limited_routes_survive_garbage_collection(make_app):
    http = make_app().test_client()
    gc.collect()

    res = http.post("/api/webhooks/lemonsqueezy", data=b"{}", headers={"X-Signature": "deadbeef"})
    assert res.status_code == 401


def test_webhook_without_secret_is_503(make_app):
    http = make_app(webhook_secret=None).test_client()
    res = http.post("/api/webhooks/lemonsqueezy", data=b"{}", headers={"X-Signature": "x"})
    assert res.status_code == 503


def test_signed_webhook_is_processed(http, stack):
    org_id = stack.organizations.add()
    stack.subscriptions.create(organization_id=org_id, provider_subscription_id="sub-1", current_seats=4, quantity=4)
    body, signature = _signed(
        {
            "meta": {"event_name": "subscription_updated", "event_id": "evt-1"},
            "data": {"id": "sub-1", "attributes": {"status": "active", "first_subscription_item": {"id": 1, "quantity": 6}}},
        }
    )

    res = http.post(
        "/api/webhooks/lemonsqueezy",
        data=body,
        headers={"X-Signature": f"sha256={signature}", "Content-Type": "application/json"},
    )

    assert res.status_code == 200
    assert res.get_json()["event_id"] == "evt-1"
    assert stack.organizations.get_by_id(org_id).paid_seats == 6


def test_failed_webhook_returns_500_for_redelivery(http):
    body, signature = _signed(
        {"meta": {"event_name": "subscription_cancelled", "event_id": "evt-2"}, "data": {"id": "ghost", "attributes": {"status": "cancelled"}}}
    )

    res = http.post("/api/webhooks/lemonsqueezy", data=body, headers={"X-Signature": signature})

    assert res.status_code == 500
    assert res.get_json()["details"] == "Subscription not found for cancellation"


# -------- Cron --------
@pytest.mark.parametrize("header", [None, "Bearer wrong", CRON_SECRET, "Bearer \u00e9"])
def test_cron_requires_bearer_secret(http, header):
    headers = {"Authorization": header} if header else {}
    res = http.post("/api/cron/reconcile-subscriptions", headers=headers)
    assert res.status_code == 401
    assert res.get_json() == {"error": "Unauthorized"}


def test_cron_runs_jobs(http):
    headers = {"Authorization": f"Bearer {CRON_SECRET}"}

    res = http.get("/api/cron/apply-pending-subscription-changes", headers=headers)
    assert res.status_code == 200
    assert res.get_json()["processed"] == 0

    res = http.post("/api/cron/reconcile-subscriptions", headers=headers)
    assert res.get_json()["checked"] == 0


def test_cron_without_billing_provider_is_503(make_app):
    http = make_app(billing_jobs=None).test_client()
    res = http.post("/api/cron/reconcile-subscriptions", headers={"Authorization": f"Bearer {CRON_SECRET}"})
    assert res.status_code == 503
