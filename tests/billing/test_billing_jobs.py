from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from src.leavedesk.leavedesk.alerts.service import AlertService
from src.leavedesk.leavedesk.billing.jobs import BillingJobs, provider_quantity
from src.leavedesk.leavedesk.core.enums import AlertSeverity, BillingType, MembershipStatus, Role, SubscriptionStatus
from src.leavedesk.leavedesk.core.exceptions import BillingProviderError, NotFoundError


@pytest.fixture
def jobs(stack, client):
    return BillingJobs(
        stack.subscriptions, client, AlertService(stack.alerts), memberships=stack.memberships, sleep=lambda _s: None
    )


def _severities(stack):
    return [a["severity"] for a in stack.alerts.alerts]


def test_provider_quantity_prefers_first_item():
    assert provider_quantity({"data": {"attributes": {"first_subscription_item": {"quantity": 7}, "quantity": 2}}}) == 7
    assert provider_quantity({"data": {"attributes": {"quantity": 2}}}) == 2
    assert provider_quantity({}) == 0


def test_apply_pending_changes_pushes_due_subscriptions(stack, client, jobs, now):
    due = stack.subscriptions.create(
        organization_id=1,
        provider_subscription_id="due",
        provider_subscription_item_id="501",
        current_seats=6,
        pending_seats=4,
        quantity_synced=False,
        renews_at=datetime(2026, 10, 2, 18, 0),
    )
    stack.subscriptions.create(
        organization_id=2,
        provider_subscription_id="later",
        provider_subscription_item_id="502",
        pending_seats=4,
        quantity_synced=False,
        renews_at=datetime(2026, 10, 10),
    )

    result = jobs.apply_pending_changes(now=now)

    assert result["processed"] == 1
    assert result["failed"] == 0
    assert result["results"][0]["new_quantity"] == 4
    assert client.calls == [("update_subscription_item", "501", 4)]
    assert stack.subscriptions.get_by_id(due).quantity_synced is True
    assert _severities(stack) == [AlertSeverity.INFO]


def test_apply_pending_changes_nothing_due(jobs, now):
    result = jobs.apply_pending_changes(now=now)
    assert result == {
        "success": True,
        "message": "No pending subscription changes need processing",
        "processed": 0,
        "archived_users": 0,
    }


def test_apply_pending_changes_archives_lapsed_removals(stack, member, jobs, now):
    org_id = stack.organizations.add()
    lapsed = member(org_id, "lapsed@x.test", Role.EMPLOYEE)
    leaving = member(org_id, "leaving@x.test", Role.EMPLOYEE)
    stack.memberships.set_status(
        organization_id=org_id,
        user_id=lapsed,
        status=MembershipStatus.PENDING_REMOVAL,
        removal_effective_date=now - timedelta(hours=1),
    )
    stack.memberships.set_status(
        organization_id=org_id,
        user_id=leaving,
        status=MembershipStatus.PENDING_REMOVAL,
        removal_effective_date=now + timedelta(days=3),
    )

    result = jobs.apply_pending_changes(now=now)

    assert result["archived_users"] == 1
    assert stack.memberships.get(organization_id=org_id, user_id=lapsed).status == MembershipStatus.ARCHIVED
    assert stack.memberships.get(organization_id=org_id, user_id=leaving).status == MembershipStatus.PENDING_REMOVAL


def test_apply_pending_changes_failure_raises_critical_alert(stack, client, jobs, now):
    client.fail["update_subscription_item:501"] = BillingProviderError("Lemon Squeezy API error: boom", http_status=500)
    sid = stack.subscriptions.create(
        organization_id=1,
        provider_subscription_id="due",
        provider_subscription_item_id="501",
        pending_seats=4,
        quantity_synced=False,
        renews_at=datetime(2026, 10, 2, 18, 0),
    )

    result = jobs.apply_pending_changes(now=now)

    assert result["processed"] == 0
    assert result["failed"] == 1
    assert "boom" in result["errors"][0]["error"]
    assert stack.subscriptions.get_by_id(sid).quantity_synced is False
    assert _severities(stack) == [AlertSeverity.CRITICAL]


def test_apply_pending_changes_without_item_id_is_an_error(stack, jobs, now):
    stack.subscriptions.create(
        organization_id=1,
        provider_subscription_id="due",
        pending_seats=4,
        quantity_synced=False,
        renews_at=datetime(2026, 10, 3, 0, 0),
    )
    result = jobs.apply_pending_changes(now=now)
    assert result["errors"][0]["error"] == "Subscription item id is missing"


def test_reconcile_all_in_sync(stack, client, jobs, now, provider_payload):
    stack.subscriptions.create(organization_id=1, provider_subscription_id="a", current_seats=5)
    client.subscriptions["a"] = provider_payload(quantity=5)

    result = jobs.reconcile(now=now)

    assert (result["checked"], result["matches"], result["mismatches"], result["errors"]) == (1, 1, 0, 0)
    assert _severities(stack) == [AlertSeverity.INFO]


def test_reconcile_reports_drift_and_errors(stack, client, jobs, now, provider_payload):
    stack.subscriptions.create(organization_id=1, provider_subscription_id="a", current_seats=5)
    stack.subscriptions.create(organization_id=2, provider_subscription_id="b", current_seats=4)
    stack.subscriptions.create(organization_id=3, provider_subscription_id="gone", current_seats=4)
    stack.subscriptions.create(
        organization_id=4, provider_subscription_id="old", current_seats=4, status=SubscriptionStatus.CANCELLED
    )
    client.subscriptions["a"] = provider_payload(quantity=5)
    client.subscriptions["b"] = provider_payload(quantity=6)

    result = jobs.reconcile(now=now)

    assert result["checked"] == 3
    assert result["matches"] == 1
    assert result["mismatches"] == 1
    assert result["errors"] == 1
    assert result["results"][0]["details"] == "Database shows 4 seats, Lemon Squeezy shows 6 seats"
    assert result["error_details"][0]["provider_subscription_id"] == "gone"
    assert _severities(stack) == [AlertSeverity.CRITICAL, AlertSeverity.WARNING]
    assert stack.alerts.alerts[0]["metadata"]["difference"] == 2


def test_reconcile_nothing_live(jobs):
    assert jobs.reconcile()["checked"] == 0


def test_sync_subscription_overwrites_local_mirror(stack, client, jobs, provider_payload):
    stack.subscriptions.create(organization_id=1, provider_subscription_id="a", current_seats=3, quantity=3)
    client.subscriptions["a"] = provider_payload(item_id="900", quantity=7, status="past_due")

    synced = jobs.sync_subscription("a")

    assert synced.quantity == 7
    assert synced.current_seats == 7
    assert synced.status == SubscriptionStatus.PAST_DUE
    assert synced.provider_subscription_item_id == "900"
    assert synced.renews_at == datetime(2026, 11, 1, 10, 0)


def test_sync_usage_based_keeps_local_seats(stack, client, jobs, provider_payload):
    stack.subscriptions.create(
        organization_id=1, provider_subscription_id="a", billing_type=BillingType.USAGE_BASED, current_seats=6
    )
    client.subscriptions["a"] = provider_payload(quantity=0)

    assert jobs.sync_subscription("a").current_seats == 6


def test_sync_unknown_subscription(jobs):
    with pytest.raises(NotFoundError):
        jobs.sync_subscription("nope")
