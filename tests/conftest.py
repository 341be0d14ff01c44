from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime
from types import SimpleNamespace

import pytest

from src.leavedesk.leavedesk.alerts.service import AlertService
from src.leavedesk.leavedesk.billing.client import VariantPrice
from src.leavedesk.leavedesk.billing.model import Subscription
from src.leavedesk.leavedesk.billing.repository import UPDATABLE_FIELDS
from src.leavedesk.leavedesk.billing.seat_management import SeatManagementService
from src.leavedesk.leavedesk.billing.seat_validation import SeatValidator
from src.leavedesk.leavedesk.billing.subscriptions import SubscriptionService
from src.leavedesk.leavedesk.billing.webhooks import WebhookProcessor
from src.leavedesk.leavedesk.core.constants import LIVE_SUBSCRIPTION_STATUSES
from src.leavedesk.leavedesk.core.enums import (
    BillingEventStatus,
    BillingType,
    InvitationStatus,
    LeaveRequestStatus,
    MembershipStatus,
    SubscriptionStatus,
    SubscriptionTier,
)
from src.leavedesk.leavedesk.core.exceptions import BillingProviderError
from src.leavedesk.leavedesk.invitations.model import Invitation
from src.leavedesk.leavedesk.invitations.service import InvitationService
from src.leavedesk.leavedesk.leave.model import LeaveBalance, LeaveRequest, LeaveType
from src.leavedesk.leavedesk.leave.service import LeaveService
from src.leavedesk.leavedesk.organizations.model import Membership, Organization
from src.leavedesk.leavedesk.organizations.service import OrganizationService
from src.leavedesk.leavedesk.schedules.model import Holiday
from src.leavedesk.leavedesk.schedules.service import ScheduleService
from src.leavedesk.leavedesk.users.model import User
from src.leavedesk.leavedesk.users.service import AuthService

MONTHLY_VARIANT = "1001"
YEARLY_VARIANT = "1002"


class FakeUsersRepo:
    def __init__(self):
        self._next_id = 1
        self.users: dict[int, User] = {}

    def get_by_id(self, user_id):
        return self.users.get(int(user_id))

    def get_by_email(self, email):
        for u in self.users.values():
            if u.email == email:
                return u
        return None

    def create_user(self, *, email, full_name, password_hash):
        uid = self._next_id
        self._next_id += 1
        self.users[uid] = User(user_id=uid, email=email, full_name=full_name, password_hash=password_hash)
        return uid


class FakeOrganizationsRepo:
    def __init__(self, memberships=None):
        self._next_id = 1
        self.orgs: dict[int, Organization] = {}
        self.memberships = memberships

    def add(self, *, name="Acme", paid_seats=0, tier=SubscriptionTier.FREE, override_seats=None, override_expires_at=None):
        oid = self._next_id
        self._next_id += 1
        self.orgs[oid] = Organization(
            organization_id=oid,
            name=name,
            paid_seats=paid_seats,
            subscription_tier=tier,
            billing_override_seats=override_seats,
            billing_override_expires_at=override_expires_at,
        )
        return oid

    def get_by_id(self, organization_id):
        return self.orgs.get(int(organization_id))

    def create_organization(self, *, name):
        return self.add(name=name)

    def update_billing(self, *, organization_id, paid_seats, subscription_tier):
        org = self.orgs.get(int(organization_id))
        if not org:
            return False
        self.orgs[org.organization_id] = replace(org, paid_seats=int(paid_seats), subscription_tier=subscription_tier)
        return True

    def list_for_user(self, *, user_id):
        out = []
        for m in self.memberships.rows.values() if self.memberships else []:
            if m.user_id == int(user_id) and m.has_access:
                org = self.orgs[m.organization_id]
                out.append(
                    {
                        "organization_id": org.organization_id,
                        "name": org.name,
                        "subscription_tier": org.subscription_tier.value,
                        "role": m.role.value,
                        "status": m.status.value,
                    }
                )
        return out


class FakeMembershipsRepo:
    def __init__(self, users: FakeUsersRepo):
        self.users = users
        self.rows: dict[tuple[int, int], Membership] = {}

    def _with_user(self, m: Membership) -> Membership:
        u = self.users.get_by_id(m.user_id)
        return replace(m, email=u.email if u else None, full_name=u.full_name if u else None)

    def get(self, *, organization_id, user_id):
        m = self.rows.get((int(organization_id), int(user_id)))
        return self._with_user(m) if m else None

    def add(self, *, organization_id, user_id, role, status=MembershipStatus.ACTIVE):
        self.rows[(int(organization_id), int(user_id))] = Membership(
            user_id=int(user_id),
            organization_id=int(organization_id),
            role=role,
            status=status,
        )

    def set_status(self, *, organization_id, user_id, status, removal_effective_date=None):
        key = (int(organization_id), int(user_id))
        if key not in self.rows:
            return False
        self.rows[key] = replace(self.rows[key], status=status, removal_effective_date=removal_effective_date)
        return True

    def set_role(self, *, organization_id, user_id, role):
        key = (int(organization_id), int(user_id))
        if key not in self.rows:
            return False
        self.rows[key] = replace(self.rows[key], role=role)
        return True

    def count(self, *, organization_id, statuses):
        statuses = set(statuses)
        return sum(1 for m in self.rows.values() if m.organization_id == int(organization_id) and m.status in statuses)

    def list_members(self, *, organization_id, statuses=None):
        statuses = set(statuses) if statuses is not None else None
        return [
            self._with_user(m)
            for m in self.rows.values()
            if m.organization_id == int(organization_id) and (statuses is None or m.status in statuses)
        ]

    def find_member_emails(self, *, organization_id, emails):
        wanted = set(emails)
        found = set()
        for m in self.rows.values():
            u = self.users.get_by_id(m.user_id)
            if m.organization_id == int(organization_id) and u and u.email in wanted:
                found.add(u.email)
        return found

    def archive_pending_removals(self, *, organization_id):
        n = 0
        for key, m in list(self.rows.items()):
            if m.organization_id == int(organization_id) and m.status == MembershipStatus.PENDING_REMOVAL:
                self.rows[key] = replace(m, status=MembershipStatus.ARCHIVED)
                n += 1
        return n

    def archive_lapsed_removals(self, *, now):
        n = 0
        for key, m in list(self.rows.items()):
            if m.status == MembershipStatus.PENDING_REMOVAL and m.removal_effective_date and m.removal_effective_date <= now:
                self.rows[key] = replace(m, status=MembershipStatus.ARCHIVED)
                n += 1
        return n


class FakeInvitationsRepo:
    def __init__(self):
        self._next_id = 1
        self.rows: dict[int, Invitation] = {}

    def create_many(self, *, organization_id, invited_by, invitations):
        ids = []
        for inv in invitations:
            iid = self._next_id
            self._next_id += 1
            self.rows[iid] = Invitation(
                invitation_id=iid,
                organization_id=int(organization_id),
                email=inv.email,
                role=inv.role,
                token=inv.token,
                status=InvitationStatus.PENDING,
                invited_by=int(invited_by),
                expires_at=inv.expires_at,
                full_name=inv.full_name,
                personal_message=inv.personal_message,
            )
            ids.append(iid)
        return ids

    def get_by_id(self, invitation_id):
        return self.rows.get(int(invitation_id))

    def get_by_token(self, token):
        for inv in self.rows.values():
            if inv.token == token:
                return inv
        return None

    def find_pending_emails(self, *, organization_id, emails):
        return {
            inv.email
            for inv in self.rows.values()
            if inv.organization_id == int(organization_id)
            and inv.status == InvitationStatus.PENDING
            and inv.email in set(emails)
        }

    def list_pending(self, *, organization_id):
        return [
            inv
            for inv in self.rows.values()
            if inv.organization_id == int(organization_id) and inv.status == InvitationStatus.PENDING
        ]

    def count_pending(self, *, organization_id):
        return len(self.list_pending(organization_id=organization_id))

    def set_status(self, *, invitation_id, status, accepted_at=None):
        inv = self.rows.get(int(invitation_id))
        if not inv:
            return False
        self.rows[inv.invitation_id] = replace(inv, status=status, accepted_at=accepted_at)
        return True

    def expire_stale(self, *, now):
        n = 0
        for iid, inv in list(self.rows.items()):
            if inv.status == InvitationStatus.PENDING and inv.expires_at < now:
                self.rows[iid] = replace(inv, status=InvitationStatus.EXPIRED)
                n += 1
        return n


class FakeLeaveRepo:
    def __init__(self):
        self._next_id = 1
        self.types: dict[int, LeaveType] = {}
        self.balances: dict[int, LeaveBalance] = {}
        self.requests: dict[int, LeaveRequest] = {}

    def _id(self):
        nid = self._next_id
        self._next_id += 1
        return nid

    def list_types(self, *, organization_id):
        return [t for t in self.types.values() if t.organization_id == int(organization_id)]

    def get_type(self, *, leave_type_id):
        return self.types.get(int(leave_type_id))

    def create_type(self, *, organization_id, name, days_per_year, requires_balance, requires_approval, is_paid):
        tid = self._id()
        self.types[tid] = LeaveType(
            leave_type_id=tid,
            organization_id=int(organization_id),
            name=name,
            days_per_year=days_per_year,
            requires_balance=requires_balance,
            requires_approval=requires_approval,
            is_paid=is_paid,
        )
        return tid

    def get_balance(self, *, user_id, leave_type_id, year):
        for b in self.balances.values():
            if b.user_id == int(user_id) and b.leave_type_id == int(leave_type_id) and b.year == int(year):
                return b
        return None

    def list_balances(self, *, organization_id, user_id, year):
        return [
            b
            for b in self.balances.values()
            if b.organization_id == int(organization_id) and b.user_id == int(user_id) and b.year == int(year)
        ]

    def create_balance(self, *, organization_id, user_id, leave_type_id, year, entitled_days, used_days=0):
        bid = self._id()
        self.balances[bid] = LeaveBalance(
            balance_id=bid,
            organization_id=int(organization_id),
            user_id=int(user_id),
            leave_type_id=int(leave_type_id),
            year=int(year),
            entitled_days=float(entitled_days),
            used_days=float(used_days),
        )
        return bid

    def update_balance(self, *, balance_id, entitled_days=None, used_days=None):
        b = self.balances.get(int(balance_id))
        if not b:
            return False
        self.balances[b.balance_id] = replace(
            b,
            entitled_days=b.entitled_days if entitled_days is None else float(entitled_days),
            used_days=b.used_days if used_days is None else float(used_days),
        )
        return True

    def create_request(self, *, organization_id, user_id, leave_type_id, start_date, end_date, days_requested, reason, status):
        rid = self._id()
        self.requests[rid] = LeaveRequest(
            request_id=rid,
            organization_id=int(organization_id),
            user_id=int(user_id),
            leave_type_id=int(leave_type_id),
            start_date=start_date,
            end_date=end_date,
            days_requested=float(days_requested),
            status=status,
            reason=reason,
        )
        return rid

    def get_request(self, *, request_id):
        return self.requests.get(int(request_id))

    def list_requests(self, *, organization_id, user_id=None, status=None, limit=200):
        return [
            {
                "request_id": r.request_id,
                "user_id": r.user_id,
                "leave_type_id": r.leave_type_id,
                "start_date": r.start_date,
                "end_date": r.end_date,
                "days_requested": r.days_requested,
                "status": r.status.value,
            }
            for r in self.requests.values()
            if r.organization_id == int(organization_id)
            and (user_id is None or r.user_id == int(user_id))
            and (status is None or r.status == status)
        ][:limit]

    def find_overlapping(self, *, organization_id, user_id, start_date, end_date, exclude_request_id=None):
        return [
            r
            for r in self.requests.values()
            if r.organization_id == int(organization_id)
            and r.user_id == int(user_id)
            and r.status in (LeaveRequestStatus.PENDING, LeaveRequestStatus.APPROVED)
            and r.request_id != exclude_request_id
            and r.start_date <= end_date
            and r.end_date >= start_date
        ]

    def decide_request(self, *, request_id, status, reviewed_by, reviewed_at, rejection_reason=None):
        r = self.requests.get(int(request_id))
        if not r or r.status != LeaveRequestStatus.PENDING:
            return False
        self.requests[r.request_id] = replace(
            r,
            status=status,
            reviewed_by=reviewed_by,
            reviewed_at=reviewed_at,
            rejection_reason=rejection_reason,
        )
        return True

    def set_request_status(self, *, request_id, status):
        r = self.requests.get(int(request_id))
        if not r:
            return False
        self.requests[r.request_id] = replace(r, status=status)
        return True

    def update_request(
        self,
        *,
        request_id,
        leave_type_id,
        start_date,
        end_date,
        days_requested,
        reason,
        edited_by=None,
        edited_at=None,
    ):
        r = self.requests.get(int(request_id))
        if not r:
            return False
        self.requests[r.request_id] = replace(
            r,
            leave_type_id=int(leave_type_id),
            start_date=start_date,
            end_date=end_date,
            days_requested=float(days_requested),
            reason=reason,
            edited_by=edited_by,
            edited_at=edited_at,
        )
        return True


class FakeSchedulesRepo:
    def __init__(self):
        self._next_id = 1
        self.working_days: dict[tuple[int, int], tuple[int, ...]] = {}
        self.holidays: dict[int, Holiday] = {}

    def get_working_days(self, *, organization_id, user_id=0):
        return self.working_days.get((int(organization_id), int(user_id)))

    def set_working_days(self, *, organization_id, working_days, user_id=0):
        self.working_days[(int(organization_id), int(user_id))] = tuple(working_days)

    def list_holidays(self, *, organization_id, start=None, end=None):
        return [
            h
            for h in self.holidays.values()
            if h.organization_id == int(organization_id)
            and (start is None or h.holiday_date >= start)
            and (end is None or h.holiday_date <= end)
        ]

    def add_holiday(self, *, organization_id, holiday_date, name):
        hid = self._next_id
        self._next_id += 1
        self.holidays[hid] = Holiday(holiday_id=hid, organization_id=int(organization_id), holiday_date=holiday_date, name=name)
        return hid

    def delete_holiday(self, *, organization_id, holiday_id):
        h = self.holidays.get(int(holiday_id))
        if not h or h.organization_id != int(organization_id):
            return False
        del self.holidays[h.holiday_id]
        return True


class FakeSubscriptionsRepo:
    def __init__(self):
        self._next_id = 1
        self._clock = 0
        self.rows: dict[int, Subscription] = {}
        self.touched: dict[int, int] = {}
        self.fail_updates = False

    def _touch(self, sid):
        self._clock += 1
        self.touched[sid] = self._clock

    def get_by_id(self, subscription_id):
        return self.rows.get(int(subscription_id))

    def get_by_provider_id(self, provider_subscription_id):
        for s in self.rows.values():
            if s.provider_subscription_id == str(provider_subscription_id):
                return s
        return None

    def get_for_organization(self, *, organization_id, statuses=LIVE_SUBSCRIPTION_STATUSES):
        statuses = set(statuses)
        matches = [s for s in self.rows.values() if s.organization_id == int(organization_id) and s.status in statuses]
        if not matches:
            return None
        return max(matches, key=lambda s: (self.touched.get(s.subscription_id, 0), s.subscription_id))

    def create(self, *, organization_id, provider_subscription_id, **fields):
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown subscription fields: {sorted(unknown)}")
        sid = self._next_id
        self._next_id += 1
        fields.setdefault("status", SubscriptionStatus.ACTIVE)
        fields.setdefault("billing_type", BillingType.QUANTITY_BASED)
        self.rows[sid] = Subscription(
            subscription_id=sid,
            organization_id=int(organization_id),
            provider_subscription_id=str(provider_subscription_id),
            **fields,
        )
        self._touch(sid)
        return sid

    def update(self, subscription_id, **changes):
        if self.fail_updates:
            raise RuntimeError("database unavailable")
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown subscription fields: {sorted(unknown)}")
        s = self.rows.get(int(subscription_id))
        if not s:
            return False
        self.rows[s.subscription_id] = replace(s, **changes)
        self._touch(s.subscription_id)
        return True

    def list_live(self):
        return sorted(
            (s for s in self.rows.values() if s.status in LIVE_SUBSCRIPTION_STATUSES),
            key=lambda s: s.subscription_id,
        )

    def list_pending_changes(self, *, window_start, window_end):
        return [
            s
            for s in self.rows.values()
            if s.pending_seats is not None
            and not s.quantity_synced
            and s.status in LIVE_SUBSCRIPTION_STATUSES
            and s.renews_at is not None
            and window_start <= s.renews_at <= window_end
        ]


class FakeBillingEventsRepo:
    def __init__(self):
        self.events: list[dict] = []

    def is_processed(self, provider_event_id):
        return any(
            e["provider_event_id"] == provider_event_id and e["status"] == BillingEventStatus.PROCESSED
            for e in self.events
        )

    def record(self, *, event_type, provider_event_id, status, payload=None, error_message=None):
        self.events.append(
            {
                "event_type": event_type,
                "provider_event_id": provider_event_id,
                "status": status,
                "payload": payload,
                "error_message": error_message,
            }
        )
        return len(self.events)

    def statuses(self):
        return [e["status"] for e in self.events]


class FakeAlertsRepo:
    def __init__(self, fail=False):
        self.fail = fail
        self.alerts: list[dict] = []

    def create(self, *, severity, message, metadata=None):
        if self.fail:
            raise RuntimeError("alerts table unavailable")
        self.alerts.append({"severity": severity, "message": message, "metadata": metadata})
        return len(self.alerts)


class FakeLemonSqueezyClient:
    """Records every call; ``subscriptions`` maps provider ids to API payloads."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.subscriptions: dict[str, dict] = {}
        self.fail: dict[str, Exception] = {}
        self.variant_price = VariantPrice(variant_id=MONTHLY_VARIANT, price=19.0, currency="PLN")

    def _maybe_fail(self, name, subject=None):
        error = self.fail.get(f"{name}:{subject}") or self.fail.get(name)
        if error:
            raise error

    def get_subscription(self, subscription_id):
        self.calls.append(("get_subscription", str(subscription_id)))
        self._maybe_fail("get_subscription", subscription_id)
        if str(subscription_id) not in self.subscriptions:
            raise BillingProviderError("Lemon Squeezy API error: Not Found", http_status=404)
        return self.subscriptions[str(subscription_id)]

    def update_subscription_variant(self, subscription_id, variant_id):
        self.calls.append(("update_subscription_variant", str(subscription_id), str(variant_id)))
        self._maybe_fail("update_subscription_variant")
        return self.subscriptions.get(str(subscription_id), {"data": {"attributes": {}}})

    def update_subscription_item(self, item_id, quantity):
        self.calls.append(("update_subscription_item", str(item_id), int(quantity)))
        self._maybe_fail("update_subscription_item", item_id)
        return {"data": {"id": str(item_id), "attributes": {"quantity": int(quantity)}}}

    def create_usage_record(self, item_id, quantity, description=""):
        self.calls.append(("create_usage_record", str(item_id), int(quantity), description))
        self._maybe_fail("create_usage_record")
        return {"data": {"attributes": {"quantity": int(quantity)}}}

    def get_variant(self, variant_id):
        self.calls.append(("get_variant", str(variant_id)))
        self._maybe_fail("get_variant")
        return self.variant_price


def provider_subscription(item_id="501", quantity=5, status="active", variant_id=YEARLY_VARIANT):
    return {
        "data": {
            "id": "sub",
            "attributes": {
                "status": status,
                "variant_id": int(variant_id),
                "renews_at": "2026-11-01T10:00:00.000000Z",
                "ends_at": None,
                "trial_ends_at": None,
                "first_subscription_item": {"id": int(item_id), "quantity": quantity},
            },
        }
    }


def build_stack(client=None, alerts_fail=False):
    users = FakeUsersRepo()
    memberships = FakeMembershipsRepo(users)
    organizations = FakeOrganizationsRepo(memberships)
    invitations = FakeInvitationsRepo()
    leave = FakeLeaveRepo()
    schedules = FakeSchedulesRepo()
    subscriptions = FakeSubscriptionsRepo()
    events = FakeBillingEventsRepo()
    alerts = FakeAlertsRepo(fail=alerts_fail)

    schedule_service = ScheduleService(schedules, memberships)
    leave_service = LeaveService(leave, schedule_service, memberships)
    seat_validator = SeatValidator(memberships, invitations, organizations, subscriptions)
    tokens = iter(f"token-{i}" for i in range(1, 1000))

    return SimpleNamespace(
        users=users,
        memberships=memberships,
        organizations=organizations,
        invitations=invitations,
        leave=leave,
        schedules=schedules,
        subscriptions=subscriptions,
        events=events,
        alerts=alerts,
        client=client,
        auth_service=AuthService(users),
        schedule_service=schedule_service,
        leave_service=leave_service,
        organization_service=OrganizationService(organizations, memberships, leave_service, schedule_service),
        seat_validator=seat_validator,
        invitation_service=InvitationService(
            invitations,
            memberships,
            organizations,
            users,
            leave_service,
            seat_validator,
            ttl_days=7,
            token_factory=lambda: next(tokens),
        ),
        seat_management_service=SeatManagementService(memberships, organizations, subscriptions, seat_validator),
        subscription_service=SubscriptionService(
            subscriptions,
            organizations,
            memberships,
            seat_validator,
            client,
            monthly_variant_id=MONTHLY_VARIANT,
            yearly_variant_id=YEARLY_VARIANT,
        ),
        webhook_processor=WebhookProcessor(
            subscriptions,
            events,
            organizations,
            memberships,
            client,
            monthly_variant_id=MONTHLY_VARIANT,
            yearly_variant_id=YEARLY_VARIANT,
            sleep=lambda _s: None,
        ),
        alert_service=AlertService(alerts),
    )


def add_user(stack, email, full_name="Someone", password_hash="x"):
    return stack.users.create_user(email=email, full_name=full_name, password_hash=password_hash)


def add_member(stack, organization_id, email, role, status=MembershipStatus.ACTIVE):
    uid = add_user(stack, email)
    stack.memberships.add(organization_id=organization_id, user_id=uid, role=role, status=status)
    return uid


@pytest.fixture
def client():
    return FakeLemonSqueezyClient()


@pytest.fixture
def stack(client):
    return build_stack(client=client)


@pytest.fixture
def now():
    return datetime(2026, 10, 1, 12, 0, 0)


@pytest.fixture
def today():
    return date(2026, 10, 1)


@pytest.fixture
def member(stack):
    """``member(org_id, email, role, status=...)`` -> user id."""
    return lambda organization_id, email, role, status=MembershipStatus.ACTIVE: add_member(
        stack, organization_id, email, role, status
    )


@pytest.fixture
def provider_payload():
    return provider_subscription


@pytest.fixture
def stack_factory():
    """``build_stack`` for tests that need a non-default provider client."""
    return build_stack
