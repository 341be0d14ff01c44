from __future__ import annotations

from datetime import date, datetime, timedelta
from types import SimpleNamespace

import pytest

from src.leavedesk.leavedesk.common.datetime_utils import utcnow
from src.leavedesk.leavedesk.core.enums import MembershipStatus, Role, SubscriptionTier
from src.leavedesk.leavedesk.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from src.leavedesk.leavedesk.organizations.access import require_member


@pytest.fixture
def founder(stack):
    return stack.users.create_user(email="founder@x.test", full_name="Founder", password_hash="x")


def test_create_workspace_sets_up_free_organization(stack, founder):
    org_id = stack.organization_service.create_workspace(user_id=founder, name="  Acme  ")

    org = stack.organizations.get_by_id(org_id)
    assert org.name == "Acme"
    assert org.subscription_tier == SubscriptionTier.FREE
    assert org.paid_seats == 0

    m = stack.memberships.get(organization_id=org_id, user_id=founder)
    assert (m.role, m.status) == (Role.ADMIN, MembershipStatus.ACTIVE)
    assert stack.schedules.get_working_days(organization_id=org_id) == (0, 1, 2, 3, 4)

    types = stack.leave.list_types(organization_id=org_id)
    assert [t.name for t in types] == ["Annual leave", "Sick leave", "Unpaid leave", "Remote work"]
    balances = stack.leave.list_balances(organization_id=org_id, user_id=founder, year=date.today().year)
    assert sorted(b.entitled_days for b in balances) == [10.0, 20.0]


@pytest.mark.parametrize("name", ["", "   ", "x" * 151])
def test_create_workspace_validates_name(stack, founder, name):
    with pytest.raises(ValidationError):
        stack.organization_service.create_workspace(user_id=founder, name=name)


def test_list_for_user_only_shows_accessible_organizations(stack, founder, member):
    mine = stack.organization_service.create_workspace(user_id=founder, name="Mine")
    other = stack.organizations.add(name="Other")
    stack.memberships.add(
        organization_id=other, user_id=founder, role=Role.EMPLOYEE, status=MembershipStatus.ARCHIVED
    )

    orgs = stack.organization_service.list_for_user(user_id=founder)

    assert [o["organization_id"] for o in orgs] == [mine]
    assert orgs[0]["role"] == "admin"


def test_list_members_filters_by_status(stack, member):
    org_id = stack.organizations.add()
    admin_id = member(org_id, "admin@x.test", Role.ADMIN)
    member(org_id, "gone@x.test", Role.EMPLOYEE, MembershipStatus.ARCHIVED)

    everyone = stack.organization_service.list_members(organization_id=org_id, requester_id=admin_id)
    archived = stack.organization_service.list_members(
        organization_id=org_id, requester_id=admin_id, status=MembershipStatus.ARCHIVED
    )

    assert len(everyone) == 2
    assert [m.email for m in archived] == ["gone@x.test"]


def test_archived_member_cannot_list_members(stack, member):
    org_id = stack.organizations.add()
    gone = member(org_id, "gone@x.test", Role.ADMIN, MembershipStatus.ARCHIVED)
    with pytest.raises(AuthorizationError):
        stack.organization_service.list_members(organization_id=org_id, requester_id=gone)


def test_pending_removal_access_ends_at_effective_date(stack, member):
    org_id = stack.organizations.add()
    member(org_id, "admin@x.test", Role.ADMIN)
    lapsed = member(org_id, "lapsed@x.test", Role.EMPLOYEE)
    leaving = member(org_id, "leaving@x.test", Role.EMPLOYEE)
    stack.memberships.set_status(
        organization_id=org_id,
        user_id=lapsed,
        status=MembershipStatus.PENDING_REMOVAL,
        removal_effective_date=datetime(2020, 1, 1),
    )
    stack.memberships.set_status(
        organization_id=org_id,
        user_id=leaving,
        status=MembershipStatus.PENDING_REMOVAL,
        removal_effective_date=utcnow() + timedelta(days=7),
    )

    with pytest.raises(AuthorizationError):
        require_member(stack.memberships, organization_id=org_id, user_id=lapsed)
    assert require_member(stack.memberships, organization_id=org_id, user_id=leaving).user_id == leaving
    assert stack.organization_service.list_for_user(user_id=lapsed) == []

    m = stack.memberships.get(organization_id=org_id, user_id=leaving)
    assert m.has_access_at(m.removal_effective_date - timedelta(seconds=1))
    assert not m.has_access_at(m.removal_effective_date)


@pytest.fixture
def roles(stack, member):
    org_id = stack.organizations.add()
    return SimpleNamespace(
        org_id=org_id,
        admin=member(org_id, "admin@x.test", Role.ADMIN),
        other_admin=member(org_id, "admin2@x.test", Role.ADMIN),
        manager=member(org_id, "mgr@x.test", Role.MANAGER),
        employee=member(org_id, "emp@x.test", Role.EMPLOYEE),
    )


def test_manager_can_promote_employee_to_manager(stack, roles):
    updated = stack.organization_service.change_role(
        organization_id=roles.org_id, requester_id=roles.manager, user_id=roles.employee, role=Role.MANAGER
    )
    assert updated.role == Role.MANAGER


@pytest.mark.parametrize(
    "requester, target, role, error, message",
    [
        ("employee", "manager", Role.EMPLOYEE, AuthorizationError, "permission to change member roles"),
        ("admin", "admin", Role.EMPLOYEE, ValidationError, "your own role"),
        ("manager", "employee", Role.ADMIN, AuthorizationError, "promote members to admin"),
        ("manager", "other_admin", Role.EMPLOYEE, AuthorizationError, "role of other administrators"),
    ],
)
def test_change_role_rules(stack, roles, requester, target, role, error, message):
    with pytest.raises(error, match=message):
        stack.organization_service.change_role(
            organization_id=roles.org_id,
            requester_id=getattr(roles, requester),
            user_id=getattr(roles, target),
            role=role,
        )


def test_change_role_unknown_member(stack, roles):
    with pytest.raises(NotFoundError):
        stack.organization_service.change_role(
            organization_id=roles.org_id, requester_id=roles.admin, user_id=999, role=Role.MANAGER
        )
