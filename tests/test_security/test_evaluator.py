"""Tests for AccessEvaluator decisions (no database)."""
from __future__ import annotations

import pytest

from app.security.context import Action, Principal, ProgramScope
from app.security.evaluator import AccessEvaluator, get_access_evaluator

ACME_PROGRAM = ProgramScope(program_id="p-acme", company_id="acme")
ORPHAN_PROGRAM = ProgramScope(program_id="p-orphan", company_id=None)


@pytest.fixture
def evaluator() -> AccessEvaluator:
    return get_access_evaluator()


def _member(role: str, company_id: str | None = "acme", **kwargs) -> Principal:
    return Principal(user_id=f"u-{role}", email=f"{role}@x.test", company_id=company_id, memberships={"p-acme": role}, **kwargs)


def test_super_admin_is_always_allowed(evaluator):
    root = Principal(user_id="root", email="root@x.test", is_super_admin=True)
    for action in Action:
        assert evaluator.can_access(root, ACME_PROGRAM, action)
        assert evaluator.can_access(root, ORPHAN_PROGRAM, action)


@pytest.mark.parametrize(
    "role, allowed",
    [
        ("ReadOnly", {"read"}),
        ("Respond", {"read", "respond"}),
        ("Edit", {"read", "respond", "write"}),
        ("Admin", {"read", "respond", "write", "manage_members", "view_history"}),
    ],
)
def test_membership_roles(evaluator, role, allowed):
    # Outside the owning company so only the membership counts.
    principal = _member(role, company_id="elsewhere")
    granted = {a.value for a in Action if evaluator.can_access(principal, ACME_PROGRAM, a)}
    assert granted == allowed


def test_company_match_grants_read_only(evaluator):
    colleague = Principal(user_id="carl", email="carl@x.test", company_id="acme")
    assert evaluator.can_access(colleague, ACME_PROGRAM, Action.READ)
    assert not evaluator.can_access(colleague, ACME_PROGRAM, Action.WRITE)
    assert not evaluator.can_access(colleague, ACME_PROGRAM, Action.VIEW_HISTORY)


def test_company_admin_gets_company_scoped_writes_without_membership(evaluator):
    admin = Principal(user_id="ada", email="ada@x.test", company_id="acme", is_company_admin=True)
    for action in Action:
        assert evaluator.can_access(admin, ACME_PROGRAM, action)


def test_other_tenant_is_denied_everything(evaluator):
    outsider = Principal(user_id="bob", email="bob@x.test", company_id="blue", is_company_admin=True)
    assert not any(evaluator.can_access(outsider, ACME_PROGRAM, a) for a in Action)


def test_no_company_no_membership_is_denied(evaluator):
    nobody = Principal(user_id="nina", email="nina@x.test")
    assert not any(evaluator.can_access(nobody, ORPHAN_PROGRAM, a) for a in Action)
    assert not any(evaluator.can_access(nobody, ACME_PROGRAM, a) for a in Action)


def test_inactive_principal_is_denied(evaluator):
    principal = _member("Admin", is_active=False)
    assert not evaluator.can_access(principal, ACME_PROGRAM, Action.READ)


def test_membership_and_company_grants_combine(evaluator):
    # Respond member who is also an acme company admin gets the union.
    principal = _member("Respond", is_company_admin=True)
    assert evaluator.can_access(principal, ACME_PROGRAM, Action.MANAGE_COMPANY)
    assert evaluator.can_access(principal, ACME_PROGRAM, Action.RESPOND)


def test_self_access_on_user_records(evaluator):
    rita = Principal(user_id="rita", email="rita@x.test", company_id="acme")
    assert evaluator.can_access_user(rita, "rita", "acme", Action.READ)
    assert evaluator.can_access_user(rita, "rita", "acme", Action.WRITE)
    assert not evaluator.can_access_user(rita, "rita", "acme", Action.MANAGE_COMPANY)
    assert not evaluator.can_access_user(rita, "rita", "acme", Action.VIEW_HISTORY)


def test_user_records_follow_company_grants(evaluator):
    carl = Principal(user_id="carl", email="carl@x.test", company_id="acme")
    ada = Principal(user_id="ada", email="ada@x.test", company_id="acme", is_company_admin=True)
    bob = Principal(user_id="bob", email="bob@x.test", company_id="blue", is_company_admin=True)

    assert evaluator.can_access_user(carl, "rita", "acme", Action.READ)
    assert not evaluator.can_access_user(carl, "rita", "acme", Action.WRITE)
    assert evaluator.can_access_user(ada, "rita", "acme", Action.MANAGE_COMPANY)
    assert evaluator.can_access_user(ada, "rita", "acme", Action.VIEW_HISTORY)
    assert not evaluator.can_access_user(bob, "rita", "acme", Action.READ)
    assert not evaluator.can_access_user(carl, "nina", None, Action.READ)
