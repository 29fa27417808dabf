"""
Tests for bearer-token parsing and user loading (ORM).
"""
from __future__ import annotations

import pytest
from fastapi import HTTPException
from starlette.requests import Request

from app.identity import IdentityClaims
from app.models.security import User
from app.security.auth import extract_bearer_token, load_user
from app.security.evaluator import get_access_evaluator


def _request(headers: dict[str, str]) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/me",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
    }
    return Request(scope)


@pytest.fixture
def policy():
    return get_access_evaluator().policy


def test_extract_bearer_token(policy):
    assert extract_bearer_token(_request({"Authorization": "Bearer abc "}), policy) == "abc"
    assert extract_bearer_token(_request({}), policy) is None


@pytest.mark.parametrize("value", ["Token abc", "Bearer ", "bearer abc"])
def test_extract_bearer_token_rejects_bad_format(policy, value):
    with pytest.raises(HTTPException) as exc_info:
        extract_bearer_token(_request({"Authorization": value}), policy)
    assert exc_info.value.status_code == 400


def test_load_user_with_company_and_memberships(db_session, world):
    loaded = load_user(db_session, IdentityClaims(subject=world.users["pete"]))

    assert loaded.email == "pete@acme.test"
    assert loaded.company is not None
    assert loaded.company.name == "Acme Growers"
    assert [m.program_id for m in loaded.memberships] == [world.program]


def test_load_user_falls_back_to_email(db_session, world):
    loaded = load_user(db_session, IdentityClaims(subject="idp-opaque-id", email="rita@acme.test"))
    assert loaded.id == world.users["rita"]


def test_load_user_raises_when_not_found(db_session, world):
    with pytest.raises(HTTPException) as exc_info:
        load_user(db_session, IdentityClaims(subject="nobody"))
    assert exc_info.value.status_code == 401


def test_load_user_raises_when_inactive(db_session, world):
    user = db_session.get(User, world.users["otto"])
    user.is_active = False
    db_session.commit()

    with pytest.raises(HTTPException) as exc_info:
        load_user(db_session, IdentityClaims(subject=world.users["otto"]))
    assert exc_info.value.status_code == 401
