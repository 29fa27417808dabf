"""
HTTP surface: authentication, error rendering and a few end-to-end flows.

Runs the real app against the per-test in-memory database (get_db overridden);
the lifespan is not started, so the access policy is attached by hand.
"""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select

from app.db.session import get_db
from app.main import create_app
from app.models.history import HistoryEvent
from app.security.evaluator import get_access_evaluator


@pytest.fixture
def client(session_factory, world):
    app = create_app()
    app.state.access_policy = get_access_evaluator().policy

    def _db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _db
    return TestClient(app)


@pytest.fixture
def auth(world):
    def _headers(name: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {world.users[name]}"}

    return _headers


def _open_session(client, auth, world, who="rita", **extra):
    body = {"site_id": world.site, "program_id": world.program, **extra}
    resp = client.post("/sessions", json=body, headers=auth(who))
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_health_is_public(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_authentication(client, auth):
    assert client.get("/me").status_code == 401
    assert client.get("/me", headers={"Authorization": "Token abc"}).status_code == 400
    assert client.get("/me", headers={"Authorization": "Bearer nobody"}).status_code == 401

    resp = client.get("/me", headers=auth("rita"))
    assert resp.status_code == 200
    assert resp.json()["email"] == "rita@acme.test"


def test_deactivated_user_is_rejected(client, auth, world):
    resp = client.post(f"/users/{world.users['rita']}/deactivate", headers=auth("ada"))
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False

    assert client.get("/me", headers=auth("rita")).status_code == 401


def test_session_lifecycle_over_http(client, auth, world):
    created = _open_session(client, auth, world, petri_templates=[{"code": "P1"}, {"code": "P2"}])
    assert created["session"]["status"] == "Working"
    assert created["session"]["percentage_complete"] == 0
    session_id = created["session_id"]

    resp = client.post(f"/sessions/{session_id}/share", json={"user_ids": [world.users["pete"]]}, headers=auth("rita"))
    assert resp.status_code == 200
    assert resp.json()["status"] == "Escalated"

    resp = client.post(f"/sessions/{session_id}/complete", headers=auth("pete"))
    assert resp.status_code == 200
    assert resp.json()["status"] == "Completed"
    assert resp.json()["completed_by_user_id"] == world.users["pete"]

    resp = client.post(f"/sessions/{session_id}/complete", headers=auth("rita"))
    assert resp.status_code == 409
    assert resp.json()["kind"] == "invalid_state_transition"
    assert resp.json()["current_state"] == "Completed"


def test_cancel_over_http(client, auth, world):
    created = _open_session(client, auth, world, gasifier_templates=[{"code": "G1"}])
    resp = client.post(f"/sessions/{created['session_id']}/cancel", headers=auth("rita"))

    assert resp.status_code == 200
    body = resp.json()
    assert body["session"]["status"] == "Cancelled"
    assert body["deleted_gasifier_count"] == 1
    assert body["deleted_petri_count"] == 0


def test_observation_flow_over_http(client, auth, world):
    created = _open_session(client, auth, world)
    resp = client.post(
        f"/submissions/{created['submission_id']}/observations/petri",
        json={"code": "P9"},
        headers=auth("rita"),
    )
    assert resp.status_code == 201
    observation = resp.json()
    assert observation["is_complete"] is False

    resp = client.post(
        f"/observations/petri/{observation['id']}/complete",
        json={"image_url": "blob://p9.jpg"},
        headers=auth("rita"),
    )
    assert resp.status_code == 200
    assert resp.json()["is_complete"] is True

    session = client.get(f"/sessions/{created['session_id']}", headers=auth("rita")).json()
    assert session["status"] == "Working"
    assert session["percentage_complete"] == 100


def test_service_errors_are_rendered(client, auth, world):
    created = _open_session(client, auth, world)

    resp = client.get(f"/sessions/{created['session_id']}", headers=auth("bob"))
    assert resp.status_code == 404
    assert resp.json()["kind"] == "not_found"

    resp = client.post("/sessions", json={"site_id": world.site, "program_id": world.program}, headers=auth("otto"))
    assert resp.status_code == 403
    assert resp.json()["kind"] == "authorization_denied"

    resp = client.get(f"/programs/{world.program}/history", params={"limit": 0}, headers=auth("pete"))
    assert resp.status_code == 422
    assert resp.json()["kind"] == "validation_error"


def test_active_sessions(client, auth, world):
    created = _open_session(client, auth, world)

    assert [s["id"] for s in client.get("/sessions/active", headers=auth("rita")).json()] == [created["session_id"]]
    assert client.get("/sessions/active", headers=auth("otto")).json() == []


def test_program_access_endpoint(client, auth, world):
    resp = client.get(f"/programs/{world.program}/access", headers=auth("otto"))
    assert resp.json() == {
        "program_id": world.program,
        "can_read": True,
        "can_write": False,
        "can_manage_members": False,
    }

    resp = client.get(f"/programs/{world.program}/access", headers=auth("ada"))
    assert resp.json()["can_manage_members"] is True


def test_members_over_http(client, auth, world):
    resp = client.post(
        f"/programs/{world.program}/members",
        json={"user_id": world.users["carl"], "role": "Edit"},
        headers=auth("pete"),
    )
    assert resp.status_code == 201
    assert resp.json()["role"] == "Edit"

    resp = client.delete(f"/programs/{world.program}/members/{world.users['carl']}", headers=auth("pete"))
    assert resp.status_code == 204


def test_program_and_site_setup_over_http(client, auth, world):
    resp = client.post("/programs", json={"name": "Acme Trial", "start_date": "2020-01-01"}, headers=auth("carl"))
    assert resp.status_code == 201, resp.text
    program = resp.json()
    assert program["company_id"] == world.acme
    assert program["status"] == "active"

    body = {"name": "East", "timezone": "UTC", "petri_defaults": [{"code": "P1"}]}
    resp = client.post(f"/programs/{program['id']}/sites", json=body, headers=auth("carl"))
    assert resp.status_code == 201, resp.text
    site = resp.json()
    assert site["petri_defaults"] == [{"code": "P1"}]

    resp = client.put(
        f"/sites/{site['id']}/template-defaults",
        json={"petri_defaults": [{"code": "P1"}, {"code": "P2"}], "submission_defaults": {"weather": "Rain"}},
        headers=auth("carl"),
    )
    assert resp.status_code == 200
    assert resp.json()["submission_defaults"] == {"weather": "Rain"}

    resp = client.put(
        f"/sites/{site['id']}/template-defaults", json={"petri_defaults": [{"colour": "red"}]}, headers=auth("carl")
    )
    assert resp.status_code == 422
    assert resp.json()["kind"] == "validation_error"

    assert client.get(f"/sites/{site['id']}", headers=auth("bob")).status_code == 404
    resp = client.post(f"/programs/{world.program}/sites", json={"name": "West"}, headers=auth("rita"))
    assert resp.status_code == 403


def test_history_records_request_metadata(client, auth, world, db_session):
    _open_session(client, auth, world)

    resp = client.get(f"/programs/{world.program}/history", headers=auth("pete"))
    assert resp.status_code == 200
    events = resp.json()
    assert [e["event_type"] for e in events] == ["SessionCreation", "SubmissionCreation"]
    assert {e["actor_role"] for e in events} == {"Respond"}

    stored = db_session.scalars(select(HistoryEvent)).all()
    assert {e.ip_address for e in stored} == {"testclient"}
    assert {e.user_agent for e in stored} == {"testclient"}


def test_history_export(client, auth, world):
    _open_session(client, auth, world)

    resp = client.get(f"/programs/{world.program}/history/export", headers=auth("ada"))
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/csv")
    lines = resp.text.splitlines()
    assert lines[0].startswith("Timestamp,Event Type,Object Type,Object ID,Global ID")
    assert len(lines) == 3
    assert all(",1000000," in line for line in lines[1:])


def test_user_history_filters_over_http(client, auth, world):
    _open_session(client, auth, world)
    user_url = f"/users/{world.users['rita']}/history"

    resp = client.get(user_url, params={"event_type": "SessionCreation"}, headers=auth("ada"))
    assert resp.status_code == 200
    assert [e["event_type"] for e in resp.json()] == ["SessionCreation"]

    resp = client.get(f"{user_url}/export", params={"object_type": "submission"}, headers=auth("ada"))
    assert resp.status_code == 200
    assert len(resp.text.splitlines()) == 2


def test_admin_routes_require_super_admin(client, auth):
    resp = client.post("/admin/sessions/sweep", headers=auth("rita"))
    assert resp.status_code == 403
    assert resp.json()["kind"] == "authorization_denied"

    resp = client.post("/admin/sessions/sweep", headers=auth("root"))
    assert resp.status_code == 200
    assert resp.json() == {"expired_complete": 0, "expired_incomplete": 0}

    resp = client.post("/admin/maintenance/recompute-counters", headers=auth("root"))
    assert resp.status_code == 200
    assert resp.json() == {"programs_changed": 2}
