"""
Session lifecycle tests (service layer, in-memory SQLite).
"""
from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from app.db.audit import unit_of_work
from app.errors import AuthorizationDenied, InvalidStateTransition, NotFound, ValidationError
from app.models.field import PetriObservation, Program, Submission
from app.models.history import HistoryEvent
from app.models.session import SessionStatus, SubmissionSession
from app.services import sessions
from app.services.observations import add_observation, complete_observation


def _create(db_session, world, principal, who="rita", **kwargs):
    return sessions.create_session(db_session, principal(who), world.site, world.program, {"temperature": 21.5}, **kwargs)


def _pending(db_session, submission_id):
    return db_session.scalars(
        select(PetriObservation).where(PetriObservation.submission_id == submission_id, PetriObservation.image_url.is_(None))
    ).all()


def test_create_with_templates_starts_working(db_session, world, principal):
    result = _create(db_session, world, principal, petri_templates=[{"code": "P1"}, {"code": "P2"}])

    session = result["session"]
    assert session.status == SessionStatus.WORKING
    assert session.percentage_complete == 0
    assert result["session_id"] == session.id
    assert len(_pending(db_session, result["submission_id"])) == 2


def test_create_without_templates_opens_then_works_after_first_completion(db_session, world, principal):
    result = _create(db_session, world, principal)
    session = result["session"]
    assert session.status == SessionStatus.OPENED
    assert session.percentage_complete == 0

    rita = principal("rita")
    observation = add_observation(db_session, rita, result["submission_id"], "petri", {"code": "P1"})
    assert session.status == SessionStatus.OPENED
    assert session.percentage_complete == 0

    complete_observation(db_session, rita, "petri", observation.id, "blob://petri/1.jpg")
    assert session.status == SessionStatus.WORKING
    assert session.percentage_complete == 100
    assert session.valid_petris_logged == 1


def test_malformed_templates_degrade_to_none(db_session, world, principal, caplog):
    result = _create(db_session, world, principal, petri_templates="not-a-list", gasifier_templates=[{"colour": "red"}])

    assert result["session"].status == SessionStatus.OPENED
    assert _pending(db_session, result["submission_id"]) == []
    assert "malformed" in caplog.text


def test_global_submission_ids_are_sequential(db_session, world, principal):
    first = _create(db_session, world, principal)
    second = _create(db_session, world, principal)

    ids = [db_session.get(Submission, r["submission_id"]).global_submission_id for r in (first, second)]
    assert ids == [1_000_000, 1_000_001]


def test_create_updates_program_counters(db_session, world, principal):
    _create(db_session, world, principal)
    program = db_session.get(Program, world.program)
    assert program.total_submissions == 1
    assert program.total_sites == 2


def test_create_requires_respond(db_session, world, principal):
    with pytest.raises(AuthorizationDenied):
        _create(db_session, world, principal, who="otto")
    with pytest.raises(NotFound):
        _create(db_session, world, principal, who="bob")


def test_create_rejects_site_from_other_program(db_session, world, principal):
    with pytest.raises(NotFound):
        sessions.create_session(db_session, principal("rita"), world.blue_site, world.program)


def test_second_session_for_submission_is_rejected(db_session, world, principal):
    result = _create(db_session, world, principal)
    submission = db_session.get(Submission, result["submission_id"])
    db_session.expire_all()

    with pytest.raises(InvalidStateTransition) as exc_info:
        with unit_of_work(db_session, None):
            sessions._open_session(db_session, submission, principal("rita"), SessionStatus.OPENED)
    assert result["submission_id"] in exc_info.value.reason

    count = db_session.scalar(
        select(func.count(SubmissionSession.id)).where(SubmissionSession.submission_id == result["submission_id"])
    )
    assert count == 1


def test_share_then_escalate_is_monotonic(db_session, world, principal):
    session = _create(db_session, world, principal)["session"]
    rita = principal("rita")

    sessions.share_session(db_session, rita, session.id, [world.users["sam"]])
    assert session.status == SessionStatus.SHARED

    sessions.share_session(db_session, rita, session.id, [world.users["pete"]])
    assert session.status == SessionStatus.ESCALATED

    sessions.share_session(db_session, rita, session.id, [world.users["otto"], world.users["sam"]])
    assert session.status == SessionStatus.ESCALATED
    assert session.shared_user_ids == [world.users["sam"], world.users["pete"], world.users["otto"]]


def test_share_with_company_admin_escalates(db_session, world, principal):
    session = _create(db_session, world, principal)["session"]
    sessions.share_session(db_session, principal("rita"), session.id, [world.users["ada"]])
    assert session.status == SessionStatus.ESCALATED


def test_share_intent_escalate(db_session, world, principal):
    session = _create(db_session, world, principal)["session"]
    sessions.share_session(db_session, principal("rita"), session.id, [world.users["sam"]], intent="escalate")
    assert session.status == SessionStatus.ESCALATED


def test_shared_user_may_share_further(db_session, world, principal):
    session = _create(db_session, world, principal)["session"]
    sessions.share_session(db_session, principal("rita"), session.id, [world.users["sam"]])
    sessions.share_session(db_session, principal("sam"), session.id, [world.users["eddie"]])
    assert world.users["eddie"] in session.shared_user_ids


def test_share_guards(db_session, world, principal):
    session = _create(db_session, world, principal)["session"]
    rita = principal("rita")

    with pytest.raises(AuthorizationDenied):
        sessions.share_session(db_session, principal("otto"), session.id, [world.users["sam"]])
    with pytest.raises(ValidationError):
        sessions.share_session(db_session, rita, session.id, [world.users["bob"]])
    with pytest.raises(ValidationError):
        sessions.share_session(db_session, rita, session.id, ["no-such-user"])
    with pytest.raises(ValidationError):
        sessions.share_session(db_session, rita, session.id, [world.users["sam"]], intent="handoff")
    with pytest.raises(NotFound):
        sessions.share_session(db_session, principal("bob"), session.id, [world.users["sam"]])

    assert session.status == SessionStatus.OPENED
    assert session.shared_user_ids == []


def test_escalate_picks_program_admin(db_session, world, principal):
    session = _create(db_session, world, principal)["session"]
    sessions.escalate_session(db_session, principal("rita"), session.id)

    assert session.status == SessionStatus.ESCALATED
    assert session.shared_user_ids == [world.users["pete"]]


def test_complete_stamps_completion(db_session, world, principal):
    session = _create(db_session, world, principal, petri_templates=[{"code": "P1"}])["session"]
    sessions.complete_session(db_session, principal("rita"), session.id)

    assert session.status == SessionStatus.COMPLETED
    assert session.percentage_complete == 100
    assert session.completed_by_user_id == world.users["rita"]
    assert session.completion_time is not None


def test_complete_requires_participant(db_session, world, principal):
    session = _create(db_session, world, principal)["session"]
    with pytest.raises(AuthorizationDenied):
        sessions.complete_session(db_session, principal("sam"), session.id)


def test_non_participant_is_denied_before_state_is_revealed(db_session, world, principal):
    result = _create(db_session, world, principal)
    session_id = result["session_id"]
    sessions.complete_session(db_session, principal("rita"), session_id)
    sam = principal("sam")

    attempts = [
        lambda: sessions.complete_session(db_session, sam, session_id),
        lambda: sessions.cancel_session(db_session, sam, session_id),
        lambda: sessions.share_session(db_session, sam, session_id, [world.users["eddie"]]),
        lambda: sessions.escalate_session(db_session, sam, session_id),
    ]
    for attempt in attempts:
        with pytest.raises(AuthorizationDenied) as exc_info:
            attempt()
        assert "Completed" not in exc_info.value.message


def test_cancel_deletes_only_pending_observations(db_session, world, principal):
    result = _create(db_session, world, principal, petri_templates=[{"code": "A"}, {"code": "B"}, {"code": "C"}])
    rita = principal("rita")
    first = _pending(db_session, result["submission_id"])[0]
    complete_observation(db_session, rita, "petri", first.id, "blob://a.jpg")

    outcome = sessions.cancel_session(db_session, rita, result["session_id"])

    assert outcome["deleted_petri_count"] == 2
    assert outcome["deleted_gasifier_count"] == 0
    assert outcome["session"].status == SessionStatus.CANCELLED
    remaining = db_session.scalars(
        select(PetriObservation).where(PetriObservation.submission_id == result["submission_id"])
    ).all()
    assert [o.id for o in remaining] == [first.id]


def test_terminal_states_accept_no_transition(db_session, world, principal):
    result = _create(db_session, world, principal)
    session_id = result["session_id"]
    rita = principal("rita")
    sessions.complete_session(db_session, rita, session_id)

    attempts = [
        lambda: sessions.complete_session(db_session, rita, session_id),
        lambda: sessions.cancel_session(db_session, rita, session_id),
        lambda: sessions.share_session(db_session, rita, session_id, [world.users["sam"]]),
        lambda: sessions.escalate_session(db_session, rita, session_id),
        lambda: sessions.touch_session(db_session, rita, session_id),
        lambda: add_observation(db_session, rita, result["submission_id"], "petri", {}),
    ]
    for attempt in attempts:
        with pytest.raises(InvalidStateTransition) as exc_info:
            attempt()
        assert exc_info.value.current_state == "Completed"
        assert exc_info.value.to_dict()["kind"] == "invalid_state_transition"


def test_touch_requires_respond(db_session, world, principal):
    session = _create(db_session, world, principal)["session"]
    before = session.last_activity_time

    touched = sessions.touch_session(db_session, principal("sam"), session.id)
    assert touched.last_activity_time >= before

    with pytest.raises(AuthorizationDenied):
        sessions.touch_session(db_session, principal("otto"), session.id)


def test_get_session_hides_other_tenants(db_session, world, principal):
    session = _create(db_session, world, principal)["session"]

    assert sessions.get_session(db_session, principal("otto"), session.id).id == session.id
    with pytest.raises(NotFound):
        sessions.get_session(db_session, principal("bob"), session.id)
    with pytest.raises(NotFound):
        sessions.get_session(db_session, principal("rita"), "no-such-session")


def test_list_active_sessions_visibility(db_session, world, principal):
    mine = _create(db_session, world, principal)["session"]
    done = _create(db_session, world, principal)["session"]
    sessions.complete_session(db_session, principal("rita"), done.id)

    def ids(who):
        return [s.id for s in sessions.list_active_sessions(db_session, principal(who))]

    assert ids("rita") == [mine.id]
    assert ids("pete") == [mine.id]
    assert ids("ada") == [mine.id]
    assert ids("otto") == []
    assert ids("bob") == []

    sessions.share_session(db_session, principal("rita"), mine.id, [world.users["otto"]])
    assert ids("otto") == [mine.id]


def _age(db_session, session_id, percentage):
    session = db_session.get(SubmissionSession, session_id)
    session.session_start_time = datetime.utcnow() - timedelta(days=1)
    session.percentage_complete = percentage
    db_session.commit()


def test_sweep_expires_prior_day_sessions(db_session, world, principal):
    full = _create(db_session, world, principal)["session_id"]
    partial = _create(db_session, world, principal)["session_id"]
    today = _create(db_session, world, principal)["session_id"]
    _age(db_session, full, 100.0)
    _age(db_session, partial, 40.0)

    assert sessions.sweep_expired_sessions(db_session) == {"expired_complete": 1, "expired_incomplete": 1}

    assert db_session.get(SubmissionSession, full).status == SessionStatus.EXPIRED_COMPLETE
    assert db_session.get(SubmissionSession, partial).status == SessionStatus.EXPIRED_INCOMPLETE
    assert db_session.get(SubmissionSession, today).status == SessionStatus.OPENED


def test_sweep_is_idempotent_and_unlogged(db_session, world, principal):
    session_id = _create(db_session, world, principal)["session_id"]
    _age(db_session, session_id, 40.0)
    events_before = db_session.scalar(select(func.count(HistoryEvent.id)))

    first = sessions.sweep_expired_sessions(db_session)
    second = sessions.sweep_expired_sessions(db_session)

    assert first == {"expired_complete": 0, "expired_incomplete": 1}
    assert second == {"expired_complete": 0, "expired_incomplete": 0}
    assert db_session.scalar(select(func.count(HistoryEvent.id))) == events_before


def test_sweep_skips_sessions_completed_before_it_runs(db_session, world, principal):
    session_id = _create(db_session, world, principal)["session_id"]
    _age(db_session, session_id, 40.0)
    sessions.complete_session(db_session, principal("rita"), session_id)

    assert sessions.sweep_expired_sessions(db_session) == {"expired_complete": 0, "expired_incomplete": 0}
    assert db_session.get(SubmissionSession, session_id).status == SessionStatus.COMPLETED


def test_sweep_uses_start_of_day_boundary(db_session, world, principal):
    session_id = _create(db_session, world, principal)["session_id"]
    session = db_session.get(SubmissionSession, session_id)
    session.session_start_time = datetime(2026, 3, 10, 23, 30)
    db_session.commit()

    same_day = datetime(2026, 3, 10, 23, 59)
    assert sessions.sweep_expired_sessions(db_session, now=same_day) == {"expired_complete": 0, "expired_incomplete": 0}

    next_day = datetime(2026, 3, 11, 0, 1)
    assert sessions.sweep_expired_sessions(db_session, now=next_day) == {"expired_complete": 0, "expired_incomplete": 1}
