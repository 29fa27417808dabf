"""
Session lifecycle: one SubmissionSession per Submission.

    Opened -> Working -> Shared -> Escalated
       \________\_________\__________\____ Completed | Cancelled
                                           Expired-Complete | Expired-Incomplete (sweep)

Terminal states accept no further transition. Every caller-driven operation
takes an explicit Principal, is authorized before anything is changed, runs in
one unit of work (mutation + history rows commit together) and returns the
resulting session.
"""

from __future__ import annotations

import logging
from datetime import datetime, time, timezone
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from app.db.audit import unit_of_work
from app.db.filters import readable_programs_clause
from app.errors import AuthorizationDenied, InvalidStateTransition, NotFound, ValidationError
from app.models.field import (
    GLOBAL_SUBMISSION_ID_START,
    GasifierObservation,
    PetriObservation,
    Program,
    Site,
    Submission,
    global_submission_id_seq,
)
from app.models.security import ProgramMembership, ProgramRole, User
from app.models.session import ACTIVE_STATUSES, SessionStatus, SubmissionSession
from app.schemas.field import GasifierTemplate, PetriTemplate, parse_templates
from app.security.context import Action, AuditActor, Principal, resolve_actor
from app.security.evaluator import ProgramAccess
from app.services.maintenance import recompute_program_counters
from app.settings import get_settings

logger = logging.getLogger(__name__)

SHARE_INTENTS = ("share", "escalate")


# ---- Lookups ------------------------------------------------------------------------


def _load_session(db: Session, session_id: str) -> SubmissionSession:
    session = db.get(SubmissionSession, session_id)
    if session is None:
        raise NotFound(f"Session {session_id} not found")
    return session


def _readable_session(db: Session, principal: Principal, session_id: str) -> tuple[SubmissionSession, ProgramAccess]:
    session = _load_session(db, session_id)
    access = ProgramAccess(db)
    if not access.can_read(principal, session.program_id):
        raise NotFound(f"Session {session_id} not found")
    return session, access


def _require_active(session: SubmissionSession, action: str) -> None:
    if session.is_terminal:
        raise InvalidStateTransition(action, session.status.value, "session is in a terminal state")


def _require_participant(session: SubmissionSession, principal: Principal, action: str) -> None:
    if not session.is_participant(principal.user_id):
        raise AuthorizationDenied(f"Only the opener or a shared user may {action} this session")


def _next_global_submission_id(db: Session) -> int:
    if db.get_bind().dialect.supports_sequences:
        return db.scalar(select(global_submission_id_seq.next_value()))
    current = db.scalar(select(func.max(Submission.global_submission_id)))
    return GLOBAL_SUBMISSION_ID_START if current is None else current + 1


# ---- Activity -----------------------------------------------------------------------


def record_activity(db: Session, session: SubmissionSession, now: datetime | None = None) -> SubmissionSession:
    """
    Recompute progress from the submission's observations.

    percentage_complete = completed / expected * 100 (0 when nothing is
    expected). The first completed observation moves Opened -> Working.
    """

    counts: dict[str, tuple[int, int]] = {}
    for kind, model in (("petri", PetriObservation), ("gasifier", GasifierObservation)):
        expected, completed = db.execute(
            select(func.count(model.id), func.count(model.image_url)).where(model.submission_id == session.submission_id)
        ).one()
        counts[kind] = (expected, completed)

    expected = counts["petri"][0] + counts["gasifier"][0]
    completed = counts["petri"][1] + counts["gasifier"][1]

    session.percentage_complete = round(completed / expected * 100, 2) if expected else 0.0
    session.valid_petris_logged = counts["petri"][1]
    session.valid_gasifiers_logged = counts["gasifier"][1]
    session.last_activity_time = now or datetime.utcnow()

    if session.status == SessionStatus.OPENED and completed > 0:
        session.status = SessionStatus.WORKING
    return session


def touch_session(
    db: Session,
    principal: Principal,
    session_id: str,
    actor: AuditActor | None = None,
) -> SubmissionSession:
    session, access = _readable_session(db, principal, session_id)
    if not access.allows(principal, session.program_id, Action.RESPOND):
        raise AuthorizationDenied(f"Not allowed to respond in program {session.program_id}")
    _require_active(session, "touch")

    with unit_of_work(db, resolve_actor(principal, actor)):
        record_activity(db, session)
    return session


# ---- Creation -----------------------------------------------------------------------


def _open_session(db: Session, submission: Submission, principal: Principal, status: SessionStatus) -> SubmissionSession:
    """Insert the session row; the UNIQUE(submission_id) constraint rejects a second one."""
    submission_id = submission.id
    now = datetime.utcnow()
    session = SubmissionSession(
        submission_id=submission_id,
        site_id=submission.site_id,
        program_id=submission.program_id,
        opened_by_user_id=principal.user_id,
        session_start_time=now,
        last_activity_time=now,
        status=status,
        shared_user_ids=[],
    )
    db.add(session)
    try:
        db.flush()
    except IntegrityError as exc:
        logger.info("Rejected second session for submission=%s", submission_id)
        raise InvalidStateTransition("create", None, f"a session already exists for submission {submission_id}") from exc
    return session


def create_session(
    db: Session,
    principal: Principal,
    site_id: str,
    program_id: str,
    fields: dict[str, Any] | None = None,
    petri_templates: Any = None,
    gasifier_templates: Any = None,
    actor: AuditActor | None = None,
) -> dict[str, Any]:
    """
    Create a Submission, its templated (pending) observations and its session.

    Template kinds the caller leaves as None fall back to the site's stored
    defaults (an explicit empty list means none). Caller fields override the
    site's submission_defaults key by key.

    Returns {"submission_id", "session_id", "session"}.
    """

    ProgramAccess(db).require(principal, program_id, Action.RESPOND)
    site = db.get(Site, site_id)
    if site is None or site.program_id != program_id:
        raise NotFound(f"Site {site_id} not found in program {program_id}")

    if petri_templates is None:
        petri_templates = site.petri_defaults
    if gasifier_templates is None:
        gasifier_templates = site.gasifier_defaults
    petris = parse_templates(PetriTemplate, petri_templates, "petri")
    gasifiers = parse_templates(GasifierTemplate, gasifier_templates, "gasifier")
    initial = SessionStatus.WORKING if (petris or gasifiers) else SessionStatus.OPENED

    with unit_of_work(db, resolve_actor(principal, actor)):
        submission = Submission(
            site_id=site.id,
            program_id=program_id,
            global_submission_id=_next_global_submission_id(db),
            created_by=principal.user_id,
            timezone=site.timezone,
            fields={**(site.submission_defaults or {}), **(fields or {})},
        )
        db.add(submission)
        db.flush()

        for template in petris:
            db.add(
                PetriObservation(
                    submission_id=submission.id,
                    site_id=site.id,
                    program_id=program_id,
                    last_updated_by=principal.user_id,
                    **template.model_dump(),
                )
            )
        for template in gasifiers:
            db.add(
                GasifierObservation(
                    submission_id=submission.id,
                    site_id=site.id,
                    program_id=program_id,
                    last_updated_by=principal.user_id,
                    **template.model_dump(),
                )
            )

        session = _open_session(db, submission, principal, initial)
        record_activity(db, session)
        recompute_program_counters(db, [program_id])

    logger.info(
        "Session created session=%s submission=%s global_id=%s status=%s petri=%d gasifier=%d",
        session.id,
        submission.id,
        submission.global_submission_id,
        session.status.value,
        len(petris),
        len(gasifiers),
    )
    return {"submission_id": submission.id, "session_id": session.id, "session": session}


# ---- Collaboration ------------------------------------------------------------------


def _is_escalation_target(user: User, program: Program) -> bool:
    if any(m.program_id == program.id and m.role == ProgramRole.ADMIN for m in user.memberships):
        return True
    return user.is_company_admin and program.company_id is not None and user.company_id == program.company_id


def share_session(
    db: Session,
    principal: Principal,
    session_id: str,
    user_ids: list[str],
    intent: str = "share",
    actor: AuditActor | None = None,
) -> SubmissionSession:
    """
    Union `user_ids` into the session's shared set.

    Resulting status: Escalated when already Escalated, when intent is
    "escalate", or when any target is a program Admin or a company admin of
    the owning company; otherwise Shared from Opened/Working; otherwise unchanged.
    """

    session, access = _readable_session(db, principal, session_id)
    _require_participant(session, principal, "share")
    _require_active(session, "share")

    if intent not in SHARE_INTENTS:
        raise ValidationError(f"Unknown share intent {intent!r}; expected one of {list(SHARE_INTENTS)}")
    wanted = list(dict.fromkeys(user_ids))
    if not wanted:
        raise ValidationError("user_ids must not be empty")

    targets = db.scalars(
        select(User).where(User.id.in_(wanted)).options(selectinload(User.memberships), selectinload(User.company))
    ).all()
    missing = set(wanted) - {u.id for u in targets}
    if missing:
        raise ValidationError(f"Unknown user(s): {sorted(missing)}")

    scope = access.scope(session.program_id)
    for target in targets:
        if not target.is_active or not access.evaluator.can_access(Principal.from_user(target), scope, Action.READ):
            raise ValidationError(f"User {target.id} cannot access program {session.program_id}")

    program = db.get(Program, session.program_id)
    escalate = (
        session.status == SessionStatus.ESCALATED
        or intent == "escalate"
        or any(_is_escalation_target(t, program) for t in targets)
    )

    with unit_of_work(db, resolve_actor(principal, actor)):
        existing = list(session.shared_user_ids or [])
        added = [uid for uid in wanted if uid not in existing]
        if added:
            session.shared_user_ids = existing + added

        if escalate:
            session.status = SessionStatus.ESCALATED
        elif session.status in (SessionStatus.OPENED, SessionStatus.WORKING):
            session.status = SessionStatus.SHARED
        session.last_activity_time = datetime.utcnow()

    logger.info(
        "Session shared session=%s by=%s added=%s status=%s",
        session.id,
        principal.user_id,
        added,
        session.status.value,
    )
    return session


def _find_escalation_reviewer(db: Session, program: Program) -> str | None:
    admin_id = db.scalar(
        select(ProgramMembership.user_id)
        .join(User, User.id == ProgramMembership.user_id)
        .where(
            ProgramMembership.program_id == program.id,
            ProgramMembership.role == ProgramRole.ADMIN,
            User.is_active.is_(True),
        )
        .order_by(ProgramMembership.created_at)
        .limit(1)
    )
    if admin_id is not None or program.company_id is None:
        return admin_id

    return db.scalar(
        select(User.id)
        .where(User.company_id == program.company_id, User.is_company_admin.is_(True), User.is_active.is_(True))
        .order_by(User.created_at)
        .limit(1)
    )


def escalate_session(
    db: Session,
    principal: Principal,
    session_id: str,
    actor: AuditActor | None = None,
) -> SubmissionSession:
    """Share with the program's admin (or else a company admin) as an escalation."""
    session, _ = _readable_session(db, principal, session_id)
    _require_participant(session, principal, "escalate")
    _require_active(session, "escalate")

    reviewer = _find_escalation_reviewer(db, db.get(Program, session.program_id))
    if reviewer is None:
        raise ValidationError(f"No program or company admin available to escalate program {session.program_id}")
    return share_session(db, principal, session_id, [reviewer], intent="escalate", actor=actor)


# ---- Terminal transitions -----------------------------------------------------------


def complete_session(
    db: Session,
    principal: Principal,
    session_id: str,
    actor: AuditActor | None = None,
) -> SubmissionSession:
    session, _ = _readable_session(db, principal, session_id)
    _require_participant(session, principal, "complete")
    _require_active(session, "complete")

    now = datetime.utcnow()
    with unit_of_work(db, resolve_actor(principal, actor)):
        session.status = SessionStatus.COMPLETED
        session.completion_time = now
        session.completed_by_user_id = principal.user_id
        session.percentage_complete = 100.0
        session.last_activity_time = now

    logger.info("Session completed session=%s by=%s", session.id, principal.user_id)
    return session


def cancel_session(
    db: Session,
    principal: Principal,
    session_id: str,
    actor: AuditActor | None = None,
) -> dict[str, Any]:
    """
    Cancel the session and delete its submission's pending observations.

    Completed observations are kept. Returns {"session", "deleted_petri_count",
    "deleted_gasifier_count"}.
    """

    session, _ = _readable_session(db, principal, session_id)
    _require_participant(session, principal, "cancel")
    _require_active(session, "cancel")

    deleted: dict[str, int] = {}
    with unit_of_work(db, resolve_actor(principal, actor)):
        for kind, model in (("petri", PetriObservation), ("gasifier", GasifierObservation)):
            pending = db.scalars(
                select(model).where(model.submission_id == session.submission_id, model.image_url.is_(None))
            ).all()
            for observation in pending:
                db.delete(observation)
            deleted[kind] = len(pending)

        session.status = SessionStatus.CANCELLED
        session.last_activity_time = datetime.utcnow()

    logger.info(
        "Session cancelled session=%s by=%s deleted_petri=%d deleted_gasifier=%d",
        session.id,
        principal.user_id,
        deleted["petri"],
        deleted["gasifier"],
    )
    return {
        "session": session,
        "deleted_petri_count": deleted["petri"],
        "deleted_gasifier_count": deleted["gasifier"],
    }


# ---- Reads --------------------------------------------------------------------------


def get_session(db: Session, principal: Principal, session_id: str) -> SubmissionSession:
    session, _ = _readable_session(db, principal, session_id)
    return session


def list_active_sessions(db: Session, principal: Principal) -> list[SubmissionSession]:
    """
    Non-terminal sessions the principal is involved in or supervises, newest first.

    Involved: opener or shared user. Supervises: program Admin, or company
    admin of the owning company.
    """

    rows = db.execute(
        select(SubmissionSession, Program.company_id)
        .join(Program, Program.id == SubmissionSession.program_id)
        .where(readable_programs_clause(principal), SubmissionSession.status.in_(list(ACTIVE_STATUSES)))
        .order_by(SubmissionSession.session_start_time.desc(), SubmissionSession.id)
    ).all()

    visible: list[SubmissionSession] = []
    for session, company_id in rows:
        supervises = (
            principal.is_super_admin
            or principal.role_in(session.program_id) == ProgramRole.ADMIN.value
            or (principal.is_company_admin and company_id is not None and principal.company_id == company_id)
        )
        if supervises or session.is_participant(principal.user_id):
            visible.append(session)
    return visible


# ---- Sweep --------------------------------------------------------------------------


def _start_of_day_utc(now: datetime, tz_name: str) -> datetime:
    """Midnight of `now`'s calendar day in tz_name, as naive UTC (storage format)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    tz = ZoneInfo(tz_name)
    local_midnight = datetime.combine(now.astimezone(tz).date(), time.min, tzinfo=tz)
    return local_midnight.astimezone(timezone.utc).replace(tzinfo=None)


def sweep_expired_sessions(db: Session, now: datetime | None = None) -> dict[str, int]:
    """
    Expire every non-terminal session whose start day has ended.

    100% complete -> Expired-Complete, anything else -> Expired-Incomplete.
    Both UPDATEs are conditional on a non-terminal status, so concurrent
    completions are skipped and a second run changes nothing. System operation:
    no actor, no history rows.
    """

    cutoff = _start_of_day_utc(now or datetime.now(timezone.utc), get_settings().session_timezone)
    stale = (
        SubmissionSession.status.in_(list(ACTIVE_STATUSES)),
        SubmissionSession.session_start_time < cutoff,
    )

    with unit_of_work(db, None):
        complete = db.execute(
            update(SubmissionSession)
            .where(*stale, SubmissionSession.percentage_complete >= 100)
            .values(status=SessionStatus.EXPIRED_COMPLETE)
            .execution_options(synchronize_session=False)
        )
        incomplete = db.execute(
            update(SubmissionSession)
            .where(*stale, SubmissionSession.percentage_complete < 100)
            .values(status=SessionStatus.EXPIRED_INCOMPLETE)
            .execution_options(synchronize_session=False)
        )
        result = {"expired_complete": complete.rowcount, "expired_incomplete": incomplete.rowcount}

    logger.info(
        "Session sweep cutoff=%s expired_complete=%d expired_incomplete=%d",
        cutoff.isoformat(),
        result["expired_complete"],
        result["expired_incomplete"],
    )
    return result
