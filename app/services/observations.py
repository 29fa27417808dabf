from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.audit import unit_of_work
from app.errors import InvalidStateTransition, NotFound, ValidationError
from app.models.field import OBSERVATION_MODELS, Submission
from app.models.session import SubmissionSession
from app.schemas.field import OBSERVATION_INPUTS, OBSERVATION_UPDATES
from app.security.context import Action, AuditActor, Principal, resolve_actor
from app.security.evaluator import ProgramAccess
from app.services.sessions import record_activity

logger = logging.getLogger(__name__)


def _model_for(kind: str):
    try:
        return OBSERVATION_MODELS[kind]
    except KeyError:
        raise ValidationError(f"Unknown observation kind {kind!r}; expected one of {sorted(OBSERVATION_MODELS)}") from None


def _session_for(db: Session, submission_id: str, action: str) -> SubmissionSession | None:
    session = db.scalar(select(SubmissionSession).where(SubmissionSession.submission_id == submission_id))
    if session is not None and session.is_terminal:
        raise InvalidStateTransition(action, session.status.value, "session is in a terminal state")
    return session


def _validated(schema, data: dict[str, Any] | None) -> dict[str, Any]:
    try:
        return schema.model_validate(data or {}).model_dump(exclude_unset=True)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid observation data: {exc.error_count()} error(s)") from exc


def _load_observation(db: Session, principal: Principal, kind: str, observation_id: str):
    model = _model_for(kind)
    observation = db.get(model, observation_id)
    if observation is None:
        raise NotFound(f"Observation {observation_id} not found")
    ProgramAccess(db).require(principal, observation.program_id, Action.RESPOND)
    return observation


def add_observation(
    db: Session,
    principal: Principal,
    submission_id: str,
    kind: str,
    data: dict[str, Any] | None = None,
    actor: AuditActor | None = None,
):
    """Add an observation to a submission; site/program are copied from the submission."""
    model = _model_for(kind)
    submission = db.get(Submission, submission_id)
    if submission is None:
        raise NotFound(f"Submission {submission_id} not found")
    ProgramAccess(db).require(principal, submission.program_id, Action.RESPOND)
    values = _validated(OBSERVATION_INPUTS[kind], data)
    session = _session_for(db, submission_id, "add_observation")

    with unit_of_work(db, resolve_actor(principal, actor)):
        observation = model(
            submission_id=submission.id,
            site_id=submission.site_id,
            program_id=submission.program_id,
            last_updated_by=principal.user_id,
            **values,
        )
        db.add(observation)
        db.flush()
        if session is not None:
            record_activity(db, session)

    logger.info("Observation added kind=%s id=%s submission=%s", kind, observation.id, submission_id)
    return observation


def complete_observation(
    db: Session,
    principal: Principal,
    kind: str,
    observation_id: str,
    image_url: str,
    actor: AuditActor | None = None,
):
    """Attach the media reference (pending -> complete) and refresh session progress."""
    if not image_url or not image_url.strip():
        raise ValidationError("image_url must not be empty")
    observation = _load_observation(db, principal, kind, observation_id)
    session = _session_for(db, observation.submission_id, "complete_observation")

    with unit_of_work(db, resolve_actor(principal, actor)):
        observation.image_url = image_url.strip()
        observation.last_updated_by = principal.user_id
        db.flush()
        if session is not None:
            record_activity(db, session)
    return observation


def update_observation(
    db: Session,
    principal: Principal,
    kind: str,
    observation_id: str,
    changes: dict[str, Any] | None = None,
    actor: AuditActor | None = None,
):
    observation = _load_observation(db, principal, kind, observation_id)
    values = _validated(OBSERVATION_UPDATES[kind], changes)
    session = _session_for(db, observation.submission_id, "update_observation")

    with unit_of_work(db, resolve_actor(principal, actor)):
        for key, value in values.items():
            setattr(observation, key, value)
        observation.last_updated_by = principal.user_id
        db.flush()
        if session is not None:
            record_activity(db, session)
    return observation
