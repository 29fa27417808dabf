"""
History ledger write path.

Every insert/update/delete of a model declaring `__audit__` appends one
HistoryEvent row in the same transaction as the change:

- before_flush: prior images of dirty/deleted objects, read with a Core SELECT
  on the flush connection (so expired attributes never lose the "before" state)
- after_flush: event rows built from prior/new images and inserted with Core on
  the same connection

Nothing is written when no AuditActor is attached to the session; system work
(the expiry sweep, maintenance jobs) is unattributed.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Generator
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import event, insert, select
from sqlalchemy.orm import Session

from app.db.base import AuditSpec
from app.models.history import HistoryEvent, HistoryEventType
from app.models.session import SessionStatus
from app.security.context import AuditActor

logger = logging.getLogger(__name__)

AUDIT_ACTOR_KEY = "audit_actor"
_PRIOR_IMAGES_KEY = "audit_prior_images"


@contextmanager
def unit_of_work(db: Session, actor: AuditActor | None) -> Generator[Session, None, None]:
    """
    One transaction: commit on success, roll back and re-raise on any error.

    `actor` is attached for the duration so the flush listeners can attribute
    history rows; pass None for system work.
    """

    previous = db.info.get(AUDIT_ACTOR_KEY)
    db.info[AUDIT_ACTOR_KEY] = actor
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.info[AUDIT_ACTOR_KEY] = previous


def _jsonable(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _spec_for(obj: object) -> AuditSpec | None:
    return getattr(type(obj), "__audit__", None)


def _current_image(obj: object, spec: AuditSpec) -> dict[str, Any]:
    return {name: _jsonable(getattr(obj, name)) for name in spec.fields}


def _load_prior_image(session: Session, obj: Any, spec: AuditSpec) -> dict[str, Any] | None:
    table = type(obj).__table__
    columns = [table.c[name] for name in spec.fields]
    row = session.connection().execute(select(*columns).where(table.c.id == obj.id)).mappings().first()
    if row is None:
        return None
    return {name: _jsonable(row[name]) for name in spec.fields}


def _event_type(obj: Any, spec: AuditSpec, operation: str, old: dict | None, new: dict | None) -> str:
    if operation == "update" and old is not None and new is not None:
        if spec.object_type == "submission_session":
            if new.get("status") == SessionStatus.COMPLETED.value and old.get("status") != SessionStatus.COMPLETED.value:
                return HistoryEventType.SESSION_COMPLETION.value
        elif spec.object_type == "user":
            if old.get("is_active") and not new.get("is_active"):
                return HistoryEventType.USER_DEACTIVATED.value
            if not old.get("is_active") and new.get("is_active"):
                return HistoryEventType.USER_REACTIVATED.value
            if old.get("is_company_admin") != new.get("is_company_admin"):
                return HistoryEventType.USER_ROLE_CHANGED.value
    return spec.event_for(operation)


def _ancestry(obj: Any, spec: AuditSpec, image: dict[str, Any]) -> tuple[str | None, str | None]:
    if spec.object_type == "pilot_program":
        return obj.id, None
    program_id = image["program_id"] if "program_id" in image else getattr(obj, "program_id", None)
    if spec.object_type == "site":
        return program_id, obj.id
    site_id = image["site_id"] if "site_id" in image else getattr(obj, "site_id", None)
    return program_id, site_id


def _subject_user(obj: Any, spec: AuditSpec) -> str | None:
    if spec.object_type == "user":
        return obj.id
    return getattr(obj, "user_id", None)


def _build_row(
    obj: Any,
    spec: AuditSpec,
    operation: str,
    old: dict[str, Any] | None,
    new: dict[str, Any] | None,
    actor: AuditActor,
    now: datetime,
) -> dict[str, Any]:
    program_id, site_id = _ancestry(obj, spec, new if new is not None else (old or {}))
    return {
        "event_timestamp": now,
        "event_type": _event_type(obj, spec, operation, old, new),
        "object_type": spec.object_type,
        "object_id": obj.id,
        "program_id": program_id,
        "site_id": site_id,
        "subject_user_id": _subject_user(obj, spec),
        "actor_user_id": actor.user_id,
        "actor_email": actor.email,
        "actor_company": actor.company_name,
        "actor_role": actor.role_for(program_id),
        "old_data": old,
        "new_data": new,
        "ip_address": actor.ip_address,
        "user_agent": actor.user_agent,
    }


@event.listens_for(Session, "before_flush")
def _capture_prior_images(session: Session, flush_context, instances) -> None:
    session.info.pop(_PRIOR_IMAGES_KEY, None)
    if session.info.get(AUDIT_ACTOR_KEY) is None:
        return

    prior: dict[int, dict[str, Any] | None] = {}
    for obj in list(session.dirty) + list(session.deleted):
        spec = _spec_for(obj)
        if spec is None or id(obj) in prior:
            continue
        prior[id(obj)] = _load_prior_image(session, obj, spec)
    session.info[_PRIOR_IMAGES_KEY] = prior


@event.listens_for(Session, "after_flush")
def _write_history(session: Session, flush_context) -> None:
    actor: AuditActor | None = session.info.get(AUDIT_ACTOR_KEY)
    prior: dict[int, dict[str, Any] | None] = session.info.pop(_PRIOR_IMAGES_KEY, None) or {}
    if actor is None:
        return

    now = datetime.utcnow()
    rows: list[dict[str, Any]] = []
    try:
        for obj in session.new:
            spec = _spec_for(obj)
            if spec is not None:
                rows.append(_build_row(obj, spec, "insert", None, _current_image(obj, spec), actor, now))

        for obj in session.dirty:
            spec = _spec_for(obj)
            if spec is None or id(obj) not in prior:
                continue
            old = prior[id(obj)]
            new = _current_image(obj, spec)
            if old == new:
                continue
            rows.append(_build_row(obj, spec, "update", old, new, actor, now))

        for obj in session.deleted:
            spec = _spec_for(obj)
            if spec is not None:
                old = prior.get(id(obj))
                rows.append(_build_row(obj, spec, "delete", old, None, actor, now))

        if rows:
            session.connection().execute(insert(HistoryEvent.__table__), rows)
            logger.debug("history: wrote %d event(s) actor=%s", len(rows), actor.user_id)
    except Exception:
        logger.exception("history: failed to write %d event(s) actor=%s", len(rows), actor.user_id)
        raise
