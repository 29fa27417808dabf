"""
History ledger read path: filtered queries and CSV export.

All reads are newest first (event_timestamp, then id) with offset/limit
pagination; limit is capped at MAX_LIMIT.
"""

from __future__ import annotations

import csv
import io
import logging
from typing import Any, Iterable

from sqlalchemy import Select, or_, select
from sqlalchemy.orm import Session

from app.errors import AuthorizationDenied, NotFound, ValidationError
from app.models.field import Site, Submission
from app.models.history import HistoryEvent
from app.models.security import User
from app.schemas.history import HistoryFilters
from app.security.context import Action, Principal
from app.security.evaluator import ProgramAccess, get_access_evaluator

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000

# Fields shown in the Before/After State columns of an export, per object type.
SUMMARY_FIELDS: dict[str, tuple[str, ...]] = {
    "pilot_program": ("name", "status", "start_date", "end_date"),
    "site": ("name", "site_type", "timezone"),
    "submission": ("global_submission_id", "timezone", "notes"),
    "petri_observation": ("code", "plant_type", "fungicide_used", "placement", "image_url"),
    "gasifier_observation": ("code", "chemical_type", "measure", "anomaly", "placement_height", "image_url"),
    "submission_session": (
        "status",
        "percentage_complete",
        "valid_petris_logged",
        "valid_gasifiers_logged",
        "shared_user_ids",
    ),
    "program_user": ("user_id", "role"),
    "user": ("email", "full_name", "is_company_admin", "is_active"),
}

PROGRAM_EXPORT_HEADER = [
    "Timestamp",
    "Event Type",
    "Object Type",
    "Object ID",
    "Global ID",
    "User",
    "Before State",
    "After State",
]
USER_EXPORT_HEADER = [h for h in PROGRAM_EXPORT_HEADER if h != "Global ID"]


def _page(limit: int, offset: int) -> tuple[int, int]:
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    if offset < 0:
        raise ValidationError("offset must not be negative")
    return min(limit, MAX_LIMIT), offset


def _apply_filters(stmt: Select, filters: HistoryFilters) -> Select:
    if filters.site_id:
        stmt = stmt.where(HistoryEvent.site_id == filters.site_id)
    if filters.object_type:
        stmt = stmt.where(HistoryEvent.object_type == filters.object_type)
    if filters.event_type:
        stmt = stmt.where(HistoryEvent.event_type == filters.event_type)
    if filters.actor_user_id:
        stmt = stmt.where(HistoryEvent.actor_user_id == filters.actor_user_id)
    return stmt


def _newest_first(stmt: Select, limit: int, offset: int) -> Select:
    limit, offset = _page(limit, offset)
    return stmt.order_by(HistoryEvent.event_timestamp.desc(), HistoryEvent.id.desc()).offset(offset).limit(limit)


def query_history(
    db: Session,
    principal: Principal,
    program_id: str,
    filters: HistoryFilters | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[HistoryEvent]:
    """Events of one program. Requires view_history (program Admin or company admin)."""
    ProgramAccess(db).require(principal, program_id, Action.VIEW_HISTORY)
    filters = filters or HistoryFilters()

    if filters.site_id:
        site = db.get(Site, filters.site_id)
        if site is None or site.program_id != program_id:
            raise ValidationError(f"Site {filters.site_id} does not belong to program {program_id}")

    stmt = _apply_filters(select(HistoryEvent).where(HistoryEvent.program_id == program_id), filters)
    return list(db.scalars(_newest_first(stmt, limit, offset)))


def query_user_history(
    db: Session,
    principal: Principal,
    user_id: str,
    object_type: str | None = None,
    event_type: str | None = None,
    limit: int = DEFAULT_LIMIT,
    offset: int = 0,
) -> list[HistoryEvent]:
    """
    Events where the user is the actor or the subject. Requires company admin of the user's company.

    Only object_type and event_type narrow this view; site and actor filters
    belong to the program history.
    """
    target = db.get(User, user_id)
    if target is None:
        raise NotFound(f"User {user_id} not found")
    evaluator = get_access_evaluator()
    if not evaluator.can_access_user(principal, target.id, target.company_id, Action.READ):
        raise NotFound(f"User {user_id} not found")
    if not evaluator.can_access_user(principal, target.id, target.company_id, Action.VIEW_HISTORY):
        raise AuthorizationDenied(f"Not allowed to view history of user {user_id}")

    stmt = select(HistoryEvent).where(
        or_(HistoryEvent.actor_user_id == user_id, HistoryEvent.subject_user_id == user_id)
    )
    stmt = _apply_filters(stmt, HistoryFilters(object_type=object_type, event_type=event_type))
    return list(db.scalars(_newest_first(stmt, limit, offset)))


# ---- Export -------------------------------------------------------------------------


def summarize(object_type: str, image: dict[str, Any] | None) -> str:
    """Human-readable 'field=value; ...' rendering of a snapshot."""
    if not image:
        return ""
    fields = SUMMARY_FIELDS.get(object_type) or tuple(sorted(image))
    parts = []
    for name in fields:
        if name not in image:
            continue
        value = image[name]
        if isinstance(value, list):
            value = ",".join(str(v) for v in value)
        parts.append(f"{name}={'' if value is None else value}")
    return "; ".join(parts)


def _global_ids(db: Session, events: Iterable[HistoryEvent]) -> dict[str, int]:
    """Map submission id -> global_submission_id for every submission an event refers to."""
    submission_ids: set[str] = set()
    for ev in events:
        if ev.object_type == "submission":
            submission_ids.add(ev.object_id)
        for image in (ev.new_data, ev.old_data):
            if image and image.get("submission_id"):
                submission_ids.add(image["submission_id"])
    if not submission_ids:
        return {}
    rows = db.execute(
        select(Submission.id, Submission.global_submission_id).where(Submission.id.in_(submission_ids))
    ).all()
    return dict(rows)


def _global_id_for(ev: HistoryEvent, global_ids: dict[str, int]) -> str:
    image = ev.new_data or ev.old_data or {}
    if ev.object_type == "submission":
        value = image.get("global_submission_id") or global_ids.get(ev.object_id)
    else:
        value = global_ids.get(image.get("submission_id"))
    return "" if value is None else str(value)


def _render_csv(header: list[str], rows: Iterable[list[str]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buf.getvalue()


def _base_columns(ev: HistoryEvent) -> list[str]:
    return [
        ev.event_timestamp.isoformat(),
        ev.event_type,
        ev.object_type,
        ev.object_id,
    ]


def _actor_label(ev: HistoryEvent) -> str:
    return ev.actor_email or ev.actor_user_id or "System"


def export_history_csv(
    db: Session,
    principal: Principal,
    program_id: str,
    filters: HistoryFilters | None = None,
    limit: int = MAX_LIMIT,
    offset: int = 0,
) -> str:
    events = query_history(db, principal, program_id, filters, limit, offset)
    global_ids = _global_ids(db, events)
    rows = (
        _base_columns(ev)
        + [
            _global_id_for(ev, global_ids),
            _actor_label(ev),
            summarize(ev.object_type, ev.old_data),
            summarize(ev.object_type, ev.new_data),
        ]
        for ev in events
    )
    logger.info("History export program=%s rows=%d by=%s", program_id, len(events), principal.user_id)
    return _render_csv(PROGRAM_EXPORT_HEADER, rows)


def export_user_history_csv(
    db: Session,
    principal: Principal,
    user_id: str,
    object_type: str | None = None,
    event_type: str | None = None,
    limit: int = MAX_LIMIT,
    offset: int = 0,
) -> str:
    events = query_user_history(db, principal, user_id, object_type, event_type, limit, offset)
    rows = (
        _base_columns(ev)
        + [
            _actor_label(ev),
            summarize(ev.object_type, ev.old_data),
            summarize(ev.object_type, ev.new_data),
        ]
        for ev in events
    )
    logger.info("History export user=%s rows=%d by=%s", user_id, len(events), principal.user_id)
    return _render_csv(USER_EXPORT_HEADER, rows)
