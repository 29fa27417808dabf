from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.history import HistoryEvent
from app.schemas.history import HistoryEventOut, HistoryFilters
from app.security.context import Principal
from app.security.dependencies import get_principal
from app.services import history as service

router = APIRouter(tags=["history"])


def _filters(
    site_id: str | None = None,
    object_type: str | None = None,
    event_type: str | None = None,
    actor_user_id: str | None = None,
) -> HistoryFilters:
    return HistoryFilters(
        site_id=site_id,
        object_type=object_type,
        event_type=event_type,
        actor_user_id=actor_user_id,
    )


def _csv(content: str, filename: str) -> PlainTextResponse:
    return PlainTextResponse(
        content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/programs/{program_id}/history", response_model=list[HistoryEventOut])
def program_history(
    program_id: str,
    filters: HistoryFilters = Depends(_filters),
    limit: int = Query(service.DEFAULT_LIMIT),
    offset: int = Query(0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> list[HistoryEvent]:
    return service.query_history(db, principal, program_id, filters, limit=limit, offset=offset)


@router.get("/programs/{program_id}/history/export")
def export_program_history(
    program_id: str,
    filters: HistoryFilters = Depends(_filters),
    limit: int = Query(service.MAX_LIMIT),
    offset: int = Query(0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> PlainTextResponse:
    content = service.export_history_csv(db, principal, program_id, filters, limit=limit, offset=offset)
    return _csv(content, f"program-{program_id}-history.csv")


@router.get("/users/{user_id}/history", response_model=list[HistoryEventOut])
def user_history(
    user_id: str,
    object_type: str | None = None,
    event_type: str | None = None,
    limit: int = Query(service.DEFAULT_LIMIT),
    offset: int = Query(0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> list[HistoryEvent]:
    return service.query_user_history(
        db, principal, user_id, object_type=object_type, event_type=event_type, limit=limit, offset=offset
    )


@router.get("/users/{user_id}/history/export")
def export_user_history(
    user_id: str,
    object_type: str | None = None,
    event_type: str | None = None,
    limit: int = Query(service.MAX_LIMIT),
    offset: int = Query(0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> PlainTextResponse:
    content = service.export_user_history_csv(
        db, principal, user_id, object_type=object_type, event_type=event_type, limit=limit, offset=offset
    )
    return _csv(content, f"user-{user_id}-history.csv")
