from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.session import SubmissionSession
from app.schemas.session import (
    SessionCancelOut,
    SessionCreateIn,
    SessionCreateOut,
    SessionOut,
    SessionShareIn,
)
from app.security.context import AuditActor, Principal
from app.security.dependencies import get_audit_actor, get_principal
from app.services import sessions as service

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.post("", response_model=SessionCreateOut, status_code=201)
def create_session(
    body: SessionCreateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> dict:
    return service.create_session(
        db,
        principal,
        site_id=body.site_id,
        program_id=body.program_id,
        fields=body.fields,
        petri_templates=body.petri_templates,
        gasifier_templates=body.gasifier_templates,
        actor=actor,
    )


@router.get("/active", response_model=list[SessionOut])
def list_active_sessions(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> list[SubmissionSession]:
    return service.list_active_sessions(db, principal)


@router.get("/{session_id}", response_model=SessionOut)
def get_session(
    session_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> SubmissionSession:
    return service.get_session(db, principal, session_id)


@router.post("/{session_id}/touch", response_model=SessionOut)
def touch_session(
    session_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> SubmissionSession:
    return service.touch_session(db, principal, session_id, actor=actor)


@router.post("/{session_id}/share", response_model=SessionOut)
def share_session(
    session_id: str,
    body: SessionShareIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> SubmissionSession:
    return service.share_session(db, principal, session_id, body.user_ids, intent=body.intent, actor=actor)


@router.post("/{session_id}/escalate", response_model=SessionOut)
def escalate_session(
    session_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> SubmissionSession:
    return service.escalate_session(db, principal, session_id, actor=actor)


@router.post("/{session_id}/complete", response_model=SessionOut)
def complete_session(
    session_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> SubmissionSession:
    return service.complete_session(db, principal, session_id, actor=actor)


@router.post("/{session_id}/cancel", response_model=SessionCancelOut)
def cancel_session(
    session_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> dict:
    return service.cancel_session(db, principal, session_id, actor=actor)
