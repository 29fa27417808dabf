from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.schemas.field import OBSERVATION_OUTPUTS, ObservationCompleteIn
from app.security.context import AuditActor, Principal
from app.security.dependencies import get_audit_actor, get_principal
from app.services import observations as service

router = APIRouter(tags=["observations"])


def _out(kind: str, observation) -> dict[str, Any]:
    return OBSERVATION_OUTPUTS[kind].model_validate(observation).model_dump(mode="json")


@router.post("/submissions/{submission_id}/observations/{kind}", status_code=201)
def add_observation(
    submission_id: str,
    kind: str,
    data: dict[str, Any] = Body(default_factory=dict),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> dict[str, Any]:
    observation = service.add_observation(db, principal, submission_id, kind, data, actor=actor)
    return _out(kind, observation)


@router.patch("/observations/{kind}/{observation_id}")
def update_observation(
    kind: str,
    observation_id: str,
    changes: dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> dict[str, Any]:
    observation = service.update_observation(db, principal, kind, observation_id, changes, actor=actor)
    return _out(kind, observation)


@router.post("/observations/{kind}/{observation_id}/complete")
def complete_observation(
    kind: str,
    observation_id: str,
    body: ObservationCompleteIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> dict[str, Any]:
    observation = service.complete_observation(db, principal, kind, observation_id, body.image_url, actor=actor)
    return _out(kind, observation)
