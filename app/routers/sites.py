from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.field import Site
from app.schemas.field import SiteOut, SiteTemplateDefaultsIn
from app.security.context import AuditActor, Principal
from app.security.dependencies import get_audit_actor, get_principal
from app.services import programs as service

router = APIRouter(prefix="/sites", tags=["sites"])


@router.get("/{site_id}", response_model=SiteOut)
def get_site(
    site_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> Site:
    return service.get_site(db, principal, site_id)


@router.put("/{site_id}/template-defaults", response_model=SiteOut)
def update_template_defaults(
    site_id: str,
    body: SiteTemplateDefaultsIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> Site:
    return service.update_site_template_defaults(
        db,
        principal,
        site_id,
        submission_defaults=body.submission_defaults,
        petri_defaults=body.petri_defaults,
        gasifier_defaults=body.gasifier_defaults,
        actor=actor,
    )
