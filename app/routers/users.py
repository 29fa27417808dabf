from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.security import User
from app.schemas.security import ProfileUpdateIn, UserOut
from app.security.context import AuditActor, Principal
from app.security.dependencies import get_audit_actor, get_principal
from app.services import users as service

router = APIRouter(tags=["users"])


@router.get("/me", response_model=UserOut)
def me(db: Session = Depends(get_db), principal: Principal = Depends(get_principal)) -> User:
    return service.get_user(db, principal, principal.user_id)


@router.patch("/me", response_model=UserOut)
def update_me(
    body: ProfileUpdateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> User:
    return service.update_profile(db, principal, principal.user_id, body.model_dump(exclude_unset=True), actor=actor)


@router.get("/users/{user_id}", response_model=UserOut)
def get_user(user_id: str, db: Session = Depends(get_db), principal: Principal = Depends(get_principal)) -> User:
    return service.get_user(db, principal, user_id)


@router.post("/users/{user_id}/deactivate", response_model=UserOut)
def deactivate_user(
    user_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> User:
    return service.deactivate_user(db, principal, user_id, actor=actor)


@router.post("/users/{user_id}/reactivate", response_model=UserOut)
def reactivate_user(
    user_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> User:
    return service.reactivate_user(db, principal, user_id, actor=actor)


@router.post("/users/{user_id}/promote", response_model=UserOut)
def promote_company_admin(
    user_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> User:
    return service.promote_company_admin(db, principal, user_id, actor=actor)


@router.post("/users/{user_id}/demote", response_model=UserOut)
def demote_company_admin(
    user_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> User:
    return service.demote_company_admin(db, principal, user_id, actor=actor)
