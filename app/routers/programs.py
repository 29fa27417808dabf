from __future__ import annotations

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.models.field import Program, Site
from app.models.security import ProgramMembership
from app.schemas.field import ProgramCreateIn, ProgramOut, SiteCreateIn, SiteOut
from app.schemas.security import MemberIn, MemberRoleIn, MembershipOut, ProgramAccessOut
from app.security.context import AuditActor, Principal
from app.security.dependencies import get_audit_actor, get_principal
from app.security.evaluator import ProgramAccess
from app.services import memberships as service
from app.services import programs as program_service

router = APIRouter(prefix="/programs", tags=["programs"])


@router.post("", response_model=ProgramOut, status_code=201)
def create_program(
    body: ProgramCreateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> Program:
    return program_service.create_program(
        db,
        principal,
        name=body.name,
        description=body.description,
        start_date=body.start_date,
        end_date=body.end_date,
        company_id=body.company_id,
        actor=actor,
    )


@router.post("/{program_id}/sites", response_model=SiteOut, status_code=201)
def create_site(
    program_id: str,
    body: SiteCreateIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> Site:
    return program_service.create_site(
        db,
        principal,
        program_id,
        name=body.name,
        site_type=body.site_type,
        timezone=body.timezone,
        submission_defaults=body.submission_defaults,
        petri_defaults=body.petri_defaults,
        gasifier_defaults=body.gasifier_defaults,
        actor=actor,
    )


@router.get("/{program_id}/access", response_model=ProgramAccessOut)
def program_access(
    program_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> ProgramAccessOut:
    access = ProgramAccess(db)
    return ProgramAccessOut(
        program_id=program_id,
        can_read=access.can_read(principal, program_id),
        can_write=access.can_write(principal, program_id),
        can_manage_members=access.can_manage_members(principal, program_id),
    )


@router.get("/{program_id}/members", response_model=list[MembershipOut])
def list_members(
    program_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
) -> list[ProgramMembership]:
    return service.list_members(db, principal, program_id)


@router.post("/{program_id}/members", response_model=MembershipOut, status_code=201)
def add_member(
    program_id: str,
    body: MemberIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> ProgramMembership:
    return service.add_member(db, principal, program_id, body.user_id, body.role, actor=actor)


@router.patch("/{program_id}/members/{user_id}", response_model=MembershipOut)
def change_member_role(
    program_id: str,
    user_id: str,
    body: MemberRoleIn,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> ProgramMembership:
    return service.change_member_role(db, principal, program_id, user_id, body.role, actor=actor)


@router.delete("/{program_id}/members/{user_id}", status_code=204)
def remove_member(
    program_id: str,
    user_id: str,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_principal),
    actor: AuditActor | None = Depends(get_audit_actor),
) -> Response:
    service.remove_member(db, principal, program_id, user_id, actor=actor)
    return Response(status_code=204)
