from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.audit import unit_of_work
from app.errors import NotFound, ValidationError
from app.models.security import ProgramMembership, ProgramRole, User
from app.security.context import Action, AuditActor, Principal, resolve_actor
from app.security.evaluator import ProgramAccess

logger = logging.getLogger(__name__)


def _role(value: ProgramRole | str) -> ProgramRole:
    try:
        return ProgramRole(value)
    except ValueError:
        raise ValidationError(f"Unknown role {value!r}; expected one of {[r.value for r in ProgramRole]}") from None


def _membership(db: Session, program_id: str, user_id: str) -> ProgramMembership | None:
    return db.scalar(
        select(ProgramMembership).where(ProgramMembership.program_id == program_id, ProgramMembership.user_id == user_id)
    )


def list_members(db: Session, principal: Principal, program_id: str) -> list[ProgramMembership]:
    ProgramAccess(db).require(principal, program_id, Action.READ)
    return list(
        db.scalars(
            select(ProgramMembership)
            .where(ProgramMembership.program_id == program_id)
            .order_by(ProgramMembership.created_at, ProgramMembership.id)
        )
    )


def add_member(
    db: Session,
    principal: Principal,
    program_id: str,
    user_id: str,
    role: ProgramRole | str = ProgramRole.RESPOND,
    actor: AuditActor | None = None,
) -> ProgramMembership:
    ProgramAccess(db).require(principal, program_id, Action.MANAGE_MEMBERS)
    role = _role(role)

    user = db.get(User, user_id)
    if user is None or not user.is_active:
        raise ValidationError(f"User {user_id} does not exist or is inactive")
    if _membership(db, program_id, user_id) is not None:
        raise ValidationError(f"User {user_id} is already a member of program {program_id}")

    with unit_of_work(db, resolve_actor(principal, actor)):
        membership = ProgramMembership(program_id=program_id, user_id=user_id, role=role)
        db.add(membership)

    logger.info("Member added program=%s user=%s role=%s by=%s", program_id, user_id, role.value, principal.user_id)
    return membership


def change_member_role(
    db: Session,
    principal: Principal,
    program_id: str,
    user_id: str,
    role: ProgramRole | str,
    actor: AuditActor | None = None,
) -> ProgramMembership:
    ProgramAccess(db).require(principal, program_id, Action.MANAGE_MEMBERS)
    role = _role(role)
    membership = _membership(db, program_id, user_id)
    if membership is None:
        raise NotFound(f"User {user_id} is not a member of program {program_id}")
    if membership.role == role:
        return membership

    with unit_of_work(db, resolve_actor(principal, actor)):
        membership.role = role

    logger.info("Member role changed program=%s user=%s role=%s by=%s", program_id, user_id, role.value, principal.user_id)
    return membership


def remove_member(
    db: Session,
    principal: Principal,
    program_id: str,
    user_id: str,
    actor: AuditActor | None = None,
) -> None:
    ProgramAccess(db).require(principal, program_id, Action.MANAGE_MEMBERS)
    membership = _membership(db, program_id, user_id)
    if membership is None:
        raise NotFound(f"User {user_id} is not a member of program {program_id}")

    with unit_of_work(db, resolve_actor(principal, actor)):
        db.delete(membership)

    logger.info("Member removed program=%s user=%s by=%s", program_id, user_id, principal.user_id)
