"""
User status and company-admin management.

Deactivation and company-admin demotion both drop every program membership
to ReadOnly. Nobody may deactivate or demote themselves, and a company keeps
at least one company admin.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from app.db.audit import unit_of_work
from app.errors import AuthorizationDenied, NotFound, ValidationError
from app.models.security import ProgramRole, User
from app.schemas.security import ProfileUpdateIn
from app.security.context import Action, AuditActor, Principal, resolve_actor
from app.security.evaluator import get_access_evaluator

logger = logging.getLogger(__name__)


def _load_user(db: Session, user_id: str) -> User:
    user = db.execute(
        select(User).where(User.id == user_id).options(selectinload(User.memberships), selectinload(User.company))
    ).scalar_one_or_none()
    if user is None:
        raise NotFound(f"User {user_id} not found")
    return user


def _authorized_user(db: Session, principal: Principal, user_id: str, action: Action) -> User:
    """Load a user record; unreadable users are NotFound, readable-but-forbidden ones are denied."""
    evaluator = get_access_evaluator()
    user = _load_user(db, user_id)
    if not evaluator.can_access_user(principal, user.id, user.company_id, Action.READ):
        raise NotFound(f"User {user_id} not found")
    if not evaluator.can_access_user(principal, user.id, user.company_id, action):
        raise AuthorizationDenied(f"Not allowed to {action.value} user {user_id}")
    return user


def _downgrade_memberships(user: User) -> int:
    changed = 0
    for membership in user.memberships:
        if membership.role != ProgramRole.READ_ONLY:
            membership.role = ProgramRole.READ_ONLY
            changed += 1
    return changed


def get_user(db: Session, principal: Principal, user_id: str) -> User:
    return _authorized_user(db, principal, user_id, Action.READ)


def update_profile(
    db: Session,
    principal: Principal,
    user_id: str,
    changes: dict[str, Any],
    actor: AuditActor | None = None,
) -> User:
    user = _authorized_user(db, principal, user_id, Action.WRITE)
    try:
        values = ProfileUpdateIn.model_validate(changes).model_dump(exclude_unset=True)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid profile update: {exc.error_count()} error(s)") from exc

    with unit_of_work(db, resolve_actor(principal, actor)):
        for key, value in values.items():
            setattr(user, key, value)
    return user


def deactivate_user(
    db: Session,
    principal: Principal,
    user_id: str,
    actor: AuditActor | None = None,
) -> User:
    user = _authorized_user(db, principal, user_id, Action.MANAGE_COMPANY)
    if user.id == principal.user_id:
        raise ValidationError("You cannot deactivate your own account")
    if not user.is_active:
        raise ValidationError(f"User {user_id} is already inactive")

    with unit_of_work(db, resolve_actor(principal, actor)):
        user.is_active = False
        downgraded = _downgrade_memberships(user)

    logger.info("User deactivated user=%s by=%s memberships_downgraded=%d", user.id, principal.user_id, downgraded)
    return user


def reactivate_user(
    db: Session,
    principal: Principal,
    user_id: str,
    actor: AuditActor | None = None,
) -> User:
    """Reactivate a user. Memberships stay ReadOnly until a program admin raises them."""
    user = _authorized_user(db, principal, user_id, Action.MANAGE_COMPANY)
    if user.is_active:
        raise ValidationError(f"User {user_id} is already active")

    with unit_of_work(db, resolve_actor(principal, actor)):
        user.is_active = True

    logger.info("User reactivated user=%s by=%s", user.id, principal.user_id)
    return user


def promote_company_admin(
    db: Session,
    principal: Principal,
    user_id: str,
    actor: AuditActor | None = None,
) -> User:
    user = _authorized_user(db, principal, user_id, Action.MANAGE_COMPANY)
    if user.company_id is None:
        raise ValidationError(f"User {user_id} does not belong to a company")
    if not user.is_active:
        raise ValidationError(f"User {user_id} is inactive")
    if user.is_company_admin:
        raise ValidationError(f"User {user_id} is already a company admin")

    with unit_of_work(db, resolve_actor(principal, actor)):
        user.is_company_admin = True

    logger.info("Company admin promoted user=%s company=%s by=%s", user.id, user.company_id, principal.user_id)
    return user


def demote_company_admin(
    db: Session,
    principal: Principal,
    user_id: str,
    actor: AuditActor | None = None,
) -> User:
    user = _authorized_user(db, principal, user_id, Action.MANAGE_COMPANY)
    if user.id == principal.user_id:
        raise ValidationError("You cannot demote yourself")
    if not user.is_company_admin:
        raise ValidationError(f"User {user_id} is not a company admin")

    admins = db.scalar(
        select(func.count(User.id)).where(User.company_id == user.company_id, User.is_company_admin.is_(True))
    )
    if admins <= 1:
        raise ValidationError("A company must keep at least one company admin")

    with unit_of_work(db, resolve_actor(principal, actor)):
        user.is_company_admin = False
        downgraded = _downgrade_memberships(user)

    logger.info(
        "Company admin demoted user=%s company=%s by=%s memberships_downgraded=%d",
        user.id,
        user.company_id,
        principal.user_id,
        downgraded,
    )
    return user
