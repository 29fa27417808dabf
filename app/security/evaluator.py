"""
Authorization evaluator.

Pure decision functions over (Principal, scope, action). OR-combined grants:

1. super-admin: everything
2. direct program membership: the role's effective capabilities
3. company match (principal.company_id == program.company_id): company member
   capabilities, plus company-admin capabilities for company admins
4. self-access on user records

No side effects other than DEBUG logging. `ProgramAccess` is the small
DB-facing facade used at the service boundary.
"""

from __future__ import annotations

import logging
from functools import lru_cache

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import AuthorizationDenied, NotFound
from app.models.field import Program
from app.security.config import AccessPolicy, load_access_policy
from app.security.context import Action, Principal, ProgramScope
from app.settings import get_settings

logger = logging.getLogger(__name__)


def _action_name(action: Action | str) -> str:
    return action.value if isinstance(action, Action) else str(action)


def _same_company(principal: Principal, company_id: str | None) -> bool:
    return principal.company_id is not None and company_id is not None and principal.company_id == company_id


class AccessEvaluator:
    def __init__(self, policy: AccessPolicy) -> None:
        self.policy = policy

    def company_capabilities(self, principal: Principal, company_id: str | None) -> frozenset[str]:
        if not _same_company(principal, company_id):
            return frozenset()
        if principal.is_company_admin:
            return self.policy.company_member_capabilities | self.policy.company_admin_capabilities
        return self.policy.company_member_capabilities

    def program_capabilities(self, principal: Principal, scope: ProgramScope) -> frozenset[str]:
        """Union of every capability granted on the program (super-admin excluded)."""
        if not principal.is_active:
            return frozenset()
        caps = set(self.policy.role_capabilities(principal.role_in(scope.program_id)))
        caps.update(self.company_capabilities(principal, scope.company_id))
        return frozenset(caps)

    def can_access(self, principal: Principal, scope: ProgramScope, action: Action | str) -> bool:
        name = _action_name(action)
        if principal.is_super_admin and principal.is_active:
            logger.debug("authz: allow super-admin user=%s program=%s action=%s", principal.user_id, scope.program_id, name)
            return True

        caps = self.program_capabilities(principal, scope)
        allowed = name in caps
        logger.debug(
            "authz: %s user=%s program=%s action=%s role=%s caps=%s",
            "allow" if allowed else "deny",
            principal.user_id,
            scope.program_id,
            name,
            principal.role_in(scope.program_id),
            sorted(caps),
        )
        return allowed

    def can_access_user(
        self,
        principal: Principal,
        target_user_id: str,
        target_company_id: str | None,
        action: Action | str,
    ) -> bool:
        """Decide access to a user record (profile, status, company-admin flag, history)."""
        name = _action_name(action)
        if not principal.is_active:
            return False
        if principal.is_super_admin:
            return True
        if principal.user_id == target_user_id and name in self.policy.self_capabilities:
            return True

        allowed = name in self.company_capabilities(principal, target_company_id)
        logger.debug(
            "authz: %s user=%s target_user=%s action=%s",
            "allow" if allowed else "deny",
            principal.user_id,
            target_user_id,
            name,
        )
        return allowed


@lru_cache
def get_access_evaluator() -> AccessEvaluator:
    path = get_settings().resolved_access_policy_path()
    return AccessEvaluator(load_access_policy(path))


class ProgramAccess:
    """
    DB-facing facade: loads a program's scope once and answers the
    can_read / can_write / can_manage_members questions by program id.

    Unknown programs are simply not accessible.
    """

    def __init__(self, db: Session, evaluator: AccessEvaluator | None = None) -> None:
        self.db = db
        self.evaluator = evaluator or get_access_evaluator()
        self._scopes: dict[str, ProgramScope | None] = {}

    def scope(self, program_id: str) -> ProgramScope | None:
        if program_id not in self._scopes:
            row = self.db.execute(select(Program.id, Program.company_id).where(Program.id == program_id)).first()
            self._scopes[program_id] = ProgramScope(program_id=row.id, company_id=row.company_id) if row else None
        return self._scopes[program_id]

    def allows(self, principal: Principal, program_id: str, action: Action | str) -> bool:
        scope = self.scope(program_id)
        if scope is None:
            return False
        return self.evaluator.can_access(principal, scope, action)

    def can_read(self, principal: Principal, program_id: str) -> bool:
        return self.allows(principal, program_id, Action.READ)

    def can_write(self, principal: Principal, program_id: str) -> bool:
        return self.allows(principal, program_id, Action.WRITE)

    def can_manage_members(self, principal: Principal, program_id: str) -> bool:
        return self.allows(principal, program_id, Action.MANAGE_MEMBERS)

    def require(self, principal: Principal, program_id: str, action: Action | str) -> ProgramScope:
        """
        Return the program's scope or raise.

        Programs the principal cannot read raise NotFound (same as missing ones);
        readable programs without the requested capability raise AuthorizationDenied.
        """

        scope = self.scope(program_id)
        if scope is None or not self.evaluator.can_access(principal, scope, Action.READ):
            raise NotFound(f"Program {program_id} not found")
        if not self.evaluator.can_access(principal, scope, action):
            raise AuthorizationDenied(f"Not allowed to {_action_name(action)} in program {program_id}")
        return scope
