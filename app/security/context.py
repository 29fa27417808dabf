from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Mapping

if TYPE_CHECKING:
    from app.models.security import User


class Action(str, enum.Enum):
    READ = "read"
    RESPOND = "respond"
    WRITE = "write"
    MANAGE_MEMBERS = "manage_members"
    MANAGE_COMPANY = "manage_company"
    VIEW_HISTORY = "view_history"


@dataclass(frozen=True)
class Principal:
    """
    Per-request identity of the caller.

    Built once per request (memberships preloaded) and passed explicitly to every
    service call. `memberships` maps program_id -> role value ("Admin", "Edit", ...).
    """

    user_id: str
    email: str
    company_id: str | None = None
    company_name: str | None = None
    is_company_admin: bool = False
    is_super_admin: bool = False
    is_active: bool = True
    memberships: Mapping[str, str] = field(default_factory=dict)

    def role_in(self, program_id: str | None) -> str | None:
        if program_id is None:
            return None
        return self.memberships.get(program_id)

    @classmethod
    def from_user(cls, user: User) -> Principal:
        return cls(
            user_id=user.id,
            email=user.email,
            company_id=user.company_id,
            company_name=user.company.name if user.company is not None else None,
            is_company_admin=user.is_company_admin,
            is_super_admin=user.is_super_admin,
            is_active=user.is_active,
            memberships={m.program_id: m.role.value for m in user.memberships},
        )


@dataclass(frozen=True)
class ProgramScope:
    """The two facts the evaluator needs about a program."""

    program_id: str
    company_id: str | None


@dataclass(frozen=True)
class AuditActor:
    """
    Actor snapshot attached to a unit of work (Session.info) for the history ledger.
    """

    user_id: str
    email: str
    company_name: str | None
    is_company_admin: bool
    is_super_admin: bool
    memberships: Mapping[str, str] = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None

    def role_for(self, program_id: str | None) -> str | None:
        role = self.memberships.get(program_id) if program_id else None
        if role:
            return role
        if self.is_company_admin:
            return "CompanyAdmin"
        if self.is_super_admin:
            return "SuperAdmin"
        return None

    @classmethod
    def from_principal(
        cls,
        principal: Principal,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditActor:
        return cls(
            user_id=principal.user_id,
            email=principal.email,
            company_name=principal.company_name,
            is_company_admin=principal.is_company_admin,
            is_super_admin=principal.is_super_admin,
            memberships=dict(principal.memberships),
            ip_address=ip_address,
            user_agent=user_agent,
        )


def resolve_actor(principal: Principal, actor: AuditActor | None = None) -> AuditActor:
    """Use the request's actor when given, otherwise derive one from the principal."""
    if actor is not None:
        return actor
    return AuditActor.from_principal(principal)
