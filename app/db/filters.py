from __future__ import annotations

from sqlalchemy import ColumnElement, false, or_, true

from app.models.field import Program
from app.security.context import Action, Principal
from app.security.evaluator import AccessEvaluator, get_access_evaluator


def readable_programs_clause(
    principal: Principal,
    evaluator: AccessEvaluator | None = None,
) -> ColumnElement[bool]:
    """
    WHERE clause selecting the programs `principal` may read.

    List queries apply this explicitly; it mirrors AccessEvaluator.can_access
    for the read action:
        SELECT ... FROM programs WHERE <clause>
    """

    evaluator = evaluator or get_access_evaluator()
    if not principal.is_active:
        return false()
    if principal.is_super_admin:
        return true()

    read_roles = evaluator.policy.roles_with(Action.READ.value)
    member_program_ids = [pid for pid, role in principal.memberships.items() if role in read_roles]

    conditions: list[ColumnElement[bool]] = []
    if member_program_ids:
        conditions.append(Program.id.in_(member_program_ids))
    if Action.READ.value in evaluator.company_capabilities(principal, principal.company_id):
        conditions.append(Program.company_id == principal.company_id)

    if not conditions:
        return false()
    return or_(*conditions)
