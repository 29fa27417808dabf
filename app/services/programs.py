"""
Program and site setup.

A new program belongs to the creator's company and its creator becomes the
program's Admin in the same unit of work. Sites carry template defaults
(submission fields plus pending petri/gasifier rows) that create_session uses
when the caller brings none of its own.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from app.db.audit import unit_of_work
from app.errors import AuthorizationDenied, NotFound, ValidationError
from app.models.field import Program, Site
from app.models.security import Company, ProgramMembership, ProgramRole
from app.schemas.field import GasifierTemplate, PetriTemplate
from app.security.context import Action, AuditActor, Principal, resolve_actor
from app.security.evaluator import ProgramAccess
from app.services.maintenance import recompute_program_counters

logger = logging.getLogger(__name__)


def program_status(start_date: date | None, end_date: date | None, today: date | None = None) -> str:
    """'active' while today falls inside [start_date, end_date] (open ends allowed), else 'inactive'."""
    today = today or date.today()
    if start_date is not None and today < start_date:
        return "inactive"
    if end_date is not None and today > end_date:
        return "inactive"
    return "active"


def _owning_company(db: Session, principal: Principal, company_id: str | None) -> str | None:
    if company_id is None or company_id == principal.company_id:
        return principal.company_id
    if not principal.is_super_admin:
        raise AuthorizationDenied(f"Not allowed to create programs for company {company_id}")
    if db.get(Company, company_id) is None:
        raise ValidationError(f"Company {company_id} does not exist")
    return company_id


def create_program(
    db: Session,
    principal: Principal,
    name: str,
    description: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    company_id: str | None = None,
    actor: AuditActor | None = None,
) -> Program:
    """
    Create a program owned by the principal's company (super-admins may pick
    another company) and make the principal its Admin.

    Emits ProgramCreation and UserAdded history events.
    """

    if not principal.is_active:
        raise AuthorizationDenied("Inactive users cannot create programs")
    if not name or not name.strip():
        raise ValidationError("Program name must not be empty")
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ValidationError("end_date must not be before start_date")
    owner = _owning_company(db, principal, company_id)

    with unit_of_work(db, resolve_actor(principal, actor)):
        program = Program(
            name=name.strip(),
            description=description,
            company_id=owner,
            status=program_status(start_date, end_date),
            start_date=start_date,
            end_date=end_date,
            total_sites=0,
            total_submissions=0,
        )
        db.add(program)
        db.flush()
        db.add(ProgramMembership(program_id=program.id, user_id=principal.user_id, role=ProgramRole.ADMIN))

    logger.info("Program created program=%s company=%s status=%s by=%s", program.id, owner, program.status, principal.user_id)
    return program


# ---- Sites --------------------------------------------------------------------------


def _checked_templates(model: type[BaseModel], raw: Any, kind: str) -> list[dict[str, Any]] | None:
    """Stored defaults must be well formed; unlike session input they are rejected, not ignored."""
    if raw is None:
        return None
    try:
        templates = TypeAdapter(list[model]).validate_python(raw)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid {kind} template defaults: {exc.error_count()} error(s)") from exc
    return [t.model_dump(exclude_none=True) for t in templates]


def _checked_fields(raw: Any) -> dict[str, Any] | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        raise ValidationError("submission_defaults must be an object")
    return dict(raw)


def _checked_timezone(tz_name: str | None) -> str | None:
    if tz_name is None:
        return None
    try:
        ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValidationError(f"Unknown timezone {tz_name!r}") from None
    return tz_name


def create_site(
    db: Session,
    principal: Principal,
    program_id: str,
    name: str,
    site_type: str | None = None,
    timezone: str | None = None,
    submission_defaults: dict[str, Any] | None = None,
    petri_defaults: Any = None,
    gasifier_defaults: Any = None,
    actor: AuditActor | None = None,
) -> Site:
    """Add a site to a program (write capability) and refresh the program's total_sites."""
    ProgramAccess(db).require(principal, program_id, Action.WRITE)
    if not name or not name.strip():
        raise ValidationError("Site name must not be empty")

    values = {
        "timezone": _checked_timezone(timezone),
        "submission_defaults": _checked_fields(submission_defaults),
        "petri_defaults": _checked_templates(PetriTemplate, petri_defaults, "petri"),
        "gasifier_defaults": _checked_templates(GasifierTemplate, gasifier_defaults, "gasifier"),
    }

    with unit_of_work(db, resolve_actor(principal, actor)):
        site = Site(program_id=program_id, name=name.strip(), site_type=site_type, **values)
        db.add(site)
        db.flush()
        recompute_program_counters(db, [program_id])

    logger.info("Site created site=%s program=%s by=%s", site.id, program_id, principal.user_id)
    return site


def _writable_site(db: Session, principal: Principal, site_id: str) -> Site:
    site = db.get(Site, site_id)
    if site is None:
        raise NotFound(f"Site {site_id} not found")
    access = ProgramAccess(db)
    if not access.can_read(principal, site.program_id):
        raise NotFound(f"Site {site_id} not found")
    access.require(principal, site.program_id, Action.WRITE)
    return site


def get_site(db: Session, principal: Principal, site_id: str) -> Site:
    site = db.get(Site, site_id)
    if site is None or not ProgramAccess(db).can_read(principal, site.program_id):
        raise NotFound(f"Site {site_id} not found")
    return site


def update_site_template_defaults(
    db: Session,
    principal: Principal,
    site_id: str,
    submission_defaults: dict[str, Any] | None = None,
    petri_defaults: Any = None,
    gasifier_defaults: Any = None,
    actor: AuditActor | None = None,
) -> Site:
    """Replace all three template defaults of a site (None clears one). Emits SiteUpdate."""
    site = _writable_site(db, principal, site_id)
    values = {
        "submission_defaults": _checked_fields(submission_defaults),
        "petri_defaults": _checked_templates(PetriTemplate, petri_defaults, "petri"),
        "gasifier_defaults": _checked_templates(GasifierTemplate, gasifier_defaults, "gasifier"),
    }

    with unit_of_work(db, resolve_actor(principal, actor)):
        for key, value in values.items():
            setattr(site, key, value)

    logger.info("Site template defaults updated site=%s by=%s", site.id, principal.user_id)
    return site
