from __future__ import annotations

from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db.audit import unit_of_work
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.models import history as _history  # noqa: F401  (register tables)
from app.models import session as _session  # noqa: F401
from app.models.field import Program, Site
from app.models.security import Company, ProgramMembership, ProgramRole, User
from app.services.maintenance import recompute_program_counters


def init_db(seed: bool = True) -> None:
    """
    Create tables and (optionally) seed demo data.

    The seed is small and deterministic: two companies, a handful of users and
    one program per company, enough to exercise tenant isolation by hand with
    the dummy auth provider (bearer token = user id).
    """

    Base.metadata.create_all(bind=engine)
    if not seed:
        return

    with SessionLocal() as db:
        if _has_seed_data(db):
            return
        with unit_of_work(db, None):
            _seed(db)


def _has_seed_data(db: Session) -> bool:
    return db.execute(select(Company.id).limit(1)).first() is not None


def _seed(db: Session) -> None:
    acme = Company(id="company-acme", name="Acme Growers")
    blue = Company(id="company-blue", name="Blue Fields")
    db.add_all([acme, blue])
    db.flush()

    users = [
        User(id="user-root", email="root@example.com", full_name="Root Admin", is_super_admin=True),
        User(id="user-ada", email="ada@acme.example.com", full_name="Ada Admin", company_id=acme.id, is_company_admin=True),
        User(id="user-pete", email="pete@acme.example.com", full_name="Pete Programadmin", company_id=acme.id),
        User(id="user-rita", email="rita@acme.example.com", full_name="Rita Responder", company_id=acme.id),
        User(id="user-otto", email="otto@acme.example.com", full_name="Otto Observer", company_id=acme.id),
        User(id="user-bob", email="bob@blue.example.com", full_name="Bob Blue", company_id=blue.id, is_company_admin=True),
    ]
    db.add_all(users)
    db.flush()

    acme_program = Program(
        id="program-acme-2026",
        name="Acme Greenhouse 2026",
        description="Petri and gasifier sampling across Acme greenhouses",
        company_id=acme.id,
        start_date=date(2026, 1, 1),
        end_date=date(2026, 12, 31),
    )
    blue_program = Program(id="program-blue-2026", name="Blue Fields Pilot", company_id=blue.id)
    db.add_all([acme_program, blue_program])
    db.flush()

    db.add_all(
        [
            Site(
                id="site-acme-north",
                program_id=acme_program.id,
                name="North House",
                site_type="Greenhouse",
                timezone="UTC",
                petri_defaults=[{"code": "N-P1", "placement": "Front"}, {"code": "N-P2", "placement": "Back"}],
                gasifier_defaults=[{"code": "N-G1", "chemical_type": "CLO2"}],
            ),
            Site(id="site-acme-south", program_id=acme_program.id, name="South House", site_type="Storage", timezone="UTC"),
            Site(id="site-blue-1", program_id=blue_program.id, name="Blue Barn", site_type="Storage"),
        ]
    )
    db.add_all(
        [
            ProgramMembership(program_id=acme_program.id, user_id="user-pete", role=ProgramRole.ADMIN),
            ProgramMembership(program_id=acme_program.id, user_id="user-rita", role=ProgramRole.RESPOND),
            ProgramMembership(program_id=acme_program.id, user_id="user-otto", role=ProgramRole.READ_ONLY),
            ProgramMembership(program_id=blue_program.id, user_id="user-bob", role=ProgramRole.ADMIN),
        ]
    )
    db.flush()
    recompute_program_counters(db)
