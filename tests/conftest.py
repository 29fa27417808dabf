"""
Pytest fixtures for the test suite.

Every test gets its own in-memory SQLite database (StaticPool, so the API tests'
worker thread sees the same database), which keeps tests independent even
though the services commit their own units of work.
"""
from __future__ import annotations

from dataclasses import dataclass

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, selectinload, sessionmaker
from sqlalchemy.pool import StaticPool

from app.models.security import User
from app.security.context import Principal


TEST_DB_URL = "sqlite:///:memory:"


@pytest.fixture
def engine():
    """Create a fresh in-memory SQLite engine for each test."""
    return create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )


@pytest.fixture
def tables(engine):
    """Create all ORM tables on the test engine."""
    from app.db import audit  # noqa: F401  (history listeners + history/session tables)
    from app.db.base import Base
    from app.models import field, security  # noqa: F401

    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture
def session_factory(tables):
    return sessionmaker(bind=tables, autocommit=False, autoflush=False, class_=Session)


@pytest.fixture
def db_session(session_factory):
    """Provide a Session bound to the test DB."""
    session = session_factory()
    yield session
    session.close()


@dataclass
class World:
    """Ids of the seeded tenants, programs, sites and users."""

    acme: str
    blue: str
    program: str
    blue_program: str
    site: str
    site2: str
    blue_site: str
    users: dict[str, str]


@pytest.fixture
def world(db_session) -> World:
    """
    Two tenants.

    acme: program "program" with sites site/site2.
        root   super-admin (no company)
        ada    acme company admin (no membership)
        alan   acme company admin (no membership)
        pete   program Admin
        eddie  program Edit
        rita   program Respond
        sam    program Respond
        otto   program ReadOnly
        carl   acme company member, no membership
    blue: program "blue_program" with site blue_site.
        bob    blue company admin + blue program Admin
    nina: no company, no membership.
    """

    from app.models.field import Program, Site
    from app.models.security import Company, ProgramMembership, ProgramRole

    acme = Company(name="Acme Growers")
    blue = Company(name="Blue Fields")
    db_session.add_all([acme, blue])
    db_session.flush()

    users = {
        "root": User(email="root@example.com", is_super_admin=True),
        "ada": User(email="ada@acme.test", company_id=acme.id, is_company_admin=True),
        "alan": User(email="alan@acme.test", company_id=acme.id, is_company_admin=True),
        "pete": User(email="pete@acme.test", company_id=acme.id),
        "eddie": User(email="eddie@acme.test", company_id=acme.id),
        "rita": User(email="rita@acme.test", company_id=acme.id),
        "sam": User(email="sam@acme.test", company_id=acme.id),
        "otto": User(email="otto@acme.test", company_id=acme.id),
        "carl": User(email="carl@acme.test", company_id=acme.id),
        "bob": User(email="bob@blue.test", company_id=blue.id, is_company_admin=True),
        "nina": User(email="nina@nowhere.test"),
    }
    db_session.add_all(users.values())
    db_session.flush()

    program = Program(name="Acme 2026", company_id=acme.id)
    blue_program = Program(name="Blue 2026", company_id=blue.id)
    db_session.add_all([program, blue_program])
    db_session.flush()

    site = Site(program_id=program.id, name="North", timezone="UTC")
    site2 = Site(program_id=program.id, name="South", timezone="UTC")
    blue_site = Site(program_id=blue_program.id, name="Barn")
    db_session.add_all([site, site2, blue_site])

    roles = {
        "pete": ProgramRole.ADMIN,
        "eddie": ProgramRole.EDIT,
        "rita": ProgramRole.RESPOND,
        "sam": ProgramRole.RESPOND,
        "otto": ProgramRole.READ_ONLY,
    }
    for name, role in roles.items():
        db_session.add(ProgramMembership(program_id=program.id, user_id=users[name].id, role=role))
    db_session.add(ProgramMembership(program_id=blue_program.id, user_id=users["bob"].id, role=ProgramRole.ADMIN))
    db_session.commit()

    return World(
        acme=acme.id,
        blue=blue.id,
        program=program.id,
        blue_program=blue_program.id,
        site=site.id,
        site2=site2.id,
        blue_site=blue_site.id,
        users={name: user.id for name, user in users.items()},
    )


@pytest.fixture
def principal(db_session, world):
    """principal("rita") -> Principal built from the current DB state."""

    def _build(name: str) -> Principal:
        user = db_session.execute(
            select(User)
            .where(User.id == world.users[name])
            .options(selectinload(User.memberships), selectinload(User.company))
        ).scalar_one()
        return Principal.from_user(user)

    return _build
