from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from app.db import audit as _audit  # noqa: F401  (register history listeners)
from app.settings import get_settings


_settings = get_settings()

engine = create_engine(
    _settings.resolved_db_url(),
    connect_args={"check_same_thread": False} if _settings.resolved_db_url().startswith("sqlite") else {},
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False, class_=Session)


def get_db() -> Generator[Session, None, None]:
    """
    Main DB dependency: one Session per request.

    Services open their own `unit_of_work` on it; authorization is decided
    explicitly at the service boundary, never by the session itself.
    """

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
