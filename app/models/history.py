from __future__ import annotations

import enum
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class HistoryEventType(str, enum.Enum):
    PROGRAM_CREATION = "ProgramCreation"
    PROGRAM_UPDATE = "ProgramUpdate"
    PROGRAM_DELETION = "ProgramDeletion"
    SITE_CREATION = "SiteCreation"
    SITE_UPDATE = "SiteUpdate"
    SITE_DELETION = "SiteDeletion"
    SUBMISSION_CREATION = "SubmissionCreation"
    SUBMISSION_UPDATE = "SubmissionUpdate"
    SUBMISSION_DELETION = "SubmissionDeletion"
    PETRI_CREATION = "PetriCreation"
    PETRI_UPDATE = "PetriUpdate"
    PETRI_DELETION = "PetriDeletion"
    GASIFIER_CREATION = "GasifierCreation"
    GASIFIER_UPDATE = "GasifierUpdate"
    GASIFIER_DELETION = "GasifierDeletion"
    SESSION_CREATION = "SessionCreation"
    SESSION_UPDATE = "SessionUpdate"
    SESSION_COMPLETION = "SessionCompletion"
    SESSION_DELETION = "SessionDeletion"
    USER_ADDED = "UserAdded"
    USER_REMOVED = "UserRemoved"
    USER_ROLE_CHANGED = "UserRoleChanged"
    USER_CREATION = "UserCreation"
    USER_UPDATE = "UserUpdate"
    USER_DELETION = "UserDeletion"
    USER_DEACTIVATED = "UserDeactivated"
    USER_REACTIVATED = "UserReactivated"


class HistoryEvent(Base):
    """
    Immutable, append-only ledger row for one mutation.

    Written only by app/db/audit.py, inside the transaction of the mutation it
    describes. old_data/new_data are key/value images of the entity's documented
    field list (see each model's __audit__).
    """

    __tablename__ = "history_events"
    __table_args__ = (
        Index("idx_history_program_ts", "program_id", "event_timestamp"),
        Index("idx_history_object", "object_id"),
        Index("idx_history_actor", "actor_user_id"),
        Index("idx_history_subject", "subject_user_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_timestamp: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    object_type: Mapped[str] = mapped_column(String(40), nullable=False)
    object_id: Mapped[str] = mapped_column(String(36), nullable=False)

    program_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    site_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    subject_user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)

    actor_user_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    actor_email: Mapped[str | None] = mapped_column(String(200), nullable=True)
    actor_company: Mapped[str | None] = mapped_column(String(200), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(30), nullable=True)

    old_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_data: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
