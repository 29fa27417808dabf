from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import AuditSpec, Base, new_id


class SessionStatus(str, enum.Enum):
    OPENED = "Opened"
    WORKING = "Working"
    SHARED = "Shared"
    ESCALATED = "Escalated"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    EXPIRED_COMPLETE = "Expired-Complete"
    EXPIRED_INCOMPLETE = "Expired-Incomplete"


TERMINAL_STATUSES = frozenset(
    {
        SessionStatus.COMPLETED,
        SessionStatus.CANCELLED,
        SessionStatus.EXPIRED_COMPLETE,
        SessionStatus.EXPIRED_INCOMPLETE,
    }
)
ACTIVE_STATUSES = frozenset(SessionStatus) - TERMINAL_STATUSES


class SubmissionSession(Base):
    """
    Lifecycle wrapper around one submission's data-entry process.

    The UNIQUE constraint on submission_id is the one-session-per-submission
    guarantee; creation relies on it rather than on a prior lookup.
    """

    __tablename__ = "submission_sessions"
    __table_args__ = (UniqueConstraint("submission_id", name="uq_session_submission"),)
    __audit__ = AuditSpec(
        object_type="submission_session",
        event_prefix="Session",
        fields=(
            "submission_id",
            "site_id",
            "program_id",
            "opened_by_user_id",
            "status",
            "completion_time",
            "completed_by_user_id",
            "percentage_complete",
            "valid_petris_logged",
            "valid_gasifiers_logged",
            "shared_user_ids",
        ),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    submission_id: Mapped[str] = mapped_column(ForeignKey("submissions.id", ondelete="CASCADE"), nullable=False)
    site_id: Mapped[str] = mapped_column(ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    program_id: Mapped[str] = mapped_column(ForeignKey("programs.id", ondelete="CASCADE"), nullable=False, index=True)
    opened_by_user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)

    session_start_time: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    last_activity_time: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    status: Mapped[SessionStatus] = mapped_column(
        Enum(SessionStatus, native_enum=False, values_callable=lambda e: [m.value for m in e], length=32),
        default=SessionStatus.OPENED,
        nullable=False,
        index=True,
    )

    completion_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    completed_by_user_id: Mapped[str | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    percentage_complete: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    valid_petris_logged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    valid_gasifiers_logged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    shared_user_ids: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_participant(self, user_id: str) -> bool:
        return user_id == self.opened_by_user_id or user_id in (self.shared_user_ids or [])
