from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from app.models.session import SessionStatus


class SessionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    submission_id: str
    site_id: str
    program_id: str
    opened_by_user_id: str
    session_start_time: datetime
    last_activity_time: datetime
    status: SessionStatus
    completion_time: datetime | None
    completed_by_user_id: str | None
    percentage_complete: float
    valid_petris_logged: int
    valid_gasifiers_logged: int
    shared_user_ids: list[str]


class SessionCreateIn(BaseModel):
    site_id: str
    program_id: str
    fields: dict[str, Any] = Field(default_factory=dict)
    # Untyped: malformed templates are ignored, not rejected.
    petri_templates: Any = None
    gasifier_templates: Any = None


class SessionCreateOut(BaseModel):
    submission_id: str
    session_id: str
    session: SessionOut


class SessionShareIn(BaseModel):
    user_ids: list[str]
    intent: Literal["share", "escalate"] = "share"


class SessionCancelOut(BaseModel):
    session: SessionOut
    deleted_petri_count: int
    deleted_gasifier_count: int


class SweepOut(BaseModel):
    expired_complete: int
    expired_incomplete: int
