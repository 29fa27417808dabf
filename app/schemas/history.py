from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class HistoryFilters(BaseModel):
    site_id: str | None = None
    object_type: str | None = None
    event_type: str | None = None
    actor_user_id: str | None = None


class HistoryEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    event_timestamp: datetime
    event_type: str
    object_type: str
    object_id: str
    program_id: str | None
    site_id: str | None
    subject_user_id: str | None
    actor_user_id: str | None
    actor_email: str | None
    actor_company: str | None
    actor_role: str | None
    old_data: dict[str, Any] | None
    new_data: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
