from __future__ import annotations

import uuid
from dataclasses import dataclass

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class AuditSpec:
    """
    Declares how a model is recorded in the history ledger.

    - object_type: value stored in HistoryEvent.object_type ("site", "submission", ...)
    - event_prefix: prefix of the generic event names (<prefix>Creation/Update/Deletion)
    - fields: the documented snapshot field list (column attributes only). Only these
      are captured and compared, so cache columns such as roll-up counters never
      produce events on their own.
    - created/updated/deleted: optional event names replacing the generic ones.
    """

    object_type: str
    event_prefix: str
    fields: tuple[str, ...]
    created: str | None = None
    updated: str | None = None
    deleted: str | None = None

    def event_for(self, operation: str) -> str:
        override = {"insert": self.created, "update": self.updated, "delete": self.deleted}[operation]
        if override:
            return override
        suffix = {"insert": "Creation", "update": "Update", "delete": "Deletion"}[operation]
        return f"{self.event_prefix}{suffix}"
