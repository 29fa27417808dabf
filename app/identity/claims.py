"""Who the caller is, as asserted by a verified token. Roles and memberships live in the database."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class IdentityClaims:
    """Identity asserted by a verified token: the stable principal id and email."""

    subject: str
    email: str | None = None
