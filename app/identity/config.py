"""Identity-provider configuration from environment variables. No hardcoded secrets."""

from __future__ import annotations

import os
from dataclasses import dataclass


def _getenv(key: str, default: str | None = None) -> str | None:
    return os.environ.get(key, default)


def _getenv_int(key: str, default: int) -> int:
    raw = os.environ.get(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class IdentityConfig:
    """
    Identity provider settings.

    Required:
        IDP_ISSUER: Expected `iss` claim.
        IDP_AUDIENCE: Expected `aud` claim.
        One of:
            IDP_JWT_SECRET: Shared secret (HS256).
            IDP_JWKS_URI: JWKS endpoint of the provider (RS256).

    Optional:
        CLOCK_SKEW_SECONDS: Seconds of tolerance for exp/nbf (default 120).
        JWKS_CACHE_TTL_SECONDS: How long to cache the JWKS (default 3600).
    """

    issuer: str
    audience: str
    jwt_secret: str | None
    jwks_uri: str | None
    clock_skew_seconds: int = 120
    jwks_cache_ttl_seconds: int = 3600

    @property
    def algorithms(self) -> list[str]:
        return ["HS256"] if self.jwt_secret else ["RS256"]

    @classmethod
    def from_environ(cls) -> IdentityConfig:
        issuer = _strip_or_none(_getenv("IDP_ISSUER"))
        audience = _strip_or_none(_getenv("IDP_AUDIENCE"))
        if not issuer or not audience:
            raise ValueError("IDP_ISSUER and IDP_AUDIENCE must be set")

        secret = _strip_or_none(_getenv("IDP_JWT_SECRET"))
        jwks_uri = _strip_or_none(_getenv("IDP_JWKS_URI"))
        if not secret and not jwks_uri:
            raise ValueError("One of IDP_JWT_SECRET or IDP_JWKS_URI must be set")

        return cls(
            issuer=issuer,
            audience=audience,
            jwt_secret=secret,
            jwks_uri=jwks_uri,
            clock_skew_seconds=_getenv_int("CLOCK_SKEW_SECONDS", 120),
            jwks_cache_ttl_seconds=_getenv_int("JWKS_CACHE_TTL_SECONDS", 3600),
        )


def _strip_or_none(s: str | None) -> str | None:
    if s is None:
        return None
    t = s.strip()
    return t if t else None
