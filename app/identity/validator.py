"""
Verify identity-provider JWTs and extract the principal's identity.

Background for newcomers:
    A client calling this API sends ``Authorization: Bearer <token>``. The
    token is a JWT issued by an OpenID Connect provider after the user signed
    in there. Nothing in it may be trusted until we have:

    1. Verified the **signature**. HS256 tokens are checked against the shared
       secret; RS256 tokens against the provider public key named by the
       token header's ``kid``, looked up in a cached JWKS.
    2. Checked the **issuer** (``iss``) is the provider we are configured for.
    3. Checked the **audience** (``aud``) is this API.
    4. Checked the token has not **expired** (``exp``) and is not used before
       its start time (``nbf``), allowing a small clock skew.

    Only then do we read ``sub`` (the stable principal id) and ``email`` into
    an ``IdentityClaims``. Mapping that identity to a ``User`` row and its
    program roles is app.security.auth's job, not this package's.
"""

from __future__ import annotations

import logging
from typing import Any

import jwt

from .claims import IdentityClaims
from .config import IdentityConfig
from .jwks_cache import JWKSCache

logger = logging.getLogger(__name__)


class InvalidTokenError(Exception):
    """Raised when token verification fails. Never carries the token itself."""


def _get_kid(token: str) -> str | None:
    try:
        header = jwt.get_unverified_header(token)
    except jwt.InvalidTokenError:
        return None
    return header.get("kid") if isinstance(header, dict) else None


def _extract_claims(payload: dict[str, Any]) -> IdentityClaims:
    subject = payload.get("sub")
    if subject is None or str(subject).strip() == "":
        raise InvalidTokenError("Invalid token: missing subject")

    email = payload.get("email") or payload.get("preferred_username")
    return IdentityClaims(subject=str(subject), email=str(email) if email else None)


class TokenValidator:
    def __init__(self, config: IdentityConfig | None = None) -> None:
        self._config = config or IdentityConfig.from_environ()
        self._jwks = (
            JWKSCache(self._config.jwks_uri, self._config.jwks_cache_ttl_seconds)
            if self._config.jwks_uri and not self._config.jwt_secret
            else None
        )

    def _verification_key(self, token: str) -> Any:
        if self._config.jwt_secret:
            return self._config.jwt_secret

        kid = _get_kid(token)
        if not kid:
            logger.debug("Token missing or invalid kid")
            raise InvalidTokenError("Invalid token: missing key id")
        signing_key = self._jwks.get_signing_key(kid)
        if signing_key is None:
            logger.debug("No signing key found for kid")
            raise InvalidTokenError("Invalid token: unknown signing key")
        return signing_key.key

    def verify(self, token: str) -> IdentityClaims:
        """Verify `token` and return its identity claims, or raise InvalidTokenError."""
        key = self._verification_key(token)
        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=self._config.algorithms,
                audience=self._config.audience,
                issuer=self._config.issuer,
                leeway=self._config.clock_skew_seconds,
                options={"require": ["exp", "sub"]},
            )
        except jwt.ExpiredSignatureError as e:
            logger.info("Token expired")
            raise InvalidTokenError("Token expired") from e
        except jwt.InvalidIssuerError as e:
            logger.info("Token invalid issuer")
            raise InvalidTokenError("Invalid token: issuer") from e
        except jwt.InvalidAudienceError as e:
            logger.info("Token invalid audience")
            raise InvalidTokenError("Invalid token: audience") from e
        except jwt.InvalidTokenError as e:
            logger.info("Token invalid: %s", type(e).__name__)
            raise InvalidTokenError("Invalid token") from e

        return _extract_claims(payload)


def verify_token(token: str, config: IdentityConfig | None = None) -> IdentityClaims:
    """One-shot helper; reuse a TokenValidator to share its JWKS cache across requests."""
    return TokenValidator(config=config).verify(token)
