"""
JWKS fetch and cache with TTL. No per-request fetches.

Background for newcomers:
    An OIDC provider signs tokens with a private key and publishes the
    matching public keys as a JSON Web Key Set (JWKS) at a well-known URL.
    Each key carries a ``kid`` (key id), and every token header names the
    ``kid`` that signed it. Providers rotate keys from time to time, so the
    set is cached for a TTL instead of being fetched on every request.

    A token whose ``kid`` is not in the cached set triggers one forced
    refresh (the provider may have just rotated) before the key is reported
    missing.
"""

from __future__ import annotations

import logging
import time
from typing import Any

import requests
from jwt import PyJWK

logger = logging.getLogger(__name__)


class JWKSCache:
    def __init__(self, jwks_uri: str, ttl_seconds: int) -> None:
        self._uri = jwks_uri
        self._ttl = ttl_seconds
        self._data: dict[str, Any] | None = None
        self._fetched_at: float = 0.0

    def _fetch(self) -> dict[str, Any]:
        resp = requests.get(self._uri, timeout=10)
        resp.raise_for_status()
        return resp.json()

    def _refresh(self) -> dict[str, Any]:
        self._data = self._fetch()
        self._fetched_at = time.monotonic()
        logger.debug("JWKS cache refreshed uri=%s keys=%d", self._uri, len(self._data.get("keys") or []))
        return self._data

    def _current(self) -> dict[str, Any]:
        if self._data is None or (time.monotonic() - self._fetched_at) >= self._ttl:
            return self._refresh()
        return self._data

    @staticmethod
    def _find_key(kid: str, data: dict[str, Any]) -> PyJWK | None:
        for key_dict in data.get("keys") or []:
            if key_dict.get("kid") == kid:
                return PyJWK.from_dict(key_dict)
        return None

    def get_signing_key(self, kid: str) -> PyJWK | None:
        key = self._find_key(kid, self._current())
        if key is not None:
            return key

        logger.info("kid not in cached JWKS; refreshing once")
        return self._find_key(kid, self._refresh())
