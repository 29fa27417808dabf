"""Tests for the JWKS cache (network patched out)."""

from unittest.mock import MagicMock, patch

import jwt

from app.identity.jwks_cache import JWKSCache


def _jwks(*kids):
    return {"keys": [{"kty": "oct", "kid": kid, "k": jwt.utils.base64url_encode(b"k" * 32).decode()} for kid in kids]}


def _response(payload):
    resp = MagicMock()
    resp.json.return_value = payload
    return resp


def test_keys_are_cached_within_ttl():
    with patch("app.identity.jwks_cache.requests.get", return_value=_response(_jwks("a"))) as get:
        cache = JWKSCache("https://idp.example.com/jwks", ttl_seconds=3600)
        assert cache.get_signing_key("a") is not None
        assert cache.get_signing_key("a") is not None
    assert get.call_count == 1


def test_unknown_kid_refreshes_once():
    responses = [_response(_jwks("a")), _response(_jwks("a", "b"))]
    with patch("app.identity.jwks_cache.requests.get", side_effect=responses) as get:
        cache = JWKSCache("https://idp.example.com/jwks", ttl_seconds=3600)
        key = cache.get_signing_key("b")
    assert key is not None
    assert key.key_id == "b"
    assert get.call_count == 2


def test_missing_kid_after_refresh_returns_none():
    with patch("app.identity.jwks_cache.requests.get", return_value=_response(_jwks("a"))) as get:
        cache = JWKSCache("https://idp.example.com/jwks", ttl_seconds=3600)
        assert cache.get_signing_key("zzz") is None
    assert get.call_count == 2


def test_expired_ttl_refetches():
    with patch("app.identity.jwks_cache.requests.get", return_value=_response(_jwks("a"))) as get:
        cache = JWKSCache("https://idp.example.com/jwks", ttl_seconds=0)
        cache.get_signing_key("a")
        cache.get_signing_key("a")
    assert get.call_count == 2
