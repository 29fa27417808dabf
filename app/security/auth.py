from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from app.identity import IdentityClaims, InvalidTokenError, TokenValidator
from app.models.security import User
from app.security.config import AccessPolicy
from app.settings import get_settings

logger = logging.getLogger(__name__)


def extract_bearer_token(request: Request, policy: AccessPolicy) -> str | None:
    """
    Read `Authorization: Bearer <token>`.

    Returns None when the header is absent; raises 400 when it is malformed.
    """

    header_name = policy.auth.authorization_header
    bearer_prefix = policy.auth.bearer_prefix

    raw = request.headers.get(header_name)
    if not raw:
        logger.info("Missing Authorization header (auth required) path=%s method=%s", request.url.path, request.method)
        return None

    prefix = f"{bearer_prefix} "
    if not raw.startswith(prefix):
        logger.warning("Invalid Authorization header format path=%s method=%s", request.url.path, request.method)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header_name}. Expected '{bearer_prefix} <token>'.",
        )

    token = raw[len(prefix) :].strip()
    if not token:
        logger.warning("Empty bearer token path=%s method=%s", request.url.path, request.method)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header_name}. Missing token after '{bearer_prefix}'.",
        )
    return token


@lru_cache
def get_token_validator() -> TokenValidator:
    return TokenValidator()


def resolve_identity(token: str) -> IdentityClaims:
    """
    Turn a bearer token into identity claims.

    - provider "dummy": the token is the user id (local/dev only)
    - provider "jwt": the token is verified against the identity provider
    """

    if get_settings().auth_provider == "dummy":
        return IdentityClaims(subject=token)

    try:
        return get_token_validator().verify(token)
    except InvalidTokenError as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc)) from exc


def load_user(db: Session, claims: IdentityClaims) -> User:
    """Load the active User for the claims, with company and memberships preloaded."""
    options = (selectinload(User.company), selectinload(User.memberships))
    user = db.execute(select(User).where(User.id == claims.subject).options(*options)).scalar_one_or_none()
    if user is None and claims.email:
        user = db.execute(select(User).where(User.email == claims.email).options(*options)).scalar_one_or_none()

    if user is None or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or inactive user")

    return user
