from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.errors import AuthorizationDenied
from app.security.auth import extract_bearer_token, load_user, resolve_identity
from app.security.config import AccessPolicy
from app.security.context import AuditActor, Principal


def get_access_policy(request: Request) -> AccessPolicy:
    policy = getattr(request.app.state, "access_policy", None)
    if policy is None:
        raise RuntimeError("Access policy not loaded. Did app startup run?")
    return policy


def enforce_security(
    request: Request,
    policy: AccessPolicy = Depends(get_access_policy),
    db: Session = Depends(get_db, use_cache=False),
) -> None:
    """
    Global dependency: resolves the caller once per request.

    Public routes pass through. Everything else needs a valid bearer token for an
    active user; the resulting Principal (memberships preloaded) and AuditActor
    are stored on request.state for the route handlers.
    """

    if policy.is_public(request.url.path, request.method):
        return

    token = extract_bearer_token(request, policy)
    if token is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    user = load_user(db, resolve_identity(token))
    principal = Principal.from_user(user)

    request.state.principal = principal
    request.state.audit_actor = AuditActor.from_principal(
        principal,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def get_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return principal


def get_audit_actor(request: Request) -> AuditActor | None:
    return getattr(request.state, "audit_actor", None)


def require_super_admin(principal: Principal = Depends(get_principal)) -> Principal:
    if not principal.is_super_admin:
        raise AuthorizationDenied("Super-admin access required")
    return principal
