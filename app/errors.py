"""
Service-level error taxonomy.

Every write returns either a result or one of these errors; the FastAPI handler in
app/main.py renders them as {"kind", "message"} (+ "current_state" for transitions).
"""

from __future__ import annotations

from fastapi import Request, status
from fastapi.responses import JSONResponse


class ServiceError(Exception):
    kind = "error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, object]:
        return {"kind": self.kind, "message": self.message}


class AuthorizationDenied(ServiceError):
    """Principal lacks the role or company relation for the action."""

    kind = "authorization_denied"
    status_code = status.HTTP_403_FORBIDDEN


class NotFound(ServiceError):
    """Missing or invisible resource; callers cannot tell the two apart."""

    kind = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class ValidationError(ServiceError):
    kind = "validation_error"
    status_code = 422


class InvalidStateTransition(ServiceError):
    """Raised when a session action is illegal from its current state."""

    kind = "invalid_state_transition"
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, action: str, current_state: str | None, reason: str | None = None) -> None:
        msg = f"Cannot '{action}' session (status={current_state})"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)
        self.action = action
        self.current_state = current_state
        self.reason = reason

    def to_dict(self) -> dict[str, object]:
        data = super().to_dict()
        data["current_state"] = self.current_state
        return data


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
