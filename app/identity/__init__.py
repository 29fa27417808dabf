"""
Bearer-token verification for the `jwt` auth provider.

Background for newcomers:
    With ``AUTH_PROVIDER=jwt`` users sign in at an external OpenID Connect
    provider and present the issued token to this API. This package only
    answers "is this token genuine, and whose is it?". It has no dependency
    on other app packages.

    verify_token() takes the raw bearer token and returns IdentityClaims
    (principal id + email); app.security.auth then resolves those to a User
    and builds the Principal used for authorization.
"""

from .claims import IdentityClaims
from .config import IdentityConfig
from .validator import InvalidTokenError, TokenValidator, verify_token

__all__ = [
    "IdentityClaims",
    "IdentityConfig",
    "InvalidTokenError",
    "TokenValidator",
    "verify_token",
]
