"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive only as "Authorization: Bearer <token>". The refresh
token lives in an httpOnly cookie and is read by the refresh/logout routes
directly, never here.

get_current_user_id() raises AuthError subclasses (MissingTokenError,
InvalidTokenError, TokenExpiredError); api/main.py maps them to 401 with the
standard error envelope, so routes never build auth error responses by hand.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import InvalidTokenError, MissingTokenError
from auth.service import AuthService

_BEARER_PREFIX = "bearer "


def bearer_token(request: Request) -> str | None:
    """Return the raw token from the Authorization header, or None if absent.

    Raises InvalidTokenError for a header that is present but not a Bearer
    credential (e.g. "Basic ..." or "Bearer" with no token).
    """
    header = request.headers.get("Authorization", "")
    if not header:
        return None
    if not header.lower().startswith(_BEARER_PREFIX):
        raise InvalidTokenError("Authorization header must use the Bearer scheme.")
    token = header[len(_BEARER_PREFIX) :].strip()
    if not token:
        raise InvalidTokenError("Authorization header must use the Bearer scheme.")
    return token


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_current_user_id(request: Request) -> str:
    """Require a valid access token. Returns the user id it was issued for.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user_id: str = Depends(get_current_user_id)): ...
    """
    token = bearer_token(request)
    if token is None:
        raise MissingTokenError("Missing access token.")
    return get_auth_service(request).verify_access_token(token)
