"""
api/errors.py -- AuthError -> HTTP mapping and the shared error envelope.

Every error response, whether produced by an exception handler in
api/main.py or built inline by a route that must also touch cookies, goes
through error_response() so clients always see:

    {"error": {"code": "...", "message": "...", "detail": ...}}
"""

from __future__ import annotations

from typing import Optional, Union

from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse
from auth.errors import AccountLockedError, AuthError, ErrorKind, WeakPasswordError

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.USER_NOT_FOUND: 404,
    ErrorKind.USER_ALREADY_EXISTS: 409,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.ACCOUNT_LOCKED: 403,
    ErrorKind.WEAK_PASSWORD: 400,
    ErrorKind.INVALID_PASSWORD: 400,
    ErrorKind.INVALID_TOKEN: 401,
    ErrorKind.TOKEN_EXPIRED: 401,
    ErrorKind.TOKEN_REVOKED: 401,
    ErrorKind.MISSING_TOKEN: 401,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.STORE_FAILURE: 500,
}


def error_response(
    status_code: int,
    code: str,
    message: str,
    detail: Optional[Union[str, list[str]]] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


def auth_error_response(exc: AuthError) -> JSONResponse:
    """Translate a core AuthError into the HTTP error envelope.

    StoreError messages can carry driver text, so 500s get a generic message.
    """
    status_code = STATUS_BY_KIND.get(exc.kind, 500)
    detail: Optional[Union[str, list[str]]] = None
    if isinstance(exc, WeakPasswordError):
        detail = exc.reasons
    elif isinstance(exc, AccountLockedError) and exc.locked_until is not None:
        detail = exc.locked_until.isoformat()

    message = exc.message if status_code < 500 else "An unexpected error occurred."
    response = error_response(status_code, exc.kind.value, message, detail)
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response
