"""
api/routes/v1/auth.py -- Credential lifecycle REST endpoints.

Routes:
  POST /api/v1/auth/register           -- create account; 201 + profile
  POST /api/v1/auth/login              -- password login; tokens + refresh cookie
  POST /api/v1/auth/refresh            -- rotate refresh cookie; new tokens
  POST /api/v1/auth/logout             -- revoke this session; 204
  POST /api/v1/auth/logout-all         -- revoke every session; 204
  POST /api/v1/auth/change-password    -- new password, all sessions revoked
  GET  /api/v1/auth/me                 -- current user profile (requires auth)

Security:
  [H2] POST /register and POST /login are rate-limited per IP (RATE_LIMIT_PER_MINUTE).
  [M5] Cache-Control: no-store on every response that carries a token.
  The refresh token is only ever sent back in an httpOnly cookie scoped to
  the configured domain; a failed refresh deletes that cookie so a browser
  stops replaying a dead token.

Handlers are plain `def`: every AuthService call does bcrypt work or blocking
DB I/O, so FastAPI runs them in its threadpool.

No `from __future__ import annotations` here: slowapi wraps the limited
handlers, and FastAPI must resolve their annotations as real objects.
"""

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.errors import auth_error_response
from api.limiter import auth_rate_limit, limiter
from api.models import (
    ChangePasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    TokenResponse,
    UserResponse,
)
from auth.dependencies import get_auth_service, get_current_user_id
from auth.errors import AuthError
from auth.service import AuthService
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/register:         public, rate limited
# - POST /api/v1/auth/login:            public, rate limited
# - POST /api/v1/auth/refresh:          refresh cookie only
# - POST /api/v1/auth/logout:           requires bearer (get_current_user_id)
# - POST /api/v1/auth/logout-all:       requires bearer (get_current_user_id)
# - POST /api/v1/auth/change-password:  requires bearer (get_current_user_id)
# - GET  /api/v1/auth/me:               requires bearer (get_current_user_id)
router = APIRouter()


# ---------------------------------------------------------------------------
# Cookie and request helpers
# ---------------------------------------------------------------------------


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


def _user_agent(request: Request) -> str:
    return request.headers.get("User-Agent", "")


def set_refresh_cookie(response: Response, refresh_token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        key=settings.refresh_cookie_name,
        value=refresh_token,
        max_age=settings.refresh_token_ttl_seconds,
        path="/",
        domain=settings.cookie_domain or None,
        secure=settings.secure_cookies,
        httponly=True,
        samesite=settings.cookie_samesite,
    )


def clear_refresh_cookie(response: Response) -> None:
    settings = get_settings()
    response.delete_cookie(
        key=settings.refresh_cookie_name,
        path="/",
        domain=settings.cookie_domain or None,
        secure=settings.secure_cookies,
        httponly=True,
        samesite=settings.cookie_samesite,
    )


def _refresh_cookie(request: Request) -> str | None:
    return request.cookies.get(get_settings().refresh_cookie_name)


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=UserResponse, status_code=201)
@limiter.limit(auth_rate_limit)
def register(
    request: Request,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Create an account. Issues no tokens; the client logs in afterwards."""
    profile = service.register(body.email, body.password)
    return UserResponse.from_profile(profile)


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(auth_rate_limit)  # [H2] brute-force mitigation
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 body. The Nth
    consecutive wrong password answers 403 account_locked.
    """
    try:
        result = service.login(body.email, body.password, _client_ip(request), _user_agent(request))
    except AuthError as exc:
        resp = auth_error_response(exc)
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    resp = JSONResponse(content=LoginResponse.from_result(result).model_dump(mode="json"))
    set_refresh_cookie(resp, result.refresh_token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Exchange the refresh cookie for a new token pair.

    The presented token is revoked in the same transaction that stores its
    replacement, so it can never be used again. On any failure the cookie
    is cleared.
    """
    try:
        pair = service.refresh(_refresh_cookie(request))
    except AuthError as exc:
        resp = auth_error_response(exc)
        clear_refresh_cookie(resp)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    resp = JSONResponse(content=TokenResponse.from_pair(pair).model_dump(mode="json"))
    set_refresh_cookie(resp, pair.refresh_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", status_code=204)
def logout(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    service: AuthService = Depends(get_auth_service),
) -> Response:
    """Revoke the refresh token in the cookie (if any) and clear the cookie."""
    service.logout(user_id, _refresh_cookie(request), _client_ip(request), _user_agent(request))
    resp = Response(status_code=204)
    clear_refresh_cookie(resp)
    return resp


@router.post("/auth/logout-all", status_code=204)
def logout_all(
    request: Request,
    user_id: str = Depends(get_current_user_id),
    service: AuthService = Depends(get_auth_service),
) -> Response:
    """Revoke every refresh token the user holds, on every device."""
    service.logout_all(user_id, _client_ip(request), _user_agent(request))
    resp = Response(status_code=204)
    clear_refresh_cookie(resp)
    return resp


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    user_id: str = Depends(get_current_user_id),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Change the password. Every refresh token of the user stops working.

    Access tokens already issued stay valid until they expire.
    """
    service.change_password(user_id, body.old_password, body.new_password)
    resp = JSONResponse(content=MessageResponse(message="Password changed successfully.").model_dump())
    clear_refresh_cookie(resp)
    return resp


@router.get("/auth/me", response_model=UserResponse)
def me(
    user_id: str = Depends(get_current_user_id),
    service: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Return the profile of the currently authenticated user."""
    return UserResponse.from_profile(service.get_profile(user_id))
