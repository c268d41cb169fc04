"""
api/routes/v1/auth.py -- Session and password reset REST endpoints.

Routes:
  POST /api/v1/auth/register   -- create account; 201 + token pair
  POST /api/v1/auth/login      -- password login; 200 + token pair
  POST /api/v1/auth/refresh    -- rotate refresh secret; 200 + new token pair
  POST /api/v1/auth/logout     -- revoke refresh secret; 204
  POST /api/v1/auth/forgot     -- request reset mail; generic 200
  POST /api/v1/auth/reset      -- confirm reset with token; 200
  GET  /api/v1/auth/me         -- current user profile (requires Bearer token)

Route handlers are thin: they call one service method and shape the
response. Errors are auth.errors exceptions; api/main.py maps their kind to a
status code, so no handler here builds an error response itself.

Security:
  [M5] Cache-Control: no-store on every response that carries a token.
  Refresh cookie: httpOnly, samesite=lax, scoped to /api/v1/auth, secure when
       REFRESH_COOKIE_SECURE=true. The body field wins when both are present.
  [E1] /forgot answers with the same message whether or not the account exists.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.models import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UserResponse,
)
from auth.dependencies import get_current_user, get_password_reset, get_session_manager
from auth.errors import UnauthorizedError
from auth.models import AuthResult, User
from auth.password_reset import PasswordResetWorkflow
from auth.sessions import SessionManager

# Auth policy:
# - POST /api/v1/auth/register|login|refresh|logout|forgot|reset: public
#   (refresh/logout authenticate with the refresh secret itself)
# - GET  /api/v1/auth/me: requires Bearer access token (get_current_user)
router = APIRouter()

_COOKIE_PATH = "/api/v1/auth"

FORGOT_MESSAGE = "If the email exists, a reset link will be sent."
RESET_MESSAGE = "Password has been updated."


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def _token_response(request: Request, result: AuthResult, status_code: int = 200) -> JSONResponse:
    """Serialize an AuthResult, set the refresh cookie, and forbid caching [M5]."""
    settings = request.app.state.settings
    resp = JSONResponse(status_code=status_code, content=AuthResponse.from_result(result).model_dump())
    resp.set_cookie(
        settings.refresh_cookie_name,
        value=result.refresh_token,
        httponly=True,
        samesite="lax",
        secure=settings.refresh_cookie_secure,
        max_age=settings.refresh_token_ttl_seconds,
        path=_COOKIE_PATH,
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _refresh_secret(request: Request, body: RefreshRequest | None) -> str:
    """Take the refresh secret from the body, falling back to the cookie."""
    if body is not None and body.refresh_token and body.refresh_token.strip():
        return body.refresh_token.strip()
    cookie = request.cookies.get(request.app.state.settings.refresh_cookie_name)
    if not cookie:
        raise UnauthorizedError()
    return cookie


# ---------------------------------------------------------------------------
# Session endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
async def register(
    request: Request,
    body: RegisterRequest,
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Create an account and return its first token pair."""
    result = await sessions.register(body.email, body.password)
    return _token_response(request, result, status_code=201)


@router.post("/auth/login", response_model=AuthResponse)
async def login(
    request: Request,
    body: LoginRequest,
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Authenticate with email and password.

    Wrong password and unknown email produce the same 401 -- the service
    equalizes timing as well [C1].
    """
    result = await sessions.login(body.email, body.password)
    return _token_response(request, result)


@router.post("/auth/refresh", response_model=AuthResponse)
async def refresh(
    request: Request,
    body: RefreshRequest | None = None,
    sessions: SessionManager = Depends(get_session_manager),
) -> JSONResponse:
    """Rotate a refresh secret. The presented secret is dead after this call."""
    result = await sessions.refresh(_refresh_secret(request, body))
    return _token_response(request, result)


@router.post("/auth/logout", status_code=204)
async def logout(
    request: Request,
    body: RefreshRequest | None = None,
    sessions: SessionManager = Depends(get_session_manager),
) -> Response:
    """Revoke the presented refresh secret and clear the cookie."""
    await sessions.logout(_refresh_secret(request, body))
    resp = Response(status_code=204)
    resp.delete_cookie(request.app.state.settings.refresh_cookie_name, path=_COOKIE_PATH)
    return resp


# ---------------------------------------------------------------------------
# Password reset endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/forgot", response_model=MessageResponse)
async def forgot(
    body: ForgotPasswordRequest,
    workflow: PasswordResetWorkflow = Depends(get_password_reset),
) -> MessageResponse:
    """Mail a reset link if the email belongs to an account [E1]."""
    await workflow.request(body.email)
    return MessageResponse(message=FORGOT_MESSAGE)


@router.post("/auth/reset", response_model=MessageResponse)
async def reset(
    body: ResetPasswordRequest,
    workflow: PasswordResetWorkflow = Depends(get_password_reset),
) -> MessageResponse:
    """Set a new password with a reset token. Signs the user out everywhere."""
    await workflow.confirm(body.token, body.new_password)
    return MessageResponse(message=RESET_MESSAGE)


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return the profile of the user the access token names."""
    return UserResponse.from_profile(current_user.profile())
