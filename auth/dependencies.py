"""
auth/dependencies.py -- FastAPI Depends() helpers for the auth services.

The services themselves are built once in the api/main.py lifespan and
parked on app.state. These helpers hand them to route functions, and
resolve the caller's identity from an `Authorization: Bearer <jwt>` header.

try_get_current_claims() is the soft variant (returns None on failure).
get_current_claims() raises UnauthorizedError if unauthenticated.
get_current_user() additionally loads the User the token names.

Layer rule: auth/dependencies.py may import from fastapi (for Request)
because this module is part of the FastAPI dependency injection system.
It raises auth.errors exceptions, never HTTPException -- api/main.py owns
the mapping to status codes.
"""

from __future__ import annotations

from fastapi import Request

from auth.errors import UnauthorizedError
from auth.models import AccessClaims, User
from auth.password_reset import PasswordResetWorkflow
from auth.sessions import SessionManager
from auth.store import CredentialStore
from auth.tokens import AccessTokenCodec


def get_store(request: Request) -> CredentialStore:
    return request.app.state.store


def get_session_manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def get_password_reset(request: Request) -> PasswordResetWorkflow:
    return request.app.state.password_reset


def try_get_current_claims(request: Request) -> AccessClaims | None:
    """Verify the Bearer access token. Returns None on any failure; never raises."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    codec: AccessTokenCodec = request.app.state.codec
    try:
        return codec.verify(auth_header[7:])
    except UnauthorizedError:
        return None


def get_current_claims(request: Request) -> AccessClaims:
    """Require a valid access token.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(claims: AccessClaims = Depends(get_current_claims)): ...
    """
    claims = try_get_current_claims(request)
    if claims is None:
        raise UnauthorizedError()
    return claims


async def get_current_user(request: Request) -> User:
    """Require a valid access token whose subject still exists."""
    claims = get_current_claims(request)
    user = await get_store(request).get_user_by_id(claims.subject)
    if user is None:
        raise UnauthorizedError()
    return user
