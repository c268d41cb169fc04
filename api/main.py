"""
api/main.py -- FastAPI application entry point for the auth service.

Exposes the session and password reset services over HTTP. The services
themselves live in auth/ and know nothing about HTTP; this module builds
them, hands them to routes via app.state, and maps their error kinds to
status codes.

Run with:      uvicorn asgi:app --reload

Lifespan handles startup (settings, store + schema, hashers, mailer,
services, purge task) and shutdown (cancel purge task, dispose engine)
symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError, ErrorKind, InternalError
from auth.mailer import Mailer, build_mailer
from auth.password_reset import PasswordResetWorkflow
from auth.sessions import SessionManager
from auth.store import CredentialStore
from auth.tokens import AccessTokenCodec, CredentialHasher
from core.config import Settings, get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("todoauth.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Delete expired token rows every `interval` seconds.

    Expired rows are already ignored by every lookup; this only keeps the
    tables from growing without bound. CancelledError from task.cancel()
    during shutdown propagates out of asyncio.sleep and unwinds cleanly. A
    failed purge is logged and retried on the next tick.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            refresh, resets = await app.state.store.purge_expired(datetime.now(timezone.utc))
        except InternalError:
            logger.warning("Expired token purge failed; retrying in %ds", interval)
            continue
        if refresh or resets:
            logger.info("Purged %d expired refresh tokens, %d reset tokens", refresh, resets)


# ---------------------------------------------------------------------------
# Service wiring -- shared by the real lifespan and the test lifespan
# ---------------------------------------------------------------------------


async def init_state(app: FastAPI, settings: Settings, mailer: Mailer | None = None) -> None:
    """Build every service from one Settings object and park them on app.state.

    Startup order matters: the store (and its schema) first, because both
    services hold a reference to it; the mailer before the reset workflow.
    """
    app.state.settings = settings
    app.state.store = CredentialStore(settings.database_url, pool_size=settings.db_pool_size)
    await app.state.store.create_schema()
    app.state.hasher = CredentialHasher.from_settings(settings)
    app.state.codec = AccessTokenCodec.from_settings(settings)
    app.state.mailer = mailer if mailer is not None else build_mailer(settings)
    app.state.session_manager = SessionManager(app.state.store, app.state.hasher, app.state.codec, settings)
    app.state.password_reset = PasswordResetWorkflow(app.state.store, app.state.hasher, app.state.mailer, settings)


async def close_state(app: FastAPI) -> None:
    await app.state.store.close()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. get_settings() is called here and nowhere else in the request
    path -- services receive the Settings object through their constructors.
    """
    logger.info("Auth API starting up")
    settings = get_settings()
    await init_state(app, settings)
    logger.info("Auth services initialized (access_ttl=%dm, refresh_ttl=%dd)",
                settings.access_token_ttl_minutes, settings.refresh_token_ttl_days)
    app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.purge_interval_seconds))

    yield

    app.state.purge_task.cancel()
    await close_state(app)
    logger.info("Auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Todo Auth API",
    description="Registration, login, refresh-token rotation, logout and password reset.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Only method, path, status and latency are logged -- never bodies,
# which carry passwords and secrets.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INTERNAL: 500,
}


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map a service error kind to its status code.

    The message is the exception's own: specific for validation errors,
    fixed and generic for everything else (see auth/errors.py).
    """
    status_code = STATUS_BY_KIND[exc.kind]
    if exc.kind is ErrorKind.INTERNAL:
        logger.error("Internal error on %s %s", request.method, request.url.path, exc_info=exc)
    response = JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.kind.value, message=exc.message)).model_dump(),
    )
    if status_code == 401:
        response.headers["WWW-Authenticate"] = "Bearer"
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions (404, 405, ...)."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    Security note: the raw exception is written to the log only, never to the
    response body. Store and driver errors end up here and must not leak
    schema or connection details to clients.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and a database round-trip check."""
    database = "ok" if await request.app.state.store.ping() else "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=VERSION,
        components={"app": "ok", "database": database},
    )
