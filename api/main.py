"""
api/main.py -- FastAPI application entry point for authcore.

Exposes the auth core over HTTP: registration, login, refresh-token rotation,
logout, and role-guarded endpoints.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware        -- adds CORS headers for allowed browser origins
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (settings, database, auth service, optional purge
task) and shutdown (cancel purge task, dispose engine) symmetrically. Settings
are resolved here, once; a missing SECRET_KEY aborts startup with
ConfigurationMissing before the app accepts a request.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.service import build_auth_service
from auth.store import create_store_engine
from core.config import get_settings
from core.errors import (
    AuthError,
    HandleAlreadyRegistered,
    HashingFailure,
    InvalidCredentials,
    RoleCycleDetected,
    RoleNotFound,
    TokenError,
    TokenReuseOrUnknown,
    VerificationFailure,
)

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authcore.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI, interval: int) -> None:
    """Sweep revoked and expired refresh tokens every interval seconds.

    Rotation and logout already purge per principal; this loop only catches
    principals who never come back. The sweep is a blocking DB call, so it
    runs in a worker thread. A failed sweep is logged and retried on the next
    tick; only cancellation ends the loop.
    """
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(app.state.auth_service.lifecycle.sweep)
        except Exception:
            logger.exception("Refresh token sweep failed; retrying in %ds", interval)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    settings = get_settings()
    logger.info("authcore API starting up")
    app.state.engine = create_store_engine(settings.database_url)
    app.state.auth_service = build_auth_service(settings, app.state.engine)
    logger.info("Auth service initialized (hash_cost=%d)", settings.hash_cost)
    app.state.purge_task = None
    if settings.purge_interval_seconds > 0:
        app.state.purge_task = asyncio.create_task(_purge_loop(app, settings.purge_interval_seconds))

    yield

    if app.state.purge_task is not None:
        app.state.purge_task.cancel()
        with suppress(asyncio.CancelledError):
            await app.state.purge_task
    app.state.engine.dispose()
    logger.info("authcore API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authcore API",
    description="Token issuance, rotation and revocation with hierarchical role checks.",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
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
# Every handler answers with the same ErrorResponse envelope, so clients read
# error.code without first choosing a schema by status.
# ---------------------------------------------------------------------------

# Most specific class first; the first isinstance match wins.
_AUTH_ERROR_STATUS: tuple[tuple[type[AuthError], int], ...] = (
    (HandleAlreadyRegistered, 409),
    (InvalidCredentials, 401),
    (TokenError, 401),
    (TokenReuseOrUnknown, 401),
    (RoleNotFound, 404),
    (RoleCycleDetected, 500),
    (HashingFailure, 500),
    (VerificationFailure, 500),
)

_UNAUTHORIZED_HEADERS = {"WWW-Authenticate": "Bearer", "Cache-Control": "no-store"}


def status_for(exc: AuthError) -> int:
    for error_type, status in _AUTH_ERROR_STATUS:
        if isinstance(exc, error_type):
            return status
    return 400


def _error_response(
    status: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status, content=body.model_dump(), headers=headers)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map domain errors to status codes.

    5xx errors are infrastructure or data-corruption problems: the detail is
    logged, the client only sees the class's generic message. 401s carry
    WWW-Authenticate and no-store so no proxy caches an auth failure.
    """
    status = status_for(exc)
    if status >= 500:
        logger.error("Auth infrastructure error on %s %s: %s", request.method, request.url.path, exc)
        return _error_response(status, exc.code, exc.message)
    headers = _UNAUTHORIZED_HEADERS if status == 401 else None
    return _error_response(status, exc.code, str(exc), headers=headers)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    client = request.client.host if request.client else "unknown"
    logger.warning("Rate limit hit on %s from %s", request.url.path, client)
    retry_after = int(getattr(exc, "retry_after", 60))
    return _error_response(
        429,
        "rate_limited",
        "Too many requests.",
        detail=str(exc.detail),
        headers={"Retry-After": str(retry_after)},
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Structured dict details (from auth/dependencies.py) become the error field as-is."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort. The raw exception goes to the log only, never to the body."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    return HealthResponse(version=API_VERSION)
