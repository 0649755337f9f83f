"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/register               -- create a principal with the default role
  POST /api/v1/auth/login                  -- password login; returns token pair, sets refresh cookie
  POST /api/v1/auth/refresh                -- rotate refresh token (cookie or body)
  POST /api/v1/auth/logout                 -- revoke refresh token, clear cookie
  GET  /api/v1/auth/me                     -- current principal (requires access token)
  GET  /api/v1/auth/roles/{role}/ancestry  -- role ancestry chain (ADMIN or above)

Security:
  POST /login is rate-limited per IP (Settings.login_rate_limit).
  AuthService.authenticate() provides timing equalization -- use it, never inline.
  Cache-Control: no-store on every response that carries a token.
  The refresh cookie is httpOnly, SameSite=strict and scoped to /api/v1/auth
  so it is only ever sent to the endpoints that consume it.

Domain errors (core.errors.AuthError) are not caught here; the exception
handler in api/main.py maps them to status codes and the error envelope.
"""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_limit
from api.models import (
    AncestryResponse,
    LoginRequest,
    MessageResponse,
    PrincipalResponse,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
)
from auth.dependencies import get_auth_service, get_current_principal, require_role
from auth.models import Principal, TokenPair
from auth.service import AuthService
from core.config import get_settings

REFRESH_COOKIE = "refresh_token"
_COOKIE_PATH = "/api/v1/auth"

# Auth policy:
# - POST /api/v1/auth/register:              public
# - POST /api/v1/auth/login:                 public, rate-limited
# - POST /api/v1/auth/refresh:               refresh token only
# - POST /api/v1/auth/logout:                refresh token only
# - GET  /api/v1/auth/me:                    requires access token (get_current_principal)
# - GET  /api/v1/auth/roles/{role}/ancestry: requires ADMIN or above (hierarchical guard)
router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=PrincipalResponse, status_code=201)
def register(body: RegisterRequest, service: AuthService = Depends(get_auth_service)) -> PrincipalResponse:
    """Register a principal. 409 if the username or email is already taken."""
    principal = service.register(
        name=body.name,
        username=body.username,
        email=body.email,
        password=body.password,
    )
    return PrincipalResponse.from_principal(principal)


@limiter.limit(login_limit)  # brute-force mitigation -- must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email-or-username and password.

    Wrong handle and wrong password return the same generic 401
    ("bad_credentials") to avoid leaking which handles exist.
    """
    service = get_auth_service(request)
    pair = service.login(body.login, body.password)
    return _token_response(pair, service.lifecycle.codec.clock())


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Rotate the refresh token. The presented token is consumed even on success.

    A reused token answers 401 token_reuse; the client must log in again.
    """
    service = get_auth_service(request)
    pair = service.refresh(_presented_refresh_token(request, body))
    return _token_response(pair, service.lifecycle.codec.clock())


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: RefreshRequest | None = None) -> JSONResponse:
    """Revoke the refresh token and clear the cookie."""
    service = get_auth_service(request)
    service.logout(_presented_refresh_token(request, body))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    resp.delete_cookie(REFRESH_COOKIE, path=_COOKIE_PATH)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=PrincipalResponse)
def me(principal: Principal = Depends(get_current_principal)) -> PrincipalResponse:
    """Return the principal behind the Bearer access token."""
    return PrincipalResponse.from_principal(principal)


@router.get("/auth/roles/{role}/ancestry", response_model=AncestryResponse)
def role_ancestry(
    role: str,
    service: AuthService = Depends(get_auth_service),
    principal: Principal = Depends(require_role("ADMIN", strict=False)),
) -> AncestryResponse:
    """Return the role and its ancestors, nearest first. 404 if the role is unknown."""
    return AncestryResponse(role=role, chain=service.roles.ancestry_chain(role))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _presented_refresh_token(request: Request, body: RefreshRequest | None) -> str:
    token = (body.refresh_token if body else None) or request.cookies.get(REFRESH_COOKIE)
    if not token:
        raise HTTPException(
            status_code=401,
            detail={"code": "refresh_token_required", "message": "Refresh token is required."},
        )
    return token


def _seconds_until(moment: datetime, now: datetime) -> int:
    return max(0, round((moment - now).total_seconds()))


def _token_response(pair: TokenPair, now: datetime) -> JSONResponse:
    """Build the token body and refresh cookie. Lifetimes come from the pair as issued."""
    settings = get_settings()
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=_seconds_until(pair.access_expires_at, now),
        ).model_dump(),
    )
    resp.set_cookie(
        REFRESH_COOKIE,
        value=pair.refresh_token,
        httponly=True,
        samesite="strict",
        secure=settings.secure_cookies,
        max_age=_seconds_until(pair.refresh_expires_at, now),
        path=_COOKIE_PATH,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp
