"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as ``Authorization: Bearer <token>``. Refresh tokens are
never accepted here -- only the refresh/logout routes consume them.

get_current_principal() raises HTTP 401 if the request is not authenticated.
require_role() wraps it and raises HTTP 403 if the principal's role does not
pass the guard. Roles are resolved per request from the directory, never from
the token, so a demotion takes effect on the next request.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Depends, HTTPException, Request

from auth.models import Principal
from auth.service import AuthService
from core.errors import AuthError, RoleNotFound


def _unauthorized(code: str = "unauthorized", message: str = "Authentication required.") -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_current_principal(request: Request) -> Principal:
    """Require a valid Bearer access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(principal: Principal = Depends(get_current_principal)): ...

    The error code distinguishes token_expired from the other failures so
    clients know when to call /auth/refresh instead of logging in again.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise _unauthorized()
    token = auth_header[7:].strip()
    if not token:
        raise _unauthorized()
    service = get_auth_service(request)
    try:
        return service.current_principal(token)
    except AuthError as exc:
        raise _unauthorized(exc.code, str(exc)) from exc


def require_role(*roles: str, strict: bool = True) -> Callable[..., Principal]:
    """Build a dependency that admits only principals passing the role guard.

    strict=True  -- principal.role must be one of roles.
    strict=False -- roles[0] is the floor; any role at least as privileged passes.

    Use as a FastAPI dependency:
        @router.get("/admin-only")
        async def route(principal: Principal = Depends(require_role("ADMIN", strict=False))): ...
    """

    def guard(request: Request, principal: Principal = Depends(get_current_principal)) -> Principal:
        hierarchy = get_auth_service(request).roles
        try:
            allowed = hierarchy.has_access(principal.role, roles, strict=strict)
        except RoleNotFound:
            # Principal's role missing from the hierarchy: insufficient, not a crash.
            allowed = False
        if not allowed:
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Access denied."},
            )
        return principal

    return guard
