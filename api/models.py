"""
API request and response models for authcore REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Usernames are 3-32 word characters, emails at most 128 characters, passwords
1-255 characters, and registration requires a matching confirmation.
"""

import re
from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.models import Principal

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[A-Za-z0-9_]{3,32}$"
EMAIL_PATTERN = r"^[^\s@]+@[^\s@]+\.[^\s@]+$"

# Annotated type so the same length rule applies wherever a password appears.
_Password = Annotated[str, Field(min_length=1, max_length=255)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    login is either an email address or a username; the directory decides
    which by the presence of '@'.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    login: str = Field(min_length=1, max_length=128)
    password: _Password

    @field_validator("login")
    @classmethod
    def email_or_username(cls, value: str) -> str:
        if re.match(EMAIL_PATTERN, value) or re.match(USERNAME_PATTERN, value):
            return value
        raise ValueError("Must be a valid username (3-32 characters) or email")


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    username: str = Field(pattern=USERNAME_PATTERN)
    email: str = Field(max_length=128, pattern=EMAIL_PATTERN)
    password: _Password
    confirm_password: _Password

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class RefreshRequest(BaseModel):
    """Optional body for /auth/refresh and /auth/logout.

    Browser clients send the refresh token in the httpOnly cookie and omit the
    body; other clients may pass it here instead.
    """

    refresh_token: Optional[str] = Field(default=None, max_length=4096)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """Response for login and refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class PrincipalResponse(BaseModel):
    """Public view of a principal. Never includes the credential hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    username: str
    email: str
    role: str
    created_at: str = ""

    @classmethod
    def from_principal(cls, principal: Principal) -> "PrincipalResponse":
        return cls(
            id=principal.id or "",
            name=principal.display_name,
            username=principal.username,
            email=principal.email,
            role=principal.role,
            created_at=principal.created_at or "",
        )


class AncestryResponse(BaseModel):
    """Response for GET /api/v1/auth/roles/{role}/ancestry."""

    model_config = ConfigDict(frozen=True)

    role: str
    chain: list[str]


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
