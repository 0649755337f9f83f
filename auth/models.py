"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores map rows to
these types; the lifecycle manager and service do the work.

Timestamps on tokens and records are timezone-aware UTC datetimes. Principal
creation time is an ISO-8601 string, matching how the store writes it.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Principal:
    """An authenticated identity.

    username and email are both unique login handles. email is stored
    lower-cased so lookups by email are case-insensitive; usernames are
    compared exactly.
    """

    display_name: str
    username: str
    email: str
    credential_hash: str
    role: str
    id: str | None = None
    created_at: str | None = None
    is_active: bool = True


@dataclass
class Role:
    """A node in the role forest. parent is the name of the parent role, if any."""

    name: str
    parent: str | None = None


@dataclass
class RefreshTokenRecord:
    """Server-side record of one issued refresh token.

    token_hash is the CredentialVerifier hash of the raw token -- the raw value
    is never persisted. revoked only ever flips False -> True; revoked or
    expired records are deleted by the purge step.
    """

    principal_id: str
    token_hash: str
    issued_at: datetime
    expires_at: datetime
    id: str | None = None
    revoked: bool = False

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True)
class Claims:
    """Verified payload of a signed token.

    kind is the JWT ``typ`` claim, "access" or "refresh". token_id is the
    ``jti`` nonce; it keeps two tokens minted for the same subject within the
    same second distinct. Neither carries authorization data.
    """

    subject: str
    issued_at: datetime
    expires_at: datetime
    kind: str = "access"
    token_id: str | None = None


@dataclass(frozen=True)
class TokenPair:
    """Access + refresh tokens returned by issue() and rotate().

    refresh_token is the raw value. It is handed out exactly once and cannot be
    recovered from the store afterwards.
    """

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime
