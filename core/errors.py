"""
core/errors.py -- Exception taxonomy for authcore.

Every failure the core can report is a subclass of AuthError carrying a stable
machine-readable ``code``. The HTTP layer maps codes to status codes; nothing
below api/ knows about transports.

Token decode failures share the TokenError base so callers that only care
about "unusable token" can catch one type, while the rotation flow can still
tell an expired token from a forged one.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all authcore domain errors."""

    code = "auth_error"
    message = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)


# ---------------------------------------------------------------------------
# Startup
# ---------------------------------------------------------------------------


class ConfigurationMissing(AuthError):
    """A required configuration value is absent. Fatal at startup."""

    code = "configuration_missing"
    message = "Required configuration is missing."


# ---------------------------------------------------------------------------
# Directory / credentials
# ---------------------------------------------------------------------------


class HandleAlreadyRegistered(AuthError):
    code = "handle_taken"
    message = "A user with that username or email already exists."


class InvalidCredentials(AuthError):
    """Wrong handle/password combination.

    Deliberately generic: the message never says which factor was wrong.
    """

    code = "bad_credentials"
    message = "Invalid login or password."


# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class TokenError(AuthError):
    """Base for decode-time token failures."""

    code = "token_error"
    message = "Token could not be validated."


class TokenMalformed(TokenError):
    code = "token_malformed"
    message = "Token is malformed."


class TokenSignatureInvalid(TokenError):
    code = "token_invalid"
    message = "Token signature is invalid."


class TokenExpired(TokenError):
    code = "token_expired"
    message = "Token has expired."


class TokenReuseOrUnknown(AuthError):
    """No active stored record matches the presented refresh token.

    Either the token was already rotated/revoked (possible theft) or the
    record was swept. Callers may use this signal for lockout or alerting.
    """

    code = "token_reuse"
    message = "Refresh token is invalid or already used."


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleNotFound(AuthError):
    code = "role_not_found"
    message = "Role not found."


class RoleCycleDetected(AuthError):
    code = "role_cycle"
    message = "Role hierarchy contains a cycle."


# ---------------------------------------------------------------------------
# Hashing infrastructure
# ---------------------------------------------------------------------------


class HashingFailure(AuthError):
    code = "hashing_failure"
    message = "Failed to hash secret."


class VerificationFailure(AuthError):
    code = "verification_failure"
    message = "Stored hash is malformed."
