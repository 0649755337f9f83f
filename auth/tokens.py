"""
auth/tokens.py -- Signed, self-contained tokens (access and refresh).

Security design decisions:
  JWT: python-jose with HS256. The signing secret is handed to TokenCodec once
       at construction (from core.config.get_settings()) and never re-read per
       call.

  Payload: sub, iat, exp, a random jti and typ ("access" or "refresh"). No
       role or permission data -- authorization is re-resolved per request so
       a demoted user does not keep stale privileges until the token expires.
       typ keeps the two kinds apart: decode(token, kind=ACCESS) refuses a
       refresh token and decode(token, kind=REFRESH) refuses an access token,
       both with TokenMalformed.

  Errors: decode() distinguishes three failures, because the rotation flow
       treats an expired token differently from a forged one:
         TokenMalformed        -- not a JWS, claims missing / wrong type, or
                                  the wrong kind of token
         TokenSignatureInvalid -- structurally fine, MAC check fails
         TokenExpired          -- genuine token, clock() >= exp
       The signature is checked before expiry: a forged expired token is
       reported as forged.

  Expiry: checked here against the injectable clock rather than by jose, so
       the boundary is exactly ``now >= exp`` and tests can move time.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import JWTClaimsError, JWTError

from auth.models import Claims
from core.errors import TokenExpired, TokenMalformed, TokenSignatureInvalid

_DEFAULT_ALGORITHM = "HS256"

ACCESS = "access"
REFRESH = "refresh"
_KINDS = (ACCESS, REFRESH)

# jose's own exp check is disabled; see module docstring.
_DECODE_OPTIONS = {"verify_exp": False, "verify_aud": False}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenCodec:
    """Encode and decode HS256 tokens with a process-wide secret.

    Usage:
        codec = TokenCodec(settings.secret_key)
        token = codec.encode("principal-id", timedelta(minutes=15))
        claims = codec.decode(token, kind=ACCESS)   # Claims(subject="principal-id", ...)
    """

    def __init__(
        self,
        secret: str,
        algorithm: str = _DEFAULT_ALGORITHM,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._secret = secret
        self._algorithm = algorithm
        self.clock = clock

    def encode(
        self,
        subject: str,
        ttl: timedelta,
        issued_at: datetime | None = None,
        kind: str = ACCESS,
    ) -> str:
        """Return a signed token of the given kind for subject, valid for ttl from issued_at."""
        if kind not in _KINDS:
            raise ValueError(f"Unknown token kind {kind!r}")
        issued = issued_at or self.clock()
        payload = {
            "sub": subject,
            "iat": int(issued.timestamp()),
            "exp": int((issued + ttl).timestamp()),
            "jti": secrets.token_hex(16),
            "typ": kind,
        }
        return jwt.encode(payload, self._secret, algorithm=self._algorithm)

    def decode(self, token: str, kind: str | None = None) -> Claims:
        """Verify token and return its typed Claims.

        With kind set, a genuine token of the other kind is TokenMalformed.
        Raises TokenMalformed, TokenSignatureInvalid or TokenExpired.
        """
        if not isinstance(token, str) or token.count(".") != 2:
            raise TokenMalformed()
        # Structure first, so a MAC failure below can only mean a bad signature.
        try:
            jwt.get_unverified_header(token)
            jwt.get_unverified_claims(token)
        except JWTError as exc:
            raise TokenMalformed() from exc

        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm], options=_DECODE_OPTIONS)
        except JWTClaimsError as exc:
            # Signature was valid; a registered claim has the wrong type.
            raise TokenMalformed() from exc
        except JWTError as exc:
            raise TokenSignatureInvalid() from exc

        claims = _claims_from_payload(payload)
        if kind is not None and claims.kind != kind:
            raise TokenMalformed(f"Expected {kind} token, got {claims.kind}.")
        if self.clock() >= claims.expires_at:
            raise TokenExpired()
        return claims


def _claims_from_payload(payload: dict) -> Claims:
    subject = payload.get("sub")
    iat = payload.get("iat")
    exp = payload.get("exp")
    kind = payload.get("typ")
    if not isinstance(subject, str) or not subject:
        raise TokenMalformed("Token has no subject.")
    # bool is an int subclass; reject it explicitly.
    for value in (iat, exp):
        if not isinstance(value, int) or isinstance(value, bool):
            raise TokenMalformed("Token timestamps are missing or invalid.")
    if kind not in _KINDS:
        raise TokenMalformed("Token type is missing or invalid.")
    jti = payload.get("jti")
    return Claims(
        subject=subject,
        issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
        expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        kind=kind,
        token_id=jti if isinstance(jti, str) else None,
    )
