"""
auth/passwords.py -- Salted slow hashing for passwords and refresh tokens.

Security design decisions:
  bcrypt, used directly (no passlib wrapper). Its cost factor makes brute
  force expensive, which is what low-entropy passwords need. Refresh tokens
  are hashed the same way because the store must never hold raw tokens.

  Pre-hash: bcrypt only looks at the first 72 bytes of its input (bcrypt 5.x
  refuses longer input outright). A signed refresh token is always longer
  than that, and two tokens for the same principal share a long common
  prefix, so hashing them raw would make every token of a user verify
  against every other. Every secret is therefore reduced to
  base64(SHA-256(secret)) -- 44 ASCII bytes, no NULs -- before bcrypt sees it.

  Cost factor: fixed at construction from Settings.hash_cost and never re-read.

  Timing equalization: dummy_verify() runs one bcrypt check against a hash
  computed at construction, so a login for an unknown handle costs the same
  as a login with a wrong password.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import base64
import hashlib

import bcrypt

from core.errors import HashingFailure, VerificationFailure

_DUMMY_SECRET = "authcore_timing_dummy"


def _prehash(secret: str) -> bytes:
    return base64.b64encode(hashlib.sha256(secret.encode("utf-8")).digest())


class CredentialVerifier:
    """Hashes and verifies secrets with bcrypt at a process-wide cost.

    Usage:
        verifier = CredentialVerifier(cost=settings.hash_cost)
        hashed = verifier.hash("secret")
        verifier.verify("secret", hashed)   # True
    """

    def __init__(self, cost: int = 10) -> None:
        self.cost = cost
        self._dummy_hash = self.hash(_DUMMY_SECRET)

    def hash(self, secret: str) -> str:
        """Return a salted bcrypt hash of secret.

        Never rejects input for being weak or long. Raises HashingFailure only
        when bcrypt itself fails (e.g. an out-of-range cost factor).
        """
        try:
            return bcrypt.hashpw(_prehash(secret), bcrypt.gensalt(rounds=self.cost)).decode("ascii")
        except (ValueError, TypeError) as exc:
            raise HashingFailure() from exc

    def verify(self, secret: str, hashed: str) -> bool:
        """Return True if secret matches hashed, False on mismatch.

        A wrong secret is not an error. Raises VerificationFailure only when
        hashed is not a usable bcrypt hash.
        """
        try:
            return bcrypt.checkpw(_prehash(secret), hashed.encode("ascii"))
        except (ValueError, TypeError) as exc:
            raise VerificationFailure() from exc

    def dummy_verify(self, secret: str) -> None:
        """Burn one verify's worth of CPU. Result is discarded."""
        self.verify(secret, self._dummy_hash)
