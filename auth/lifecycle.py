"""
auth/lifecycle.py -- Refresh-token lifecycle: issue, validate, rotate, revoke.

Per-record states:  ACTIVE -> REVOKED -> (purged)
EXPIRED is not stored; it is ``now >= expires_at`` evaluated at read time.

Refresh tokens are single-use. rotate() revokes the presented token even on
success, so a leaked refresh token is good for at most one use, and a second
presentation surfaces as TokenReuseOrUnknown -- the signal callers use for
lockout or alerting.

Rotation runs inside one TokenStore transaction:

    find active records -> verify (linear scan) -> mint + hash replacement
    -> revoke match (compare-and-swap) -> purge stale -> insert replacement

The replacement is minted and hashed before the first write statement so the
database write lock is held only for the three short statements at the end.
Any exception, including cancellation, rolls the whole unit back: the old
record is never left revoked without its replacement, and two records are
never both active for one rotation.

Nothing here retries. Every error goes to the immediate caller.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from auth.models import Claims, RefreshTokenRecord, TokenPair
from auth.passwords import CredentialVerifier
from auth.store import TokenStore, TokenTransaction
from auth.tokens import ACCESS, REFRESH, TokenCodec
from core.errors import TokenReuseOrUnknown

logger = logging.getLogger("authcore.auth")

DEFAULT_ACCESS_TTL = timedelta(minutes=15)
DEFAULT_REFRESH_TTL = timedelta(days=30)


class TokenLifecycleManager:
    """Orchestrates TokenCodec, CredentialVerifier and TokenStore.

    The codec's clock is the single time source, so tests that move the
    clock move token expiry and store queries together.
    """

    def __init__(
        self,
        codec: TokenCodec,
        verifier: CredentialVerifier,
        store: TokenStore,
        access_ttl: timedelta = DEFAULT_ACCESS_TTL,
        refresh_ttl: timedelta = DEFAULT_REFRESH_TTL,
    ) -> None:
        self.codec = codec
        self.verifier = verifier
        self.store = store
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def issue(self, principal_id: str) -> TokenPair:
        """Mint an access/refresh pair and persist the refresh token's hash."""
        pair, record = self._mint(principal_id)
        self.store.insert(record)
        return pair

    def validate(self, token: str, kind: str | None = None) -> Claims:
        """Decode a token, optionally requiring its kind. Codec errors propagate unchanged."""
        return self.codec.decode(token, kind=kind)

    def rotate(self, raw_refresh_token: str) -> TokenPair:
        """Consume raw_refresh_token and return a fresh pair.

        Raises TokenMalformed (also for an access token) / TokenSignatureInvalid /
        TokenExpired from decoding, or TokenReuseOrUnknown if no active record
        matches.
        """
        claims = self.codec.decode(raw_refresh_token, kind=REFRESH)
        with self.store.transaction() as tx:
            match = self._find_match(tx, claims.subject, raw_refresh_token)
            pair, replacement = self._mint(claims.subject)
            self._consume(tx, claims.subject, match)
            tx.insert(replacement)
        logger.info("Refresh token rotated for principal %s", claims.subject)
        return pair

    def revoke(self, raw_refresh_token: str) -> None:
        """Consume raw_refresh_token without issuing a replacement (logout)."""
        claims = self.codec.decode(raw_refresh_token, kind=REFRESH)
        with self.store.transaction() as tx:
            match = self._find_match(tx, claims.subject, raw_refresh_token)
            self._consume(tx, claims.subject, match)
        logger.info("Refresh token revoked for principal %s", claims.subject)

    def sweep(self) -> int:
        """Delete every revoked or expired record. For external schedulers."""
        return self.store.purge_stale(self.codec.clock())

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _mint(self, principal_id: str) -> tuple[TokenPair, RefreshTokenRecord]:
        now = self.codec.clock()
        access_token = self.codec.encode(principal_id, self.access_ttl, issued_at=now, kind=ACCESS)
        refresh_token = self.codec.encode(principal_id, self.refresh_ttl, issued_at=now, kind=REFRESH)
        record = RefreshTokenRecord(
            principal_id=principal_id,
            token_hash=self.verifier.hash(refresh_token),
            issued_at=now,
            expires_at=now + self.refresh_ttl,
        )
        pair = TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires_at=now + self.access_ttl,
            refresh_expires_at=record.expires_at,
        )
        return pair, record

    def _find_match(self, tx: TokenTransaction, subject: str, raw_token: str) -> RefreshTokenRecord:
        # Records hold slow hashes, so there is no lookup key: verify each
        # candidate in turn. The first match is authoritative.
        for record in tx.find_active_by_principal(subject, self.codec.clock()):
            if self.verifier.verify(raw_token, record.token_hash):
                return record
        logger.warning("Refresh token reuse or unknown token for principal %s", subject)
        raise TokenReuseOrUnknown()

    def _consume(self, tx: TokenTransaction, subject: str, record: RefreshTokenRecord) -> None:
        if not tx.revoke(record.id):
            # A concurrent rotation revoked it between our read and our write.
            logger.warning("Concurrent reuse of refresh token for principal %s", subject)
            raise TokenReuseOrUnknown()
        tx.purge_stale_for_principal(subject, self.codec.clock())
