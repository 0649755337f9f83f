"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
PrincipalStore, RoleStore and TokenStore are the repositories; the _row_to_*
functions are the mappers. Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Refresh tokens are stored as CredentialVerifier hashes only.

Atomicity:
  TokenStore.transaction() is the atomic boundary for rotation and logout. It
  wraps one engine.begin() connection: commit on normal exit, rollback on any
  exception, including cancellation. TokenTransaction.revoke() is a
  compare-and-swap on the revoked flag (UPDATE ... WHERE revoked = 0), so two
  concurrent rotations of the same token cannot both succeed -- the loser sees
  zero rows affected. Correctness lives in the database, not in process memory.

Timestamps:
  Stored as fixed-width UTC strings (YYYY-MM-DDTHH:MM:SS.ffffffZ) so that
  string comparison in SQL is chronological on every backend.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, or_
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.pool import SingletonThreadPool

from auth.models import Principal, RefreshTokenRecord, Role
from core.errors import HandleAlreadyRegistered

logger = logging.getLogger("authcore.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("name", String(64), primary_key=True),
    Column("parent", String(64)),  # NULL for a root role
)

_principals = Table(
    "principals",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("display_name", String(255), nullable=False),
    Column("username", String(32), nullable=False, unique=True),
    Column("email", String(128), nullable=False, unique=True),
    Column("credential_hash", Text, nullable=False),
    Column("role", String(64), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
)

_refresh_tokens = Table(
    "refresh_tokens",
    _metadata,
    Column("id", String(32), primary_key=True),
    Column("principal_id", String(32), nullable=False),
    Column("token_hash", Text, nullable=False),
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Index("ix_refresh_tokens_principal", "principal_id", "revoked"),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block on the rotation writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _is_memory_url(db_url: str) -> bool:
    return db_url == "sqlite://" or ":memory:" in db_url or "mode=memory" in db_url


def create_store_engine(db_url: str) -> Engine:
    """Create an Engine for db_url and make sure all auth tables exist.

    In-memory SQLite databases live only as long as their connection, so they
    get one connection per thread (SingletonThreadPool). File databases keep
    SQLAlchemy's default queue pool.
    """
    connect_args: dict = {}
    engine_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        if _is_memory_url(db_url):
            engine_args["poolclass"] = SingletonThreadPool
    engine = create_engine(db_url, connect_args=connect_args, **engine_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    _metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def _from_iso(value: str) -> datetime:
    return datetime.strptime(value, "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


def _normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Principals (user directory)
# ---------------------------------------------------------------------------


class PrincipalStore:
    """Repository for Principal records.

    Usage:
        principals = PrincipalStore(engine)
        alice = principals.create(Principal(display_name="Alice", username="alice", ...))
        principals.lookup_by_handle("alice@x.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(self, principal: Principal) -> Principal:
        """Insert principal and return it with id and created_at filled in.

        Raises HandleAlreadyRegistered if the username or email is taken. The
        UNIQUE constraints decide, so two concurrent registrations of the same
        handle cannot both succeed.
        """
        principal_id = _new_id()
        created_at = _to_iso(datetime.now(timezone.utc))
        email = _normalize_email(principal.email)
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _principals.insert().values(
                        id=principal_id,
                        display_name=principal.display_name,
                        username=principal.username,
                        email=email,
                        credential_hash=principal.credential_hash,
                        role=principal.role,
                        created_at=created_at,
                        is_active=1 if principal.is_active else 0,
                    )
                )
        except IntegrityError as exc:
            raise HandleAlreadyRegistered() from exc
        logger.info("Principal %s registered (role=%s)", principal_id, principal.role)
        return Principal(
            id=principal_id,
            display_name=principal.display_name,
            username=principal.username,
            email=email,
            credential_hash=principal.credential_hash,
            role=principal.role,
            created_at=created_at,
            is_active=principal.is_active,
        )

    def lookup_by_handle(self, handle: str) -> Principal | None:
        """Look up by email (contains '@', case-insensitive) or exact username."""
        handle = handle.strip()
        if "@" in handle:
            condition = _principals.c.email == _normalize_email(handle)
        else:
            condition = _principals.c.username == handle
        with self.engine.connect() as conn:
            row = conn.execute(_principals.select().where(condition)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def lookup_by_id(self, principal_id: str) -> Principal | None:
        with self.engine.connect() as conn:
            row = conn.execute(_principals.select().where(_principals.c.id == principal_id)).fetchone()
        return _row_to_principal(row) if row is not None else None


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleStore:
    """Repository for Role records. Implements the RoleSource protocol."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def get_role(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return Role(name=row.name, parent=row.parent) if row is not None else None

    def upsert_role(self, role: Role) -> None:
        """Create role or re-point its parent. Idempotent."""
        with self.engine.begin() as conn:
            exists = conn.execute(_roles.select().where(_roles.c.name == role.name)).fetchone()
            if exists is None:
                conn.execute(_roles.insert().values(name=role.name, parent=role.parent))
            else:
                conn.execute(_roles.update().where(_roles.c.name == role.name).values(parent=role.parent))

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
        return [Role(name=r.name, parent=r.parent) for r in rows]


# ---------------------------------------------------------------------------
# Refresh tokens
# ---------------------------------------------------------------------------


class TokenTransaction:
    """Refresh-token operations bound to one open transaction.

    Obtain one from TokenStore.transaction(); never construct directly.
    """

    def __init__(self, conn: Connection) -> None:
        self._conn = conn

    def insert(self, record: RefreshTokenRecord) -> RefreshTokenRecord:
        record_id = record.id or _new_id()
        self._conn.execute(
            _refresh_tokens.insert().values(
                id=record_id,
                principal_id=record.principal_id,
                token_hash=record.token_hash,
                issued_at=_to_iso(record.issued_at),
                expires_at=_to_iso(record.expires_at),
                revoked=1 if record.revoked else 0,
            )
        )
        record.id = record_id
        return record

    def find_active_by_principal(self, principal_id: str, now: datetime) -> list[RefreshTokenRecord]:
        """Return records that are not revoked and expire strictly after now."""
        rows = self._conn.execute(
            _refresh_tokens.select().where(
                (_refresh_tokens.c.principal_id == principal_id)
                & (_refresh_tokens.c.revoked == 0)
                & (_refresh_tokens.c.expires_at > _to_iso(now))
            )
        ).fetchall()
        return [_row_to_record(r) for r in rows]

    def revoke(self, record_id: str) -> bool:
        """Flip revoked to true if it is still false.

        Returns True only when this call made the change. Calling it again, or
        on a purged record, is harmless and returns False.
        """
        result = self._conn.execute(
            _refresh_tokens.update()
            .where((_refresh_tokens.c.id == record_id) & (_refresh_tokens.c.revoked == 0))
            .values(revoked=1)
        )
        return result.rowcount == 1

    def purge_stale_for_principal(self, principal_id: str, now: datetime) -> int:
        """Delete the principal's revoked or expired records. Returns rows removed."""
        result = self._conn.execute(
            _refresh_tokens.delete().where(
                (_refresh_tokens.c.principal_id == principal_id)
                & or_(_refresh_tokens.c.revoked == 1, _refresh_tokens.c.expires_at <= _to_iso(now))
            )
        )
        return result.rowcount

    def purge_stale(self, now: datetime) -> int:
        result = self._conn.execute(
            _refresh_tokens.delete().where(
                or_(_refresh_tokens.c.revoked == 1, _refresh_tokens.c.expires_at <= _to_iso(now))
            )
        )
        return result.rowcount


class TokenStore:
    """Repository for RefreshTokenRecord entities.

    Multi-step mutations go through transaction():
        with store.transaction() as tx:
            records = tx.find_active_by_principal(pid, now)
            tx.revoke(records[0].id)
            tx.insert(new_record)

    The single-call methods below each run in their own transaction.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @contextmanager
    def transaction(self) -> Iterator[TokenTransaction]:
        with self.engine.begin() as conn:
            yield TokenTransaction(conn)

    def insert(self, record: RefreshTokenRecord) -> RefreshTokenRecord:
        with self.transaction() as tx:
            return tx.insert(record)

    def find_active_by_principal(self, principal_id: str, now: datetime) -> list[RefreshTokenRecord]:
        with self.transaction() as tx:
            return tx.find_active_by_principal(principal_id, now)

    def revoke(self, record_id: str) -> bool:
        with self.transaction() as tx:
            return tx.revoke(record_id)

    def purge_stale_for_principal(self, principal_id: str, now: datetime) -> int:
        with self.transaction() as tx:
            return tx.purge_stale_for_principal(principal_id, now)

    def purge_stale(self, now: datetime) -> int:
        """Delete every revoked or expired record. For external schedulers."""
        with self.transaction() as tx:
            removed = tx.purge_stale(now)
        if removed:
            logger.info("Purged %d stale refresh token record(s)", removed)
        return removed

    def get(self, record_id: str) -> RefreshTokenRecord | None:
        with self.engine.connect() as conn:
            row = conn.execute(_refresh_tokens.select().where(_refresh_tokens.c.id == record_id)).fetchone()
        return _row_to_record(row) if row is not None else None


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        display_name=row.display_name,
        username=row.username,
        email=row.email,
        credential_hash=row.credential_hash,
        role=row.role,
        created_at=row.created_at,
        is_active=bool(row.is_active),
    )


def _row_to_record(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        principal_id=row.principal_id,
        token_hash=row.token_hash,
        issued_at=_from_iso(row.issued_at),
        expires_at=_from_iso(row.expires_at),
        revoked=bool(row.revoked),
    )
