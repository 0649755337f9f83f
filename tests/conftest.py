"""
tests/conftest.py -- Shared test fixtures for authcore.

This module provides:
  - FakeClock: a movable UTC clock shared by the codec and the lifecycle
  - engine / role_store / lifecycle / service: unit-level wiring on an
    in-memory SQLite database with bcrypt at its minimum cost
  - api_client: TestClient over the real FastAPI app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

Environment variables must be set before any api/ import so get_settings()
finds a SECRET_KEY and the login rate limit does not trip across tests.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before importing anything that calls get_settings().
TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"
os.environ.setdefault("SECRET_KEY", TEST_SECRET)
os.environ.setdefault("HASH_COST", "4")
os.environ.setdefault("SECURE_COOKIES", "false")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from auth.lifecycle import TokenLifecycleManager
from auth.passwords import CredentialVerifier
from auth.roles import DEFAULT_ROLES, RoleHierarchy
from auth.service import AuthService, build_auth_service
from auth.store import PrincipalStore, RoleStore, TokenStore, create_store_engine
from auth.tokens import TokenCodec
from core.config import Settings


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


# ---------------------------------------------------------------------------
# Unit-level wiring
# ---------------------------------------------------------------------------


@pytest.fixture
def secret() -> str:
    return TEST_SECRET


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(scope="session")
def verifier() -> CredentialVerifier:
    """bcrypt at cost 4 -- the minimum -- so hashing does not dominate test time."""
    return CredentialVerifier(cost=4)


@pytest.fixture
def engine():
    e = create_store_engine("sqlite:///:memory:")
    yield e
    e.dispose()


@pytest.fixture
def role_store(engine) -> RoleStore:
    store = RoleStore(engine)
    for role in DEFAULT_ROLES:
        store.upsert_role(role)
    return store


@pytest.fixture
def codec(clock) -> TokenCodec:
    return TokenCodec(TEST_SECRET, clock=clock)


@pytest.fixture
def token_store(engine) -> TokenStore:
    return TokenStore(engine)


@pytest.fixture
def lifecycle(codec, verifier, token_store) -> TokenLifecycleManager:
    return TokenLifecycleManager(codec, verifier, token_store)


@pytest.fixture
def service(engine, verifier, lifecycle, role_store) -> AuthService:
    return AuthService(PrincipalStore(engine), verifier, lifecycle, RoleHierarchy(role_store))


# ---------------------------------------------------------------------------
# API
# ---------------------------------------------------------------------------


def _patch_lifespan(auth_service: AuthService, engine):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built service into app.state so TestClient routes use the
    isolated test database rather than the configured one.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.auth_service = auth_service
        app.state.purge_task = None
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but an isolated shared-memory database. One
    database per test module keeps modules independent.
    """
    from api.main import app

    db_name = request.module.__name__.replace(".", "_")
    engine = create_store_engine(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    role_store = RoleStore(engine)
    for role in DEFAULT_ROLES:
        role_store.upsert_role(role)
    auth_service = build_auth_service(Settings(secret_key=TEST_SECRET, hash_cost=4), engine)

    app.router.lifespan_context = _patch_lifespan(auth_service, engine)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, auth_service

    engine.dispose()
