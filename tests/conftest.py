"""
tests/conftest.py -- Shared test fixtures for Authkeep unit and integration tests.

This module provides:
  - FakeClock / clock: a controllable UTC clock injected into AuthService
  - hasher: BcryptHasher at the minimum cost factor (4) so tests stay fast
  - in-memory stores + service: AuthService wired to auth.memory stores
  - _make_test_database(): isolated named shared-memory SQLite database
  - _patch_lifespan(): wires a test database + service into app.state
  - api_client: TestClient against the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.memory import InMemoryAuditStore, InMemoryRefreshTokenStore, InMemoryUserStore
from auth.passwords import BcryptHasher, PasswordPolicy
from auth.service import AuthConfig, AuthService
from auth.store import CredentialDatabase
from auth.tokens import JWTTokenIssuer

TEST_SECRET = "test-secret-key-that-is-at-least-32-characters"


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable UTC clock that only moves when a test tells it to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Core collaborators
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def hasher() -> BcryptHasher:
    return BcryptHasher(rounds=4)


@pytest.fixture
def issuer() -> JWTTokenIssuer:
    return JWTTokenIssuer(secret_key=TEST_SECRET, access_token_ttl=900)


@pytest.fixture
def users() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def refresh_tokens() -> InMemoryRefreshTokenStore:
    return InMemoryRefreshTokenStore()


@pytest.fixture
def audit() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(
        access_token_ttl=timedelta(minutes=15),
        refresh_token_ttl=timedelta(days=30),
        max_login_attempts=5,
        account_lock_duration=timedelta(minutes=15),
    )


@pytest.fixture
def service(users, refresh_tokens, audit, issuer, hasher, auth_config, clock) -> AuthService:
    """AuthService over fresh in-memory stores and the fake clock."""
    return AuthService(
        users=users,
        refresh_tokens=refresh_tokens,
        audit=audit,
        tokens=issuer,
        hasher=hasher,
        policy=PasswordPolicy(),
        config=auth_config,
        clock=clock,
    )


# ---------------------------------------------------------------------------
# Rate limiter
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_rate_limits() -> Generator[None, None, None]:
    """slowapi counters are process-wide; start every test with a clean slate."""
    limiter.reset()
    yield


# ---------------------------------------------------------------------------
# Database helpers
# ---------------------------------------------------------------------------


def _make_test_database(db_suffix: str) -> CredentialDatabase:
    """Create an isolated named shared-memory SQLite database.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'health').
    """
    return CredentialDatabase(f"sqlite:///file:test_authkeep_{db_suffix}?mode=memory&cache=shared&uri=true")


def _build_service(database: CredentialDatabase, hasher: BcryptHasher) -> AuthService:
    return AuthService(
        users=database.users,
        refresh_tokens=database.refresh_tokens,
        audit=database.audit,
        tokens=JWTTokenIssuer(secret_key=TEST_SECRET, access_token_ttl=900),
        hasher=hasher,
        policy=PasswordPolicy(),
        config=AuthConfig(max_login_attempts=3),
    )


def _patch_lifespan(database: CredentialDatabase, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test database and service into app.state so
    TestClient routes see an isolated test DB rather than the production
    database. No purge task is started.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.database = database
        app.state.auth_service = service
        app.state.purge_task = None
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request, hasher) -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory database.
    max_login_attempts is 3 so lockout tests need few requests.
    """
    database = _make_test_database(request.module.__name__.rsplit(".", 1)[-1])
    service = _build_service(database, hasher)

    app.router.lifespan_context = _patch_lifespan(database, service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service

    database.close()
