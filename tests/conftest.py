"""
tests/conftest.py -- Shared test fixtures for SessionGate.

This module provides:
  - FakeClock / clock: controllable UTC time for expiry tests
  - store: in-memory UserStore wired to the fake clock
  - hasher / service: AuthService over that store with bcrypt cost 4
  - client: TestClient running the real app and lifespan

Design: the HTTP fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the process, and it
disappears when the lifespan closes the store, so every test starts empty.

Environment must be set before any api/ or core/ import: get_settings() is
read once at import time by api/main.py and api/routes/v1/auth.py.
  DEBUG=true            -- allows COOKIE_SECURE=false (TestClient speaks http)
  HASH_COST=4           -- bcrypt minimum, keeps the suite fast
  LOGIN_RATE_LIMIT      -- high enough that the suite never trips it
  ALLOWED_HOSTS         -- TestClient sends Host: testserver
"""

from __future__ import annotations

import os
from collections.abc import Generator
from datetime import datetime, timedelta, timezone

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("COOKIE_SECURE", "false")
os.environ.setdefault("HASH_COST", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "10000/minute")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("DATABASE_URL", "sqlite:///file:sessiongate_test?mode=memory&cache=shared&uri=true")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.cookies import CookiePolicy
from auth.hashing import HasherChain, build_hasher
from auth.service import AuthService
from auth.store import UserStore

SESSION_TTL = 3600
RESET_TTL = 600


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> Generator[UserStore, None, None]:
    """In-memory UserStore: 1h sessions, 10min reset tokens, fake clock."""
    s = UserStore(
        "sqlite:///:memory:",
        session_ttl_seconds=SESSION_TTL,
        reset_ttl_seconds=RESET_TTL,
        clock=clock,
    )
    yield s
    s.close()


@pytest.fixture(scope="session")
def hasher() -> HasherChain:
    return build_hasher("bcrypt", cost=4)


@pytest.fixture
def service(store: UserStore, hasher: HasherChain) -> AuthService:
    return AuthService(store, hasher, CookiePolicy(max_age=SESSION_TTL))


# ---------------------------------------------------------------------------
# HTTP fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    """TestClient over the real app; lifespan builds a fresh in-memory store."""
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c
