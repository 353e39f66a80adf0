"""
tests/conftest.py -- Shared test fixtures for SignGate.

This module provides:
  - memory_db_url(): named shared-memory SQLite URI, unique per call
  - store / seeded_user: an isolated UserStore with one known account
  - make_authenticator(): Authenticator over that store with a fresh
    in-memory attempt limiter
  - api_client: TestClient over the real app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.

Environment variables must be set before any api/ or core/ import: the
slowapi limiter and the Settings singleton read them at import time. The
per-IP sign-in guard is raised far above anything a test sends so only the
per email+IP limiter under test can lock a client out.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import timedelta

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SIGNIN_IP_RATE_LIMIT", "10000/minute")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import QueuePool

from api.main import app
from auth.limiter import RateLimiter
from auth.models import User
from auth.signin import Authenticator, SignInConfig
from auth.store import UserStore
from auth.tokens import ApiTokenGenerator, hash_password

TEST_EMAIL = "user@mail.com"
TEST_PASSWORD = "secret123"

# Hashed once per session; bcrypt is deliberately slow.
_TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)


def memory_db_url(prefix: str = "auth") -> str:
    return f"sqlite:///file:test_{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Store / authenticator fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    """Empty isolated UserStore."""
    s = UserStore(memory_db_url(), poolclass=QueuePool)
    yield s
    s.close()


@pytest.fixture
def seeded_user(store: UserStore) -> User:
    """user@mail.com / secret123, never signed in."""
    user_id = store.create_user(User(email=TEST_EMAIL, hashed_password=_TEST_PASSWORD_HASH))
    return store.get_by_id(user_id)


@pytest.fixture
def make_authenticator(store: UserStore) -> Callable[..., Authenticator]:
    """Factory: Authenticator over `store` with its own in-memory limiter.

    Defaults mirror the reference lockout scenario: 3 attempts per 40 seconds.
    """

    def _make(
        max_attempts: int = 3,
        window: timedelta = timedelta(seconds=40),
        generator=None,
        limiter: RateLimiter | None = None,
        on_authenticated=None,
    ) -> Authenticator:
        return Authenticator(
            store=store,
            limiter=limiter or RateLimiter("memory://"),
            generator=generator or ApiTokenGenerator(),
            config=SignInConfig(max_attempts=max_attempts, window=window),
            on_authenticated=on_authenticated,
        )

    return _make


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, authenticator: Authenticator):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test objects into app.state so TestClient routes see
    isolated test state rather than the configured database and counters.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.authenticator = authenticator
        yield

    return test_lifespan


@pytest.fixture
def api_client(
    store: UserStore, seeded_user: User, make_authenticator
) -> Generator[tuple[TestClient, UserStore, Authenticator], None, None]:
    """Yield (client, store, authenticator) for API integration tests.

    Function-scoped: every test gets a fresh store and fresh attempt counters,
    so a lockout in one test can never leak into the next.
    """
    authenticator = make_authenticator()
    app.router.lifespan_context = _patch_lifespan(store, authenticator)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, store, authenticator
