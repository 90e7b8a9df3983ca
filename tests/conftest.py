"""
tests/conftest.py -- Shared test fixtures for ThreatMap unit and integration tests.

This module provides:
  - store: a fresh in-memory PostureStore per test (unit tests)
  - make_store(): isolated named shared-memory stores for the API client
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with admin JWT for API integration tests
  - auth_headers(): Authorization header helper

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
API client because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

The DEBUG env var must be set before any auth/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from unittest.mock import MagicMock

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from alerts.notify import AlertNotifier
from api.limiter import limiter
from api.main import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from posture.store import PostureStore

# Rate limits are per client IP and every TestClient request comes from the
# same address; the suite would trip them across modules.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_stores(db_suffix: str) -> tuple[UserStore, PostureStore]:
    """Create isolated named shared-memory SQLite stores for one test module.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'alerts').
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    posture_url = f"sqlite:///file:test_posture_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=auth_url), PostureStore(db_url=posture_url)


def _patch_lifespan(user_store: UserStore, store: PostureStore, notifier: AlertNotifier):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured databases.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.store = store
        app.state.notifier = notifier
        yield

    return test_lifespan


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def make_user(user_store: UserStore, username: str, role: str) -> tuple[int, str]:
    """Create a user and return (user_id, jwt)."""
    uid = user_store.create_user(User(username=username, hashed_password=hash_password("testpass123"), role=role))
    return uid, create_access_token(user_id=uid, username=username, role=role, expire_seconds=3600)


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[PostureStore, None, None]:
    """Fresh in-memory PostureStore, one per test."""
    s = PostureStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def notifier_mock() -> MagicMock:
    """Stand-in for AlertNotifier when only the call pattern matters."""
    return MagicMock(spec=AlertNotifier)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    The admin user "testadmin" (password "testpass123") exists before the
    client starts. Other users can be added through
    client.app.state.user_store and make_user().
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    user_store, store = make_stores(suffix)
    notifier = AlertNotifier(store)

    uid, token = make_user(user_store, "testadmin", "admin")

    app.router.lifespan_context = _patch_lifespan(user_store, store, notifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    user_store.close()
    store.close()
