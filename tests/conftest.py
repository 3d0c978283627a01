"""
tests/conftest.py -- Shared test fixtures for Gatehouse.

This module provides:
  - make_store(): isolated in-memory GatehouseStore per test module
  - _patch_lifespan(): wires a test store and registry into app.state,
    bypassing real startup
  - api_client: TestClient plus an administrator session token
  - login(): helper that opens a session through POST /api/v1/tokens

Stores use named shared-cache SQLite URIs. Route handlers run in the
TestClient thread pool on other connections, and a plain :memory: database
would be empty on each of them. The database lives until the store closes.

Environment must be set before any auth/core import:
  DEBUG=true            -- get_settings() auto-generates SECRET_KEY
  ALLOWED_HOSTS         -- TestClient sends Host: testserver
  RATE_LIMIT_ENABLED    -- tests log in far more often than 10/minute
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import -- get_settings() is cached on first call.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.session import SessionRegistry
from main import create_admin
from storage.provider import DatabaseAuthenticationProvider
from storage.store import GatehouseStore

ADMIN_USERNAME = "testadmin"
ADMIN_PASSWORD = "testpass123"
DATA_SOURCE = "database"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store(db_suffix: str | None = None) -> GatehouseStore:
    """Create an isolated named shared-memory store.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state. A random one is used if omitted.
    """
    name = db_suffix or uuid.uuid4().hex
    return GatehouseStore(db_url=f"sqlite:///file:test_gatehouse_{name}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(store: GatehouseStore, registry: SessionRegistry):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.providers = registry.providers
        app.state.registry = registry
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def login(client: TestClient, username: str, password: str) -> str:
    """Open a session and return its token. Fails the test on non-200."""
    resp = client.post("/api/v1/tokens", json={"username": username, "password": password})
    assert resp.status_code == 200, f"Login as {username!r} failed: {resp.status_code} {resp.text}"
    return resp.json()["auth_token"]


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[GatehouseStore, None, None]:
    """A fresh empty store per test."""
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def admin_store(store: GatehouseStore) -> GatehouseStore:
    """A fresh store holding one administrator (ADMIN_USERNAME / ADMIN_PASSWORD)."""
    create_admin(store, ADMIN_USERNAME, ADMIN_PASSWORD)
    return store


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str], None, None]:
    """Yield (client, admin_token) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    The administrator is created before the client starts and logs in
    through the real token endpoint.
    """
    store = make_store(request.module.__name__.rsplit(".", 1)[-1])
    create_admin(store, ADMIN_USERNAME, ADMIN_PASSWORD)
    registry = SessionRegistry([DatabaseAuthenticationProvider(store, DATA_SOURCE)])

    app.router.lifespan_context = _patch_lifespan(store, registry)

    with TestClient(app, raise_server_exceptions=True) as client:
        token = login(client, ADMIN_USERNAME, ADMIN_PASSWORD)
        yield client, token

    store.close()
