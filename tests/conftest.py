"""
tests/conftest.py -- Shared test fixtures for Gatehouse unit and integration tests.

This module provides:
  - _make_test_stores(): isolated in-memory DB with every store built on it
  - _seed_accounts(): the accounts most tests log in as
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - stores: fresh TestStores per test, for unit tests of the auth core
  - api_client: module-scoped TestClient with follow_redirects=False
  - client: api_client with an empty cookie jar, i.e. a brand new browser

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool and because every
store opens its own engine on the same database. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment must be set before any auth/core/api import:
  DEBUG=true               -- get_settings() auto-generates SECRET_KEY
  RATE_LIMIT_ENABLED=false -- the suite logs in far more than 10 times a minute
  ALLOWED_HOSTS            -- TestClient sends Host: testserver
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

# CRITICAL: Set these before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_core
from auth.nonce import NoncePrimitive
from auth.pipeline import AuthCore
from auth.rememberme import PersistentLoginStore
from auth.sessions import SessionStore
from auth.store import AccountStore
from auth.tokens import hash_password
from core.config import get_settings

PASSWORD = "Secret123"


@dataclass
class TestStores:
    __test__ = False  # not a test class, despite the name

    url: str
    accounts: AccountStore
    sessions: SessionStore
    remember_store: PersistentLoginStore
    nonces: NoncePrimitive
    core: AuthCore

    def close(self) -> None:
        self.nonces.close()
        self.remember_store.close()
        self.sessions.close()
        self.accounts.close()


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> TestStores:
    """Create every store on one named shared-memory SQLite database.

    Args:
        db_suffix: Unique string appended to the DB name so tests and test
                   modules don't share state.
    """
    settings = get_settings()
    url = f"sqlite:///file:test_gatehouse_{db_suffix}?mode=memory&cache=shared&uri=true"
    accounts = AccountStore(url)
    sessions = SessionStore(url, settings.session_lifetime_seconds)
    remember_store = PersistentLoginStore(url, settings.secret_key, settings.rememberme_timeout_seconds)
    nonces = NoncePrimitive(url, settings.secret_key, settings.nonce_lifetime_seconds)
    core = build_core(settings, accounts, sessions, remember_store, nonces)
    return TestStores(url, accounts, sessions, remember_store, nonces, core)


def _seed_accounts(accounts: AccountStore) -> None:
    """Create the standard test accounts, all with password PASSWORD.

    alice    -- may log in (site.login)
    admin    -- may log in and carries admin.login
    nologin  -- valid credentials but no site.login rule
    disabled -- state "disabled"
    """
    hashed = hash_password(PASSWORD)
    accounts.save("alice", {"hashed_password": hashed, "email": "alice@example.com", "access": {"site": {"login": True}}})
    accounts.save(
        "admin",
        {"hashed_password": hashed, "email": "admin@example.com", "access": {"site": {"login": True}, "admin": {"login": True}}},
    )
    accounts.save("nologin", {"hashed_password": hashed, "access": {"site": {"login": False}}})
    accounts.save("disabled", {"hashed_password": hashed, "state": "disabled", "access": {"site": {"login": True}}})


def _patch_lifespan(stores: TestStores):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see the
    isolated test DB. The OAuth registry is mocked to prevent network calls.

    The purge_task is a long-sleeping coroutine (a real asyncio.Task is
    required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.accounts = stores.accounts
        app.state.sessions = stores.sessions
        app.state.remember_store = stores.remember_store
        app.state.nonces = stores.nonces
        app.state.core = stores.core
        app.state.oauth = MagicMock()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores() -> Generator[TestStores, None, None]:
    """Fresh seeded stores for one test."""
    s = _make_test_stores(uuid.uuid4().hex)
    _seed_accounts(s.accounts)
    yield s
    s.close()


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, TestStores], None, None]:
    """Yield (client, stores) for API integration tests.

    follow_redirects=False is essential: tests assert on redirect Location
    headers, which are invisible once the client follows the redirect.
    """
    s = _make_test_stores(f"api_{uuid.uuid4().hex}")
    _seed_accounts(s.accounts)
    app.router.lifespan_context = _patch_lifespan(s)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, s

    s.close()


@pytest.fixture
def client(api_client: tuple[TestClient, TestStores]) -> TestClient:
    """The shared TestClient with no cookies: every test starts as a new browser."""
    c, _stores = api_client
    c.cookies.clear()
    return c


# ---------------------------------------------------------------------------
# Flow helpers
# ---------------------------------------------------------------------------


def fetch_nonce(client: TestClient, action: str = "login-form") -> str:
    resp = client.get(f"/api/v1/auth/nonce/{action}")
    assert resp.status_code == 200
    return resp.json()["nonce"]


def login(client: TestClient, username: str = "alice", password: str = PASSWORD, **extra):
    """Fetch a login nonce in the client's session and post the login form."""
    form = {"username": username, "password": password, "login-form-nonce": fetch_nonce(client)}
    form.update(extra)
    return client.post("/api/v1/auth/login", data=form)
