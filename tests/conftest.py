"""
tests/conftest.py -- Shared test fixtures for Autozonex integration tests.

This module provides:
  - _make_test_stores(): creates an isolated in-memory DB for the user and market stores
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient with admin JWT for API integration tests
  - web_client: TestClient with follow_redirects=False for admin page tests
  - user_factory: creates extra users with a given role list on the api_client DB

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment variables must be set before any auth/core import:
  DEBUG               -- get_settings() auto-generates SECRET_KEY instead of raising
  ALLOWED_HOSTS       -- TestClient sends Host: testserver
  RATE_LIMIT_ENABLED  -- integration tests fire many logins from one "IP"
  OTP_BCRYPT_ROUNDS   -- minimum cost keeps OTP hashing fast in tests
  DATABASE_URL        -- nothing touches a file-backed database
"""

from __future__ import annotations

import asyncio
import itertools
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager

# CRITICAL: Set environment before any auth/core import -- get_settings() is
# cached on first call.
os.environ.setdefault("DEBUG", "true")
os.environ["ALLOWED_HOSTS"] = '["testserver", "localhost", "127.0.0.1"]'
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["OTP_BCRYPT_ROUNDS"] = "4"
os.environ["DATABASE_URL"] = "sqlite:///file:autozonex_test_default?mode=memory&cache=shared&uri=true"
for _smtp_var in ("SMTP_HOST", "SMTP_SENDER"):
    os.environ.pop(_smtp_var, None)

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from market.store import MarketStore

ADMIN_PASSWORD = "testpass123"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_db_url(prefix: str) -> str:
    """Return a unique named shared-memory SQLite URL."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex[:8]}?mode=memory&cache=shared&uri=true"


def _make_test_stores(db_suffix: str) -> tuple[UserStore, MarketStore]:
    """Create isolated stores sharing one named shared-memory database.

    Args:
        db_suffix: Prefix for the DB name so test modules never share state.
    """
    url = memory_db_url(f"test_{db_suffix}")
    return UserStore(db_url=url), MarketStore(db_url=url)


def _patch_lifespan(user_store: UserStore, market_store: MarketStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.market_store = market_store
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def _create_admin(user_store: UserStore, email: str, mobile: str) -> tuple[int, str]:
    uid = user_store.create_user(
        User(
            email=email,
            name="Test Admin",
            mobile=mobile,
            roles=["admin"],
            hashed_password=hash_password(ADMIN_PASSWORD),
        )
    )
    token = create_access_token(user_id=uid, email=email, role="admin", expire_seconds=3600)
    return uid, token


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    The admin user (admin@test.local / testpass123) exists before the
    client starts.
    """
    user_store, market_store = _make_test_stores("api")
    uid, token = _create_admin(user_store, "admin@test.local", "9000000000")

    app.router.lifespan_context = _patch_lifespan(user_store, market_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, uid

    market_store.close()
    user_store.close()


@pytest.fixture(scope="module")
def web_client() -> Generator[tuple[TestClient, str], None, None]:
    """Yield (client, token) for admin page integration tests.

    follow_redirects=False is essential for web route tests: we assert on
    redirect *locations* (e.g. 302 to /login), which are invisible once
    the client follows the redirect and returns the final 200 response.
    """
    user_store, market_store = _make_test_stores("web")
    _uid, token = _create_admin(user_store, "webadmin@test.local", "9100000000")

    app.router.lifespan_context = _patch_lifespan(user_store, market_store)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, token

    market_store.close()
    user_store.close()


@pytest.fixture(scope="module")
def user_factory(api_client) -> Callable[..., tuple[int, dict[str, str]]]:
    """Return make(roles) -> (user_id, auth_headers) creating users on the api_client DB."""
    client, _token, _uid = api_client
    store: UserStore = client.app.state.user_store
    counter = itertools.count(1)

    def make(roles: tuple[str, ...] = ("user",)) -> tuple[int, dict[str, str]]:
        n = next(counter)
        email = f"member{n}@test.local"
        uid = store.create_user(
            User(
                email=email,
                name=f"Member {n}",
                mobile=f"70000{n:05d}",
                roles=list(roles),
                hashed_password=hash_password("memberpass1"),
            )
        )
        token = create_access_token(user_id=uid, email=email, role=roles[0], expire_seconds=3600)
        return uid, {"Authorization": f"Bearer {token}"}

    return make


@pytest.fixture
def admin_headers(api_client) -> dict[str, str]:
    _client, token, _uid = api_client
    return {"Authorization": f"Bearer {token}"}
