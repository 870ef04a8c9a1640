"""
tests/conftest.py -- Shared test fixtures for Lodestone tests.

This module provides:
  - make_store(): creates an isolated in-memory TokenStore
  - ctx / service: an AppContext and SessionService over a fresh store
  - alice: a seeded user ("alice" / "secret")
  - api_client: TestClient whose lifespan injects the test AppContext

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process. Each
fixture instance gets a unique name so tests never see each other's rows.

The DEBUG env var must be set before any core import so Settings() accepts a
missing SIGNING_KEY_PATH instead of raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import so Settings() does not
# demand a signing key file.
os.environ.setdefault("DEBUG", "true")

import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from api.main import app
from auth.context import AppContext
from auth.models import User
from auth.passwords import new_user
from auth.session import SessionService
from auth.store import TokenStore
from core.config import Settings

ALICE_UUID = "6f5c2b1e-3d4a-4b8c-9e7f-0a1b2c3d4e5f"
ALICE_PASSWORD = "secret"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_store() -> TokenStore:
    """Create an isolated named shared-memory SQLite store."""
    name = f"test_auth_{uuid.uuid4().hex}"
    return TokenStore(db_url=f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")


def make_settings(**overrides) -> Settings:
    return Settings(debug=True, signing_key_path="", **overrides)


def _patch_lifespan(ctx: AppContext):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test context into app.state so TestClient routes see
    the isolated test store rather than the production database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.ctx = ctx
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def signing_key() -> rsa.RSAPrivateKey:
    """One RSA key for the whole run. 2048 bits keeps generation fast."""
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def store() -> Generator[TokenStore, None, None]:
    s = make_store()
    yield s
    s.close()


@pytest.fixture
def ctx(store: TokenStore, signing_key: rsa.RSAPrivateKey) -> AppContext:
    return AppContext(settings=make_settings(), store=store, signing_key=signing_key)


@pytest.fixture
def service(ctx: AppContext) -> SessionService:
    return SessionService(ctx)


@pytest.fixture
def alice(store: TokenStore) -> User:
    """Seed user alice/secret with a fixed UUID. No token pairs yet."""
    user = new_user("alice", ALICE_PASSWORD, player_name="Alice", preferred_language="de", user_uuid=ALICE_UUID)
    store.create_user(user)
    return user


@pytest.fixture
def api_client(ctx: AppContext, alice: User) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app with the test context injected.

    The real route handlers, exception handlers, and middleware all run; only
    the lifespan is swapped.
    """
    app.router.lifespan_context = _patch_lifespan(ctx)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client


@pytest.fixture
def client_factory():
    """Return a callable that builds a TestClient over a given context.

    For tests that need non-default client options (e.g. raise_server_exceptions=False
    to observe the 500 handler) or a context patched before startup.
    """

    def _make(ctx: AppContext, **kwargs) -> TestClient:
        app.router.lifespan_context = _patch_lifespan(ctx)
        return TestClient(app, **kwargs)

    return _make
