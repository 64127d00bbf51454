"""
tests/conftest.py -- Shared test fixtures for kvauth.

This module provides:
  - store:       a fresh in-memory KVStore per test
  - hasher:      BcryptHasher at the minimum cost factor (4) so the suite stays fast
  - provider:    KVStoreProvider with default names wired to store + hasher
  - api_client:  TestClient with an admin and a plain user already provisioned

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.
"""

from __future__ import annotations

from collections.abc import Generator
from contextlib import asynccontextmanager

import pytest
from fastapi.testclient import TestClient

from auth.passwords import BcryptHasher
from auth.provider import KVStoreProvider
from core.config import ProviderConfig
from store.kv import KVStore

# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[KVStore, None, None]:
    s = KVStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture(scope="session")
def hasher() -> BcryptHasher:
    return BcryptHasher(rounds=4)


@pytest.fixture
def provider(store: KVStore, hasher: BcryptHasher) -> KVStoreProvider:
    return KVStoreProvider(ProviderConfig(), hasher=hasher, store=store)


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(provider: KVStoreProvider):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test provider into app.state so routes see the
    isolated test store rather than the configured STORE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.provider = provider
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(hasher: BcryptHasher) -> Generator[tuple[TestClient, KVStoreProvider], None, None]:
    """Yield (client, provider) for API integration tests.

    Users:
      - root / rootpass   holds the "admin" role
      - bob  / bobpass    holds the "viewer" role
      - carol             exists but has no password
    """
    from api.main import app
    from main import add_role, grant_role

    store = KVStore("sqlite:///file:test_api?mode=memory&cache=shared&uri=true")
    provider = KVStoreProvider(ProviderConfig(), hasher=hasher, store=store)

    for username, password, role in (("root", "rootpass", "admin"), ("bob", "bobpass", "viewer")):
        provider.create_user(username=username)
        provider.set_user_password(username, password)
        add_role(provider, role)
        grant_role(provider, username, role)
    provider.create_user(username="carol", email="carol@example.com")

    app.router.lifespan_context = _patch_lifespan(provider)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, provider

    store.close()
