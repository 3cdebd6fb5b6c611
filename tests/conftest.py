"""
ProjectSync Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

import asyncio
from unittest.mock import MagicMock

import pytest


# ---------------------------------------------------------------------------
# Environment setup — avoid touching real Redis / Drive in unit tests
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_globals():
    """Reset global singletons between tests."""
    import projectsync.engine.config as cfg_mod
    import projectsync.engine.logging as log_mod

    cfg_mod._config = None
    log_mod._global_queue = None
    yield
    if log_mod._global_queue is not None:
        log_mod.shutdown_logging()
    cfg_mod._config = None


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settle():
    """Awaitable helper that lets call_soon deliveries and background tasks run."""
    return _settle


@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database with all tables."""
    from projectsync.db.session import init_db

    return init_db("sqlite:///:memory:")


@pytest.fixture
def store(session_factory):
    from projectsync.store.sql import SqlDocumentStore

    return SqlDocumentStore(session_factory)


@pytest.fixture
def blobs(tmp_path):
    """Filesystem blob store with small chunks so progress has several steps."""
    from projectsync.store.blob import LocalBlobStore

    return LocalBlobStore(str(tmp_path / "blobs"), chunk_size=64 * 1024,
                          public_base_url="https://files.example.com")


@pytest.fixture
def gateway(store, blobs):
    from projectsync.mutations.gateway import MutationGateway

    return MutationGateway(store, blobs)


@pytest.fixture
def u1():
    from projectsync.identity.session import AuthSession

    return AuthSession.for_user("U1", email="u1@example.com")


@pytest.fixture
def u2():
    from projectsync.identity.session import AuthSession

    return AuthSession.for_user("U2", email="u2@example.com")


@pytest.fixture
def anonymous():
    from projectsync.identity.session import AuthSession

    return AuthSession(ready=True)


@pytest.fixture
def mock_redis():
    """Return a mock Redis client."""
    client = MagicMock()
    client.ping.return_value = True
    client.get.return_value = None
    client.set.return_value = True
    client.delete.return_value = 1
    return client
