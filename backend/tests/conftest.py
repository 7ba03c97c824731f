"""
Vitali Backend — Test Configuration (conftest.py)
===================================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── recording_backend: In-memory SnapshotBackend that records every call
    ├── sqlite_engine:     Async SQLite engine on a temp file (real SQL path)
    ├── sqlite_backend:    SqlSnapshotBackend over sqlite_engine, schema created
    ├── test_settings:     Settings pinned to memory mode and quiet logging
    ├── test_app:          FastAPI app wired to recording_backend
    ├── test_client:       HTTPX AsyncClient, app lifespan running
    └── wait_until:        Polls a condition on the event loop (timer-driven tests)
"""

import asyncio
import copy
import os
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

# Override settings for testing BEFORE any vitali imports
os.environ["DATA_STORE_MODE"] = "memory"
os.environ.pop("DATABASE_URL", None)
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine

from vitali.config import Settings
from vitali.exceptions import SnapshotWriteError, StoreUnavailableError
from vitali.store import SnapshotBackend, SqlSnapshotBackend


class RecordingBackend(SnapshotBackend):
    """
    SnapshotBackend double that keeps rows in a dict.

    Knobs:
        fail_writes:    every upsert raises SnapshotWriteError
        read_failures:  the next N load_all() calls raise StoreUnavailableError
        gate:           when set to an asyncio.Event, upserts block until it is set
    """

    def __init__(self, rows: Optional[Dict[str, Any]] = None):
        self.rows: Dict[str, Any] = copy.deepcopy(rows or {})
        self.upserts: List[Tuple[str, Any]] = []
        self.load_calls = 0
        self.fail_writes = False
        self.read_failures = 0
        self.gate: Optional[asyncio.Event] = None
        self.disposed = False

    async def upsert(self, bucket: str, data: Any) -> None:
        self.upserts.append((bucket, copy.deepcopy(data)))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_writes:
            raise SnapshotWriteError(bucket, context={"error": "simulated outage"})
        self.rows[bucket] = copy.deepcopy(data)

    async def load_all(self, buckets: Iterable[str]) -> Dict[str, Optional[Any]]:
        self.load_calls += 1
        if self.read_failures > 0:
            self.read_failures -= 1
            raise StoreUnavailableError(context={"error": "connection refused"})
        return {name: copy.deepcopy(self.rows.get(name)) for name in buckets}

    async def dispose(self) -> None:
        self.disposed = True


# ══════════════════════════════════════════════════════════════════════════
# Store Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def recording_backend():
    """Fresh RecordingBackend with no stored rows."""
    return RecordingBackend()


@pytest_asyncio.fixture
async def sqlite_engine(tmp_path):
    """
    Async SQLite engine on a per-test database file.

    Exercises the real upsert/select SQL without a PostgreSQL server.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'state.db'}")
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def sqlite_backend(sqlite_engine):
    backend = SqlSnapshotBackend(sqlite_engine)
    await backend.create_schema()
    return backend


@pytest.fixture
def wait_until():
    """
    Returns an async poller: `await wait_until(lambda: cond)`.

    Fails the test if the condition is not met within `timeout` seconds.
    """

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                pytest.fail("condition not met within %.1fs" % timeout)
            await asyncio.sleep(0.01)

    return _wait


# ══════════════════════════════════════════════════════════════════════════
# Application Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def test_settings():
    return Settings(
        data_store_mode="memory",
        database_url=None,
        log_level="WARNING",
        hydration_max_attempts=1,
        hydration_retry_wait=0,
        store_flush_debounce_ms=1000,
    )


@pytest.fixture
def test_app(test_settings, recording_backend):
    """FastAPI app whose store writes to recording_backend."""
    from vitali.main import create_app

    return create_app(app_settings=test_settings, backend=recording_backend)


@pytest_asyncio.fixture
async def test_client(test_app):
    """
    Provides an async HTTP test client for endpoint testing.

    ASGITransport does not send lifespan events, so the lifespan is entered
    explicitly: the store is hydrated before the first request and drained
    when the fixture is torn down.
    """
    async with test_app.router.lifespan_context(test_app):
        transport = ASGITransport(app=test_app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
