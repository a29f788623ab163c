from __future__ import annotations

import contextlib
import logging
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import uuid4

import pytest
import pytest_asyncio
from mnemo_core.clock import FixedClock
from mnemo_core.types import EntryType, MemoryEntry

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _restore_mnemo_logger():
    logger = logging.getLogger("mnemo")
    handlers, level = list(logger.handlers), logger.level
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW)


@pytest.fixture
def make_entry():
    """Factory for entries timestamped relative to ``NOW``."""

    def _make(
        summary: str = "",
        *,
        agent_id: str = "agent-1",
        user_id: str | None = None,
        type: EntryType | str = EntryType.SUMMARY,
        tags: tuple[str, ...] = (),
        relevance_score: float = 1.0,
        frequency: int = 1,
        age_days: float = 0.0,
        **kwargs,
    ) -> MemoryEntry:
        stamp = NOW - timedelta(days=age_days)
        return MemoryEntry(
            agent_id=agent_id,
            user_id=user_id,
            type=type,
            summary=summary,
            tags=frozenset(tags),
            relevance_score=relevance_score,
            frequency=frequency,
            created_at=stamp,
            last_accessed=stamp,
            **kwargs,
        )

    return _make


# ---------------------------------------------------------------------------
# T0 in-process fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def memory_store():
    from mnemo_store.backends.memory import InProcessMemoryStore
    return InProcessMemoryStore()


# ---------------------------------------------------------------------------
# T1 SQLite fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def sqlite_db_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        yield str(Path(tmpdir) / "test.db")


@pytest_asyncio.fixture
async def sqlite_store(sqlite_db_path):
    from mnemo_store.backends.sqlite import SQLiteMemoryStore
    store = await SQLiteMemoryStore.create(sqlite_db_path)
    yield store
    await store.close()


# ---------------------------------------------------------------------------
# T2 Redis fixtures
# ---------------------------------------------------------------------------

def _redis_prefix() -> str:
    return f"test_{uuid4().hex[:8]}:"


@pytest_asyncio.fixture
async def redis_store():
    pytest.importorskip("redis")
    from mnemo_core.errors import StorageUnavailableError
    from mnemo_store.backends.redis import RedisMemoryStore
    prefix = _redis_prefix()
    try:
        store = await RedisMemoryStore.create("redis://localhost:6379", prefix=prefix)
    except StorageUnavailableError:
        pytest.skip("Redis not available")
    yield store
    # cleanup: delete keys matching our test prefix
    with contextlib.suppress(Exception):
        async for key in store._r.scan_iter(match=f"{prefix}*"):
            await store._r.delete(key)
    await store.close()


@pytest.fixture(params=["memory", "sqlite", "redis"])
def store(request):
    backends = {
        "memory": "memory_store",
        "sqlite": "sqlite_store",
        "redis": "redis_store",
    }
    return request.getfixturevalue(backends[request.param])
