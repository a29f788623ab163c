from __future__ import annotations

import json
import sqlite3
import uuid
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
from mnemo_core.errors import StorageError, StorageUnavailableError, ValidationError
from mnemo_core.logging import get_logger
from mnemo_core.types import BatchDeleteResult, MemoryEntry, Scope

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

logger = get_logger("backend.sqlite.store")

_CREATE_MEMORY = """
CREATE TABLE IF NOT EXISTS memory (
    id TEXT NOT NULL,
    agent_id TEXT NOT NULL,
    user_id TEXT,
    type TEXT NOT NULL,
    input TEXT NOT NULL DEFAULT '',
    summary TEXT NOT NULL DEFAULT '',
    context TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    relevance_score REAL NOT NULL DEFAULT 1.0,
    frequency INTEGER NOT NULL DEFAULT 1,
    created_at TEXT NOT NULL,
    last_accessed TEXT NOT NULL,
    goal_id TEXT,
    goal_summary TEXT,
    goal_status TEXT,
    corrects TEXT,
    PRIMARY KEY (agent_id, id)
);
CREATE INDEX IF NOT EXISTS idx_memory_agent_user ON memory(agent_id, user_id);
CREATE INDEX IF NOT EXISTS idx_memory_goal_id ON memory(goal_id);
"""

_COLUMNS = (
    "id", "agent_id", "user_id", "type", "input", "summary", "context",
    "tags", "relevance_score", "frequency", "created_at", "last_accessed",
    "goal_id", "goal_summary", "goal_status", "corrects",
)

_UPSERT = (
    f"INSERT INTO memory ({', '.join(_COLUMNS)})"
    f" VALUES ({', '.join('?' for _ in _COLUMNS)})"
    " ON CONFLICT(agent_id, id) DO UPDATE SET "
    + ", ".join(f"{c} = excluded.{c}" for c in _COLUMNS if c not in ("id", "agent_id"))
)

_DB_ERRORS = (aiosqlite.Error, sqlite3.Error, OSError)


async def _connect(db_path: str, *, wal: bool) -> aiosqlite.Connection:
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(path))
    if wal:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
    await conn.execute("PRAGMA busy_timeout=5000")
    conn.row_factory = aiosqlite.Row
    await conn.executescript(_CREATE_MEMORY)
    await conn.commit()
    return conn


class SQLiteMemoryStore:
    """T1 memory store: one SQLite table, one row per entry."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    @classmethod
    async def create(cls, db_path: str, *, wal: bool = True) -> SQLiteMemoryStore:
        try:
            conn = await _connect(db_path, wal=wal)
        except _DB_ERRORS as exc:
            logger.exception("Failed to open SQLite memory store at %s", db_path)
            raise StorageUnavailableError(f"Cannot open SQLite store at {db_path}: {exc}") from exc
        logger.info("Opened SQLite memory store at %s", db_path)
        return cls(conn)

    @staticmethod
    def _row_to_entry(row: aiosqlite.Row) -> MemoryEntry:
        record: dict[str, Any] = dict(zip(row.keys(), tuple(row), strict=True))
        try:
            record["tags"] = json.loads(record.get("tags") or "[]")
            return MemoryEntry.from_dict(record)
        except (json.JSONDecodeError, ValidationError) as exc:
            raise StorageError(f"Corrupt memory row {record.get('id')!r}: {exc}") from exc

    async def put(self, entry: MemoryEntry) -> str:
        entry_id = entry.id or uuid.uuid4().hex
        record = entry.to_dict()
        record["id"] = entry_id
        record["tags"] = json.dumps(record["tags"])
        try:
            await self._conn.execute(_UPSERT, tuple(record[c] for c in _COLUMNS))
            await self._conn.commit()
        except _DB_ERRORS as exc:
            logger.exception("Failed to write memory entry %s", entry_id)
            await self._rollback()
            raise StorageError(f"Failed to write memory entry {entry_id}: {exc}") from exc
        return entry_id

    async def get(self, scope: Scope, entry_id: str) -> MemoryEntry | None:
        sql = "SELECT * FROM memory WHERE id = ? AND agent_id = ?"
        params: list[Any] = [entry_id, scope.agent_id]
        if scope.user_id is not None:
            sql += " AND user_id = ?"
            params.append(scope.user_id)
        try:
            async with self._conn.execute(sql, params) as cursor:
                row = await cursor.fetchone()
        except _DB_ERRORS as exc:
            logger.exception("Failed to read memory entry %s", entry_id)
            raise StorageError(f"Failed to read memory entry {entry_id}: {exc}") from exc
        return self._row_to_entry(row) if row else None

    async def list_by_scope(
        self, agent_id: str, user_id: str | None = None
    ) -> AsyncIterator[MemoryEntry]:
        sql = "SELECT * FROM memory WHERE agent_id = ?"
        params: list[Any] = [agent_id]
        if user_id is not None:
            sql += " AND user_id = ?"
            params.append(user_id)
        try:
            async with self._conn.execute(sql, params) as cursor:
                async for row in cursor:
                    yield self._row_to_entry(row)
        except _DB_ERRORS as exc:
            logger.exception("Failed to list memory for %r", agent_id)
            raise StorageError(f"Failed to list memory for {agent_id!r}: {exc}") from exc

    async def delete(self, scope: Scope, entry_id: str) -> bool:
        try:
            removed = await self._delete_one(scope, entry_id)
            await self._conn.commit()
        except _DB_ERRORS as exc:
            logger.exception("Failed to delete memory entry %s", entry_id)
            await self._rollback()
            raise StorageError(f"Failed to delete memory entry {entry_id}: {exc}") from exc
        return removed

    async def _delete_one(self, scope: Scope, entry_id: str) -> bool:
        sql = "DELETE FROM memory WHERE id = ? AND agent_id = ?"
        params: list[Any] = [entry_id, scope.agent_id]
        if scope.user_id is not None:
            sql += " AND user_id = ?"
            params.append(scope.user_id)
        cursor = await self._conn.execute(sql, params)
        return cursor.rowcount > 0

    async def delete_batch(
        self, scope: Scope, entry_ids: Iterable[str]
    ) -> BatchDeleteResult:
        deleted: list[str] = []
        missing: list[str] = []
        failed: dict[str, str] = {}
        for entry_id in dict.fromkeys(entry_ids):
            try:
                removed = await self._delete_one(scope, entry_id)
            except _DB_ERRORS as exc:
                failed[entry_id] = str(exc)
                continue
            (deleted if removed else missing).append(entry_id)
        try:
            await self._conn.commit()
        except _DB_ERRORS as exc:
            logger.exception("Commit failed for batch delete in %s", scope)
            await self._rollback()
            failed.update({entry_id: str(exc) for entry_id in deleted})
            deleted = []
        return BatchDeleteResult(deleted=deleted, missing=missing, failed=failed)

    async def _rollback(self) -> None:
        # An open transaction would be committed by the next unrelated write.
        try:
            await self._conn.rollback()
        except _DB_ERRORS:
            logger.exception("Rollback failed")

    async def close(self) -> None:
        await self._conn.close()
