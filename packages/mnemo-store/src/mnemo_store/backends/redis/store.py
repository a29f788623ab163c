from __future__ import annotations

import json
import uuid
from typing import TYPE_CHECKING

from mnemo_core.errors import StorageError, StorageUnavailableError, ValidationError
from mnemo_core.logging import get_logger
from mnemo_core.types import BatchDeleteResult, MemoryEntry, Scope
from redis.asyncio import Redis as AsyncRedis
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from redis.asyncio import Redis

logger = get_logger("backend.redis.store")

_SCAN_BATCH = 100


async def _connect(redis_url: str) -> Redis:
    client: Redis = AsyncRedis.from_url(redis_url, decode_responses=False)
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        logger.exception("Redis not reachable at %s", redis_url)
        await client.aclose()
        raise StorageUnavailableError(f"Redis not reachable at {redis_url}: {exc}") from exc
    logger.info("Connected to Redis at %s", redis_url)
    return client


class RedisMemoryStore:
    """T2 memory store: one JSON string per entry plus a per-agent id set.

    Keys:
        ``{prefix}memory:{agent_id}:{id}``  serialized entry
        ``{prefix}memory_idx:{agent_id}``   set of entry ids for the agent
    """

    def __init__(self, client: Redis, *, prefix: str = "mnemo:") -> None:
        self._r = client
        self._prefix = prefix

    @classmethod
    async def create(cls, redis_url: str, *, prefix: str = "mnemo:") -> RedisMemoryStore:
        client = await _connect(redis_url)
        return cls(client, prefix=prefix)

    def _key(self, agent_id: str, entry_id: str) -> str:
        return f"{self._prefix}memory:{agent_id}:{entry_id}"

    def _idx_key(self, agent_id: str) -> str:
        return f"{self._prefix}memory_idx:{agent_id}"

    @staticmethod
    def _decode(raw: bytes | str) -> MemoryEntry:
        try:
            return MemoryEntry.from_dict(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            raise StorageError(f"Corrupt memory record: {exc}") from exc

    async def put(self, entry: MemoryEntry) -> str:
        entry_id = entry.id or uuid.uuid4().hex
        record = entry.to_dict()
        record["id"] = entry_id
        try:
            async with self._r.pipeline(transaction=True) as pipe:
                pipe.set(self._key(entry.agent_id, entry_id), json.dumps(record))
                pipe.sadd(self._idx_key(entry.agent_id), entry_id)
                await pipe.execute()
        except RedisError as exc:
            logger.exception("Failed to write memory entry %s", entry_id)
            raise StorageError(f"Failed to write memory entry {entry_id}: {exc}") from exc
        return entry_id

    async def get(self, scope: Scope, entry_id: str) -> MemoryEntry | None:
        try:
            raw = await self._r.get(self._key(scope.agent_id, entry_id))
        except RedisError as exc:
            logger.exception("Failed to read memory entry %s", entry_id)
            raise StorageError(f"Failed to read memory entry {entry_id}: {exc}") from exc
        if raw is None:
            return None
        entry = self._decode(raw)
        return entry if scope.contains(entry) else None

    async def list_by_scope(
        self, agent_id: str, user_id: str | None = None
    ) -> AsyncIterator[MemoryEntry]:
        scope = Scope(agent_id, user_id)
        idx_key = self._idx_key(agent_id)
        cursor: int | bytes = 0
        try:
            while True:
                cursor, members = await self._r.sscan(idx_key, cursor=cursor, count=_SCAN_BATCH)
                ids = [m.decode() if isinstance(m, bytes) else m for m in members]
                if ids:
                    values = await self._r.mget([self._key(agent_id, i) for i in ids])
                    for raw in values:
                        # Index members can outlive their record after a
                        # partially applied delete; skip them.
                        if raw is None:
                            continue
                        entry = self._decode(raw)
                        if scope.contains(entry):
                            yield entry
                if cursor == 0:
                    break
        except RedisError as exc:
            logger.exception("Failed to list memory for %r", agent_id)
            raise StorageError(f"Failed to list memory for {agent_id!r}: {exc}") from exc

    async def delete(self, scope: Scope, entry_id: str) -> bool:
        if await self.get(scope, entry_id) is None:
            return False
        try:
            async with self._r.pipeline(transaction=True) as pipe:
                pipe.delete(self._key(scope.agent_id, entry_id))
                pipe.srem(self._idx_key(scope.agent_id), entry_id)
                removed, _ = await pipe.execute()
        except RedisError as exc:
            logger.exception("Failed to delete memory entry %s", entry_id)
            raise StorageError(f"Failed to delete memory entry {entry_id}: {exc}") from exc
        return bool(removed)

    async def delete_batch(
        self, scope: Scope, entry_ids: Iterable[str]
    ) -> BatchDeleteResult:
        deleted: list[str] = []
        missing: list[str] = []
        failed: dict[str, str] = {}
        for entry_id in dict.fromkeys(entry_ids):
            try:
                removed = await self.delete(scope, entry_id)
            except StorageError as exc:
                failed[entry_id] = str(exc)
                continue
            (deleted if removed else missing).append(entry_id)
        return BatchDeleteResult(deleted=deleted, missing=missing, failed=failed)

    async def close(self) -> None:
        await self._r.aclose()
