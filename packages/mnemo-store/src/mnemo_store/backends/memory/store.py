from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from mnemo_core.errors import StorageError, ValidationError
from mnemo_core.types import BatchDeleteResult, MemoryEntry, Scope

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable


class InProcessMemoryStore:
    """T0 memory store: Python dicts, nothing survives the process.

    Records are kept in their serialized form so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        # agent_id -> entry id -> persisted record
        self._data: dict[str, dict[str, dict]] = {}

    def _decode(self, record: dict) -> MemoryEntry:
        try:
            return MemoryEntry.from_dict(record)
        except ValidationError as exc:
            raise StorageError(f"Corrupt memory record {record.get('id')!r}: {exc}") from exc

    async def put(self, entry: MemoryEntry) -> str:
        entry_id = entry.id or uuid.uuid4().hex
        record = entry.to_dict()
        record["id"] = entry_id
        self._data.setdefault(entry.agent_id, {})[entry_id] = record
        return entry_id

    async def get(self, scope: Scope, entry_id: str) -> MemoryEntry | None:
        record = self._data.get(scope.agent_id, {}).get(entry_id)
        if record is None:
            return None
        entry = self._decode(record)
        return entry if scope.contains(entry) else None

    async def list_by_scope(
        self, agent_id: str, user_id: str | None = None
    ) -> AsyncIterator[MemoryEntry]:
        scope = Scope(agent_id, user_id)
        for record in list(self._data.get(agent_id, {}).values()):
            entry = self._decode(record)
            if scope.contains(entry):
                yield entry

    async def delete(self, scope: Scope, entry_id: str) -> bool:
        if await self.get(scope, entry_id) is None:
            return False
        del self._data[scope.agent_id][entry_id]
        return True

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
        return None
