from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterable

    from mnemo_core.types import BatchDeleteResult, MemoryEntry, Scope


@runtime_checkable
class MemoryStoreAdapter(Protocol):
    """Scoped CRUD over memory entries. No business logic, no caching.

    Every call may suspend on I/O. Backend failures surface as
    :class:`~mnemo_core.errors.StorageError`.
    """

    async def put(self, entry: MemoryEntry) -> str: ...
    async def get(self, scope: Scope, entry_id: str) -> MemoryEntry | None: ...
    def list_by_scope(
        self, agent_id: str, user_id: str | None = None
    ) -> AsyncIterator[MemoryEntry]: ...
    async def delete(self, scope: Scope, entry_id: str) -> bool: ...
    async def delete_batch(
        self, scope: Scope, entry_ids: Iterable[str]
    ) -> BatchDeleteResult: ...
    async def close(self) -> None: ...
