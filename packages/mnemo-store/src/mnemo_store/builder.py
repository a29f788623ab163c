from __future__ import annotations

from typing import TYPE_CHECKING

from mnemo_core.errors import ConfigError, StorageUnavailableError
from mnemo_core.logging import get_logger

if TYPE_CHECKING:
    from mnemo_core.config import MnemoConfig

    from mnemo_store.protocols import MemoryStoreAdapter

logger = get_logger("builder")


class StoreBuilder:
    """Build a memory store from configuration.

    Usage:
        config = MnemoConfig.from_toml("mnemo.toml")
        store = await StoreBuilder(config).build()
    """

    def __init__(self, config: MnemoConfig) -> None:
        self._config = config

    async def build(self) -> MemoryStoreAdapter:
        tier = self._config.backend.tier
        logger.info("Building memory store with %s backend", tier)

        if tier == "memory":
            return self._build_memory()
        elif tier == "sqlite":
            return await self._build_sqlite()
        elif tier == "redis":
            return await self._build_redis()
        else:
            raise ConfigError(f"Unknown backend tier: {tier!r}")

    def _build_memory(self) -> MemoryStoreAdapter:
        from mnemo_store.backends.memory import InProcessMemoryStore
        return InProcessMemoryStore()

    async def _build_sqlite(self) -> MemoryStoreAdapter:
        from mnemo_store.backends.sqlite import SQLiteMemoryStore
        backend = self._config.backend
        return await SQLiteMemoryStore.create(backend.sqlite_path, wal=backend.sqlite_wal)

    async def _build_redis(self) -> MemoryStoreAdapter:
        try:
            from mnemo_store.backends.redis import RedisMemoryStore
        except ModuleNotFoundError as exc:
            raise StorageUnavailableError(
                "redis extra is required for the Redis backend. "
                "Install with: pip install mnemo[redis]"
            ) from exc
        backend = self._config.backend
        return await RedisMemoryStore.create(backend.redis_url, prefix=backend.redis_prefix)
