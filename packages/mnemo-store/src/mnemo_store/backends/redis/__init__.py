"""T2 Redis Backend: shared, Redis-backed memory store."""
from __future__ import annotations

from mnemo_store.backends.redis.store import RedisMemoryStore

__all__ = [
    "RedisMemoryStore",
]
