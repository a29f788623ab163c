"""Mnemo Store: scoped persistence for memory entries with pluggable backends."""
from __future__ import annotations

from mnemo_store.backends.memory import InProcessMemoryStore
from mnemo_store.builder import StoreBuilder
from mnemo_store.protocols import MemoryStoreAdapter

__all__ = [
    "InProcessMemoryStore",
    "MemoryStoreAdapter",
    "StoreBuilder",
]
