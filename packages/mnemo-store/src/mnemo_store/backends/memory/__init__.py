"""T0 In-Process Backend: zero dependencies, in-memory only."""
from __future__ import annotations

from mnemo_store.backends.memory.store import InProcessMemoryStore

__all__ = [
    "InProcessMemoryStore",
]
