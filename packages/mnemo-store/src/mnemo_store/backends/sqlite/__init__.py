"""T1 SQLite Backend: persistent, zero external infrastructure."""
from __future__ import annotations

from mnemo_store.backends.sqlite.store import SQLiteMemoryStore

__all__ = [
    "SQLiteMemoryStore",
]
