"""Mnemo Core: shared types, config, errors, clock, and logging."""
from __future__ import annotations

from mnemo_core._version import __version__
from mnemo_core.clock import Clock, FixedClock, SystemClock, ensure_utc, utcnow
from mnemo_core.config import (
    BackendConfig,
    LoggingConfig,
    MnemoConfig,
    PatternConfig,
    RecallConfig,
    RetentionConfig,
    ScoringConfig,
)
from mnemo_core.errors import (
    ConfigError,
    EntryNotFoundError,
    MnemoError,
    PartialDeletionError,
    StorageError,
    StorageUnavailableError,
    ValidationError,
)
from mnemo_core.logging import get_logger, setup_logging
from mnemo_core.types import (
    GOAL_TYPES,
    BatchDeleteResult,
    EntryType,
    GoalInfo,
    GoalStatus,
    MemoryEntry,
    MemoryPattern,
    Scope,
)

__all__ = [
    "GOAL_TYPES",
    # Config
    "BackendConfig",
    # Types
    "BatchDeleteResult",
    # Clock
    "Clock",
    # Errors
    "ConfigError",
    "EntryNotFoundError",
    "EntryType",
    "FixedClock",
    "GoalInfo",
    "GoalStatus",
    "LoggingConfig",
    "MemoryEntry",
    "MemoryPattern",
    "MnemoConfig",
    "MnemoError",
    "PartialDeletionError",
    "PatternConfig",
    "RecallConfig",
    "RetentionConfig",
    "Scope",
    "ScoringConfig",
    "StorageError",
    "StorageUnavailableError",
    "SystemClock",
    "ValidationError",
    # Version
    "__version__",
    "ensure_utc",
    # Logging
    "get_logger",
    "setup_logging",
    "utcnow",
]
