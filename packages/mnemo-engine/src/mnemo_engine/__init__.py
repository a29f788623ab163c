"""Mnemo Engine: relevance scoring, pattern detection and retention."""
from __future__ import annotations

from mnemo_engine.manager import MemoryManager
from mnemo_engine.patterns import PatternDetector
from mnemo_engine.retention import EvictionPlan, RetentionBounds, RetentionPolicy
from mnemo_engine.scoring import RelevanceScorer, ScoreBreakdown
from mnemo_engine.types import (
    RECALL_PRESETS,
    CleanupOptions,
    CleanupResult,
    GoalState,
    MemoryStats,
    RecallOptions,
    RecallResult,
    ScoredEntry,
)

__all__ = [
    "RECALL_PRESETS",
    "CleanupOptions",
    "CleanupResult",
    "EvictionPlan",
    "GoalState",
    "MemoryManager",
    "MemoryStats",
    "PatternDetector",
    "RecallOptions",
    "RecallResult",
    "RelevanceScorer",
    "RetentionBounds",
    "RetentionPolicy",
    "ScoreBreakdown",
    "ScoredEntry",
]
