"""Request and result types for the memory engine.

Options validate themselves on construction so that malformed requests
are rejected with :class:`~mnemo_core.errors.ValidationError` before any
store I/O happens. Every result type offers ``to_dict()`` returning a
JSON-serializable structure.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from mnemo_core.errors import ValidationError
from mnemo_core.types import EntryType, GoalStatus, MemoryEntry, MemoryPattern

if TYPE_CHECKING:
    from datetime import datetime


def _check_fraction(name: str, value: object) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or math.isnan(value):
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{name} must be within [0, 1], got {value}")
    return float(value)


def _check_int(name: str, value: object, *, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"{name} must be an integer, got {value!r}")
    if value < minimum:
        raise ValidationError(f"{name} must be >= {minimum}, got {value}")
    return value


@dataclass(frozen=True, slots=True)
class ScoredEntry:
    """A memory entry with its computed relevance for one query."""
    entry: MemoryEntry
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {**self.entry.to_dict(), "score": self.score}


# ── Recall ───────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class RecallOptions:
    """Parameters of a recall request.

    Attributes:
        limit: Maximum number of entries returned
        min_relevance: Entries scoring below this are not matches
        types: Restrict to these entry types (None means all)
        touch: Bump ``last_accessed`` and ``frequency`` of returned entries
    """

    limit: int = 50
    min_relevance: float = 0.1
    types: tuple[EntryType, ...] | None = None
    touch: bool = True

    def __post_init__(self) -> None:
        _check_int("limit", self.limit, minimum=1)
        object.__setattr__(
            self, "min_relevance", _check_fraction("min_relevance", self.min_relevance)
        )
        if self.types is not None:
            if isinstance(self.types, (str, EntryType)):
                raise ValidationError("types must be a sequence of entry types")
            parsed = tuple(dict.fromkeys(EntryType.parse(t) for t in self.types))
            if not parsed:
                raise ValidationError("types must not be empty when given")
            object.__setattr__(self, "types", parsed)

    @classmethod
    def preset(cls, name: str) -> RecallOptions:
        """Options tuned per agent role; unknown names get ``general``."""
        return RECALL_PRESETS.get(name.strip().lower(), RECALL_PRESETS["general"])


RECALL_PRESETS: dict[str, RecallOptions] = {
    # Broad context with a higher bar for relevance
    "research": RecallOptions(
        limit=8,
        min_relevance=0.5,
        types=(EntryType.SUMMARY, EntryType.PATTERN, EntryType.CORRECTION),
    ),
    "automation": RecallOptions(
        limit=6,
        min_relevance=0.4,
        types=(EntryType.SUMMARY, EntryType.PATTERN, EntryType.CORRECTION),
    ),
    # Lightweight lookups for routing decisions
    "router": RecallOptions(
        limit=5,
        min_relevance=0.4,
        types=(EntryType.SUMMARY, EntryType.CORRECTION),
    ),
    "general": RecallOptions(
        limit=10,
        min_relevance=0.3,
        types=(EntryType.SUMMARY, EntryType.PATTERN, EntryType.CORRECTION),
    ),
}


@dataclass(frozen=True, slots=True)
class RecallResult:
    """Ranked recall output.

    ``entries`` is the truncated top page; ``total_matches`` and
    ``patterns`` cover every match before truncation. ``as_of`` is the
    instant the scores were computed at.
    """
    entries: list[ScoredEntry] = field(default_factory=list)
    patterns: list[MemoryPattern] = field(default_factory=list)
    total_matches: int = 0
    average_relevance: float = 0.0
    as_of: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [e.to_dict() for e in self.entries],
            "patterns": [p.to_dict() for p in self.patterns],
            "total_matches": self.total_matches,
            "average_relevance": self.average_relevance,
            "as_of": self.as_of.isoformat() if self.as_of else None,
        }


# ── Cleanup ──────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class CleanupOptions:
    """Retention bounds for one cleanup pass.

    Attributes:
        max_age_days: Entries not accessed for longer than this are evicted
        min_relevance: Unreinforced entries below this intrinsic score are evicted
        max_entries: Hard cap on surviving entries in the scope
    """

    max_age_days: int = 90
    min_relevance: float = 0.1
    max_entries: int = 1000

    def __post_init__(self) -> None:
        _check_int("max_age_days", self.max_age_days, minimum=0)
        object.__setattr__(
            self, "min_relevance", _check_fraction("min_relevance", self.min_relevance)
        )
        _check_int("max_entries", self.max_entries, minimum=0)


@dataclass(frozen=True, slots=True)
class CleanupResult:
    """Outcome of a cleanup pass.

    A non-empty ``failed_ids`` means partial success: the other deletions
    were applied. ``cancelled`` is set when the pass stopped early.
    ``expired``, ``low_relevance`` and ``overflow`` count the entries
    actually deleted under each rule, not the ones planned.
    """
    deleted_count: int = 0
    failed_ids: list[str] = field(default_factory=list)
    expired: int = 0
    low_relevance: int = 0
    overflow: int = 0
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed_ids and not self.cancelled

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted_count": self.deleted_count,
            "failed_ids": list(self.failed_ids),
            "expired": self.expired,
            "low_relevance": self.low_relevance,
            "overflow": self.overflow,
            "cancelled": self.cancelled,
        }


# ── Stats & Goals ────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class MemoryStats:
    """Read-only aggregate view of a scope."""
    total_entries: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    average_relevance: float = 0.0
    top_patterns: list[MemoryPattern] = field(default_factory=list)
    recent_activity: list[MemoryEntry] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "by_type": dict(self.by_type),
            "average_relevance": self.average_relevance,
            "top_patterns": [p.to_dict() for p in self.top_patterns],
            "recent_activity": [e.to_dict() for e in self.recent_activity],
        }


@dataclass(frozen=True, slots=True)
class GoalState:
    """Latest known status of a goal, folded from its goal/progress entries."""
    goal_id: str
    goal_summary: str
    status: GoalStatus
    updated_at: datetime
    updates: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "goal_id": self.goal_id,
            "goal_summary": self.goal_summary,
            "status": self.status.value,
            "updated_at": self.updated_at.isoformat(),
            "updates": self.updates,
        }
