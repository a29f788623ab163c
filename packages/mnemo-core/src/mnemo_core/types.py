from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

from mnemo_core.clock import ensure_utc, utcnow
from mnemo_core.errors import ValidationError

# ── Scope ────────────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class Scope:
    """Partition of memory data.

    ``user_id=None`` addresses the whole agent: agent-global entries and
    every user's entries. A concrete ``user_id`` narrows to that user.
    """
    agent_id: str
    user_id: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.agent_id, str) or not self.agent_id.strip():
            raise ValidationError("agent_id must be a non-empty string")
        if self.user_id is not None and (
            not isinstance(self.user_id, str) or not self.user_id.strip()
        ):
            raise ValidationError("user_id must be a non-empty string or None")

    def contains(self, entry: MemoryEntry) -> bool:
        if entry.agent_id != self.agent_id:
            return False
        return self.user_id is None or entry.user_id == self.user_id

    def __str__(self) -> str:
        return f"{self.agent_id}/{self.user_id}" if self.user_id else self.agent_id


# ── Entry Variants ───────────────────────────────────────────────────

class EntryType(enum.Enum):
    LOG = "log"
    SUMMARY = "summary"
    PATTERN = "pattern"
    CORRECTION = "correction"
    GOAL = "goal"
    GOAL_PROGRESS = "goal_progress"
    SESSION_SUMMARY = "session_summary"
    SESSION_DECISION = "session_decision"

    @classmethod
    def parse(cls, value: EntryType | str) -> EntryType:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(t.value for t in cls)
            raise ValidationError(
                f"Unknown entry type {value!r} (expected one of: {valid})"
            ) from None


GOAL_TYPES = frozenset({EntryType.GOAL, EntryType.GOAL_PROGRESS})


class GoalStatus(enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ABANDONED = "abandoned"

    @classmethod
    def _missing_(cls, value: object) -> GoalStatus | None:
        # Older records used "new" for goals nobody had started on yet.
        if value == "new":
            return cls.PENDING
        return None

    @classmethod
    def parse(cls, value: GoalStatus | str) -> GoalStatus:
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValidationError(
                f"Unknown goal status {value!r} (expected one of: {valid})"
            ) from None


@dataclass(frozen=True, slots=True)
class GoalInfo:
    """Goal fields carried by ``goal`` and ``goal_progress`` entries."""
    goal_id: str
    goal_summary: str
    status: GoalStatus = GoalStatus.PENDING

    def __post_init__(self) -> None:
        if not self.goal_id:
            raise ValidationError("goal_id must not be empty")
        object.__setattr__(self, "status", GoalStatus.parse(self.status))


# ── Memory Entry ─────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class MemoryEntry:
    """A single persisted interaction record.

    ``id`` is empty until a store assigns one. ``tags`` is normalized to a
    frozenset so that insertion order never matters. ``goal`` is required
    for goal variants and forbidden otherwise; ``corrects`` only applies to
    correction entries.
    """
    agent_id: str
    type: EntryType = EntryType.SUMMARY
    summary: str = ""
    input: str = ""
    user_id: str | None = None
    context: str | None = None
    tags: frozenset[str] = field(default_factory=frozenset)
    relevance_score: float = 1.0
    frequency: int = 1
    created_at: datetime = field(default_factory=utcnow)
    last_accessed: datetime | None = None
    goal: GoalInfo | None = None
    corrects: str | None = None
    id: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.agent_id, str) or not self.agent_id.strip():
            raise ValidationError("agent_id must be a non-empty string")
        object.__setattr__(self, "type", EntryType.parse(self.type))
        if isinstance(self.tags, str):
            raise ValidationError("tags must be a collection of strings, not a string")
        tags = frozenset(str(t).strip() for t in self.tags)
        object.__setattr__(self, "tags", frozenset(t for t in tags if t))

        score = self.relevance_score
        if isinstance(score, bool) or not isinstance(score, (int, float)) or math.isnan(score):
            raise ValidationError(f"relevance_score must be a number, got {score!r}")
        if not 0.0 <= score <= 1.0:
            raise ValidationError(f"relevance_score must be within [0, 1], got {score}")
        object.__setattr__(self, "relevance_score", float(score))

        if isinstance(self.frequency, bool) or not isinstance(self.frequency, int):
            raise ValidationError(f"frequency must be an integer, got {self.frequency!r}")
        if self.frequency < 1:
            raise ValidationError(f"frequency must be >= 1, got {self.frequency}")

        created = ensure_utc(self.created_at)
        accessed = created if self.last_accessed is None else ensure_utc(self.last_accessed)
        if accessed < created:
            raise ValidationError("last_accessed must not precede created_at")
        object.__setattr__(self, "created_at", created)
        object.__setattr__(self, "last_accessed", accessed)

        if self.type in GOAL_TYPES and self.goal is None:
            raise ValidationError(f"{self.type.value} entries require goal details")
        if self.type not in GOAL_TYPES and self.goal is not None:
            raise ValidationError(f"{self.type.value} entries cannot carry goal details")
        if self.corrects is not None and self.type is not EntryType.CORRECTION:
            raise ValidationError("only correction entries may reference a corrected entry")

    @property
    def scope(self) -> Scope:
        return Scope(self.agent_id, self.user_id)

    def touched(self, now: datetime) -> MemoryEntry:
        """Return a copy with an access bump: later timestamp, frequency + 1."""
        now = ensure_utc(now)
        assert self.last_accessed is not None
        return replace(
            self,
            frequency=self.frequency + 1,
            last_accessed=max(now, self.last_accessed),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted record shape (JSON-serializable)."""
        assert self.last_accessed is not None
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "user_id": self.user_id,
            "type": self.type.value,
            "input": self.input,
            "summary": self.summary,
            "context": self.context,
            "tags": sorted(self.tags),
            "relevance_score": self.relevance_score,
            "frequency": self.frequency,
            "created_at": self.created_at.isoformat(),
            "last_accessed": self.last_accessed.isoformat(),
            "goal_id": self.goal.goal_id if self.goal else None,
            "goal_summary": self.goal.goal_summary if self.goal else None,
            "goal_status": self.goal.status.value if self.goal else None,
            "corrects": self.corrects,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryEntry:
        """Create a MemoryEntry from a persisted record."""
        try:
            goal = None
            if data.get("goal_id"):
                goal = GoalInfo(
                    goal_id=data["goal_id"],
                    goal_summary=data.get("goal_summary") or "",
                    status=data.get("goal_status") or GoalStatus.PENDING,
                )
            return cls(
                id=data.get("id") or "",
                agent_id=data["agent_id"],
                user_id=data.get("user_id"),
                type=data.get("type", EntryType.SUMMARY.value),
                input=data.get("input") or "",
                summary=data.get("summary") or "",
                context=data.get("context"),
                tags=frozenset(data.get("tags") or ()),
                relevance_score=data.get("relevance_score", 1.0),
                frequency=data.get("frequency", 1),
                created_at=datetime.fromisoformat(data["created_at"]),
                last_accessed=datetime.fromisoformat(data["last_accessed"]),
                goal=goal,
                corrects=data.get("corrects"),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise ValidationError(f"Malformed memory record: {exc}") from exc


# ── Derived Types ────────────────────────────────────────────────────

@dataclass(frozen=True, slots=True)
class MemoryPattern:
    """A recurring tag cluster. Derived on demand, never persisted."""
    pattern: str
    frequency: int
    last_seen: datetime
    examples: list[str] = field(default_factory=list)
    corrections: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "pattern": self.pattern,
            "frequency": self.frequency,
            "last_seen": self.last_seen.isoformat(),
            "examples": list(self.examples),
            "corrections": list(self.corrections),
        }


@dataclass(frozen=True, slots=True)
class BatchDeleteResult:
    """Outcome of a best-effort batch delete.

    ``missing`` ids were not present (not a failure); ``failed`` maps the
    ids that could not be deleted to the error text.
    """
    deleted: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed
