"""Relevance scoring for memory entries.

The final score is a weighted blend of three terms, each in [0, 1]:

- textual overlap: share of query tokens found in the summary and tags
- recency: exponential decay of the time since the entry was last accessed
- intrinsic relevance: the entry's stored ``relevance_score``

With the default weights (0.5 / 0.3 / 0.2) the result stays in [0, 1].
Scoring is pure; ordering (including tie-breaks) is applied afterwards by
:meth:`RelevanceScorer.rank`.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from mnemo_core.clock import ensure_utc
from mnemo_core.config import ScoringConfig

from mnemo_engine.text import tokenize
from mnemo_engine.types import ScoredEntry

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from mnemo_core.types import MemoryEntry

_SECONDS_PER_DAY = 86_400.0


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    """Weighted contribution of each scoring term."""
    text: float
    recency: float
    intrinsic: float

    @property
    def total(self) -> float:
        return min(1.0, max(0.0, self.text + self.recency + self.intrinsic))


def tie_break_key(scored: ScoredEntry) -> tuple[float, int, float, str]:
    """Sort key: score desc, frequency desc, last_accessed desc, id asc."""
    entry = scored.entry
    assert entry.last_accessed is not None
    return (-scored.score, -entry.frequency, -entry.last_accessed.timestamp(), entry.id)


class RelevanceScorer:
    """Scores entries against a query at a given instant.

    Example::

        scorer = RelevanceScorer()
        ranked = scorer.rank("reset password", entries, now=clock.now())
        best = ranked[0].entry
    """

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()

    def text_overlap(self, query_tokens: frozenset[str], entry: MemoryEntry) -> float:
        """Fraction of query tokens present in the entry's summary or tags."""
        if not query_tokens or not entry.summary.strip():
            return 0.0
        doc_tokens = set(tokenize(entry.summary))
        for tag in entry.tags:
            doc_tokens.update(tokenize(tag))
        return len(query_tokens & doc_tokens) / len(query_tokens)

    def recency(self, entry: MemoryEntry, now: datetime) -> float:
        """Half-life decay of the time since last access, 1.0 when just accessed."""
        assert entry.last_accessed is not None
        age = (ensure_utc(now) - entry.last_accessed).total_seconds()
        age_days = max(0.0, age) / _SECONDS_PER_DAY
        return 0.5 ** (age_days / self.config.half_life_days)

    def breakdown(
        self,
        query: str | frozenset[str],
        entry: MemoryEntry,
        now: datetime,
    ) -> ScoreBreakdown:
        query_tokens = self._query_tokens(query)
        cfg = self.config
        return ScoreBreakdown(
            text=cfg.text_weight * self.text_overlap(query_tokens, entry),
            recency=cfg.recency_weight * self.recency(entry, now),
            intrinsic=cfg.intrinsic_weight * min(1.0, max(0.0, entry.relevance_score)),
        )

    def score(
        self,
        query: str | frozenset[str],
        entry: MemoryEntry,
        now: datetime,
    ) -> float:
        """Relevance of *entry* to *query* at *now*, in [0, 1]."""
        return self.breakdown(query, entry, now).total

    def rank(
        self,
        query: str,
        entries: Iterable[MemoryEntry],
        now: datetime,
    ) -> list[ScoredEntry]:
        """Score every entry, then sort with the deterministic tie-break."""
        query_tokens = self._query_tokens(query)
        scored = [
            ScoredEntry(entry=entry, score=self.score(query_tokens, entry, now))
            for entry in entries
        ]
        scored.sort(key=tie_break_key)
        return scored

    @staticmethod
    def _query_tokens(query: str | frozenset[str]) -> frozenset[str]:
        if isinstance(query, frozenset):
            return query
        return frozenset(tokenize(query))
