"""Recurring-topic detection over memory entries.

The PatternDetector clusters entries by exact tag, drops clusters that
are too small to be a signal, and ranks the rest by size and recency.
"""
from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from mnemo_core.config import PatternConfig
from mnemo_core.logging import get_logger
from mnemo_core.types import EntryType, MemoryPattern

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from mnemo_core.types import MemoryEntry

logger = get_logger("engine.patterns")


def _recency_key(entry: MemoryEntry) -> tuple[float, str]:
    assert entry.last_accessed is not None
    return (-entry.last_accessed.timestamp(), entry.id)


class PatternDetector:
    """Groups entries that share a tag into :class:`MemoryPattern` clusters.

    Correction entries never count towards a cluster's size. They are
    attached to a cluster when they carry its tag or when they point at
    one of its members through ``corrects``.

    Usage::

        detector = PatternDetector()
        patterns = detector.detect(entries)
        top = detector.rank(patterns)[:5]
    """

    def __init__(self, config: PatternConfig | None = None) -> None:
        self.config = config or PatternConfig()

    def detect(self, entries: Iterable[MemoryEntry]) -> list[MemoryPattern]:
        """Cluster *entries* by tag and return the surviving patterns, ranked.

        Args:
            entries: Entries to analyze (typically all matches of a recall)

        Returns:
            Patterns with at least ``min_frequency`` members
        """
        members: list[MemoryEntry] = []
        corrections: list[MemoryEntry] = []
        for entry in entries:
            (corrections if entry.type is EntryType.CORRECTION else members).append(entry)

        clusters = self._cluster(members)
        dominant = {
            tag: cluster
            for tag, cluster in clusters.items()
            if len(cluster) >= self.config.min_frequency
        }
        logger.debug(
            "Found %d tag clusters, %d at or above frequency %d",
            len(clusters),
            len(dominant),
            self.config.min_frequency,
        )

        patterns = [
            self._cluster_to_pattern(tag, cluster, corrections)
            for tag, cluster in dominant.items()
        ]
        return self.rank(patterns)

    def rank(self, patterns: list[MemoryPattern]) -> list[MemoryPattern]:
        """Sort by frequency desc, then most recently seen, then label."""
        return sorted(
            patterns,
            key=lambda p: (-p.frequency, -p.last_seen.timestamp(), p.pattern),
        )

    # ── Internal Methods ───────────────────────────────────────────

    def _cluster(
        self, entries: list[MemoryEntry]
    ) -> dict[str, list[MemoryEntry]]:
        """Map each tag to the entries carrying it (exact match)."""
        clusters: dict[str, list[MemoryEntry]] = defaultdict(list)
        for entry in entries:
            for tag in entry.tags:
                clusters[tag].append(entry)
        return clusters

    def _cluster_to_pattern(
        self,
        tag: str,
        cluster: list[MemoryEntry],
        corrections: list[MemoryEntry],
    ) -> MemoryPattern:
        """Convert a tag cluster to a pattern.

        Args:
            tag: Shared tag, used as the pattern label
            cluster: Entries carrying the tag
            corrections: All correction entries of the analyzed set

        Returns:
            A pattern with recent examples and linked corrections
        """
        ordered = sorted(cluster, key=_recency_key)
        last_seen: datetime = max(e.last_accessed for e in cluster if e.last_accessed)

        member_ids = {e.id for e in cluster if e.id}
        linked = sorted(
            (
                c for c in corrections
                if tag in c.tags or (c.corrects is not None and c.corrects in member_ids)
            ),
            key=_recency_key,
        )

        return MemoryPattern(
            pattern=tag,
            frequency=len(cluster),
            last_seen=last_seen,
            examples=self._sample(ordered, self.config.max_examples),
            corrections=self._sample(linked, self.config.max_corrections),
        )

    @staticmethod
    def _sample(entries: list[MemoryEntry], limit: int) -> list[str]:
        """First *limit* distinct non-empty summaries."""
        seen: dict[str, None] = {}
        for entry in entries:
            if len(seen) >= limit:
                break
            if entry.summary:
                seen.setdefault(entry.summary, None)
        return list(seen)
