"""Retention policy: decide which entries to evict, then evict them.

Planning is pure and works on a snapshot of the scope. Applying a plan
deletes in chunks through the store's ``delete_batch`` and reports the
ids it could not remove instead of failing the whole pass.
"""
from __future__ import annotations

import asyncio
from collections import Counter
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING

from mnemo_core.clock import ensure_utc
from mnemo_core.config import RetentionConfig
from mnemo_core.logging import get_logger

from mnemo_engine.scoring import RelevanceScorer
from mnemo_engine.types import CleanupOptions, CleanupResult

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from mnemo_core.types import MemoryEntry, Scope
    from mnemo_store.protocols import MemoryStoreAdapter

logger = get_logger("engine.retention")

# Bounds for one pass share the shape of the public cleanup options.
RetentionBounds = CleanupOptions


@dataclass(frozen=True, slots=True)
class EvictionPlan:
    """Ids selected for eviction, grouped by the rule that selected them.

    The three groups are disjoint: an entry is reported under the first
    rule that matched it (age, then relevance, then overflow).
    """
    expired: list[str] = field(default_factory=list)
    low_relevance: list[str] = field(default_factory=list)
    overflow: list[str] = field(default_factory=list)

    @property
    def ids(self) -> list[str]:
        return [*self.expired, *self.low_relevance, *self.overflow]

    def group_of(self) -> dict[str, str]:
        """Map each planned id to the rule that selected it."""
        groups = {entry_id: "overflow" for entry_id in self.overflow}
        groups.update({entry_id: "low_relevance" for entry_id in self.low_relevance})
        groups.update({entry_id: "expired" for entry_id in self.expired})
        return groups

    def __len__(self) -> int:
        return len(self.expired) + len(self.low_relevance) + len(self.overflow)


class RetentionPolicy:
    """Applies age, relevance and count bounds to one scope.

    Usage::

        policy = RetentionPolicy()
        plan = policy.plan(entries, CleanupOptions(max_entries=100), now)
        result = await policy.apply(store, scope, plan)
    """

    def __init__(
        self,
        scorer: RelevanceScorer | None = None,
        config: RetentionConfig | None = None,
    ) -> None:
        self.scorer = scorer or RelevanceScorer()
        self.config = config or RetentionConfig()

    def default_bounds(self) -> RetentionBounds:
        cfg = self.config
        return RetentionBounds(
            max_age_days=cfg.max_age_days,
            min_relevance=cfg.min_relevance,
            max_entries=cfg.max_entries,
        )

    def plan(
        self,
        entries: Iterable[MemoryEntry],
        bounds: RetentionBounds,
        now: datetime,
    ) -> EvictionPlan:
        """Select entries that fail *bounds* at *now*.

        Age and relevance candidates are always evicted. Overflow only
        removes as many of the lowest-ranked survivors as needed to get
        back to ``max_entries``.
        """
        now = ensure_utc(now)
        max_age = timedelta(days=bounds.max_age_days)

        expired: list[str] = []
        low_relevance: list[str] = []
        survivors: list[MemoryEntry] = []
        for entry in entries:
            assert entry.last_accessed is not None
            if now - entry.last_accessed > max_age:
                expired.append(entry.id)
            elif entry.relevance_score < bounds.min_relevance and entry.frequency == 1:
                low_relevance.append(entry.id)
            else:
                survivors.append(entry)

        overflow: list[str] = []
        excess = len(survivors) - bounds.max_entries
        if excess > 0:
            ranked = self.scorer.rank("", survivors, now)
            overflow = [scored.entry.id for scored in ranked[-excess:]]

        return EvictionPlan(expired=expired, low_relevance=low_relevance, overflow=overflow)

    async def apply(
        self,
        store: MemoryStoreAdapter,
        scope: Scope,
        plan: EvictionPlan,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> CleanupResult:
        """Delete the planned ids in chunks of ``delete_chunk_size``.

        Setting *cancel_event* (or cancelling the task) stops the pass at
        the next chunk boundary; chunks already deleted stay deleted.
        """
        ids = plan.ids
        groups = plan.group_of()
        chunk_size = self.config.delete_chunk_size
        deleted = 0
        by_group: Counter[str] = Counter()
        failed: list[str] = []
        cancelled = False

        for start in range(0, len(ids), chunk_size):
            if cancel_event is not None and cancel_event.is_set():
                cancelled = True
                break
            try:
                await asyncio.sleep(0)
            except asyncio.CancelledError:
                logger.info(
                    "Cleanup of %s cancelled after %d deletions", scope, deleted
                )
                raise
            chunk = ids[start:start + chunk_size]
            outcome = await store.delete_batch(scope, chunk)
            deleted += len(outcome.deleted)
            by_group.update(groups[entry_id] for entry_id in outcome.deleted)
            failed.extend(outcome.failed)
            if outcome.failed:
                logger.warning(
                    "Could not delete %d of %d entries in %s",
                    len(outcome.failed),
                    len(chunk),
                    scope,
                )

        if cancelled:
            logger.info("Cleanup of %s stopped early after %d deletions", scope, deleted)

        logger.info(
            "Cleanup of %s: %d deleted (%d expired, %d low relevance, %d overflow), %d failed",
            scope,
            deleted,
            by_group["expired"],
            by_group["low_relevance"],
            by_group["overflow"],
            len(failed),
            extra={"scope": str(scope)},
        )
        return CleanupResult(
            deleted_count=deleted,
            failed_ids=failed,
            expired=by_group["expired"],
            low_relevance=by_group["low_relevance"],
            overflow=by_group["overflow"],
            cancelled=cancelled,
        )
