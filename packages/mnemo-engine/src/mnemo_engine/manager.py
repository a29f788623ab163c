"""MemoryManager: the single entry point for memory operations.

Wires a store, the scorer, the pattern detector and the retention policy
together. Every dependency is injected so the manager holds no global
state and tests can freeze time with a :class:`~mnemo_core.clock.FixedClock`.
"""
from __future__ import annotations

import uuid
from collections import Counter
from dataclasses import replace
from typing import TYPE_CHECKING

from mnemo_core.clock import SystemClock
from mnemo_core.config import MnemoConfig
from mnemo_core.errors import EntryNotFoundError, PartialDeletionError, ValidationError
from mnemo_core.logging import get_logger
from mnemo_core.types import (
    GOAL_TYPES,
    EntryType,
    GoalInfo,
    GoalStatus,
    MemoryEntry,
    Scope,
)

from mnemo_engine.patterns import PatternDetector
from mnemo_engine.retention import RetentionPolicy
from mnemo_engine.scoring import RelevanceScorer
from mnemo_engine.text import extract_tags, normalize_summary, summarize
from mnemo_engine.types import (
    CleanupOptions,
    CleanupResult,
    GoalState,
    MemoryStats,
    RecallOptions,
    RecallResult,
)

if TYPE_CHECKING:
    import asyncio

    from mnemo_core.clock import Clock
    from mnemo_store.protocols import MemoryStoreAdapter

logger = get_logger("engine.manager")

_TOP_PATTERNS = 5
_RECENT_ACTIVITY = 5


def _clip(text: str, max_chars: int) -> str:
    text = text.strip()
    return text if len(text) <= max_chars else text[:max_chars] + "..."


class MemoryManager:
    """Recall, learn and clean up agent memory over any store backend.

    Operations on one scope are not serialized. A recall racing a cleanup
    may return an entry that is deleted a moment later, and its access
    bump may re-insert that entry. Both outcomes are accepted: memory is
    eventually consistent. Callers needing stronger guarantees should
    serialize access per scope themselves.

    Usage::

        store = await StoreBuilder(config).build()
        manager = MemoryManager(store, config)
        await manager.record_interaction("support", "reset password", answer)
        result = await manager.recall("support", "password reset")
    """

    def __init__(
        self,
        store: MemoryStoreAdapter,
        config: MnemoConfig | None = None,
        clock: Clock | None = None,
        *,
        scorer: RelevanceScorer | None = None,
        detector: PatternDetector | None = None,
        retention: RetentionPolicy | None = None,
    ) -> None:
        self.store = store
        self.config = config or MnemoConfig()
        self.clock = clock or SystemClock()
        self.scorer = scorer or RelevanceScorer(self.config.scoring)
        self.detector = detector or PatternDetector(self.config.patterns)
        self.retention = retention or RetentionPolicy(self.scorer, self.config.retention)

    def default_recall_options(self) -> RecallOptions:
        return RecallOptions(
            limit=self.config.recall.limit,
            min_relevance=self.config.recall.min_relevance,
        )

    # ── Read Path ──────────────────────────────────────────────────

    async def recall(
        self,
        agent_id: str,
        query: str,
        user_id: str | None = None,
        options: RecallOptions | None = None,
    ) -> RecallResult:
        """Return the entries most relevant to *query* in a scope.

        Patterns and ``total_matches`` cover every entry scoring at or
        above ``min_relevance``; ``entries`` is the top ``limit`` of them.
        Returned entries get an access bump in the store unless
        ``options.touch`` is false. The entries in the result reflect
        the state before the bump.

        Under a fixed clock, repeating a recall gives the same order only
        when nothing was bumped in between (``touch=False``). A bump
        refreshes recency and frequency, so a touched entry can move up
        on the next call.

        Raises:
            ValidationError: malformed scope, query or options (before I/O)
            StorageError: the store failed; never masked as an empty result
        """
        scope = Scope(agent_id, user_id)
        if not isinstance(query, str):
            raise ValidationError(f"query must be a string, got {type(query).__name__}")
        options = options or self.default_recall_options()
        if not isinstance(options, RecallOptions):
            raise ValidationError("options must be a RecallOptions instance")

        entries = await self._load(scope)
        if options.types is not None:
            wanted = set(options.types)
            entries = [e for e in entries if e.type in wanted]

        now = self.clock.now()
        ranked = self.scorer.rank(query, entries, now)
        matches = [s for s in ranked if s.score >= options.min_relevance]
        page = matches[:options.limit]
        patterns = self.detector.detect(s.entry for s in matches)

        if options.touch:
            for scored in page:
                await self.store.put(scored.entry.touched(now))

        average = sum(s.score for s in page) / len(page) if page else 0.0
        logger.info(
            "Recall in %s: %d candidates, %d matches, %d returned, %d patterns",
            scope,
            len(entries),
            len(matches),
            len(page),
            len(patterns),
            extra={"scope": str(scope)},
        )
        return RecallResult(
            entries=page,
            patterns=patterns,
            total_matches=len(matches),
            average_relevance=average,
            as_of=now,
        )

    async def stats(self, agent_id: str, user_id: str | None = None) -> MemoryStats:
        """Aggregate view of a scope. Does not touch any entry."""
        scope = Scope(agent_id, user_id)
        entries = await self._load(scope)

        by_type = Counter(e.type.value for e in entries)
        average = (
            sum(e.relevance_score for e in entries) / len(entries) if entries else 0.0
        )
        recent = sorted(
            entries,
            key=lambda e: (-e.last_accessed.timestamp(), e.id),  # type: ignore[union-attr]
        )[:_RECENT_ACTIVITY]

        return MemoryStats(
            total_entries=len(entries),
            by_type=dict(by_type),
            average_relevance=average,
            top_patterns=self.detector.detect(entries)[:_TOP_PATTERNS],
            recent_activity=recent,
        )

    # ── Retention ──────────────────────────────────────────────────

    async def cleanup(
        self,
        agent_id: str,
        options: CleanupOptions | None = None,
        user_id: str | None = None,
        *,
        strict: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> CleanupResult:
        """Evict entries of a scope that fail the retention bounds.

        Deletions that fail are reported in ``failed_ids``; the others
        stay applied. With ``strict=True`` such a partial outcome raises
        :class:`PartialDeletionError` instead.
        """
        scope = Scope(agent_id, user_id)
        options = options or self.retention.default_bounds()
        if not isinstance(options, CleanupOptions):
            raise ValidationError("options must be a CleanupOptions instance")

        entries = await self._load(scope)
        plan = self.retention.plan(entries, options, self.clock.now())
        if not plan:
            logger.debug("Cleanup of %s: nothing to evict among %d entries", scope, len(entries))
            return CleanupResult()

        result = await self.retention.apply(
            self.store, scope, plan, cancel_event=cancel_event
        )
        if strict and result.failed_ids:
            raise PartialDeletionError(
                f"Cleanup of {scope} failed for {len(result.failed_ids)} entries",
                failed_ids=result.failed_ids,
                deleted_count=result.deleted_count,
            )
        return result

    async def delete(
        self, agent_id: str, entry_id: str, user_id: str | None = None
    ) -> bool:
        """Delete one entry. Returns False when it does not exist in the scope."""
        scope = Scope(agent_id, user_id)
        self._check_id(entry_id)
        removed = await self.store.delete(scope, entry_id)
        logger.debug("Delete %s in %s: %s", entry_id, scope, removed)
        return removed

    # ── Write Path ─────────────────────────────────────────────────

    async def remember(self, entry: MemoryEntry) -> MemoryEntry:
        """Persist a pre-classified entry and return it with its id."""
        if not isinstance(entry, MemoryEntry):
            raise ValidationError("entry must be a MemoryEntry instance")
        entry_id = await self.store.put(entry)
        logger.debug("Stored %s entry %s in %s", entry.type.value, entry_id, entry.scope)
        return replace(entry, id=entry_id)

    async def record_interaction(
        self,
        agent_id: str,
        input: str,
        output: str,
        user_id: str | None = None,
        context: str | None = None,
        type: EntryType | str = EntryType.SUMMARY,
    ) -> MemoryEntry:
        """Summarize an input/output exchange and store it.

        An existing entry of the same type with the same normalized
        summary (same agent and user) is reinforced instead of duplicated.
        """
        scope = Scope(agent_id, user_id)
        entry_type = EntryType.parse(type)
        if entry_type in GOAL_TYPES:
            raise ValidationError("use set_goal/update_goal to record goals")
        if not (input or "").strip() and not (output or "").strip():
            raise ValidationError("input and output must not both be empty")

        cfg = self.config.recall
        summary = summarize(input, output, max_chars=cfg.summary_max_chars)
        key = normalize_summary(summary)

        for existing in await self._load(scope):
            if (
                existing.user_id == user_id
                and existing.type is entry_type
                and normalize_summary(existing.summary) == key
            ):
                logger.debug("Reinforcing near-duplicate %s in %s", existing.id, scope)
                return await self._reinforce(existing)

        now = self.clock.now()
        return await self.remember(MemoryEntry(
            agent_id=agent_id,
            user_id=user_id,
            type=entry_type,
            input=input,
            summary=summary,
            context=context,
            tags=frozenset(extract_tags(input, output, max_tags=cfg.max_tags)),
            created_at=now,
            last_accessed=now,
        ))

    async def reinforce(
        self, agent_id: str, entry_id: str, user_id: str | None = None
    ) -> MemoryEntry:
        """Count one more occurrence of an entry and refresh its access time."""
        entry = await self._get(Scope(agent_id, user_id), entry_id)
        return await self._reinforce(entry)

    async def learn_from_correction(
        self,
        agent_id: str,
        original_input: str,
        original_output: str,
        correction: str,
        user_id: str | None = None,
        corrects: str | None = None,
    ) -> MemoryEntry:
        """Store a user correction, demoting the corrected entry if known."""
        scope = Scope(agent_id, user_id)
        if not isinstance(correction, str) or not correction.strip():
            raise ValidationError("correction must be a non-empty string")

        cfg = self.config.recall
        corrected = await self._get(scope, corrects) if corrects is not None else None

        now = self.clock.now()
        stored = await self.remember(MemoryEntry(
            agent_id=agent_id,
            user_id=user_id,
            type=EntryType.CORRECTION,
            input=original_input,
            summary=f"Correction: {_clip(correction, cfg.summary_max_chars)}",
            context=f"Original response: {original_output}",
            tags=frozenset(extract_tags(original_input, correction, max_tags=cfg.max_tags)),
            relevance_score=1.0,
            created_at=now,
            last_accessed=now,
            corrects=corrects,
        ))

        if corrected is not None:
            demoted = max(0.0, corrected.relevance_score - cfg.correction_penalty)
            await self.store.put(replace(corrected, relevance_score=demoted))
            logger.info(
                "Correction %s demoted %s to relevance %.2f", stored.id, corrected.id, demoted
            )
        return stored

    # ── Goals ──────────────────────────────────────────────────────

    async def set_goal(
        self, agent_id: str, summary: str, user_id: str | None = None
    ) -> MemoryEntry:
        """Record a new goal in ``pending`` status."""
        if not isinstance(summary, str) or not summary.strip():
            raise ValidationError("goal summary must be a non-empty string")
        now = self.clock.now()
        summary = summary.strip()
        return await self.remember(MemoryEntry(
            agent_id=agent_id,
            user_id=user_id,
            type=EntryType.GOAL,
            summary=summary,
            tags=frozenset(extract_tags(summary, "", max_tags=self.config.recall.max_tags)),
            created_at=now,
            last_accessed=now,
            goal=GoalInfo(goal_id=uuid.uuid4().hex, goal_summary=summary),
        ))

    async def update_goal(
        self,
        agent_id: str,
        goal_id: str,
        status: GoalStatus | str,
        note: str = "",
        user_id: str | None = None,
    ) -> MemoryEntry:
        """Append a progress entry moving a goal to *status*."""
        new_status = GoalStatus.parse(status)
        scope = Scope(agent_id, user_id)
        goal = next(
            (
                e.goal for e in await self._load(scope)
                if e.type is EntryType.GOAL and e.goal and e.goal.goal_id == goal_id
            ),
            None,
        )
        if goal is None:
            raise EntryNotFoundError(f"Goal {goal_id!r} not found in {scope}")

        now = self.clock.now()
        note = (note or "").strip()
        return await self.remember(MemoryEntry(
            agent_id=agent_id,
            user_id=user_id,
            type=EntryType.GOAL_PROGRESS,
            summary=note or f"{goal.goal_summary}: {new_status.value}",
            created_at=now,
            last_accessed=now,
            goal=GoalInfo(goal_id, goal.goal_summary, new_status),
        ))

    async def goals(self, agent_id: str, user_id: str | None = None) -> list[GoalState]:
        """Latest status of every goal in a scope, most recently updated first."""
        scope = Scope(agent_id, user_id)
        history = sorted(
            (e for e in await self._load(scope) if e.type in GOAL_TYPES and e.goal),
            # A goal and its first update may share a timestamp.
            key=lambda e: (e.created_at, e.type is EntryType.GOAL_PROGRESS),
        )

        states: dict[str, GoalState] = {}
        for entry in history:
            assert entry.goal is not None
            previous = states.get(entry.goal.goal_id)
            updates = 0 if previous is None else previous.updates + 1
            states[entry.goal.goal_id] = GoalState(
                goal_id=entry.goal.goal_id,
                goal_summary=entry.goal.goal_summary,
                status=entry.goal.status,
                updated_at=entry.created_at,
                updates=updates,
            )
        return sorted(states.values(), key=lambda s: (-s.updated_at.timestamp(), s.goal_id))

    # ── Internal Methods ───────────────────────────────────────────

    async def _load(self, scope: Scope) -> list[MemoryEntry]:
        return [e async for e in self.store.list_by_scope(scope.agent_id, scope.user_id)]

    async def _get(self, scope: Scope, entry_id: str) -> MemoryEntry:
        self._check_id(entry_id)
        entry = await self.store.get(scope, entry_id)
        if entry is None:
            raise EntryNotFoundError(f"Entry {entry_id!r} not found in {scope}")
        return entry

    async def _reinforce(self, entry: MemoryEntry) -> MemoryEntry:
        updated = entry.touched(self.clock.now())
        await self.store.put(updated)
        return updated

    @staticmethod
    def _check_id(entry_id: object) -> None:
        if not isinstance(entry_id, str) or not entry_id.strip():
            raise ValidationError("entry id must be a non-empty string")
