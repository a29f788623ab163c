from __future__ import annotations

import asyncio

import pytest
from mnemo_core.config import RetentionConfig
from mnemo_core.errors import StorageError
from mnemo_core.types import Scope
from mnemo_engine.retention import EvictionPlan, RetentionBounds, RetentionPolicy
from mnemo_store import InProcessMemoryStore


class FlakyStore(InProcessMemoryStore):
    """In-process store whose deletes fail for chosen ids."""

    def __init__(self, failing: set[str]) -> None:
        super().__init__()
        self.failing = failing
        self.batches: list[list[str]] = []

    async def delete(self, scope, entry_id):
        if entry_id in self.failing:
            raise StorageError(f"disk full while deleting {entry_id}")
        return await super().delete(scope, entry_id)

    async def delete_batch(self, scope, entry_ids):
        ids = list(entry_ids)
        self.batches.append(ids)
        return await super().delete_batch(scope, ids)


@pytest.fixture
def policy() -> RetentionPolicy:
    return RetentionPolicy()


class TestPlan:
    def test_age_eviction(self, policy, make_entry, now):
        entries = [
            make_entry("fresh", id="fresh", age_days=10),
            make_entry("stale", id="stale", age_days=91),
            make_entry("boundary", id="boundary", age_days=90),
        ]
        plan = policy.plan(entries, RetentionBounds(max_age_days=90), now)
        assert plan.expired == ["stale"]
        assert plan.low_relevance == []
        assert plan.overflow == []

    def test_low_relevance_needs_single_use(self, policy, make_entry, now):
        entries = [
            make_entry("weak", id="weak", relevance_score=0.05),
            make_entry("weak but used", id="used", relevance_score=0.05, frequency=2),
            make_entry("strong", id="strong", relevance_score=0.5),
        ]
        plan = policy.plan(entries, RetentionBounds(min_relevance=0.1), now)
        assert plan.low_relevance == ["weak"]

    def test_overflow_removes_lowest_ranked_excess(self, policy, make_entry, now):
        entries = [make_entry(f"e{i}", id=f"e{i}", age_days=i) for i in range(5)]
        plan = policy.plan(entries, RetentionBounds(max_entries=3), now)
        assert sorted(plan.overflow) == ["e3", "e4"]
        assert len(plan) == 2

    def test_no_overflow_when_within_cap(self, policy, make_entry, now):
        entries = [make_entry(f"e{i}", id=f"e{i}") for i in range(3)]
        assert len(policy.plan(entries, RetentionBounds(max_entries=3), now)) == 0

    def test_overflow_counts_after_other_rules(self, policy, make_entry, now):
        entries = [
            make_entry("stale", id="stale", age_days=200),
            make_entry("a", id="a"),
            make_entry("b", id="b", age_days=1),
        ]
        plan = policy.plan(entries, RetentionBounds(max_entries=2), now)
        assert plan.expired == ["stale"]
        assert plan.overflow == []

    def test_zero_cap_evicts_everything(self, policy, make_entry, now):
        entries = [make_entry(f"e{i}", id=f"e{i}") for i in range(3)]
        plan = policy.plan(entries, RetentionBounds(max_entries=0), now)
        assert sorted(plan.ids) == ["e0", "e1", "e2"]


class TestApply:
    async def test_deletes_in_chunks(self, make_entry):
        store = FlakyStore(failing=set())
        for i in range(5):
            await store.put(make_entry(f"e{i}", id=f"e{i}"))
        policy = RetentionPolicy(config=RetentionConfig(delete_chunk_size=2))
        plan = EvictionPlan(expired=["e0", "e1", "e2"], overflow=["e3"])

        result = await policy.apply(store, Scope("agent-1"), plan)

        assert result.deleted_count == 4
        assert result.expired == 3
        assert result.overflow == 1
        assert result.ok
        assert store.batches == [["e0", "e1"], ["e2", "e3"]]

    async def test_partial_failure_reports_ids(self, make_entry):
        store = FlakyStore(failing={"e1"})
        for i in range(3):
            await store.put(make_entry(f"e{i}", id=f"e{i}"))
        policy = RetentionPolicy()

        plan = EvictionPlan(expired=["e0", "e1", "e2"])
        result = await policy.apply(store, Scope("agent-1"), plan)

        assert result.deleted_count == 2
        assert result.failed_ids == ["e1"]
        # Only the two entries actually removed count as expired.
        assert result.expired == 2
        assert not result.ok
        assert await store.get(Scope("agent-1"), "e1") is not None

    async def test_cancel_event_stops_between_chunks(self, make_entry):
        store = FlakyStore(failing=set())
        for i in range(4):
            await store.put(make_entry(f"e{i}", id=f"e{i}"))
        policy = RetentionPolicy(config=RetentionConfig(delete_chunk_size=2))
        cancel = asyncio.Event()

        original = store.delete_batch

        async def delete_then_cancel(scope, entry_ids):
            result = await original(scope, entry_ids)
            cancel.set()
            return result

        store.delete_batch = delete_then_cancel
        plan = EvictionPlan(expired=["e0", "e1", "e2", "e3"])
        result = await policy.apply(store, Scope("agent-1"), plan, cancel_event=cancel)

        assert result.cancelled
        assert result.deleted_count == 2
        assert result.expired == 2
        assert not result.ok
        assert store.batches == [["e0", "e1"]]
