from __future__ import annotations

import pytest
from mnemo_core.config import MnemoConfig, RecallConfig
from mnemo_core.errors import (
    EntryNotFoundError,
    PartialDeletionError,
    StorageError,
    ValidationError,
)
from mnemo_core.types import EntryType, GoalStatus, Scope
from mnemo_engine import CleanupOptions, MemoryManager, RecallOptions
from mnemo_store import InProcessMemoryStore


class BrokenStore(InProcessMemoryStore):
    """Store that can fail listing or chosen deletes, and counts reads."""

    def __init__(self, *, fail_list: bool = False, failing: set[str] | None = None) -> None:
        super().__init__()
        self.fail_list = fail_list
        self.failing = failing or set()
        self.list_calls = 0

    async def list_by_scope(self, agent_id, user_id=None):
        self.list_calls += 1
        if self.fail_list:
            raise StorageError("connection reset")
        async for entry in super().list_by_scope(agent_id, user_id):
            yield entry

    async def delete(self, scope, entry_id):
        if entry_id in self.failing:
            raise StorageError(f"cannot delete {entry_id}")
        return await super().delete(scope, entry_id)


@pytest.fixture
def manager(store, clock) -> MemoryManager:
    return MemoryManager(store, clock=clock)


async def _all(store, agent_id="agent-1", user_id=None):
    return [e async for e in store.list_by_scope(agent_id, user_id)]


# ── Scenarios ───────────────────────────────────────────────


class TestScenarios:
    async def test_age_eviction(self, manager, store, make_entry):
        await store.put(make_entry("stale note", id="stale", age_days=100))
        await store.put(make_entry("recent note", id="recent", age_days=10))

        result = await manager.cleanup("agent-1", CleanupOptions(max_age_days=90))

        assert result.deleted_count == 1
        assert result.expired == 1
        assert result.failed_ids == []
        assert [e.id for e in await _all(store)] == ["recent"]

    async def test_billing_entries_past_thirty_days_evicted(self, manager, store, make_entry):
        for age in (1, 40, 100):
            await store.put(
                make_entry(f"billing note {age}", id=f"b{age}", tags=("billing",), age_days=age)
            )

        result = await manager.cleanup("agent-1", CleanupOptions(max_age_days=30))

        assert result.deleted_count == 2
        assert result.expired == 2
        assert [e.id for e in await _all(store)] == ["b1"]

    async def test_password_reset_ranks_first(self, manager):
        await manager.record_interaction(
            "agent-1", "what is on my invoice", "Your invoice lists monthly charges."
        )
        reset = await manager.record_interaction(
            "agent-1",
            "how do I reset my password",
            "Sure.\nOpen settings and choose reset password.",
        )
        await manager.record_interaction(
            "agent-1", "change my shipping address", "Addresses live under profile."
        )

        result = await manager.recall("agent-1", "reset password")

        assert result.entries[0].entry.id == reset.id
        assert result.entries[0].score > result.entries[1].score

    async def test_limit_keeps_total_and_patterns(self, manager, store, make_entry):
        for i in range(5):
            await store.put(
                make_entry(f"reset password attempt {i}", id=f"r{i}", tags=("password",))
            )

        result = await manager.recall(
            "agent-1", "reset password", options=RecallOptions(limit=1)
        )

        assert len(result.entries) == 1
        assert result.total_matches == 5
        assert [p.pattern for p in result.patterns] == ["password"]
        assert result.patterns[0].frequency == 5


# ── Recall ──────────────────────────────────────────────────


class TestRecall:
    async def test_ranking_stable_without_touch(self, manager, store, make_entry):
        await store.put(make_entry("reset notes", id="fresh"))
        await store.put(make_entry("reset password", id="stale", age_days=200))
        options = RecallOptions(limit=2, touch=False)

        first = await manager.recall("agent-1", "reset password", options=options)
        second = await manager.recall("agent-1", "reset password", options=options)

        assert [s.entry.id for s in first.entries] == ["fresh", "stale"]
        assert [s.entry.id for s in second.entries] == ["fresh", "stale"]
        assert [s.score for s in first.entries] == [s.score for s in second.entries]

    async def test_touch_reorders_next_recall(self, manager, store, make_entry):
        await store.put(make_entry("reset notes", id="fresh"))
        await store.put(make_entry("reset password", id="stale", age_days=200))
        options = RecallOptions(limit=2)

        first = await manager.recall("agent-1", "reset password", options=options)
        second = await manager.recall("agent-1", "reset password", options=options)

        assert [s.entry.id for s in first.entries] == ["fresh", "stale"]
        # The bump made "stale" recent, so its full text match now wins.
        assert [s.entry.id for s in second.entries] == ["stale", "fresh"]
        assert second.entries[0].score > first.entries[1].score

    async def test_touch_bumps_returned_entries(self, manager, store, make_entry, clock):
        await store.put(make_entry("deploy notes", id="d1", age_days=3))
        clock.advance(hours=1)

        await manager.recall("agent-1", "deploy")

        touched = await store.get(Scope("agent-1"), "d1")
        assert touched.frequency == 2
        assert touched.last_accessed == clock.now()

    async def test_no_touch(self, manager, store, make_entry):
        await store.put(make_entry("deploy notes", id="d1", age_days=3))

        await manager.recall("agent-1", "deploy", options=RecallOptions(touch=False))

        assert (await store.get(Scope("agent-1"), "d1")).frequency == 1

    async def test_min_relevance_filters(self, manager, store, make_entry):
        await store.put(make_entry("deploy notes", id="hit"))
        await store.put(make_entry("lunch menu", id="miss"))

        result = await manager.recall(
            "agent-1", "deploy", options=RecallOptions(min_relevance=0.6)
        )

        assert [s.entry.id for s in result.entries] == ["hit"]
        assert result.total_matches == 1

    async def test_type_filter(self, manager, store, make_entry):
        await store.put(make_entry("deploy log", id="log", type=EntryType.LOG))
        await store.put(make_entry("deploy summary", id="sum"))

        result = await manager.recall(
            "agent-1", "deploy", options=RecallOptions(types=["log"])
        )

        assert [s.entry.id for s in result.entries] == ["log"]

    async def test_average_relevance_of_returned(self, manager, store, make_entry):
        await store.put(make_entry("deploy notes", id="a"))
        await store.put(make_entry("deploy notes again", id="b", age_days=14))

        result = await manager.recall("agent-1", "deploy")

        scores = [s.score for s in result.entries]
        assert result.average_relevance == pytest.approx(sum(scores) / len(scores))

    async def test_user_scope(self, manager, store, make_entry):
        await store.put(make_entry("alice deploy", id="a", user_id="alice"))
        await store.put(make_entry("bob deploy", id="b", user_id="bob"))

        narrow = await manager.recall("agent-1", "deploy", user_id="alice")
        wide = await manager.recall("agent-1", "deploy")

        assert [s.entry.id for s in narrow.entries] == ["a"]
        assert {s.entry.id for s in wide.entries} == {"a", "b"}

    async def test_empty_scope(self, manager):
        result = await manager.recall("nobody", "anything")
        assert result.entries == []
        assert result.total_matches == 0
        assert result.average_relevance == 0.0

    async def test_to_dict_is_serializable(self, manager, store, make_entry):
        import json

        await store.put(make_entry("deploy notes", id="a", tags=("deploy",)))
        await store.put(make_entry("deploy again", id="b", tags=("deploy",)))

        data = (await manager.recall("agent-1", "deploy")).to_dict()

        assert json.loads(json.dumps(data))["total_matches"] == 2
        assert data["entries"][0]["score"] > 0


class TestRecallErrors:
    @pytest.mark.parametrize(
        "kwargs",
        [
            {"agent_id": "", "query": "x"},
            {"agent_id": "agent-1", "query": None},
            {"agent_id": "agent-1", "query": "x", "user_id": ""},
            {"agent_id": "agent-1", "query": "x", "options": {"limit": 5}},
        ],
    )
    async def test_validation_before_io(self, clock, kwargs):
        store = BrokenStore()
        manager = MemoryManager(store, clock=clock)
        with pytest.raises(ValidationError):
            await manager.recall(**kwargs)
        assert store.list_calls == 0

    @pytest.mark.parametrize(
        "options",
        [
            {"limit": 0},
            {"min_relevance": 1.5},
            {"min_relevance": -0.1},
            {"types": ["diary"]},
            {"types": "log"},
        ],
    )
    def test_bad_options(self, options):
        with pytest.raises(ValidationError):
            RecallOptions(**options)

    async def test_storage_error_propagates(self, clock):
        manager = MemoryManager(BrokenStore(fail_list=True), clock=clock)
        with pytest.raises(StorageError):
            await manager.recall("agent-1", "deploy")


def test_presets():
    router = RecallOptions.preset("router")
    assert router.limit == 5
    assert router.types == (EntryType.SUMMARY, EntryType.CORRECTION)
    assert RecallOptions.preset("unknown") == RecallOptions.preset("general")


# ── Cleanup ─────────────────────────────────────────────────


class TestCleanup:
    async def test_no_over_eviction(self, manager, store, make_entry):
        for i in range(6):
            await store.put(make_entry(f"note {i}", id=f"n{i}", age_days=i))

        result = await manager.cleanup("agent-1", CleanupOptions(max_entries=4))

        remaining = {e.id for e in await _all(store)}
        assert result.deleted_count == 2
        assert result.overflow == 2
        assert remaining == {"n0", "n1", "n2", "n3"}

    async def test_nothing_to_do_within_cap(self, manager, store, make_entry):
        for i in range(3):
            await store.put(make_entry(f"note {i}", id=f"n{i}"))

        result = await manager.cleanup("agent-1", CleanupOptions(max_entries=3))

        assert result.deleted_count == 0
        assert len(await _all(store)) == 3

    async def test_user_scope_only(self, manager, store, make_entry):
        await store.put(make_entry("old alice", id="a", user_id="alice", age_days=200))
        await store.put(make_entry("old bob", id="b", user_id="bob", age_days=200))

        await manager.cleanup("agent-1", user_id="alice")

        assert [e.id for e in await _all(store)] == ["b"]

    async def test_partial_failure(self, clock, make_entry):
        store = BrokenStore(failing={"s1"})
        for i in range(3):
            await store.put(make_entry(f"stale {i}", id=f"s{i}", age_days=120))
        manager = MemoryManager(store, clock=clock)

        result = await manager.cleanup("agent-1")

        assert result.deleted_count == 2
        assert result.failed_ids == ["s1"]
        assert result.expired == 2
        assert [e.id for e in await _all(store)] == ["s1"]

    async def test_strict_raises(self, clock, make_entry):
        store = BrokenStore(failing={"s1"})
        for i in range(3):
            await store.put(make_entry(f"stale {i}", id=f"s{i}", age_days=120))
        manager = MemoryManager(store, clock=clock)

        with pytest.raises(PartialDeletionError) as exc_info:
            await manager.cleanup("agent-1", strict=True)

        assert exc_info.value.failed_ids == ["s1"]
        assert exc_info.value.deleted_count == 2

    def test_bad_options(self):
        with pytest.raises(ValidationError):
            CleanupOptions(max_entries=-1)
        with pytest.raises(ValidationError):
            CleanupOptions(min_relevance=2)


# ── Write path ──────────────────────────────────────────────


class TestWritePath:
    async def test_remember_assigns_id(self, manager, store, make_entry):
        stored = await manager.remember(make_entry("hand classified", type=EntryType.PATTERN))
        assert stored.id
        assert await store.get(Scope("agent-1"), stored.id) == stored

    async def test_record_interaction(self, manager):
        entry = await manager.record_interaction(
            "agent-1",
            "how do I rotate the api key",
            "Rotate the API key from the admin console.",
            user_id="alice",
            context="support chat",
        )
        assert entry.type is EntryType.SUMMARY
        assert entry.summary == "Rotate the API key from the admin console."
        assert "rotate" in entry.tags
        assert len(entry.tags) <= 5
        assert entry.user_id == "alice"

    async def test_near_duplicate_is_reinforced(self, manager, store):
        first = await manager.record_interaction("agent-1", "rotate key", "Rotate the key.")
        second = await manager.record_interaction("agent-1", "rotate key", " rotate THE key. ")

        assert second.id == first.id
        assert second.frequency == 2
        assert len(await _all(store)) == 1

    async def test_duplicate_of_other_type_is_new(self, manager, store):
        await manager.record_interaction("agent-1", "rotate key", "Rotate the key.")
        await manager.record_interaction("agent-1", "rotate key", "Rotate the key.", type="log")
        assert len(await _all(store)) == 2

    async def test_empty_interaction_rejected(self, manager):
        with pytest.raises(ValidationError):
            await manager.record_interaction("agent-1", " ", "")

    async def test_reinforce(self, manager, store, make_entry, clock):
        await store.put(make_entry("x", id="x1"))
        clock.advance(days=1)

        updated = await manager.reinforce("agent-1", "x1")

        assert updated.frequency == 2
        assert (await store.get(Scope("agent-1"), "x1")).last_accessed == clock.now()

    async def test_reinforce_missing(self, manager):
        with pytest.raises(EntryNotFoundError):
            await manager.reinforce("agent-1", "nope")

    async def test_delete(self, manager, store, make_entry):
        await store.put(make_entry("x", id="x1"))
        assert await manager.delete("agent-1", "x1") is True
        assert await manager.delete("agent-1", "x1") is False

    async def test_learn_from_correction(self, manager, store, make_entry):
        await store.put(make_entry("deploy on fridays", id="bad", relevance_score=0.9))

        correction = await manager.learn_from_correction(
            "agent-1",
            "when do we deploy",
            "We deploy on fridays",
            "Never deploy on fridays",
            corrects="bad",
        )

        assert correction.type is EntryType.CORRECTION
        assert correction.summary == "Correction: Never deploy on fridays"
        assert correction.context == "Original response: We deploy on fridays"
        assert correction.relevance_score == 1.0
        assert correction.corrects == "bad"
        demoted = await store.get(Scope("agent-1"), "bad")
        assert demoted.relevance_score == pytest.approx(0.7)

    async def test_correction_penalty_floors_at_zero(self, store, clock, make_entry):
        config = MnemoConfig(recall=RecallConfig(correction_penalty=0.5))
        manager = MemoryManager(store, config, clock)
        await store.put(make_entry("weak", id="weak", relevance_score=0.3))

        await manager.learn_from_correction("agent-1", "q", "a", "better a", corrects="weak")

        assert (await store.get(Scope("agent-1"), "weak")).relevance_score == 0.0

    async def test_correction_of_missing_entry(self, manager, store):
        with pytest.raises(EntryNotFoundError):
            await manager.learn_from_correction("agent-1", "q", "a", "fix", corrects="ghost")
        assert await _all(store) == []


# ── Goals & stats ───────────────────────────────────────────


class TestGoals:
    async def test_goal_lifecycle(self, manager, clock):
        goal = await manager.set_goal("agent-1", "Migrate billing to v2")
        assert goal.goal.status is GoalStatus.PENDING

        clock.advance(hours=1)
        await manager.update_goal("agent-1", goal.goal.goal_id, "in_progress", "schema done")
        clock.advance(hours=1)
        await manager.update_goal("agent-1", goal.goal.goal_id, GoalStatus.COMPLETED)

        (state,) = await manager.goals("agent-1")
        assert state.goal_id == goal.goal.goal_id
        assert state.goal_summary == "Migrate billing to v2"
        assert state.status is GoalStatus.COMPLETED
        assert state.updates == 2
        assert state.updated_at == clock.now()

    async def test_update_unknown_goal(self, manager):
        with pytest.raises(EntryNotFoundError):
            await manager.update_goal("agent-1", "missing", "completed")

    async def test_update_bad_status(self, manager):
        goal = await manager.set_goal("agent-1", "Ship it")
        with pytest.raises(ValidationError):
            await manager.update_goal("agent-1", goal.goal.goal_id, "paused")


class TestStats:
    async def test_stats(self, manager, store, make_entry):
        await store.put(make_entry("a", id="a", tags=("t",), relevance_score=0.5, age_days=3))
        await store.put(make_entry("b", id="b", tags=("t",), age_days=2))
        await store.put(make_entry("c", id="c", type=EntryType.LOG, age_days=1))

        stats = await manager.stats("agent-1")

        assert stats.total_entries == 3
        assert stats.by_type == {"summary": 2, "log": 1}
        assert stats.average_relevance == pytest.approx(2.5 / 3)
        assert [p.pattern for p in stats.top_patterns] == ["t"]
        assert [e.id for e in stats.recent_activity] == ["c", "b", "a"]
        # read-only
        assert (await store.get(Scope("agent-1"), "a")).frequency == 1

    async def test_recent_activity_capped(self, manager, store, make_entry):
        for i in range(8):
            await store.put(make_entry(f"n{i}", id=f"n{i}", age_days=i))
        stats = await manager.stats("agent-1")
        assert [e.id for e in stats.recent_activity] == ["n0", "n1", "n2", "n3", "n4"]

    async def test_empty(self, manager):
        stats = await manager.stats("nobody")
        assert stats.total_entries == 0
        assert stats.average_relevance == 0.0
