"""Tests for taskpilot.patterns: the statistics fold, snapshot and tracker."""

import asyncio
from datetime import timedelta

import pytest

from taskpilot.patterns import (
    MemoryPatternStore,
    PatternTracker,
    WorkPatternSnapshot,
    combine_averages,
    completion_rate,
    running_average,
)
from taskpilot.tasks.models import Task, utcnow


class ReadYieldWriteStore(MemoryPatternStore):
    """Copies the snapshot, yields, then writes it back whole.

    Overlapping updates for one user lose writes unless the tracker
    serializes them.
    """

    async def update(self, user_id, mutate):
        snapshot = await self.load(user_id)
        await asyncio.sleep(0)
        mutate(snapshot)
        self._snapshots[user_id] = snapshot
        return snapshot


def _make_task(priority="medium", due=True, days_open=0.0, task_id="t1"):
    created = utcnow() - timedelta(days=30)
    return Task(
        id=task_id,
        user_id="user_1",
        title="Task",
        priority=priority,
        due_date=created + timedelta(days=40) if due else None,
        created_at=created,
        completed=days_open > 0,
        completed_at=created + timedelta(days=days_open) if days_open else None,
    )


@pytest.fixture
def tracker():
    return PatternTracker(MemoryPatternStore())


class TestFold:

    def test_running_average_sequence(self):
        state = (0.0, 0)
        averages = []
        for sample in (2, 4, 6):
            state = running_average(*state, sample)
            averages.append(state[0])
        assert averages == [2.0, 3.0, 4.0]
        assert state[1] == 3

    def test_combine_is_associative(self):
        a, b, c = (2.0, 1), (5.0, 2), (10.0, 3)
        left = combine_averages(combine_averages(a, b), c)
        right = combine_averages(a, combine_averages(b, c))
        assert left[1] == right[1] == 6
        assert left[0] == pytest.approx(right[0])

    def test_combine_identity(self):
        assert combine_averages((3.0, 4), (0.0, 0)) == (3.0, 4)
        assert combine_averages((0.0, 0), (0.0, 0)) == (0.0, 0)

    def test_fold_matches_combine(self):
        folded = (0.0, 0)
        for sample in (1, 2, 3, 10):
            folded = running_average(*folded, sample)
        merged = combine_averages(
            combine_averages((1.0, 1), (2.0, 1)), combine_averages((3.0, 1), (10.0, 1))
        )
        assert folded[1] == merged[1]
        assert folded[0] == pytest.approx(merged[0])

    def test_completion_rate(self):
        assert completion_rate(1, 3) == 33.3
        assert completion_rate(2, 3) == 66.7
        assert completion_rate(0, 0) == 0.0
        assert completion_rate(3, 0) == 0.0


class TestSnapshot:

    def test_new_snapshot_has_zero_rates(self):
        snapshot = WorkPatternSnapshot()
        assert snapshot.completion_rate == 0.0
        assert snapshot.completion_rate_by_priority == {"high": 0.0, "low": 0.0, "medium": 0.0}

    def test_one_of_three_high_priority(self):
        snapshot = WorkPatternSnapshot()
        for _ in range(3):
            snapshot.record_created("high", has_due_date=False)
        snapshot.record_completed("high")

        assert snapshot.completion_rate_by_priority["high"] == 33.3
        assert snapshot.completion_rate == 33.3
        assert snapshot.without_due_date == 3

    def test_completion_without_due_date_skips_average(self):
        snapshot = WorkPatternSnapshot()
        snapshot.record_created("low", has_due_date=False)
        snapshot.record_completed("low", None)
        assert snapshot.completion_count == 0
        assert snapshot.avg_days_to_complete == 0.0

    def test_dict_round_trip_keeps_counters(self):
        snapshot = WorkPatternSnapshot()
        snapshot.record_created("high", has_due_date=True)
        snapshot.record_completed("high", 2.5)

        restored = WorkPatternSnapshot.from_dict(snapshot.to_dict())

        assert restored.created_by_priority == snapshot.created_by_priority
        assert restored.avg_days_to_complete == 2.5
        assert restored.completion_count == 1
        assert restored.completion_rate == 100.0

    def test_from_empty_dict(self):
        assert WorkPatternSnapshot.from_dict({}).total_created == 0

    def test_summary(self):
        snapshot = WorkPatternSnapshot()
        snapshot.record_created("medium", has_due_date=True)
        summary = snapshot.summary()
        assert summary["tasksWithDueDate"] == 1
        assert summary["completionRate"] == 0.0


class TestPatternTracker:

    async def test_created_counts_priority_and_due_date(self, tracker):
        await tracker.on_task_created("user_1", _make_task("high", due=True))
        await tracker.on_task_created("user_1", _make_task("low", due=False))

        snapshot = await tracker.get_snapshot("user_1")
        assert snapshot.created_by_priority == {"high": 1, "medium": 0, "low": 1}
        assert snapshot.with_due_date == 1
        assert snapshot.without_due_date == 1

    async def test_average_days_to_complete(self, tracker):
        averages = []
        for days in (2, 4, 6):
            task = _make_task(due=True, days_open=days)
            snapshot = await tracker.on_task_completed("user_1", task, task.completed_at)
            averages.append(round(snapshot.avg_days_to_complete, 6))

        assert averages == [2.0, 3.0, 4.0]
        assert snapshot.completion_count == 3

    async def test_completion_without_due_date_not_averaged(self, tracker):
        task = _make_task(due=False, days_open=5)
        snapshot = await tracker.on_task_completed("user_1", task)
        assert snapshot.completion_count == 0
        assert snapshot.completed_by_priority["medium"] == 1

    async def test_rates_after_events(self, tracker):
        for i in range(3):
            await tracker.on_task_created("user_1", _make_task("high", task_id=f"t{i}"))
        snapshot = await tracker.on_task_completed("user_1", _make_task("high", days_open=1))

        assert snapshot.completion_rate_by_priority["high"] == 33.3
        assert snapshot.completion_rate == 33.3

    async def test_users_are_independent(self, tracker):
        await tracker.on_task_created("user_1", _make_task())
        snapshot = await tracker.get_snapshot("user_2")
        assert snapshot.total_created == 0

    async def test_concurrent_creations_are_not_lost(self):
        tracker = PatternTracker(ReadYieldWriteStore())
        await asyncio.gather(*[
            tracker.on_task_created("user_1", _make_task("medium", task_id=f"t{i}"))
            for i in range(25)
        ])
        snapshot = await tracker.get_snapshot("user_1")
        assert snapshot.created_by_priority["medium"] == 25

    async def test_loaded_snapshot_is_a_copy(self, tracker):
        await tracker.on_task_created("user_1", _make_task())
        loaded = await tracker.get_snapshot("user_1")
        loaded.record_created("high", False)

        again = await tracker.get_snapshot("user_1")
        assert again.created_by_priority["high"] == 0
