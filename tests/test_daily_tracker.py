"""
Daily Tracker Tests.

Per-owner counters for the current local day: increments, the rewarded
item set, rapid-completion detection and the midnight rollover.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from focusup.constants import Attribute, CacheCollection
from focusup.rewards import DailyTracker
from tests.conftest import GUEST_ID, AUTH_ID

if TYPE_CHECKING:
    from focusup.cache import MemoryCache
    from tests.conftest import FixedClock


pytestmark = [pytest.mark.rewards, pytest.mark.unit]


class TestCounters:
    """Counting today's completions."""

    async def test_empty_counter(self, tracker: DailyTracker):
        counter = await tracker.get_counter(GUEST_ID)

        assert counter.tasks_completed == 0
        assert counter.habits_completed == 0
        assert counter.sprints_completed == 0
        assert counter.day == tracker.today()

    async def test_increments(self, tracker: DailyTracker):
        await tracker.increment_task(GUEST_ID, "task_1")
        await tracker.increment_task(GUEST_ID, "task_2")
        await tracker.increment_habit(GUEST_ID, Attribute.PHYSICAL, "habit_1")
        await tracker.increment_sprint(GUEST_ID)

        assert await tracker.get_task_count(GUEST_ID) == 2
        assert await tracker.get_habit_count(GUEST_ID) == 1
        assert await tracker.get_sprint_count(GUEST_ID) == 1
        assert await tracker.was_rewarded_today(GUEST_ID, "task_2")
        assert not await tracker.was_rewarded_today(GUEST_ID, "task_3")

    async def test_counters_are_per_owner(self, tracker: DailyTracker):
        await tracker.increment_task(GUEST_ID, "task_1")

        assert await tracker.get_task_count(AUTH_ID) == 0

    async def test_persisted_in_cache(self, tracker: DailyTracker, cache: MemoryCache, clock: FixedClock):
        await tracker.increment_task(GUEST_ID, "task_1")

        assert CacheCollection.DAILY_STATS.key(GUEST_ID) in cache.keys()
        assert await DailyTracker(cache, clock=clock).get_task_count(GUEST_ID) == 1

    async def test_all_attributes_worked(self, tracker: DailyTracker):
        for attribute in ("PH", "CO", "EM"):
            await tracker.increment_habit(GUEST_ID, attribute)
        assert not await tracker.all_attributes_worked_today(GUEST_ID)

        await tracker.increment_habit(GUEST_ID, "SO")
        assert await tracker.all_attributes_worked_today(GUEST_ID)


class TestRollover:
    """A new local day starts from zero."""

    async def test_new_day_reads_empty(self, tracker: DailyTracker, clock: FixedClock):
        await tracker.increment_task(GUEST_ID, "task_1")
        clock.advance(days=1)

        counter = await tracker.get_counter(GUEST_ID)
        assert counter.tasks_completed == 0
        assert counter.rewarded_items == []

    async def test_increment_after_rollover_overwrites(self, tracker: DailyTracker, clock: FixedClock):
        await tracker.increment_task(GUEST_ID, "task_1")
        await tracker.increment_task(GUEST_ID, "task_2")
        clock.advance(days=1)

        await tracker.increment_task(GUEST_ID, "task_3")

        counter = await tracker.get_counter(GUEST_ID)
        assert counter.tasks_completed == 1
        assert counter.rewarded_items == ["task_3"]


class TestRapidCompletion:
    """Bursts of rewards inside one minute."""

    async def test_fifth_reward_in_a_minute_is_rapid(self, tracker: DailyTracker, clock: FixedClock):
        for i in range(4):
            await tracker.increment_task(GUEST_ID, f"task_{i}")
            clock.advance(seconds=5)

        assert await tracker.is_rapid(GUEST_ID)

    async def test_spread_out_rewards_are_not_rapid(self, tracker: DailyTracker, clock: FixedClock):
        for i in range(4):
            await tracker.increment_task(GUEST_ID, f"task_{i}")
            clock.advance(seconds=30)

        assert not await tracker.is_rapid(GUEST_ID)

    async def test_pending_timestamps_count(self, tracker: DailyTracker, clock: FixedClock):
        await tracker.increment_task(GUEST_ID, "task_0")
        now = clock().timestamp()

        assert not await tracker.is_rapid(GUEST_ID)
        assert await tracker.is_rapid(GUEST_ID, pending=[now, now, now])


class TestMoveOwner:
    """Carrying today's counts to a signed-in account."""

    async def test_move_takes_maximum_and_clears_old(self, tracker: DailyTracker):
        await tracker.increment_task(GUEST_ID, "task_1")
        await tracker.increment_task(GUEST_ID, "task_2")
        await tracker.increment_task(AUTH_ID, "task_9")

        await tracker.move_owner(GUEST_ID, AUTH_ID)

        counter = await tracker.get_counter(AUTH_ID)
        assert counter.tasks_completed == 2
        assert set(counter.rewarded_items) == {"task_1", "task_2", "task_9"}
        assert await tracker.get_task_count(GUEST_ID) == 0

    async def test_move_twice_is_stable(self, tracker: DailyTracker):
        await tracker.increment_habit(GUEST_ID, "PH", "habit_1")

        await tracker.move_owner(GUEST_ID, AUTH_ID)
        await tracker.move_owner(GUEST_ID, AUTH_ID)

        assert await tracker.get_habit_count(AUTH_ID) == 1
