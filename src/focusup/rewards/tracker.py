"""
Daily Tracker.

Per-owner counters for the current local calendar day, stored in the
persistent cache under ``focusup-daily-stats-<owner>``. A counter whose
day is not today reads as empty; the stale one is overwritten on the next
increment, so no timer is needed for the midnight rollover.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, Optional, Sequence

from pydantic import ValidationError

from focusup.cache import PersistentCache
from focusup.constants import Attribute, CacheCollection, Rewards
from focusup.models import DailyCounter, local_day, utc_now
from focusup.rewards.anticheat import is_rapid_completion

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class DailyTracker:
    """Counts today's rewarded tasks, habits and sprints per owner."""

    def __init__(self, cache: PersistentCache, clock: Optional[Clock] = None) -> None:
        self._cache = cache
        self._clock = clock or utc_now

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return local_day(self._clock())

    @staticmethod
    def _key(owner_id: str) -> str:
        return CacheCollection.DAILY_STATS.key(owner_id)

    async def _stored(self, owner_id: str) -> Optional[DailyCounter]:
        raw = await self._cache.get(self._key(owner_id))
        if raw is None:
            return None
        try:
            return DailyCounter.model_validate_json(raw)
        except ValidationError as e:
            logger.warning("Discarding unreadable daily counter for %s: %s", owner_id, e)
            return None

    async def get_counter(self, owner_id: str) -> DailyCounter:
        """Today's counter, empty when nothing was recorded today."""
        today = self.today()
        stored = await self._stored(owner_id)
        if stored is None or stored.day != today:
            return DailyCounter(user_id=owner_id, day=today)
        return stored

    async def _save(self, counter: DailyCounter) -> None:
        await self._cache.set(self._key(counter.user_id), counter.model_dump_json().encode())

    def _mark_rewarded(self, counter: DailyCounter, item_id: Optional[str]) -> None:
        if item_id and item_id not in counter.rewarded_items:
            counter.rewarded_items.append(item_id)
        counter.reward_times.append(self.now().timestamp())
        # Only the latest burst matters for rapid detection.
        counter.reward_times = counter.reward_times[-Rewards.RAPID_COMPLETION_COUNT * 2 :]

    # =========================================================================
    # Counts
    # =========================================================================

    async def get_task_count(self, owner_id: str) -> int:
        return (await self.get_counter(owner_id)).tasks_completed

    async def get_habit_count(self, owner_id: str) -> int:
        return (await self.get_counter(owner_id)).habits_completed

    async def get_sprint_count(self, owner_id: str) -> int:
        return (await self.get_counter(owner_id)).sprints_completed

    async def all_attributes_worked_today(self, owner_id: str) -> bool:
        counter = await self.get_counter(owner_id)
        return counter.attributes_worked == set(Attribute.keys())

    async def was_rewarded_today(self, owner_id: str, item_id: str) -> bool:
        return item_id in (await self.get_counter(owner_id)).rewarded_items

    async def is_rapid(self, owner_id: str, pending: Sequence[float] = ()) -> bool:
        """Whether one more completion now would make a suspicious burst."""
        counter = await self.get_counter(owner_id)
        return is_rapid_completion([*counter.reward_times, *pending, self.now().timestamp()])

    # =========================================================================
    # Increments
    # =========================================================================

    async def increment_task(self, owner_id: str, item_id: Optional[str] = None) -> DailyCounter:
        counter = await self.get_counter(owner_id)
        counter.tasks_completed += 1
        self._mark_rewarded(counter, item_id)
        await self._save(counter)
        return counter

    async def increment_habit(
        self,
        owner_id: str,
        attribute: Attribute | str,
        item_id: Optional[str] = None,
    ) -> DailyCounter:
        key = Attribute(attribute).value
        counter = await self.get_counter(owner_id)
        counter.habits_completed += 1
        counter.habits_by_attribute[key] = counter.habits_by_attribute.get(key, 0) + 1
        self._mark_rewarded(counter, item_id)
        await self._save(counter)
        return counter

    async def increment_sprint(self, owner_id: str) -> DailyCounter:
        counter = await self.get_counter(owner_id)
        counter.sprints_completed += 1
        await self._save(counter)
        return counter

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def move_owner(self, old_owner_id: str, new_owner_id: str) -> None:
        """Carry today's counts over to a new owner id (guest sign-in)."""
        old = await self.get_counter(old_owner_id)
        new = await self.get_counter(new_owner_id)
        merged = DailyCounter(
            user_id=new_owner_id,
            day=new.day,
            tasks_completed=max(old.tasks_completed, new.tasks_completed),
            habits_completed=max(old.habits_completed, new.habits_completed),
            sprints_completed=max(old.sprints_completed, new.sprints_completed),
            habits_by_attribute={
                key: max(old.habits_by_attribute.get(key, 0), new.habits_by_attribute.get(key, 0))
                for key in Attribute.keys()
            },
            rewarded_items=sorted(set(old.rewarded_items) | set(new.rewarded_items)),
            reward_times=sorted(set(old.reward_times) | set(new.reward_times)),
        )
        await self._save(merged)
        await self.clear(old_owner_id)

    async def clear(self, owner_id: str) -> None:
        await self._cache.remove(self._key(owner_id))
