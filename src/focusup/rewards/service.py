"""
Reward Service.

Rewards for completions made outside a focus session: toggling a task
done from the task list, or ticking a habit off for the day. Builds the
reward context from the Daily Tracker and the owner's stats, applies the
result to the stats and the reward event log in one commit, then counts
the completion for today.
"""

from __future__ import annotations

import logging
from typing import Optional

from focusup.constants import RewardType
from focusup.exceptions import FocusUpNotFoundError
from focusup.models import RewardEvent, new_local_id
from focusup.rewards.anticheat import is_duplicate_task, is_generic_title, spam_score
from focusup.rewards.context import RewardContext, RewardResult
from focusup.rewards.engine import RewardEngine
from focusup.rewards.tracker import DailyTracker
from focusup.sync import REWARD_EVENTS, SyncCoordinator

logger = logging.getLogger(__name__)

# Spam scores at or above this are logged for review; rewards are unchanged.
SPAM_WARNING_SCORE = 0.5


class RewardService:
    """Applies single-item rewards through the Sync Coordinator."""

    def __init__(
        self,
        coordinator: SyncCoordinator,
        tracker: DailyTracker,
        engine: Optional[RewardEngine] = None,
    ) -> None:
        self.coordinator = coordinator
        self.tracker = tracker
        self.engine = engine or RewardEngine()

    async def award_task(self, owner_id: str, task_id: str) -> RewardResult:
        """Coins for a task completed outside a focus session."""
        task = await self.coordinator.get_task(owner_id, task_id)
        if task is None:
            raise FocusUpNotFoundError(f"No task with id {task_id}", operation="award_task")

        counter = await self.tracker.get_counter(owner_id)
        now = self.tracker.now()
        rewarded_before = [
            t for t in await self.coordinator.list_tasks(owner_id)
            if t.id != task.id and t.id in counter.rewarded_items
        ]
        stats = await self.coordinator.get_stats(owner_id)

        context = RewardContext(
            item_number=counter.tasks_completed + 1,
            during_focus=False,
            is_duplicate=task.id in counter.rewarded_items
            or is_duplicate_task(task.title, rewarded_before, now),
            is_rapid_completion=await self.tracker.is_rapid(owner_id),
            hour=now.astimezone().hour,
            streak=stats.current_streak,
            all_attributes_worked_today=False,
        )
        score = spam_score(
            context.is_duplicate,
            context.is_rapid_completion,
            is_generic_title(task.title),
            counter.tasks_completed,
        )
        if score >= SPAM_WARNING_SCORE:
            logger.warning("Task %s of %s looks like spam (score %.2f)", task.id, owner_id, score)

        result = self.engine.calculate_task_coins(task.priority, context)
        if not result.success:
            logger.info("No coins for task %s: %s", task.id, result.message)
            return result

        stats.total_coins += result.amount
        events = []
        if result.amount:
            events.append(
                (
                    REWARD_EVENTS,
                    RewardEvent(
                        id=new_local_id(REWARD_EVENTS.id_prefix),
                        user_id=owner_id,
                        type=RewardType.COINS,
                        amount=result.amount,
                    ),
                )
            )
        await self.coordinator.commit(owner_id, events, stats)
        await self.tracker.increment_task(owner_id, task.id)
        return result

    async def award_habit(self, owner_id: str, habit_id: str) -> RewardResult:
        """XP for a habit ticked off outside a focus session."""
        habit = await self.coordinator.get_habit(owner_id, habit_id)
        if habit is None:
            raise FocusUpNotFoundError(f"No habit with id {habit_id}", operation="award_habit")

        counter = await self.tracker.get_counter(owner_id)
        stats = await self.coordinator.get_stats(owner_id)
        context = RewardContext(
            item_number=counter.habits_completed + 1,
            during_focus=False,
            is_duplicate=habit.id in counter.rewarded_items,
            is_rapid_completion=await self.tracker.is_rapid(owner_id),
            hour=self.tracker.now().astimezone().hour,
            streak=stats.current_streak,
            all_attributes_worked_today=await self.tracker.all_attributes_worked_today(owner_id),
        )
        result = self.engine.calculate_habit_xp(context)
        if not result.success:
            logger.info("No XP for habit %s: %s", habit.id, result.message)
            return result

        attribute = habit.focus_attribute.value
        stats.attributes[attribute] = stats.attributes.get(attribute, 0) + result.amount
        events = []
        if result.amount:
            events.append(
                (
                    REWARD_EVENTS,
                    RewardEvent(
                        id=new_local_id(REWARD_EVENTS.id_prefix),
                        user_id=owner_id,
                        type=RewardType.XP,
                        amount=result.amount,
                        attribute=habit.focus_attribute,
                    ),
                )
            )
        await self.coordinator.commit(owner_id, events, stats)
        await self.tracker.increment_habit(owner_id, habit.focus_attribute, habit.id)
        return result
