"""
Session Completion Orchestrator.

Turns a finished focus session into coins and attribute XP:

    1. every done task linked to the session earns coins (during focus)
    2. every performed habit linked to the session earns attribute XP
       and is recorded as today's habit completion
    3. a work session with linked items lasting at least 15 minutes
       earns the sprint bonus
    4. the completed session, its links, the new completions, the reward
       events and the updated stats are committed in one cache write

The session moves active -> completing -> completed. Completing lives
only in memory, so after a crash the cached session is either still
active (nothing applied) or completed (everything applied). Completing
an already completed session returns its stored summary and awards
nothing.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

from pydantic import BaseModel, Field

from focusup.constants import Attribute, Rewards, RewardType, SessionMode, SessionState
from focusup.exceptions import FocusUpNotFoundError, FocusUpValidationError
from focusup.models import (
    FocusSession,
    HabitCompletion,
    OwnedRecord,
    RewardEvent,
    empty_xp,
    local_day,
    new_local_id,
)
from focusup.rewards import DailyTracker, RewardContext, RewardEngine
from focusup.sync import (
    HABIT_COMPLETIONS,
    REWARD_EVENTS,
    SESSION_HABITS,
    SESSION_TASKS,
    SESSIONS,
    EntitySpec,
    SyncCoordinator,
)

logger = logging.getLogger(__name__)


class CompleteSessionRequest(BaseModel):
    """Input of ``complete_session``."""

    session_id: str = Field(..., min_length=1)
    done_task_ids: list[str] = Field(default_factory=list)
    performed_habit_ids: list[str] = Field(default_factory=list)
    user_id: str = Field(..., min_length=1)
    duration: int = Field(default=0, ge=0, description="Seconds actually focused")


class SessionSummary(BaseModel):
    """Output of ``complete_session``."""

    coins: int = 0
    xp: dict[str, int] = Field(default_factory=empty_xp)
    messages: list[str] = Field(default_factory=list)

    def to_payload(self) -> dict[str, Any]:
        return {"coins": self.coins, "xp": dict(self.xp), "messages": list(self.messages)}


def _unique(ids: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    return [i for i in ids if not (i in seen or seen.add(i))]


class SessionCompletionOrchestrator:
    """Applies session rewards through the Sync Coordinator."""

    def __init__(
        self,
        coordinator: SyncCoordinator,
        tracker: DailyTracker,
        engine: Optional[RewardEngine] = None,
    ) -> None:
        self.coordinator = coordinator
        self.tracker = tracker
        self.engine = engine or RewardEngine()

    async def complete_session(
        self,
        request: Optional[CompleteSessionRequest] = None,
        **kwargs: Any,
    ) -> SessionSummary:
        """
        Complete a session and award its rewards.

        Accepts either a CompleteSessionRequest or its fields as keyword
        arguments.

        Raises:
            FocusUpNotFoundError: Unknown session id
            FocusUpValidationError: Session is scheduled or already completing
        """
        request = request or CompleteSessionRequest(**kwargs)
        owner_id = request.user_id

        session = await self.coordinator.get_session(owner_id, request.session_id)
        if session is None:
            raise FocusUpNotFoundError(
                f"No focus session with id {request.session_id}", operation="complete_session"
            )
        if session.is_completed:
            logger.info("Session %s already completed, returning stored rewards", session.id)
            return SessionSummary(
                coins=session.coins_earned,
                xp={**empty_xp(), **session.xp_earned},
                messages=list(session.reward_messages),
            )

        await self.coordinator.set_session_state(owner_id, session.id, SessionState.COMPLETING)
        try:
            summary, rewarded = await self._apply(session, request)
        except Exception:
            await self.coordinator.set_session_state(owner_id, session.id, SessionState.ACTIVE)
            raise

        # Counted after the commit: a crash in between under-counts today,
        # it never awards twice.
        for kind, item_id, attribute in rewarded:
            if kind == "task":
                await self.tracker.increment_task(owner_id, item_id)
            elif kind == "habit":
                await self.tracker.increment_habit(owner_id, attribute, item_id)
            else:
                await self.tracker.increment_sprint(owner_id)

        logger.info(
            "Completed session %s: %d coins, xp %s", session.id, summary.coins, summary.xp
        )
        return summary

    async def _apply(
        self,
        session: FocusSession,
        request: CompleteSessionRequest,
    ) -> tuple[SessionSummary, list[tuple[str, Optional[str], Optional[Attribute]]]]:
        owner_id = request.user_id
        coordinator = self.coordinator
        now = self.tracker.now()
        today = local_day(now)
        hour = now.astimezone().hour

        stats = await coordinator.get_stats(owner_id)
        counter = await self.tracker.get_counter(owner_id)
        task_links = {link.task_id: link for link in await coordinator.get_session_tasks(owner_id, session.id)}
        habit_links = {link.habit_id: link for link in await coordinator.get_session_habits(owner_id, session.id)}

        summary = SessionSummary()
        records: list[tuple[EntitySpec, OwnedRecord]] = []
        rewarded: list[tuple[str, Optional[str], Optional[Attribute]]] = []
        task_number = counter.tasks_completed
        habit_number = counter.habits_completed
        worked = set(counter.attributes_worked)

        def base_context(item_number: int, item_id: str) -> RewardContext:
            return RewardContext(
                item_number=item_number,
                during_focus=True,
                is_duplicate=item_id in counter.rewarded_items,
                is_rapid_completion=False,
                hour=hour,
                streak=stats.current_streak,
                all_attributes_worked_today=worked == set(Attribute.keys()),
            )

        def log_event(kind: RewardType, amount: int, attribute: Optional[Attribute] = None) -> None:
            if amount <= 0:
                return
            event = RewardEvent(
                id=new_local_id(REWARD_EVENTS.id_prefix),
                user_id=owner_id,
                session_id=session.id,
                type=kind,
                amount=amount,
                attribute=attribute,
            )
            records.append((REWARD_EVENTS, event))

        # Tasks
        for task_id in _unique(request.done_task_ids):
            task = await coordinator.get_task(owner_id, task_id)
            if task is None or task.id not in task_links:
                logger.warning("Ignoring task %s: not linked to session %s", task_id, session.id)
                continue
            link = task_links[task.id]
            if not link.completed:
                records.append(
                    (SESSION_TASKS, link.model_copy(update={"completed": True, "completed_at": now}))
                )

            result = self.engine.calculate_task_coins(task.priority, base_context(task_number + 1, task.id))
            if not result.success:
                continue
            task_number += 1
            summary.coins += result.amount
            summary.messages.append(result.message)
            log_event(RewardType.COINS, result.amount)
            rewarded.append(("task", task.id, None))

        # Habits
        completed_today = {
            c.habit_id for c in await coordinator.list_completions(owner_id) if c.day == today
        }
        for habit_id in _unique(request.performed_habit_ids):
            habit = await coordinator.get_habit(owner_id, habit_id)
            if habit is None or habit.id not in habit_links:
                logger.warning("Ignoring habit %s: not linked to session %s", habit_id, session.id)
                continue
            link = habit_links[habit.id]
            if not link.performed:
                records.append(
                    (SESSION_HABITS, link.model_copy(update={"performed": True, "performed_at": now}))
                )
            if habit.id not in completed_today:
                completed_today.add(habit.id)
                records.append(
                    (
                        HABIT_COMPLETIONS,
                        HabitCompletion(
                            id=new_local_id(HABIT_COMPLETIONS.id_prefix),
                            user_id=owner_id,
                            habit_id=habit.id,
                            completed_at=now,
                        ),
                    )
                )

            result = self.engine.calculate_habit_xp(base_context(habit_number + 1, habit.id))
            if not result.success:
                continue
            attribute = habit.focus_attribute
            habit_number += 1
            worked.add(attribute.value)
            summary.xp[attribute.value] += result.amount
            summary.messages.append(result.message)
            log_event(RewardType.XP, result.amount, attribute)
            rewarded.append(("habit", habit.id, attribute))

        # Sprint
        sprint_earned = (
            session.mode == SessionMode.WORK
            and bool(task_links or habit_links)
            and request.duration >= Rewards.MINIMUM_FOCUS_TIME
        )
        if sprint_earned:
            context = RewardContext(
                item_number=counter.sprints_completed + 1,
                during_focus=True,
                is_duplicate=False,
                is_rapid_completion=False,
                hour=hour,
                streak=stats.current_streak,
                all_attributes_worked_today=False,
            )
            result = self.engine.calculate_sprint_reward(context)
            if result.success:
                summary.coins += result.amount
                summary.messages.append(result.message)
                log_event(RewardType.COINS, result.amount)
                rewarded.append(("sprint", None, None))

        # Stats
        stats.total_coins += summary.coins
        for key, amount in summary.xp.items():
            stats.attributes[key] = stats.attributes.get(key, 0) + amount
        stats.total_focus_time += request.duration
        stats.total_sessions += 1
        if sprint_earned:
            stats.total_sprints += 1
        if session.mode == SessionMode.WORK:
            stats.record_active_day(today)

        completed = session.model_copy(
            update={
                "state": SessionState.COMPLETED,
                "completed_at": now,
                "actual_duration": request.duration,
                "coins_earned": summary.coins,
                "xp_earned": dict(summary.xp),
                "reward_messages": list(summary.messages),
            }
        )
        records.append((SESSIONS, completed))

        await coordinator.commit(owner_id, records, stats)
        return summary, rewarded
