"""
FocusUp Client.

The main entry point for FocusUp operations. Wires the persistent cache,
the optional remote store, the Sync Coordinator and the reward pipeline
together, and resolves which owner id every call acts on.

Usage:
    async with FocusUpClient.from_settings() as client:
        task = await client.create_task("Write report", priority="high")
        result = await client.complete_task(task.id)
        print(result.message)
"""

from __future__ import annotations

import logging
from datetime import datetime
from types import TracebackType
from typing import Any, Optional, Sequence, TypeVar

from focusup.backup import BackupService
from focusup.cache import PersistentCache, SQLiteCache
from focusup.constants import SessionMode, SessionState, TaskPriority
from focusup.exceptions import FocusUpNotFoundError
from focusup.identity import IdentityMigrationService, IdentityStore, ProfileImageStore
from focusup.models import (
    FocusSession,
    Habit,
    HabitCompletion,
    SessionHabitLink,
    SessionTaskLink,
    Task,
    UserStats,
)
from focusup.remote import RemoteStore
from focusup.rewards import (
    DailyTracker,
    LevelCheck,
    LevelStore,
    RewardEngine,
    RewardResult,
    RewardService,
    can_level_up,
    character_level,
)
from focusup.sessions import SessionCompletionOrchestrator, SessionSummary
from focusup.settings import Settings, get_settings
from focusup.sync import SyncCoordinator

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="FocusUpClient")


class FocusUpClient:
    """
    High-level FocusUp client.

    Every operation acts on the current owner: the signed-in account when
    ``sign_in`` has been called, the persisted guest id otherwise.
    """

    def __init__(
        self,
        cache: PersistentCache,
        remote: Optional[RemoteStore] = None,
        *,
        refresh_delay: Optional[float] = 1.5,
        natural_key_window: float = 5.0,
    ) -> None:
        self.coordinator = SyncCoordinator(
            cache,
            remote,
            refresh_delay=refresh_delay,
            natural_key_window=natural_key_window,
        )
        self.engine = RewardEngine()
        self.tracker = DailyTracker(cache)
        self.rewards = RewardService(self.coordinator, self.tracker, self.engine)
        self.sessions = SessionCompletionOrchestrator(self.coordinator, self.tracker, self.engine)
        self.levels = LevelStore(cache)
        self.migration = IdentityMigrationService(self.coordinator, self.tracker, self.levels)
        self.identity = IdentityStore(cache, self.migration)
        self.profile_images = ProfileImageStore(cache)
        self.backup = BackupService(self.coordinator, self.tracker)

        self._auth_id: Optional[str] = None
        self._connected = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "FocusUpClient":
        """Create a client from settings; without a remote URL it runs cache-only."""
        settings = settings or get_settings()
        remote = None
        if settings.remote_configured:
            remote = RemoteStore(
                base_url=settings.remote_url,
                api_key=settings.remote_api_key,
                access_token=settings.remote_access_token,
                timeout=settings.remote_timeout,
            )
        else:
            logger.info("No remote store configured, running cache-only")
        return cls(
            SQLiteCache(settings.cache_path),
            remote,
            refresh_delay=settings.refresh_delay,
            natural_key_window=settings.natural_key_window,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(self) -> None:
        """Load the current owner's cached state and profile image."""
        if self._connected:
            return
        owner_id = await self.current_user_id()
        await self.coordinator.load(owner_id)
        await self.profile_images.load(owner_id)
        self._connected = True
        logger.info("FocusUp client connected as %s", owner_id)

    async def disconnect(self) -> None:
        """Wait for background remote work, then release the store handles."""
        await self.coordinator.close()
        remote = self.coordinator.remote
        if remote is not None:
            await remote.close()
        await self.coordinator.cache.close()
        self._connected = False

    async def __aenter__(self: T) -> T:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.disconnect()

    # =========================================================================
    # Identity
    # =========================================================================

    @property
    def auth_id(self) -> Optional[str]:
        return self._auth_id

    async def current_user_id(self) -> str:
        return await self.identity.current_user_id(self._auth_id)

    async def sign_in(self, auth_id: str, access_token: Optional[str] = None) -> bool:
        """
        Switch to an authenticated account and move any guest data to it.

        Returns True when guest data was migrated.
        """
        remote = self.coordinator.remote
        if remote is not None and access_token:
            remote.set_access_token(access_token)
        self._auth_id = auth_id
        migrated = await self.identity.on_signed_in(auth_id)
        if not migrated:
            await self.coordinator.refresh_all(auth_id)
        await self.profile_images.load(auth_id)
        return migrated

    async def sign_out(self) -> str:
        """Fall back to the guest identity. Returns the guest id now in effect."""
        if self._auth_id is not None:
            await self.coordinator.flush()
        remote = self.coordinator.remote
        if remote is not None:
            remote.set_access_token(None)
        self._auth_id = None
        owner_id = await self.current_user_id()
        await self.profile_images.load(owner_id)
        return owner_id

    async def refresh(self) -> None:
        """Push pending local changes and pull the remote copy of everything."""
        await self.coordinator.refresh_all(await self.current_user_id())

    async def set_profile_image(self, uri: Optional[str]) -> None:
        await self.profile_images.set(await self.current_user_id(), uri)

    # =========================================================================
    # Tasks
    # =========================================================================

    async def list_tasks(self, include_done: bool = True) -> list[Task]:
        tasks = await self.coordinator.list_tasks(await self.current_user_id())
        if include_done:
            return tasks
        return [t for t in tasks if not t.done]

    async def get_task(self, task_id: str) -> Task:
        task = await self.coordinator.get_task(await self.current_user_id(), task_id)
        if task is None:
            raise FocusUpNotFoundError(f"No task with id {task_id}", operation="get_task")
        return task

    async def create_task(
        self,
        title: str,
        description: Optional[str] = None,
        deadline_at: Optional[datetime] = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
    ) -> Task:
        return await self.coordinator.create_task(
            await self.current_user_id(),
            title,
            description=description,
            deadline_at=deadline_at,
            priority=priority,
        )

    async def update_task(self, task_id: str, **patch: Any) -> Task:
        return await self.coordinator.update_task(await self.current_user_id(), task_id, patch)

    async def delete_task(self, task_id: str) -> bool:
        return await self.coordinator.delete_task(await self.current_user_id(), task_id)

    async def complete_task(self, task_id: str) -> RewardResult:
        """
        Mark a task done and award its coins.

        Completing a task that is already done awards nothing.
        """
        owner_id = await self.current_user_id()
        task = await self.get_task(task_id)
        if task.done:
            return RewardResult.rejected("Task is already done")
        await self.coordinator.set_task_done(owner_id, task.id, True)
        return await self.rewards.award_task(owner_id, task.id)

    async def reopen_task(self, task_id: str) -> Task:
        return await self.coordinator.set_task_done(await self.current_user_id(), task_id, False)

    # =========================================================================
    # Habits
    # =========================================================================

    async def list_habits(self) -> list[Habit]:
        return await self.coordinator.list_habits(await self.current_user_id())

    async def get_habit(self, habit_id: str) -> Habit:
        habit = await self.coordinator.get_habit(await self.current_user_id(), habit_id)
        if habit is None:
            raise FocusUpNotFoundError(f"No habit with id {habit_id}", operation="get_habit")
        return habit

    async def create_habit(self, title: str, focus_attribute: Any, cue: Optional[str] = None) -> Habit:
        return await self.coordinator.create_habit(
            await self.current_user_id(), title, focus_attribute, cue=cue
        )

    async def update_habit(self, habit_id: str, **patch: Any) -> Habit:
        return await self.coordinator.update_habit(await self.current_user_id(), habit_id, patch)

    async def delete_habit(self, habit_id: str) -> bool:
        return await self.coordinator.delete_habit(await self.current_user_id(), habit_id)

    async def toggle_habit(self, habit_id: str) -> tuple[Optional[HabitCompletion], Optional[RewardResult]]:
        """
        Tick a habit off for today, or undo today's tick.

        Returns the new completion and its reward, or ``(None, None)`` when
        the tick was undone. Undoing never takes XP back.
        """
        owner_id = await self.current_user_id()
        completion = await self.coordinator.toggle_habit_completion(owner_id, habit_id)
        if completion is None:
            return None, None
        return completion, await self.rewards.award_habit(owner_id, completion.habit_id)

    async def habit_streak(self, habit_id: str) -> int:
        return await self.coordinator.habit_streak(await self.current_user_id(), habit_id)

    # =========================================================================
    # Focus Sessions
    # =========================================================================

    async def list_sessions(self, state: Optional[SessionState] = None) -> list[FocusSession]:
        return await self.coordinator.list_sessions(await self.current_user_id(), state)

    async def schedule_session(
        self,
        duration: int,
        scheduled_for: datetime,
        mode: SessionMode = SessionMode.WORK,
    ) -> FocusSession:
        return await self.coordinator.schedule_session(
            await self.current_user_id(), duration, scheduled_for, mode
        )

    async def start_session(
        self,
        duration: Optional[int] = None,
        mode: SessionMode = SessionMode.WORK,
        session_id: Optional[str] = None,
    ) -> FocusSession:
        return await self.coordinator.start_session(
            await self.current_user_id(), duration=duration, mode=mode, session_id=session_id
        )

    async def attach_to_session(
        self,
        session_id: str,
        task_ids: Sequence[str] = (),
        habit_ids: Sequence[str] = (),
    ) -> tuple[list[SessionTaskLink], list[SessionHabitLink]]:
        return await self.coordinator.attach_to_session(
            await self.current_user_id(), session_id, task_ids, habit_ids
        )

    async def complete_session(
        self,
        session_id: str,
        done_task_ids: Sequence[str] = (),
        performed_habit_ids: Sequence[str] = (),
        duration: int = 0,
    ) -> SessionSummary:
        return await self.sessions.complete_session(
            session_id=session_id,
            done_task_ids=list(done_task_ids),
            performed_habit_ids=list(performed_habit_ids),
            user_id=await self.current_user_id(),
            duration=duration,
        )

    # =========================================================================
    # Stats & Levels
    # =========================================================================

    async def get_stats(self) -> UserStats:
        return await self.coordinator.get_stats(await self.current_user_id())

    async def _level_of(self, owner_id: str) -> tuple[UserStats, int]:
        stats = await self.coordinator.get_stats(owner_id)
        unlocked = await self.levels.unlocked(owner_id)
        return stats, character_level(stats.attributes, stats.total_coins, unlocked)

    async def character_level(self) -> int:
        _, level = await self._level_of(await self.current_user_id())
        return level

    async def can_level_up(self) -> LevelCheck:
        stats, level = await self._level_of(await self.current_user_id())
        return can_level_up(level, stats.attributes, stats.total_coins)

    async def level_up(self) -> LevelCheck:
        """
        Spend coins to pass the next level gate, when every requirement is met.

        The bought gate is remembered, so the character moves past it and
        the same gate is never charged twice.
        """
        owner_id = await self.current_user_id()
        stats, level = await self._level_of(owner_id)
        check = can_level_up(level, stats.attributes, stats.total_coins)
        if not check.can_level or not check.cost:
            return check
        stats.total_coins -= check.cost
        await self.coordinator.save_stats(owner_id, stats)
        await self.levels.unlock(owner_id, check.next_level)
        logger.info("Owner %s spent %d coins on level %d", owner_id, check.cost, check.next_level)
        return check
