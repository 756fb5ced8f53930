"""
FocusUp Constants.

Enumerations shared by models, the reward engine and the sync layer,
plus the tuning table for the reward curves.
"""

from __future__ import annotations

import re
from enum import Enum


class Attribute(str, Enum):
    """The four character attributes a habit can train."""

    PHYSICAL = "PH"
    COGNITIVE = "CO"
    HEART = "EM"
    SOUL = "SO"

    @classmethod
    def keys(cls) -> list[str]:
        return [a.value for a in cls]


class TaskPriority(str, Enum):
    """Task priority, drives the base coin reward."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SessionMode(str, Enum):
    """Focus session mode."""

    WORK = "work"
    BREAK = "break"


class SessionState(str, Enum):
    """Focus session lifecycle state."""

    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETING = "completing"
    COMPLETED = "completed"


SESSION_TRANSITIONS: dict[SessionState, frozenset[SessionState]] = {
    SessionState.SCHEDULED: frozenset({SessionState.ACTIVE}),
    SessionState.ACTIVE: frozenset({SessionState.COMPLETING}),
    SessionState.COMPLETING: frozenset({SessionState.ACTIVE, SessionState.COMPLETED}),
    SessionState.COMPLETED: frozenset(),
}


class SyncState(str, Enum):
    """Where a locally held record stands relative to the remote store."""

    LOCAL = "local"  # guest-owned, never sent
    PENDING = "pending"  # needs a remote insert
    DIRTY = "dirty"  # exists remotely, local edits not pushed
    SYNCED = "synced"


class RewardType(str, Enum):
    """Kind of award recorded in the reward event log."""

    COINS = "coins"
    XP = "xp"


class Table(str, Enum):
    """Remote table names."""

    TASKS = "tasks"
    HABITS = "habits"
    HABIT_COMPLETIONS = "habit_completions"
    FOCUS_SESSIONS = "focus_sessions"
    SESSION_TASKS = "focus_session_tasks"
    SESSION_HABITS = "focus_session_habits"
    USER_STATS = "user_stats"
    REWARD_EVENTS = "reward_events"


# Tables whose rows are re-pointed during guest migration (user_stats is
# handled separately through an upsert).
OWNED_TABLES: tuple[Table, ...] = (
    Table.TASKS,
    Table.HABITS,
    Table.HABIT_COMPLETIONS,
    Table.FOCUS_SESSIONS,
    Table.SESSION_TASKS,
    Table.SESSION_HABITS,
)


# =============================================================================
# Cache Keys
# =============================================================================

USER_ID_KEY = "focusup-user-id"


class CacheCollection(str, Enum):
    """Per-owner cache collections, keyed as "<collection>-<ownerId>"."""

    TASKS = "tasks"
    HABITS = "habits"
    HABIT_COMPLETIONS = "habit-completions"
    SESSIONS = "focus-sessions"
    SESSION_TASKS = "session-tasks"
    SESSION_HABITS = "session-habits"
    USER_STATS = "user-stats"
    REWARD_EVENTS = "reward-events"
    DAILY_STATS = "focusup-daily-stats"
    TOMBSTONES = "pending-deletes"
    PROFILE_IMAGE = "profile-image"
    UNLOCKED_LEVEL = "unlocked-level"

    def key(self, owner_id: str) -> str:
        return f"{self.value}-{owner_id}"


# =============================================================================
# Identity
# =============================================================================

GUEST_PREFIX = "guest_"
UUID_PATTERN = re.compile(r"^[0-9a-fA-F-]{36}$")


def is_authenticated_id(owner_id: str | None) -> bool:
    """Return True for backend-issued (UUID) owner ids."""
    return bool(owner_id) and bool(UUID_PATTERN.match(owner_id))


def is_guest_id(owner_id: str | None) -> bool:
    """Return True for locally generated guest owner ids."""
    return bool(owner_id) and owner_id.startswith(GUEST_PREFIX)


# =============================================================================
# Reward Tuning
# =============================================================================


class Rewards:
    """Reward curve parameters."""

    HABIT_BASE_XP = 10
    TASK_BASE_COINS: dict[TaskPriority, int] = {
        TaskPriority.LOW: 3,
        TaskPriority.MEDIUM: 6,
        TaskPriority.HIGH: 10,
    }
    SPRINT_BASE_COINS = 5

    FOCUS_MULTIPLIER = 2.0
    NON_FOCUS_MULTIPLIER = 0.5
    RAPID_COMPLETION_PENALTY = 0.5

    TASK_DECAY = 0.9
    TASK_DECAY_FLOOR = 0.2
    SPRINT_DECAY_STEP = 0.1
    SPRINT_DECAY_FLOOR = 0.25

    STREAK_DIVISOR = 20
    MAX_STREAK_MULTIPLIER = 1.5

    VARIETY_BONUS = 1.25

    TIME_BONUS_MORNING = 1.2  # 06:00-12:00
    TIME_BONUS_AFTERNOON = 1.1  # 14:00-18:00
    TIME_BONUS_EVENING = 1.0
    TIME_BONUS_LATE_NIGHT = 0.8  # 23:00-05:00

    MINIMUM_FOCUS_TIME = 15 * 60

    RAPID_WINDOW_SECONDS = 60
    RAPID_COMPLETION_COUNT = 5
    DUPLICATE_WINDOW_HOURS = 24

    MAX_ATTRIBUTE_LEVEL = 50
    MAX_CHARACTER_LEVEL = 99
    COINS_PER_BONUS_XP = 100
