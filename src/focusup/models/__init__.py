"""
FocusUp Data Models.

Pydantic models shared by the cache, the remote store client and the
reward pipeline. Each persisted model round-trips through ``to_row`` /
``from_row`` for the remote store and ``model_dump_json`` for the cache.

Models:
    - Task: To-do item with priority and completion state
    - Habit: Recurring behaviour tagged with one attribute
    - HabitCompletion: One performance of a habit on a given day
    - FocusSession: Timed session with its reward summary
    - SessionTaskLink / SessionHabitLink: Session junction records
    - UserStats: Lifetime coins, streaks, focus time and attribute XP
    - RewardEvent: Log entry for a single award
    - DailyCounter: Today's completion counts for diminishing returns
"""

from focusup.models.base import FocusUpModel, OwnedRecord, local_day, new_local_id, utc_now
from focusup.models.habit import Habit, HabitCompletion
from focusup.models.session import FocusSession, SessionHabitLink, SessionTaskLink, empty_xp
from focusup.models.stats import DailyCounter, RewardEvent, UserStats
from focusup.models.task import Task

__all__ = [
    "FocusUpModel",
    "OwnedRecord",
    "Task",
    "Habit",
    "HabitCompletion",
    "FocusSession",
    "SessionTaskLink",
    "SessionHabitLink",
    "UserStats",
    "RewardEvent",
    "DailyCounter",
    "empty_xp",
    "local_day",
    "new_local_id",
    "utc_now",
]
