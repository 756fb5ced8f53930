"""
Local-first synchronization layer.
"""

from focusup.sync.coordinator import SyncCoordinator
from focusup.sync.specs import (
    ALL_SPECS,
    HABIT_COMPLETIONS,
    HABITS,
    REWARD_EVENTS,
    SESSION_HABITS,
    SESSION_TASKS,
    SESSIONS,
    TASKS,
    EntitySpec,
)
from focusup.sync.state import CollectionChange, IssueKind, OwnerState, SyncIssue

__all__ = [
    "SyncCoordinator",
    "EntitySpec",
    "ALL_SPECS",
    "TASKS",
    "HABITS",
    "HABIT_COMPLETIONS",
    "SESSIONS",
    "SESSION_TASKS",
    "SESSION_HABITS",
    "REWARD_EVENTS",
    "CollectionChange",
    "IssueKind",
    "OwnerState",
    "SyncIssue",
]
