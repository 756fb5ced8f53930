"""
Entity descriptors.

An EntitySpec tells the Sync Coordinator how one collection is stored:
its model, remote table, cache collection, placeholder id prefix, how
to recognise the same record under a different id (natural key), and
which fields point at parent collections.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from focusup.constants import CacheCollection, Table
from focusup.models import (
    FocusSession,
    Habit,
    HabitCompletion,
    OwnedRecord,
    RewardEvent,
    SessionHabitLink,
    SessionTaskLink,
    Task,
)

NaturalKey = Callable[[Any], tuple]


@dataclass(frozen=True)
class EntitySpec:
    name: str
    model: type[OwnedRecord]
    table: Table
    collection: CacheCollection
    id_prefix: str
    natural_key: Optional[NaturalKey] = None
    # field name -> parent spec name
    parents: dict[str, str] = field(default_factory=dict)
    refreshable: bool = True
    # removed together with the parent record it points at
    cascade_delete: bool = True

    def __hash__(self) -> int:
        return hash(self.name)


TASKS = EntitySpec(
    name="tasks",
    model=Task,
    table=Table.TASKS,
    collection=CacheCollection.TASKS,
    id_prefix="task",
    natural_key=lambda t: (t.title.casefold(),),
)

HABITS = EntitySpec(
    name="habits",
    model=Habit,
    table=Table.HABITS,
    collection=CacheCollection.HABITS,
    id_prefix="habit",
    natural_key=lambda h: (h.title.casefold(), h.focus_attribute),
)

SESSIONS = EntitySpec(
    name="focus_sessions",
    model=FocusSession,
    table=Table.FOCUS_SESSIONS,
    collection=CacheCollection.SESSIONS,
    id_prefix="session",
    natural_key=lambda s: (s.mode, s.duration),
)

HABIT_COMPLETIONS = EntitySpec(
    name="habit_completions",
    model=HabitCompletion,
    table=Table.HABIT_COMPLETIONS,
    collection=CacheCollection.HABIT_COMPLETIONS,
    id_prefix="completion",
    natural_key=lambda c: (c.habit_id, c.day),
    parents={"habit_id": "habits"},
)

SESSION_TASKS = EntitySpec(
    name="session_tasks",
    model=SessionTaskLink,
    table=Table.SESSION_TASKS,
    collection=CacheCollection.SESSION_TASKS,
    id_prefix="stask",
    natural_key=lambda link: (link.session_id, link.task_id),
    parents={"session_id": "focus_sessions", "task_id": "tasks"},
)

SESSION_HABITS = EntitySpec(
    name="session_habits",
    model=SessionHabitLink,
    table=Table.SESSION_HABITS,
    collection=CacheCollection.SESSION_HABITS,
    id_prefix="shabit",
    natural_key=lambda link: (link.session_id, link.habit_id),
    parents={"session_id": "focus_sessions", "habit_id": "habits"},
)

REWARD_EVENTS = EntitySpec(
    name="reward_events",
    model=RewardEvent,
    table=Table.REWARD_EVENTS,
    collection=CacheCollection.REWARD_EVENTS,
    id_prefix="reward",
    parents={"session_id": "focus_sessions"},
    refreshable=False,
    cascade_delete=False,
)

# Parents come before children so a sweep inserts them first.
ALL_SPECS: tuple[EntitySpec, ...] = (
    TASKS,
    HABITS,
    SESSIONS,
    HABIT_COMPLETIONS,
    SESSION_TASKS,
    SESSION_HABITS,
    REWARD_EVENTS,
)

SPECS_BY_NAME: dict[str, EntitySpec] = {spec.name: spec for spec in ALL_SPECS}


def child_references(parent: EntitySpec) -> list[tuple[EntitySpec, str]]:
    """Every (child spec, field) pair that points at ``parent``."""
    return [
        (spec, field_name)
        for spec in ALL_SPECS
        for field_name, parent_name in spec.parents.items()
        if parent_name == parent.name
    ]
