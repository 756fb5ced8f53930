"""
Response formatting for FocusUp MCP tools.

Every tool can answer in Markdown (for people) or JSON (for programs).
The JSON helpers return plain dicts; callers serialize them.
"""

from __future__ import annotations

from typing import Any, Optional, Sequence

from focusup.constants import Attribute
from focusup.models import FocusSession, Habit, HabitCompletion, Task, UserStats
from focusup.rewards import LevelCheck, RewardResult, xp_to_level
from focusup.sessions import SessionSummary
from focusup.sync import SyncIssue

ATTRIBUTE_NAMES = {
    Attribute.PHYSICAL.value: "Physical",
    Attribute.COGNITIVE.value: "Cognitive",
    Attribute.HEART.value: "Heart",
    Attribute.SOUL.value: "Soul",
}


def _when(value: Any) -> str:
    return value.isoformat() if value is not None else "-"


# =============================================================================
# Tasks
# =============================================================================


def format_task_markdown(task: Task) -> str:
    status = "Done" if task.done else "Open"
    lines = [
        f"## {task.title}",
        "",
        f"- **ID**: `{task.id}`",
        f"- **Status**: {status}",
        f"- **Priority**: {task.priority.value}",
    ]
    if task.deadline_at:
        lines.append(f"- **Deadline**: {_when(task.deadline_at)}")
    if task.completed_at:
        lines.append(f"- **Completed**: {_when(task.completed_at)}")
    if task.description:
        lines.extend(["", task.description])
    return "\n".join(lines)


def format_task_json(task: Task) -> dict[str, Any]:
    return task.model_dump(mode="json")


def format_tasks_markdown(tasks: Sequence[Task], title: str = "Tasks") -> str:
    if not tasks:
        return f"# {title}\n\nNo tasks found."
    lines = [f"# {title} ({len(tasks)})", ""]
    for task in tasks:
        box = "x" if task.done else " "
        deadline = f" (due {task.deadline_at.date().isoformat()})" if task.deadline_at else ""
        lines.append(f"- [{box}] **{task.title}** [{task.priority.value}]{deadline} `{task.id}`")
    return "\n".join(lines)


def format_tasks_json(tasks: Sequence[Task]) -> dict[str, Any]:
    return {"count": len(tasks), "tasks": [format_task_json(t) for t in tasks]}


# =============================================================================
# Habits
# =============================================================================


def format_habit_markdown(habit: Habit, streak: Optional[int] = None) -> str:
    lines = [
        f"## {habit.title}",
        "",
        f"- **ID**: `{habit.id}`",
        f"- **Attribute**: {ATTRIBUTE_NAMES[habit.focus_attribute.value]}",
    ]
    if habit.cue:
        lines.append(f"- **Cue**: {habit.cue}")
    if streak is not None:
        lines.append(f"- **Streak**: {streak} day(s)")
    return "\n".join(lines)


def format_habit_json(habit: Habit, streak: Optional[int] = None) -> dict[str, Any]:
    data = habit.model_dump(mode="json")
    if streak is not None:
        data["streak"] = streak
    return data


def format_habits_markdown(habits: Sequence[Habit], streaks: dict[str, int]) -> str:
    if not habits:
        return "# Habits\n\nNo habits found."
    lines = [f"# Habits ({len(habits)})", ""]
    for habit in habits:
        streak = streaks.get(habit.id, 0)
        lines.append(
            f"- **{habit.title}** [{habit.focus_attribute.value}] "
            f"streak {streak} `{habit.id}`"
        )
    return "\n".join(lines)


def format_habits_json(habits: Sequence[Habit], streaks: dict[str, int]) -> dict[str, Any]:
    return {
        "count": len(habits),
        "habits": [format_habit_json(h, streaks.get(h.id, 0)) for h in habits],
    }


def format_toggle_markdown(
    habit: Habit,
    completion: Optional[HabitCompletion],
    result: Optional[RewardResult],
) -> str:
    if completion is None:
        return f"Today's completion of **{habit.title}** was undone."
    lines = [f"**{habit.title}** completed for {completion.day.isoformat()}."]
    if result is not None:
        lines.append(result.message)
    return "\n".join(lines)


# =============================================================================
# Sessions & Rewards
# =============================================================================


def format_session_markdown(session: FocusSession) -> str:
    lines = [
        f"## {session.mode.value.title()} session",
        "",
        f"- **ID**: `{session.id}`",
        f"- **State**: {session.state.value}",
        f"- **Duration**: {session.duration // 60} min",
    ]
    if session.scheduled_for:
        lines.append(f"- **Scheduled for**: {_when(session.scheduled_for)}")
    if session.started_at:
        lines.append(f"- **Started**: {_when(session.started_at)}")
    if session.is_completed:
        lines.append(f"- **Coins earned**: {session.coins_earned}")
    return "\n".join(lines)


def format_session_json(session: FocusSession) -> dict[str, Any]:
    return session.model_dump(mode="json")


def format_sessions_markdown(sessions: Sequence[FocusSession]) -> str:
    if not sessions:
        return "# Focus Sessions\n\nNo sessions found."
    lines = [f"# Focus Sessions ({len(sessions)})", ""]
    for session in sessions:
        lines.append(
            f"- {session.mode.value} {session.duration // 60} min, "
            f"{session.state.value} `{session.id}`"
        )
    return "\n".join(lines)


def format_summary_markdown(summary: SessionSummary) -> str:
    lines = ["# Session Complete", "", f"- **Coins**: {summary.coins}"]
    for key, amount in summary.xp.items():
        if amount:
            lines.append(f"- **{ATTRIBUTE_NAMES.get(key, key)} XP**: {amount}")
    if summary.messages:
        lines.append("")
        lines.extend(f"- {message}" for message in summary.messages)
    return "\n".join(lines)


def format_reward_markdown(result: RewardResult) -> str:
    if not result.success:
        return f"No reward: {result.message}"
    return result.message


# =============================================================================
# Stats
# =============================================================================


def format_stats_markdown(stats: UserStats, level: int, check: LevelCheck) -> str:
    lines = [
        f"# Character Level {level}",
        "",
        f"- **Coins**: {stats.total_coins}",
        f"- **Streak**: {stats.current_streak} day(s) (longest {stats.longest_streak})",
        f"- **Focus time**: {stats.total_focus_time // 60} min over {stats.total_sessions} session(s)",
        f"- **Sprints**: {stats.total_sprints}",
        "",
        "## Attributes",
        "",
    ]
    for key, xp in stats.attributes.items():
        lines.append(f"- **{ATTRIBUTE_NAMES.get(key, key)}**: level {xp_to_level(xp)} ({xp} XP)")
    lines.append("")
    if check.can_level:
        lines.append(f"Ready to reach level {check.next_level} for {check.cost} coins.")
    elif check.reason:
        lines.append(f"Next level: {check.reason}")
    return "\n".join(lines)


def format_stats_json(stats: UserStats, level: int, check: LevelCheck) -> dict[str, Any]:
    data = stats.model_dump(mode="json", exclude={"sync_state"})
    data["character_level"] = level
    data["attribute_levels"] = {key: xp_to_level(xp) for key, xp in stats.attributes.items()}
    data["level_up"] = check.model_dump()
    return data


def format_issues_markdown(issues: Sequence[SyncIssue]) -> str:
    if not issues:
        return ""
    lines = ["", "## Sync warnings", ""]
    lines.extend(f"- {issue.message}" for issue in issues)
    return "\n".join(lines)


# =============================================================================
# Messages
# =============================================================================


def success_message(message: str) -> str:
    return f"Success: {message}"


def error_message(message: str, suggestion: Optional[str] = None) -> str:
    if suggestion:
        return f"Error: {message}\n\nSuggestion: {suggestion}"
    return f"Error: {message}"
