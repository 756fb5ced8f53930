#!/usr/bin/env python3
"""
FocusUp MCP Server.

Exposes the FocusUp core as Model Context Protocol tools: tasks, habits
and focus sessions that work offline, earn coins and attribute XP, and
sync with the hosted store once the user signs in.

Features:
    - Task management (create, read, update, delete, complete)
    - Habit management (CRUD, daily toggle with XP)
    - Focus sessions (schedule, start, attach items, complete with rewards)
    - Character stats and level gates
    - Guest-to-account sign-in with data migration
    - Backup export/import

Environment Variables (all optional):
    FOCUSUP_REMOTE_URL
    FOCUSUP_REMOTE_API_KEY
    FOCUSUP_REMOTE_ACCESS_TOKEN
    FOCUSUP_CACHE_PATH
    FOCUSUP_LOG_LEVEL

Without a remote URL the server runs cache-only as a guest.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from mcp.server.fastmcp import FastMCP, Context

from focusup.client import FocusUpClient
from focusup.constants import SessionMode, SessionState, TaskPriority
from focusup.settings import get_settings
from focusup.tools.inputs import (
    ResponseFormat,
    TaskCreateInput,
    TaskGetInput,
    TaskListInput,
    TaskUpdateInput,
    TaskCompleteInput,
    TaskDeleteInput,
    HabitCreateInput,
    HabitListInput,
    HabitUpdateInput,
    HabitDeleteInput,
    HabitToggleInput,
    SessionStartInput,
    SessionScheduleInput,
    SessionAttachInput,
    SessionCompleteInput,
    SessionListInput,
    SignInInput,
    BackupImportInput,
)
from focusup.tools.formatting import (
    format_task_markdown,
    format_task_json,
    format_tasks_markdown,
    format_tasks_json,
    format_habit_markdown,
    format_habit_json,
    format_habits_markdown,
    format_habits_json,
    format_toggle_markdown,
    format_session_markdown,
    format_session_json,
    format_sessions_markdown,
    format_summary_markdown,
    format_reward_markdown,
    format_stats_markdown,
    format_stats_json,
    format_issues_markdown,
    success_message,
    error_message,
)

# Configure logging
logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


# =============================================================================
# Lifespan Management
# =============================================================================


@asynccontextmanager
async def lifespan(mcp: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """
    Manage the FocusUp client lifecycle.

    Opens the cache on startup; on shutdown waits for pending remote
    pushes and closes everything.
    """
    logger.info("Initializing FocusUp MCP Server...")

    try:
        client = FocusUpClient.from_settings()
        await client.connect()
        yield {"client": client}
    except Exception as e:
        logger.error("Failed to initialize FocusUp client: %s", e)
        raise
    finally:
        if "client" in locals():
            await client.disconnect()
            logger.info("FocusUp client disconnected")


# Initialize FastMCP server
mcp = FastMCP(
    "focusup_mcp",
    lifespan=lifespan,
)


def get_client(ctx: Context) -> FocusUpClient:
    """Get the FocusUp client from context."""
    return ctx.request_context.lifespan_state["client"]


def with_sync_warnings(client: FocusUpClient, text: str) -> str:
    """Append any non-blocking sync warnings and clear them."""
    issues = client.coordinator.issues.value
    if not issues:
        return text
    client.coordinator.clear_issues()
    return text + "\n" + format_issues_markdown(issues)


# =============================================================================
# Error Handling
# =============================================================================


def handle_error(e: Exception, operation: str) -> str:
    """Handle exceptions and return user-friendly error messages."""
    logger.exception("Error in %s: %s", operation, e)

    error_type = type(e).__name__

    if "Authentication" in error_type:
        return error_message(
            "Authentication failed. Please sign in again.",
            "Call focusup_sign_in with a fresh access token.",
        )
    elif "NotFound" in error_type:
        return error_message(
            f"Resource not found: {e}",
            "Verify the ID is correct; list tasks, habits or sessions to find it.",
        )
    elif "Validation" in error_type:
        return error_message(f"Invalid input: {e}")
    elif "Configuration" in error_type:
        return error_message(
            f"Configuration error: {e}",
            "Check FOCUSUP_REMOTE_URL and FOCUSUP_REMOTE_API_KEY.",
        )
    elif "Network" in error_type:
        return error_message(
            f"Remote store unreachable: {e}",
            "Your changes are kept on this device and will sync later.",
        )
    elif "Migration" in error_type:
        return error_message(
            f"Could not move guest data: {e}",
            "Guest data is kept; signing in again retries the migration.",
        )
    else:
        return error_message(f"Unexpected error: {e}")


# =============================================================================
# Task Tools
# =============================================================================


@mcp.tool(
    name="focusup_create_task",
    annotations={
        "title": "Create Task",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False,
    },
)
async def focusup_create_task(params: TaskCreateInput, ctx: Context) -> str:
    """
    Create a new task.

    The task is saved on this device immediately and pushed to the remote
    store in the background when signed in.

    Args:
        params: Task creation parameters including:
            - title (str): Task title (required)
            - description (str): Task notes
            - deadline_at (datetime): Deadline in ISO format
            - priority (str): 'low', 'medium' (default), 'high'

    Returns:
        Formatted task details on success, or error message on failure.

    Examples:
        - Create simple task: title="Buy groceries"
        - Create urgent task: title="Submit report", priority="high",
          deadline_at="2025-01-20T17:00:00Z"
    """
    try:
        client = get_client(ctx)
        task = await client.create_task(
            title=params.title,
            description=params.description,
            deadline_at=params.deadline_at,
            priority=TaskPriority(params.priority),
        )

        if params.response_format == ResponseFormat.MARKDOWN:
            return with_sync_warnings(client, f"# Task Created\n\n{format_task_markdown(task)}")
        else:
            return json.dumps({"success": True, "task": format_task_json(task)}, indent=2)

    except Exception as e:
        return handle_error(e, "create_task")


@mcp.tool(
    name="focusup_get_task",
    annotations={
        "title": "Get Task",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_get_task(params: TaskGetInput, ctx: Context) -> str:
    """
    Get a task by its ID.

    Args:
        params: Query parameters including:
            - task_id (str): Task identifier (required)

    Returns:
        Formatted task details or error message.
    """
    try:
        client = get_client(ctx)
        task = await client.get_task(params.task_id)

        if params.response_format == ResponseFormat.MARKDOWN:
            return format_task_markdown(task)
        else:
            return json.dumps(format_task_json(task), indent=2)

    except Exception as e:
        return handle_error(e, "get_task")


@mcp.tool(
    name="focusup_list_tasks",
    annotations={
        "title": "List Tasks",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_list_tasks(params: TaskListInput, ctx: Context) -> str:
    """
    List tasks, newest first.

    Args:
        params: Filter parameters including:
            - include_done (bool): Include finished tasks (default False)
            - priority (str): Filter by priority level
            - limit (int): Maximum results (default 50)

    Returns:
        Formatted list of tasks or error message.

    Examples:
        - Open tasks: (no filters)
        - Everything: include_done=True
        - Urgent only: priority="high"
    """
    try:
        client = get_client(ctx)
        tasks = await client.list_tasks(include_done=params.include_done)

        if params.priority:
            tasks = [t for t in tasks if t.priority.value == params.priority]
        tasks = tasks[: params.limit]

        if params.response_format == ResponseFormat.MARKDOWN:
            return format_tasks_markdown(tasks)
        else:
            return json.dumps(format_tasks_json(tasks), indent=2)

    except Exception as e:
        return handle_error(e, "list_tasks")


@mcp.tool(
    name="focusup_update_task",
    annotations={
        "title": "Update Task",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_update_task(params: TaskUpdateInput, ctx: Context) -> str:
    """
    Update a task's title, notes, deadline or priority.

    Only the fields provided are changed. Use focusup_complete_task to
    mark a task done.

    Args:
        params: Update parameters including:
            - task_id (str): Task to update (required)
            - title, description, deadline_at, priority: New values

    Returns:
        Updated task details or error message.
    """
    try:
        client = get_client(ctx)
        patch = params.model_dump(exclude={"task_id", "response_format"}, exclude_none=True)
        if not patch:
            return error_message("Nothing to update", "Provide at least one field to change.")
        task = await client.update_task(params.task_id, **patch)

        if params.response_format == ResponseFormat.MARKDOWN:
            return with_sync_warnings(client, f"# Task Updated\n\n{format_task_markdown(task)}")
        else:
            return json.dumps({"success": True, "task": format_task_json(task)}, indent=2)

    except Exception as e:
        return handle_error(e, "update_task")


@mcp.tool(
    name="focusup_complete_task",
    annotations={
        "title": "Complete Task",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_complete_task(params: TaskCompleteInput, ctx: Context) -> str:
    """
    Mark a task done and collect its coins.

    Coins depend on priority and shrink with every task finished today.
    Completing an already finished task earns nothing.

    Args:
        params: Completion parameters including:
            - task_id (str): Task to complete (required)

    Returns:
        Reward message or error message.
    """
    try:
        client = get_client(ctx)
        result = await client.complete_task(params.task_id)

        if params.response_format == ResponseFormat.MARKDOWN:
            return with_sync_warnings(client, format_reward_markdown(result))
        else:
            return json.dumps(result.model_dump(), indent=2)

    except Exception as e:
        return handle_error(e, "complete_task")


@mcp.tool(
    name="focusup_reopen_task",
    annotations={
        "title": "Reopen Task",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_reopen_task(params: TaskCompleteInput, ctx: Context) -> str:
    """
    Mark a finished task as open again. Coins already earned are kept.

    Args:
        params: Parameters including:
            - task_id (str): Task to reopen (required)

    Returns:
        Success or error message.
    """
    try:
        client = get_client(ctx)
        task = await client.reopen_task(params.task_id)
        return with_sync_warnings(client, success_message(f"Task `{task.id}` reopened."))

    except Exception as e:
        return handle_error(e, "reopen_task")


@mcp.tool(
    name="focusup_delete_task",
    annotations={
        "title": "Delete Task",
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_delete_task(params: TaskDeleteInput, ctx: Context) -> str:
    """
    Delete a task and its focus session links.

    Args:
        params: Deletion parameters including:
            - task_id (str): Task to delete (required)

    Returns:
        Success or error message.
    """
    try:
        client = get_client(ctx)
        if not await client.delete_task(params.task_id):
            return error_message(f"No task with id {params.task_id}")
        return with_sync_warnings(client, success_message(f"Task `{params.task_id}` deleted."))

    except Exception as e:
        return handle_error(e, "delete_task")


# =============================================================================
# Habit Tools
# =============================================================================


@mcp.tool(
    name="focusup_create_habit",
    annotations={
        "title": "Create Habit",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False,
    },
)
async def focusup_create_habit(params: HabitCreateInput, ctx: Context) -> str:
    """
    Create a habit that trains one character attribute.

    Args:
        params: Habit parameters including:
            - title (str): Habit title (required)
            - focus_attribute (str): 'PH', 'CO', 'EM' or 'SO' (required)
            - cue (str): What triggers the habit

    Returns:
        Formatted habit details or error message.

    Examples:
        - title="Morning run", focus_attribute="PH", cue="After waking up"
    """
    try:
        client = get_client(ctx)
        habit = await client.create_habit(params.title, params.focus_attribute, cue=params.cue)

        if params.response_format == ResponseFormat.MARKDOWN:
            return with_sync_warnings(client, f"# Habit Created\n\n{format_habit_markdown(habit)}")
        else:
            return json.dumps({"success": True, "habit": format_habit_json(habit)}, indent=2)

    except Exception as e:
        return handle_error(e, "create_habit")


@mcp.tool(
    name="focusup_list_habits",
    annotations={
        "title": "List Habits",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_list_habits(params: HabitListInput, ctx: Context) -> str:
    """
    List habits with their current streaks.

    Returns:
        Formatted list of habits or error message.
    """
    try:
        client = get_client(ctx)
        habits = await client.list_habits()
        streaks = {habit.id: await client.habit_streak(habit.id) for habit in habits}

        if params.response_format == ResponseFormat.MARKDOWN:
            return format_habits_markdown(habits, streaks)
        else:
            return json.dumps(format_habits_json(habits, streaks), indent=2)

    except Exception as e:
        return handle_error(e, "list_habits")


@mcp.tool(
    name="focusup_update_habit",
    annotations={
        "title": "Update Habit",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_update_habit(params: HabitUpdateInput, ctx: Context) -> str:
    """
    Update a habit's title, attribute or cue.

    Args:
        params: Update parameters including:
            - habit_id (str): Habit to update (required)
            - title, focus_attribute, cue: New values

    Returns:
        Updated habit details or error message.
    """
    try:
        client = get_client(ctx)
        patch = params.model_dump(exclude={"habit_id", "response_format"}, exclude_none=True)
        if not patch:
            return error_message("Nothing to update", "Provide at least one field to change.")
        habit = await client.update_habit(params.habit_id, **patch)

        if params.response_format == ResponseFormat.MARKDOWN:
            return with_sync_warnings(client, f"# Habit Updated\n\n{format_habit_markdown(habit)}")
        else:
            return json.dumps({"success": True, "habit": format_habit_json(habit)}, indent=2)

    except Exception as e:
        return handle_error(e, "update_habit")


@mcp.tool(
    name="focusup_delete_habit",
    annotations={
        "title": "Delete Habit",
        "readOnlyHint": False,
        "destructiveHint": True,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_delete_habit(params: HabitDeleteInput, ctx: Context) -> str:
    """
    Delete a habit together with its completions and session links.

    Args:
        params: Deletion parameters including:
            - habit_id (str): Habit to delete (required)

    Returns:
        Success or error message.
    """
    try:
        client = get_client(ctx)
        if not await client.delete_habit(params.habit_id):
            return error_message(f"No habit with id {params.habit_id}")
        return with_sync_warnings(client, success_message(f"Habit `{params.habit_id}` deleted."))

    except Exception as e:
        return handle_error(e, "delete_habit")


@mcp.tool(
    name="focusup_toggle_habit",
    annotations={
        "title": "Toggle Habit For Today",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False,
    },
)
async def focusup_toggle_habit(params: HabitToggleInput, ctx: Context) -> str:
    """
    Tick a habit off for today and earn attribute XP, or undo today's tick.

    Ticking the same habit again on the same day undoes it; ticking it a
    third time earns nothing more.

    Args:
        params: Parameters including:
            - habit_id (str): Habit to toggle (required)

    Returns:
        Completion and reward message, or error message.
    """
    try:
        client = get_client(ctx)
        habit = await client.get_habit(params.habit_id)
        completion, result = await client.toggle_habit(habit.id)

        if params.response_format == ResponseFormat.MARKDOWN:
            return with_sync_warnings(client, format_toggle_markdown(habit, completion, result))
        else:
            return json.dumps({
                "completed": completion is not None,
                "completion": completion.model_dump(mode="json") if completion else None,
                "reward": result.model_dump() if result else None,
            }, indent=2)

    except Exception as e:
        return handle_error(e, "toggle_habit")


# =============================================================================
# Focus Session Tools
# =============================================================================


@mcp.tool(
    name="focusup_schedule_session",
    annotations={
        "title": "Schedule Focus Session",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False,
    },
)
async def focusup_schedule_session(params: SessionScheduleInput, ctx: Context) -> str:
    """
    Schedule a focus session to start later.

    Args:
        params: Parameters including:
            - scheduled_for (datetime): Start time (required)
            - duration_minutes (int): Planned length (default 25)
            - mode (str): 'work' or 'break'

    Returns:
        Formatted session details or error message.
    """
    try:
        client = get_client(ctx)
        session = await client.schedule_session(
            params.duration_minutes * 60,
            params.scheduled_for,
            SessionMode(params.mode),
        )

        if params.response_format == ResponseFormat.MARKDOWN:
            return with_sync_warnings(client, f"# Session Scheduled\n\n{format_session_markdown(session)}")
        else:
            return json.dumps({"success": True, "session": format_session_json(session)}, indent=2)

    except Exception as e:
        return handle_error(e, "schedule_session")


@mcp.tool(
    name="focusup_start_session",
    annotations={
        "title": "Start Focus Session",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False,
    },
)
async def focusup_start_session(params: SessionStartInput, ctx: Context) -> str:
    """
    Start a focus session, optionally with the tasks and habits to work on.

    Args:
        params: Parameters including:
            - duration_minutes (int): Planned length (default 25)
            - mode (str): 'work' or 'break'
            - session_id (str): Start this scheduled session instead
            - task_ids (list): Tasks to link
            - habit_ids (list): Habits to link

    Returns:
        Formatted session details or error message.

    Examples:
        - Quick sprint: duration_minutes=25
        - Sprint on two tasks: task_ids=["...", "..."]
    """
    try:
        client = get_client(ctx)
        duration = params.duration_minutes * 60 if params.duration_minutes else None
        session = await client.start_session(
            duration=duration,
            mode=SessionMode(params.mode),
            session_id=params.session_id,
        )
        task_links, habit_links = [], []
        if params.task_ids or params.habit_ids:
            task_links, habit_links = await client.attach_to_session(
                session.id, params.task_ids, params.habit_ids
            )

        if params.response_format == ResponseFormat.MARKDOWN:
            text = f"# Session Started\n\n{format_session_markdown(session)}"
            if task_links or habit_links:
                text += f"\n- **Linked**: {len(task_links)} task(s), {len(habit_links)} habit(s)"
            return with_sync_warnings(client, text)
        else:
            return json.dumps({
                "success": True,
                "session": format_session_json(session),
                "task_ids": [link.task_id for link in task_links],
                "habit_ids": [link.habit_id for link in habit_links],
            }, indent=2)

    except Exception as e:
        return handle_error(e, "start_session")


@mcp.tool(
    name="focusup_attach_to_session",
    annotations={
        "title": "Attach Items To Session",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_attach_to_session(params: SessionAttachInput, ctx: Context) -> str:
    """
    Link tasks and habits to a session that has not been completed yet.

    Args:
        params: Parameters including:
            - session_id (str): Session (required)
            - task_ids (list): Tasks to link
            - habit_ids (list): Habits to link

    Returns:
        Success or error message.
    """
    try:
        client = get_client(ctx)
        task_links, habit_links = await client.attach_to_session(
            params.session_id, params.task_ids, params.habit_ids
        )
        return with_sync_warnings(client, success_message(
            f"Session `{params.session_id}` now has {len(task_links)} task(s) "
            f"and {len(habit_links)} habit(s)."
        ))

    except Exception as e:
        return handle_error(e, "attach_to_session")


@mcp.tool(
    name="focusup_complete_session",
    annotations={
        "title": "Complete Focus Session",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_complete_session(params: SessionCompleteInput, ctx: Context) -> str:
    """
    Complete a focus session and collect its rewards.

    Done tasks earn coins at the focus rate, performed habits earn XP for
    their attribute, and a work session of 15 minutes or more with linked
    items earns the sprint bonus. Completing the same session twice
    returns the original rewards without awarding them again.

    Args:
        params: Parameters including:
            - session_id (str): Session (required)
            - done_task_ids (list): Linked tasks finished
            - performed_habit_ids (list): Linked habits performed
            - duration_minutes (int): Minutes actually focused

    Returns:
        Reward summary or error message.
    """
    try:
        client = get_client(ctx)
        summary = await client.complete_session(
            params.session_id,
            done_task_ids=params.done_task_ids,
            performed_habit_ids=params.performed_habit_ids,
            duration=params.duration_minutes * 60,
        )

        if params.response_format == ResponseFormat.MARKDOWN:
            return with_sync_warnings(client, format_summary_markdown(summary))
        else:
            return json.dumps(summary.to_payload(), indent=2)

    except Exception as e:
        return handle_error(e, "complete_session")


@mcp.tool(
    name="focusup_list_sessions",
    annotations={
        "title": "List Focus Sessions",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_list_sessions(params: SessionListInput, ctx: Context) -> str:
    """
    List focus sessions, newest first.

    Args:
        params: Filter parameters including:
            - state (str): 'scheduled', 'active' or 'completed'
            - limit (int): Maximum results (default 20)

    Returns:
        Formatted list of sessions or error message.
    """
    try:
        client = get_client(ctx)
        state = SessionState(params.state) if params.state else None
        sessions = (await client.list_sessions(state))[: params.limit]

        if params.response_format == ResponseFormat.MARKDOWN:
            return format_sessions_markdown(sessions)
        else:
            return json.dumps({
                "count": len(sessions),
                "sessions": [format_session_json(s) for s in sessions],
            }, indent=2)

    except Exception as e:
        return handle_error(e, "list_sessions")


# =============================================================================
# Stats Tools
# =============================================================================


@mcp.tool(
    name="focusup_get_stats",
    annotations={
        "title": "Get Character Stats",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_get_stats(ctx: Context, response_format: ResponseFormat = ResponseFormat.MARKDOWN) -> str:
    """
    Get coins, streaks, attribute levels and the next level gate.

    Returns:
        Formatted stats or error message.
    """
    try:
        client = get_client(ctx)
        stats = await client.get_stats()
        level = await client.character_level()
        check = await client.can_level_up()

        if response_format == ResponseFormat.MARKDOWN:
            return format_stats_markdown(stats, level, check)
        else:
            return json.dumps(format_stats_json(stats, level, check), indent=2)

    except Exception as e:
        return handle_error(e, "get_stats")


@mcp.tool(
    name="focusup_level_up",
    annotations={
        "title": "Level Up Character",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": False,
        "openWorldHint": False,
    },
)
async def focusup_level_up(ctx: Context) -> str:
    """
    Spend coins to pass the next level gate.

    Only works when the character sits right below a gate level and meets
    its coin and attribute requirements.

    Returns:
        Success message, or the unmet requirement.
    """
    try:
        client = get_client(ctx)
        check = await client.level_up()
        if not check.can_level:
            return error_message(f"Cannot level up: {check.reason}")
        return with_sync_warnings(client, success_message(
            f"Reached level {check.next_level} for {check.cost} coins."
        ))

    except Exception as e:
        return handle_error(e, "level_up")


# =============================================================================
# Account & Sync Tools
# =============================================================================


@mcp.tool(
    name="focusup_sign_in",
    annotations={
        "title": "Sign In",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": True,
    },
)
async def focusup_sign_in(params: SignInInput, ctx: Context) -> str:
    """
    Switch to an authenticated account.

    Everything created as a guest on this device is moved to the account.
    If the move fails the guest data is kept and the next sign-in retries.

    Args:
        params: Parameters including:
            - auth_id (str): Account UUID (required)
            - access_token (str): Bearer token for the remote store

    Returns:
        Success or error message.
    """
    try:
        client = get_client(ctx)
        migrated = await client.sign_in(params.auth_id, params.access_token)
        text = f"Signed in as `{params.auth_id}`."
        if migrated:
            text += " Guest data moved to this account."
        return with_sync_warnings(client, success_message(text))

    except Exception as e:
        return handle_error(e, "sign_in")


@mcp.tool(
    name="focusup_sign_out",
    annotations={
        "title": "Sign Out",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_sign_out(ctx: Context) -> str:
    """
    Return to the guest identity on this device.

    Returns:
        Success or error message.
    """
    try:
        client = get_client(ctx)
        guest_id = await client.sign_out()
        return success_message(f"Signed out, continuing as guest `{guest_id}`.")

    except Exception as e:
        return handle_error(e, "sign_out")


@mcp.tool(
    name="focusup_refresh",
    annotations={
        "title": "Sync With Remote Store",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": True,
    },
)
async def focusup_refresh(ctx: Context, response_format: ResponseFormat = ResponseFormat.MARKDOWN) -> str:
    """
    Push pending local changes and pull the latest remote copy.

    Guests and cache-only setups have nothing to sync; the call is then a
    no-op.

    Returns:
        Summary of the local data after syncing, with any sync warnings.
    """
    try:
        client = get_client(ctx)
        await client.refresh()
        owner_id = await client.current_user_id()
        tasks = await client.list_tasks()
        habits = await client.list_habits()
        sessions = await client.list_sessions()
        issues = client.coordinator.issues.value

        if response_format == ResponseFormat.MARKDOWN:
            lines = [
                "# Sync Complete",
                "",
                f"- **Owner**: `{owner_id}`",
                f"- **Tasks**: {len(tasks)}",
                f"- **Habits**: {len(habits)}",
                f"- **Sessions**: {len(sessions)}",
            ]
            return with_sync_warnings(client, "\n".join(lines))
        else:
            client.coordinator.clear_issues()
            return json.dumps({
                "owner_id": owner_id,
                "task_count": len(tasks),
                "habit_count": len(habits),
                "session_count": len(sessions),
                "issues": [issue.model_dump(mode="json") for issue in issues],
            }, indent=2)

    except Exception as e:
        return handle_error(e, "refresh")


@mcp.tool(
    name="focusup_export_data",
    annotations={
        "title": "Export Backup",
        "readOnlyHint": True,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_export_data(ctx: Context) -> str:
    """
    Export every task, habit, session and stat of the current owner.

    Returns:
        The backup document as JSON, or error message.
    """
    try:
        client = get_client(ctx)
        payload = await client.backup.export_data(await client.current_user_id())
        return json.dumps(payload, indent=2)

    except Exception as e:
        return handle_error(e, "export_data")


@mcp.tool(
    name="focusup_import_data",
    annotations={
        "title": "Import Backup",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": False,
    },
)
async def focusup_import_data(params: BackupImportInput, ctx: Context) -> str:
    """
    Merge an exported backup into the current owner's data.

    Records are matched by id and stats keep the higher of each value, so
    importing the same backup twice changes nothing.

    Args:
        params: Parameters including:
            - payload (str): Backup JSON from focusup_export_data (required)

    Returns:
        Success or error message.
    """
    try:
        client = get_client(ctx)
        count = await client.backup.import_data(
            json.loads(params.payload), await client.current_user_id()
        )
        return with_sync_warnings(client, success_message(f"Imported {count} record(s)."))

    except Exception as e:
        return handle_error(e, "import_data")


@mcp.tool(
    name="focusup_backup_to_remote",
    annotations={
        "title": "Backup To Remote Store",
        "readOnlyHint": False,
        "destructiveHint": False,
        "idempotentHint": True,
        "openWorldHint": True,
    },
)
async def focusup_backup_to_remote(ctx: Context) -> str:
    """
    Upload every synced record and the stats row to the remote store.

    Requires a signed-in account and a configured remote store.

    Returns:
        Success or error message.
    """
    try:
        client = get_client(ctx)
        sent = await client.backup.backup_to_remote(await client.current_user_id())
        return success_message(f"Backed up {sent} row(s).")

    except Exception as e:
        return handle_error(e, "backup_to_remote")


# =============================================================================
# Main Entry Point
# =============================================================================


def main():
    """Main entry point for the FocusUp MCP server."""
    mcp.run()


if __name__ == "__main__":
    main()
