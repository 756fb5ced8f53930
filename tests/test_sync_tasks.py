"""
Task Sync Tests.

This module tests the Sync Coordinator with the task collection:
- Local CRUD against the persistent cache (guest owners)
- Background inserts, updates and deletes for authenticated owners
- Failure handling (offline, constraint rejections, missing rows)
- Deletes that race an in-flight insert
- Refresh merging with remote-only rows and placeholder matching
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from focusup.constants import CacheCollection, SyncState, TaskPriority, is_authenticated_id
from focusup.exceptions import (
    FocusUpConstraintError,
    FocusUpNetworkError,
    FocusUpNotFoundError,
    FocusUpValidationError,
)
from focusup.sync import TASKS, IssueKind, SyncCoordinator
from tests.conftest import AUTH_ID, GUEST_ID, RowFactory

if TYPE_CHECKING:
    from focusup.cache import MemoryCache
    from tests.conftest import MockRemoteStore


pytestmark = [pytest.mark.sync, pytest.mark.unit]


# =============================================================================
# Local Operation Tests
# =============================================================================


class TestLocalTasks:
    """Cache-only behaviour for a guest owner."""

    async def test_create_task_is_local(self, coordinator: SyncCoordinator):
        task = await coordinator.create_task(GUEST_ID, "Write report", priority=TaskPriority.HIGH)

        assert task.id.startswith("task_")
        assert task.user_id == GUEST_ID
        assert task.sync_state == SyncState.LOCAL
        assert task.priority == TaskPriority.HIGH
        assert task.done is False

    async def test_new_tasks_go_first(self, coordinator: SyncCoordinator):
        first = await coordinator.create_task(GUEST_ID, "First")
        second = await coordinator.create_task(GUEST_ID, "Second")

        tasks = await coordinator.list_tasks(GUEST_ID)

        assert [t.id for t in tasks] == [second.id, first.id]

    async def test_tasks_survive_restart(self, coordinator: SyncCoordinator, cache: MemoryCache):
        task = await coordinator.create_task(GUEST_ID, "Persisted")

        restarted = SyncCoordinator(cache, refresh_delay=None)
        tasks = await restarted.list_tasks(GUEST_ID)

        assert [t.id for t in tasks] == [task.id]
        assert tasks[0].title == "Persisted"

    async def test_cache_key_is_scoped_by_owner(self, coordinator: SyncCoordinator, cache: MemoryCache):
        await coordinator.create_task(GUEST_ID, "Scoped")

        assert CacheCollection.TASKS.key(GUEST_ID) in cache.keys()

    async def test_owners_do_not_see_each_other(self, coordinator: SyncCoordinator):
        await coordinator.create_task(GUEST_ID, "Mine")

        assert await coordinator.list_tasks("guest_other") == []

    async def test_blank_title_rejected(self, coordinator: SyncCoordinator):
        with pytest.raises(FocusUpValidationError):
            await coordinator.create_task(GUEST_ID, "   ")

        assert await coordinator.list_tasks(GUEST_ID) == []

    async def test_update_task(self, coordinator: SyncCoordinator):
        task = await coordinator.create_task(GUEST_ID, "Draft")

        updated = await coordinator.update_task(GUEST_ID, task.id, {"title": "Final", "priority": "low"})

        assert updated.title == "Final"
        assert updated.priority == TaskPriority.LOW
        assert (await coordinator.get_task(GUEST_ID, task.id)).title == "Final"

    async def test_update_ignores_protected_fields(self, coordinator: SyncCoordinator):
        task = await coordinator.create_task(GUEST_ID, "Mine")

        updated = await coordinator.update_task(GUEST_ID, task.id, {"user_id": "guest_thief", "id": "x"})

        assert updated.id == task.id
        assert updated.user_id == GUEST_ID

    async def test_done_sets_completed_at(self, coordinator: SyncCoordinator):
        task = await coordinator.create_task(GUEST_ID, "Finish me")

        done = await coordinator.set_task_done(GUEST_ID, task.id, True)
        assert done.done is True
        assert done.completed_at is not None

        reopened = await coordinator.set_task_done(GUEST_ID, task.id, False)
        assert reopened.done is False
        assert reopened.completed_at is None

    async def test_update_missing_task_raises(self, coordinator: SyncCoordinator):
        with pytest.raises(FocusUpNotFoundError):
            await coordinator.update_task(GUEST_ID, "task_missing", {"title": "Nope"})

    async def test_delete_task(self, coordinator: SyncCoordinator):
        task = await coordinator.create_task(GUEST_ID, "Temporary")

        assert await coordinator.delete_task(GUEST_ID, task.id) is True
        assert await coordinator.list_tasks(GUEST_ID) == []

    async def test_delete_missing_task_returns_false(self, coordinator: SyncCoordinator):
        assert await coordinator.delete_task(GUEST_ID, "task_missing") is False

    async def test_guest_never_touches_remote(self, cache: MemoryCache, mock_remote: MockRemoteStore):
        coordinator = SyncCoordinator(cache, mock_remote, refresh_delay=None)

        task = await coordinator.create_task(GUEST_ID, "Guest-only note")
        await coordinator.refresh_all(GUEST_ID)
        await coordinator.flush()

        assert task.sync_state == SyncState.LOCAL
        assert mock_remote.call_history == []

    async def test_changes_are_published(self, coordinator: SyncCoordinator):
        seen = []
        unsubscribe = coordinator.changes.subscribe(seen.append)

        await coordinator.create_task(GUEST_ID, "Observed")
        unsubscribe()
        await coordinator.create_task(GUEST_ID, "Unobserved")

        assert len(seen) == 1
        assert seen[0].collection == "tasks"
        assert seen[0].size == 1

    async def test_cache_write_failure_keeps_memory(
        self, coordinator: SyncCoordinator, cache: MemoryCache, monkeypatch
    ):
        async def failing_set_many(items):
            raise OSError("disk full")

        monkeypatch.setattr(cache, "set_many", failing_set_many)

        task = await coordinator.create_task(GUEST_ID, "Kept in memory")

        assert [t.id for t in await coordinator.list_tasks(GUEST_ID)] == [task.id]
        issue = coordinator.issues.value[-1]
        assert issue.kind == IssueKind.CACHE
        assert "disk full" in issue.message


# =============================================================================
# Remote Push Tests
# =============================================================================


class TestRemotePush:
    """Background pushes for an authenticated owner."""

    async def test_insert_swaps_placeholder_id(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        task = await remote_coordinator.create_task(AUTH_ID, "Sync me")
        assert task.sync_state == SyncState.PENDING

        await remote_coordinator.flush()

        tasks = await remote_coordinator.list_tasks(AUTH_ID)
        assert len(tasks) == 1
        assert is_authenticated_id(tasks[0].id)
        assert tasks[0].sync_state == SyncState.SYNCED
        assert mock_remote.rows("tasks")[0]["id"] == tasks[0].id

    async def test_placeholder_never_sent(self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore):
        await remote_coordinator.create_task(AUTH_ID, "Sync me")
        await remote_coordinator.flush()

        (table, row), _ = mock_remote.get_calls("insert")[0]
        assert table == "tasks"
        assert is_authenticated_id(row["id"])
        assert "sync_state" not in row
        assert "remote_id" not in row

    async def test_old_id_still_resolves(self, remote_coordinator: SyncCoordinator):
        task = await remote_coordinator.create_task(AUTH_ID, "Aliased")
        await remote_coordinator.flush()

        found = await remote_coordinator.get_task(AUTH_ID, task.id)

        assert found is not None
        assert found.id != task.id
        assert found.title == "Aliased"

    async def test_offline_insert_kept_and_retried(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        mock_remote.offline = True
        task = await remote_coordinator.create_task(AUTH_ID, "Offline")
        await remote_coordinator.flush()

        current = await remote_coordinator.get_task(AUTH_ID, task.id)
        assert current.id == task.id
        assert current.sync_state == SyncState.PENDING
        assert remote_coordinator.issues.value[-1].kind == IssueKind.NETWORK

        mock_remote.offline = False
        await remote_coordinator.refresh_all(AUTH_ID)
        await remote_coordinator.flush()

        tasks = await remote_coordinator.list_tasks(AUTH_ID)
        assert len(tasks) == 1
        assert tasks[0].sync_state == SyncState.SYNCED
        assert len(mock_remote.rows("tasks")) == 1

    async def test_update_pushed(self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore):
        task = await remote_coordinator.create_task(AUTH_ID, "Before")
        await remote_coordinator.flush()
        task = await remote_coordinator.get_task(AUTH_ID, task.id)

        updated = await remote_coordinator.update_task(AUTH_ID, task.id, {"title": "After"})
        assert updated.sync_state == SyncState.DIRTY
        await remote_coordinator.flush()

        assert (await remote_coordinator.get_task(AUTH_ID, task.id)).sync_state == SyncState.SYNCED
        assert mock_remote.rows("tasks")[0]["title"] == "After"

    async def test_failed_update_keeps_local_value(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        task = await remote_coordinator.create_task(AUTH_ID, "Before")
        await remote_coordinator.flush()

        mock_remote.should_fail["update"] = FocusUpNetworkError("offline")
        await remote_coordinator.update_task(AUTH_ID, task.id, {"title": "After"})
        await remote_coordinator.refresh_all(AUTH_ID)
        await remote_coordinator.flush()

        current = await remote_coordinator.get_task(AUTH_ID, task.id)
        assert current.title == "After"
        assert current.sync_state == SyncState.DIRTY
        assert mock_remote.rows("tasks")[0]["title"] == "Before"

    async def test_constraint_rejection_is_reported(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        mock_remote.should_fail["insert"] = FocusUpConstraintError("duplicate key", code="23505")

        task = await remote_coordinator.create_task(AUTH_ID, "Rejected")
        await remote_coordinator.flush()

        current = await remote_coordinator.get_task(AUTH_ID, task.id)
        assert current is not None
        assert current.sync_state == SyncState.PENDING
        issue = remote_coordinator.issues.value[-1]
        assert issue.kind == IssueKind.CONSTRAINT
        assert issue.record_id == task.id

    async def test_update_of_missing_row_is_not_an_issue(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        task = await remote_coordinator.create_task(AUTH_ID, "Deleted elsewhere")
        await remote_coordinator.flush()
        mock_remote.tables["tasks"].clear()

        await remote_coordinator.update_task(AUTH_ID, task.id, {"title": "Edited"})
        await remote_coordinator.flush()
        assert remote_coordinator.issues.value == []

        await remote_coordinator.refresh_all(AUTH_ID)
        assert await remote_coordinator.list_tasks(AUTH_ID) == []

    async def test_edit_during_insert_is_pushed(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        gate = mock_remote.hold("insert")
        task = await remote_coordinator.create_task(AUTH_ID, "Original")
        await mock_remote.wait_for_call("insert")

        await remote_coordinator.update_task(AUTH_ID, task.id, {"title": "Edited"})
        gate.set()
        await remote_coordinator.flush()

        current = await remote_coordinator.get_task(AUTH_ID, task.id)
        assert current.title == "Edited"
        assert current.sync_state == SyncState.SYNCED
        mock_remote.assert_called("update", times=1)
        assert mock_remote.rows("tasks")[0]["title"] == "Edited"

    async def test_lost_insert_response_leaves_one_row(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        mock_remote.lost_responses.add("insert")
        task = await remote_coordinator.create_task(AUTH_ID, "Write report")
        await remote_coordinator.flush()

        assert len(mock_remote.rows("tasks")) == 1
        assert (await remote_coordinator.get_task(AUTH_ID, task.id)).sync_state == SyncState.PENDING

        mock_remote.lost_responses.clear()
        await remote_coordinator.refresh_all(AUTH_ID)
        await remote_coordinator.flush()

        tasks = await remote_coordinator.list_tasks(AUTH_ID)
        assert [t.title for t in tasks] == ["Write report"]
        assert [r["id"] for r in mock_remote.rows("tasks")] == [tasks[0].id]
        assert tasks[0].sync_state == SyncState.SYNCED
        # The retry rewrote the row it had already sent.
        mock_remote.assert_called("insert", times=1)
        mock_remote.assert_called("upsert", times=1)

    async def test_refresh_adopts_row_written_by_lost_insert(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        mock_remote.lost_responses.update({"insert", "upsert"})
        task = await remote_coordinator.create_task(AUTH_ID, "Write report")
        await remote_coordinator.flush()

        await remote_coordinator.refresh_all(AUTH_ID)
        await remote_coordinator.flush()

        rows = mock_remote.rows("tasks")
        tasks = await remote_coordinator.list_tasks(AUTH_ID)
        assert len(rows) == 1
        assert [t.id for t in tasks] == [rows[0]["id"]]
        assert tasks[0].sync_state == SyncState.SYNCED
        assert (await remote_coordinator.get_task(AUTH_ID, task.id)).id == rows[0]["id"]

    async def test_reserved_id_survives_restart(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore, cache: MemoryCache
    ):
        mock_remote.lost_responses.add("insert")
        await remote_coordinator.create_task(AUTH_ID, "Write report")
        await remote_coordinator.flush()
        mock_remote.lost_responses.clear()

        restarted = SyncCoordinator(cache, mock_remote, refresh_delay=None)
        await restarted.refresh_all(AUTH_ID)
        await restarted.flush()

        assert len(mock_remote.rows("tasks")) == 1
        tasks = await restarted.list_tasks(AUTH_ID)
        assert [t.id for t in tasks] == [mock_remote.rows("tasks")[0]["id"]]


# =============================================================================
# Delete Tests
# =============================================================================


class TestRemoteDelete:
    """Deletes, tombstones and deletes racing an insert."""

    async def test_delete_synced_task(self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore):
        task = await remote_coordinator.create_task(AUTH_ID, "Doomed")
        await remote_coordinator.flush()

        assert await remote_coordinator.delete_task(AUTH_ID, task.id) is True
        await remote_coordinator.flush()

        assert mock_remote.rows("tasks") == []
        assert await remote_coordinator.list_tasks(AUTH_ID) == []

    async def test_failed_delete_is_not_resurrected(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore, cache: MemoryCache
    ):
        task = await remote_coordinator.create_task(AUTH_ID, "Doomed")
        await remote_coordinator.flush()
        remote_id = (await remote_coordinator.get_task(AUTH_ID, task.id)).id

        mock_remote.should_fail["delete"] = FocusUpNetworkError("offline")
        await remote_coordinator.delete_task(AUTH_ID, remote_id)
        await remote_coordinator.flush()
        await remote_coordinator.refresh_all(AUTH_ID)

        assert await remote_coordinator.list_tasks(AUTH_ID) == []
        assert len(mock_remote.rows("tasks")) == 1
        restarted = SyncCoordinator(cache, refresh_delay=None)
        assert remote_id in (await restarted.load(AUTH_ID)).tombstoned(TASKS)

        mock_remote.should_fail.clear()
        await remote_coordinator.refresh_all(AUTH_ID)

        assert mock_remote.rows("tasks") == []
        assert await remote_coordinator.list_tasks(AUTH_ID) == []

    async def test_delete_during_insert(self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore):
        gate = mock_remote.hold("insert")
        task = await remote_coordinator.create_task(AUTH_ID, "Short lived")
        await mock_remote.wait_for_call("insert")

        assert await remote_coordinator.delete_task(AUTH_ID, task.id) is True
        gate.set()
        await remote_coordinator.flush()

        assert mock_remote.rows("tasks") == []
        mock_remote.assert_called("delete", times=1)

        await remote_coordinator.refresh_all(AUTH_ID)
        assert await remote_coordinator.list_tasks(AUTH_ID) == []

    async def test_delete_after_lost_insert_response(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        mock_remote.lost_responses.add("insert")
        task = await remote_coordinator.create_task(AUTH_ID, "Write report")
        await remote_coordinator.flush()
        mock_remote.lost_responses.clear()

        assert await remote_coordinator.delete_task(AUTH_ID, task.id) is True
        await remote_coordinator.flush()

        assert mock_remote.rows("tasks") == []
        await remote_coordinator.refresh_all(AUTH_ID)
        assert await remote_coordinator.list_tasks(AUTH_ID) == []

    async def test_offline_delete_after_lost_insert_response(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        mock_remote.lost_responses.add("insert")
        task = await remote_coordinator.create_task(AUTH_ID, "Write report")
        await remote_coordinator.flush()
        mock_remote.lost_responses.clear()

        mock_remote.offline = True
        await remote_coordinator.delete_task(AUTH_ID, task.id)
        await remote_coordinator.flush()
        assert len(mock_remote.rows("tasks")) == 1

        mock_remote.offline = False
        await remote_coordinator.refresh_all(AUTH_ID)
        await remote_coordinator.flush()

        assert mock_remote.rows("tasks") == []
        assert await remote_coordinator.list_tasks(AUTH_ID) == []

    async def test_delete_during_insert_with_lost_response(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        gate = mock_remote.hold("insert")
        mock_remote.lost_responses.add("insert")
        task = await remote_coordinator.create_task(AUTH_ID, "Write report")
        await mock_remote.wait_for_call("insert")

        await remote_coordinator.delete_task(AUTH_ID, task.id)
        gate.set()
        await remote_coordinator.flush()
        assert len(mock_remote.rows("tasks")) == 1

        mock_remote.lost_responses.clear()
        await remote_coordinator.refresh_all(AUTH_ID)
        await remote_coordinator.flush()

        assert mock_remote.rows("tasks") == []
        assert await remote_coordinator.list_tasks(AUTH_ID) == []


# =============================================================================
# Refresh Tests
# =============================================================================


class TestRefresh:
    """Merging the remote collection back in."""

    async def test_remote_only_rows_are_added(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        row = mock_remote.seed("tasks", **RowFactory.task(title="From another device"))

        await remote_coordinator.refresh_all(AUTH_ID)

        tasks = await remote_coordinator.list_tasks(AUTH_ID)
        assert [t.id for t in tasks] == [row["id"]]
        assert tasks[0].sync_state == SyncState.SYNCED

    async def test_remote_edit_wins_over_synced_copy(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        row = mock_remote.seed("tasks", **RowFactory.task(title="Old"))
        await remote_coordinator.refresh_all(AUTH_ID)

        mock_remote.tables["tasks"][row["id"]]["title"] = "New"
        await remote_coordinator.refresh_all(AUTH_ID)

        assert (await remote_coordinator.get_task(AUTH_ID, row["id"])).title == "New"

    async def test_remote_delete_drops_synced_copy(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        row = mock_remote.seed("tasks", **RowFactory.task(title="Gone soon"))
        await remote_coordinator.refresh_all(AUTH_ID)

        mock_remote.tables["tasks"].clear()
        await remote_coordinator.refresh_all(AUTH_ID)

        assert await remote_coordinator.get_task(AUTH_ID, row["id"]) is None

    async def test_refresh_offline_leaves_state_alone(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        mock_remote.seed("tasks", **RowFactory.task(title="Known"))
        await remote_coordinator.refresh_all(AUTH_ID)
        before = await remote_coordinator.list_tasks(AUTH_ID)

        mock_remote.offline = True
        await remote_coordinator.refresh_all(AUTH_ID)

        assert await remote_coordinator.list_tasks(AUTH_ID) == before

    async def test_placeholder_matched_by_natural_key(
        self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore
    ):
        # The insert never got through, and a row with the same title was
        # created at the same moment.
        mock_remote.should_fail["insert"] = FocusUpNetworkError("offline")
        mock_remote.should_fail["upsert"] = FocusUpNetworkError("offline")
        task = await remote_coordinator.create_task(AUTH_ID, "Read a book")
        await remote_coordinator.flush()
        row = mock_remote.seed("tasks", **RowFactory.task(title="Read a book"))

        await remote_coordinator.refresh_all(AUTH_ID)

        tasks = await remote_coordinator.list_tasks(AUTH_ID)
        assert [t.id for t in tasks] == [row["id"]]
        assert tasks[0].sync_state == SyncState.SYNCED
        assert (await remote_coordinator.get_task(AUTH_ID, task.id)).id == row["id"]

    async def test_refresh_is_idempotent(self, remote_coordinator: SyncCoordinator, mock_remote: MockRemoteStore):
        mock_remote.seed("tasks", **RowFactory.task(title="One"))
        await remote_coordinator.create_task(AUTH_ID, "Two")
        await remote_coordinator.flush()

        await remote_coordinator.refresh_all(AUTH_ID)
        first = [(t.id, t.title) for t in await remote_coordinator.list_tasks(AUTH_ID)]
        await remote_coordinator.refresh_all(AUTH_ID)
        second = [(t.id, t.title) for t in await remote_coordinator.list_tasks(AUTH_ID)]

        assert first == second
        assert len(first) == 2
