"""
Pytest Configuration and Fixtures for FocusUp Tests.

This module provides fixtures, mock factories, and shared utilities for
testing the sync layer, the reward pipeline and the client facade.

Architecture:
    - MockRemoteStore: In-memory stand-in for RemoteStore with call
      recording, injectable failures, gates and response latency
    - FixedClock: Controllable clock for the Daily Tracker
    - Factories: Generate remote rows for seeding
    - Fixtures: Coordinators (cache-only and remote), reward services,
      orchestrator, identity services and clients
"""

from __future__ import annotations

import asyncio
import random
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Optional

import pytest

from focusup.backup import BackupService
from focusup.cache import MemoryCache
from focusup.client import FocusUpClient
from focusup.exceptions import FocusUpConstraintError, FocusUpNetworkError, FocusUpNotFoundError
from focusup.identity import IdentityMigrationService, IdentityStore
from focusup.rewards import DailyTracker, RewardEngine, RewardService
from focusup.sessions import SessionCompletionOrchestrator
from focusup.sync import SyncCoordinator

AUTH_ID = "00000000-0000-4000-8000-000000000001"
OTHER_AUTH_ID = "00000000-0000-4000-8000-000000000002"
GUEST_ID = "guest_1718000000000_k3j9x0a1b"


# =============================================================================
# Pytest Configuration
# =============================================================================


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "sync: Sync coordinator and merge tests")
    config.addinivalue_line("markers", "rewards: Reward engine, levels and tracker tests")
    config.addinivalue_line("markers", "sessions: Focus session completion tests")
    config.addinivalue_line("markers", "identity: Guest identity and migration tests")
    config.addinivalue_line("markers", "remote: Remote store client tests")
    config.addinivalue_line("markers", "lifecycle: Client lifecycle tests")


# =============================================================================
# Time Utilities
# =============================================================================


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


class FixedClock:
    """Clock that only moves when told to. Starts today at local noon."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime.now().astimezone().replace(
            hour=12, minute=0, second=0, microsecond=0
        )

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


async def settle(rounds: int = 10) -> None:
    """Let spawned background tasks run up to their next real wait."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# =============================================================================
# Row Factories
# =============================================================================


class RowFactory:
    """Factory for remote rows as the backend would return them."""

    @staticmethod
    def task(user_id: str = AUTH_ID, title: str = "Test Task", **kwargs) -> dict[str, Any]:
        return {
            "user_id": user_id,
            "title": title,
            "description": None,
            "deadline_at": None,
            "done": False,
            "completed_at": None,
            "priority": "medium",
            "created_at": utc_now().isoformat(),
            **kwargs,
        }

    @staticmethod
    def habit(user_id: str = AUTH_ID, title: str = "Morning run", focus_attribute: str = "PH", **kwargs) -> dict[str, Any]:
        return {
            "user_id": user_id,
            "title": title,
            "cue": None,
            "focus_attribute": focus_attribute,
            "created_at": utc_now().isoformat(),
            **kwargs,
        }

    @staticmethod
    def stats(user_id: str = AUTH_ID, **kwargs) -> dict[str, Any]:
        return {
            "user_id": user_id,
            "total_coins": 0,
            "current_streak": 0,
            "longest_streak": 0,
            "total_focus_time": 0,
            "total_sessions": 0,
            "total_sprints": 0,
            "attributes": {"PH": 0, "CO": 0, "EM": 0, "SO": 0},
            "last_streak_date": None,
            **kwargs,
        }


# =============================================================================
# Mock Remote Store
# =============================================================================


def _table_name(table: Any) -> str:
    return getattr(table, "value", table)


def _matches(row: dict[str, Any], filters: dict[str, Any]) -> bool:
    return all(str(row.get(column)) == str(value) for column, value in filters.items())


class MockRemoteStore:
    """
    In-memory mock for RemoteStore.

    Requests are applied in the order they are made. A gate registered
    for a method holds its calls before they are applied; ``latency``
    delays the response after the row change has happened, so a fetch
    can observe a write whose caller has not heard back yet. Methods in
    ``lost_responses`` (or a random share of writes, with ``loss_rate``)
    apply their change and then fail as if the connection dropped.
    """

    def __init__(self):
        """Initialize mock with empty tables."""
        self.tables: dict[str, dict[str, dict[str, Any]]] = {}
        self.access_token: Optional[str] = None
        self.closed = False

        # Track method calls for verification
        self.call_history: list[tuple[str, tuple, dict]] = []

        # Configurable behaviors
        self.should_fail: dict[str, Exception | None] = {}
        self.offline = False
        self.gates: dict[str, asyncio.Event] = {}
        self.latency = 0
        self.rng: Optional[random.Random] = None
        self.lost_responses: set[str] = set()
        self.loss_rate = 0.0

    def _record_call(self, method: str, args: tuple, kwargs: dict) -> None:
        """Record method call for verification."""
        self.call_history.append((method, args, kwargs))

    def _check_failure(self, method: str) -> None:
        """Check if method should raise an exception."""
        if self.offline:
            raise FocusUpNetworkError("Remote store unreachable", operation=method)
        if method in self.should_fail and self.should_fail[method]:
            raise self.should_fail[method]

    async def _enter(self, method: str, args: tuple, kwargs: dict) -> None:
        self._record_call(method, args, kwargs)
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()
        self._check_failure(method)

    async def _respond(self, result: Any, method: Optional[str] = None) -> Any:
        if self.latency:
            steps = self.rng.randint(0, self.latency) if self.rng else self.latency
            for _ in range(steps):
                await asyncio.sleep(0)
        if method is not None and self._loses_response(method):
            raise FocusUpNetworkError("Connection dropped before the response arrived", operation=method)
        return result

    def _loses_response(self, method: str) -> bool:
        if method in self.lost_responses:
            return True
        return self.rng is not None and self.loss_rate > 0 and self.rng.random() < self.loss_rate

    def _table(self, table: Any) -> dict[str, dict[str, Any]]:
        return self.tables.setdefault(_table_name(table), {})

    def _insert_row(self, table: Any, row: dict[str, Any]) -> dict[str, Any]:
        stored = dict(row)
        stored["id"] = str(stored.get("id") or uuid.uuid4())
        stored.setdefault("created_at", utc_now().isoformat())
        self._table(table)[stored["id"]] = stored
        return dict(stored)

    def _select(self, table: Any, filters: dict[str, Any]) -> list[dict[str, Any]]:
        rows = [dict(r) for r in self._table(table).values() if _matches(r, filters)]
        return sorted(rows, key=lambda r: str(r.get("created_at")), reverse=True)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def close(self) -> None:
        self._record_call("close", (), {})
        self.closed = True

    def set_access_token(self, token: Optional[str]) -> None:
        self._record_call("set_access_token", (token,), {})
        self.access_token = token

    # -------------------------------------------------------------------------
    # Row Operations
    # -------------------------------------------------------------------------

    async def insert(self, table: Any, row: dict[str, Any]) -> dict[str, Any]:
        await self._enter("insert", (_table_name(table), dict(row)), {})
        if row.get("id") in self._table(table):
            raise FocusUpConstraintError("duplicate key value violates unique constraint", code="23505")
        return await self._respond(self._insert_row(table, row), "insert")

    async def upsert(
        self,
        table: Any,
        rows: dict[str, Any] | list[dict[str, Any]],
        on_conflict: str = "id",
    ) -> list[dict[str, Any]]:
        await self._enter("upsert", (_table_name(table), rows), {"on_conflict": on_conflict})
        keys = on_conflict.split(",")
        result = []
        for row in rows if isinstance(rows, list) else [rows]:
            existing = next(
                (r for r in self._table(table).values() if all(r.get(k) == row.get(k) for k in keys)),
                None,
            )
            if existing is not None:
                existing.update(row)
                result.append(dict(existing))
            else:
                result.append(self._insert_row(table, row))
        return await self._respond(result, "upsert")

    async def update(self, table: Any, row_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        await self._enter("update", (_table_name(table), row_id, dict(patch)), {})
        row = self._table(table).get(row_id)
        if row is None:
            raise FocusUpNotFoundError(f"No {_table_name(table)} row with id {row_id}", operation="update")
        row.update(patch)
        return await self._respond(dict(row), "update")

    async def update_where(
        self,
        table: Any,
        filters: dict[str, Any],
        patch: dict[str, Any],
    ) -> list[dict[str, Any]]:
        await self._enter("update_where", (_table_name(table), dict(filters), dict(patch)), {})
        updated = []
        for row in self._table(table).values():
            if _matches(row, filters):
                row.update(patch)
                updated.append(dict(row))
        return await self._respond(updated, "update_where")

    async def delete(self, table: Any, row_id: str) -> None:
        await self._enter("delete", (_table_name(table), row_id), {})
        if self._table(table).pop(row_id, None) is None:
            raise FocusUpNotFoundError(f"No {_table_name(table)} row with id {row_id}", operation="delete")
        await self._respond(None, "delete")

    async def delete_where(self, table: Any, filters: dict[str, Any]) -> int:
        await self._enter("delete_where", (_table_name(table), dict(filters)), {})
        doomed = [row_id for row_id, row in self._table(table).items() if _matches(row, filters)]
        for row_id in doomed:
            del self._table(table)[row_id]
        return await self._respond(len(doomed), "delete_where")

    async def select_where(
        self,
        table: Any,
        filters: dict[str, Any],
        order: Optional[str] = None,
    ) -> list[dict[str, Any]]:
        await self._enter("select_where", (_table_name(table), dict(filters)), {"order": order})
        return await self._respond(self._select(table, filters))

    async def select_by_owner(
        self,
        table: Any,
        owner_id: str,
        order: Optional[str] = "created_at.desc",
    ) -> list[dict[str, Any]]:
        await self._enter("select_by_owner", (_table_name(table), owner_id), {"order": order})
        return await self._respond(self._select(table, {"user_id": owner_id}))

    # -------------------------------------------------------------------------
    # Test Helpers
    # -------------------------------------------------------------------------

    def seed(self, table: Any, **fields) -> dict[str, Any]:
        """Insert a row directly, without recording a call."""
        return self._insert_row(table, fields)

    def rows(self, table: Any, **filters) -> list[dict[str, Any]]:
        """Current rows of ``table``, optionally filtered by column equality."""
        return self._select(table, filters)

    def hold(self, method: str) -> asyncio.Event:
        """Block calls to ``method`` until the returned event is set."""
        gate = asyncio.Event()
        self.gates[method] = gate
        return gate

    def release_all(self) -> None:
        for gate in self.gates.values():
            gate.set()

    async def wait_for_call(self, method: str, times: int = 1, rounds: int = 200) -> None:
        """Yield to the event loop until ``method`` has been called ``times`` times."""
        for _ in range(rounds):
            if len(self.get_calls(method)) >= times:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"{method} was not called {times} times")

    def clear_call_history(self) -> None:
        """Clear recorded method calls."""
        self.call_history.clear()

    def get_calls(self, method_name: str) -> list[tuple[tuple, dict]]:
        """Get all calls to a specific method."""
        return [(args, kwargs) for name, args, kwargs in self.call_history if name == method_name]

    def assert_called(self, method_name: str, times: int | None = None) -> None:
        """Assert a method was called (optionally a specific number of times)."""
        calls = self.get_calls(method_name)
        if times is not None:
            assert len(calls) == times, f"Expected {method_name} to be called {times} times, got {len(calls)}"
        else:
            assert len(calls) > 0, f"Expected {method_name} to be called at least once"

    def assert_not_called(self, method_name: str) -> None:
        """Assert a method was not called."""
        calls = self.get_calls(method_name)
        assert len(calls) == 0, f"Expected {method_name} not to be called, but was called {len(calls)} times"


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def cache() -> MemoryCache:
    """Fresh in-memory persistent cache."""
    return MemoryCache()


@pytest.fixture
def mock_remote() -> MockRemoteStore:
    """Create a fresh mock remote store."""
    return MockRemoteStore()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
async def coordinator(cache: MemoryCache) -> AsyncIterator[SyncCoordinator]:
    """Cache-only coordinator."""
    coordinator = SyncCoordinator(cache, refresh_delay=None)
    yield coordinator
    await coordinator.close()


@pytest.fixture
async def remote_coordinator(
    cache: MemoryCache,
    mock_remote: MockRemoteStore,
) -> AsyncIterator[SyncCoordinator]:
    """
    Coordinator backed by the mock remote store.

    The delayed refresh is disabled so every remote call in a test is one
    the test asked for; gates left closed are opened at teardown.
    """
    coordinator = SyncCoordinator(cache, mock_remote, refresh_delay=None)
    yield coordinator
    mock_remote.release_all()
    await coordinator.close()


@pytest.fixture
def tracker(cache: MemoryCache, clock: FixedClock) -> DailyTracker:
    return DailyTracker(cache, clock=clock)


@pytest.fixture
def engine() -> RewardEngine:
    return RewardEngine()


@pytest.fixture
def reward_service(coordinator: SyncCoordinator, tracker: DailyTracker, engine: RewardEngine) -> RewardService:
    return RewardService(coordinator, tracker, engine)


@pytest.fixture
def orchestrator(
    coordinator: SyncCoordinator,
    tracker: DailyTracker,
    engine: RewardEngine,
) -> SessionCompletionOrchestrator:
    return SessionCompletionOrchestrator(coordinator, tracker, engine)


@pytest.fixture
def migration(remote_coordinator: SyncCoordinator, tracker: DailyTracker) -> IdentityMigrationService:
    return IdentityMigrationService(remote_coordinator, tracker)


@pytest.fixture
def identity(cache: MemoryCache, migration: IdentityMigrationService) -> IdentityStore:
    return IdentityStore(cache, migration)


@pytest.fixture
def backup(coordinator: SyncCoordinator, tracker: DailyTracker) -> BackupService:
    return BackupService(coordinator, tracker)


@pytest.fixture
async def client(cache: MemoryCache) -> AsyncIterator[FocusUpClient]:
    """Cache-only client acting as a guest."""
    client = FocusUpClient(cache, refresh_delay=None)
    await client.connect()
    yield client
    await client.disconnect()


@pytest.fixture
async def remote_client(cache: MemoryCache, mock_remote: MockRemoteStore) -> AsyncIterator[FocusUpClient]:
    """Client backed by the mock remote store, starting as a guest."""
    client = FocusUpClient(cache, mock_remote, refresh_delay=None)
    await client.connect()
    yield client
    mock_remote.release_all()
    await client.disconnect()
