"""
Remote Store Client Tests.

This module tests the PostgREST client against an httpx mock transport:
- Request shape: path, headers, filters and ordering
- Status and error-code mapping onto the exception hierarchy
- Transport failures becoming network errors
"""

from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from focusup.constants import Table
from focusup.exceptions import (
    FocusUpAuthenticationError,
    FocusUpConstraintError,
    FocusUpNetworkError,
    FocusUpNotFoundError,
    FocusUpRemoteError,
)
from focusup.remote import RemoteStore
from tests.conftest import AUTH_ID


pytestmark = [pytest.mark.remote, pytest.mark.unit]


BASE_URL = "https://focusup.example.co"


class Recorder:
    """Mock transport handler that records requests and replays one response."""

    def __init__(self, status: int = 200, body: Any = None, error: Exception | None = None) -> None:
        self.status = status
        self.body = [] if body is None else body
        self.error = error
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status, json=self.body)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


@pytest.fixture
def make_store() -> Callable[..., tuple[RemoteStore, Recorder]]:
    def factory(**kwargs) -> tuple[RemoteStore, Recorder]:
        recorder = Recorder(**kwargs)
        store = RemoteStore(BASE_URL + "/", "anon-key", transport=httpx.MockTransport(recorder))
        return store, recorder

    return factory


# =============================================================================
# Request Shape
# =============================================================================


class TestRequests:
    """What goes over the wire."""

    async def test_select_by_owner(self, make_store):
        store, recorder = make_store(body=[{"id": "1"}])

        rows = await store.select_by_owner(Table.TASKS, AUTH_ID)

        assert rows == [{"id": "1"}]
        request = recorder.last
        assert request.method == "GET"
        assert request.url.path == "/rest/v1/tasks"
        assert request.url.params["user_id"] == f"eq.{AUTH_ID}"
        assert request.url.params["order"] == "created_at.desc"
        assert request.url.params["select"] == "*"
        await store.close()

    async def test_anon_key_headers(self, make_store):
        store, recorder = make_store()

        await store.select_where("habits", {"id": "h1"})

        assert recorder.last.headers["apikey"] == "anon-key"
        assert recorder.last.headers["Authorization"] == "Bearer anon-key"
        await store.close()

    async def test_access_token_header(self, make_store):
        store, recorder = make_store()
        store.set_access_token("user-token")

        await store.select_where("habits", {"id": "h1"})
        assert recorder.last.headers["Authorization"] == "Bearer user-token"

        store.set_access_token(None)
        await store.select_where("habits", {"id": "h1"})
        assert recorder.last.headers["Authorization"] == "Bearer anon-key"
        await store.close()

    async def test_insert_returns_created_row(self, make_store):
        store, recorder = make_store(status=201, body=[{"id": "row-1", "title": "Read"}])

        row = await store.insert(Table.TASKS, {"user_id": AUTH_ID, "title": "Read"})

        assert row == {"id": "row-1", "title": "Read"}
        assert recorder.last.method == "POST"
        assert recorder.last.headers["Prefer"] == "return=representation"
        assert json.loads(recorder.last.content) == {"user_id": AUTH_ID, "title": "Read"}
        await store.close()

    async def test_insert_without_row_fails(self, make_store):
        store, _ = make_store(status=201, body=[])

        with pytest.raises(FocusUpRemoteError):
            await store.insert(Table.TASKS, {"title": "Read"})
        await store.close()

    async def test_upsert_conflict_target(self, make_store):
        store, recorder = make_store(body=[{"user_id": AUTH_ID}])

        await store.upsert(Table.USER_STATS, {"user_id": AUTH_ID}, on_conflict="user_id")

        assert recorder.last.url.params["on_conflict"] == "user_id"
        assert "merge-duplicates" in recorder.last.headers["Prefer"]
        await store.close()

    async def test_update_where_filters(self, make_store):
        store, recorder = make_store(body=[{"id": "1"}, {"id": "2"}])

        rows = await store.update_where("tasks", {"user_id": "guest_1"}, {"user_id": AUTH_ID})

        assert len(rows) == 2
        assert recorder.last.method == "PATCH"
        assert recorder.last.url.params["user_id"] == "eq.guest_1"
        await store.close()

    async def test_delete_where_counts_rows(self, make_store):
        store, recorder = make_store(body=[{"id": "1"}, {"id": "2"}, {"id": "3"}])

        assert await store.delete_where("tasks", {"user_id": AUTH_ID}) == 3
        assert recorder.last.method == "DELETE"
        await store.close()

    async def test_update_nothing_matched(self, make_store):
        store, _ = make_store(body=[])

        with pytest.raises(FocusUpNotFoundError):
            await store.update("tasks", "missing", {"title": "x"})
        await store.close()

    async def test_delete_nothing_matched(self, make_store):
        store, _ = make_store(body=[])

        with pytest.raises(FocusUpNotFoundError):
            await store.delete("tasks", "missing")
        await store.close()

    async def test_context_manager(self):
        recorder = Recorder()
        async with RemoteStore(BASE_URL, "anon-key", transport=httpx.MockTransport(recorder)) as store:
            await store.select_where("tasks", {})

        assert len(recorder.requests) == 1


# =============================================================================
# Error Mapping
# =============================================================================


class TestErrors:
    """Status codes and PostgREST error codes."""

    @pytest.mark.parametrize(
        "status,body,expected",
        [
            (401, {"message": "JWT expired"}, FocusUpAuthenticationError),
            (403, {"message": "permission denied"}, FocusUpAuthenticationError),
            (404, {"message": "relation does not exist"}, FocusUpNotFoundError),
            (406, {"code": "PGRST116", "message": "no rows"}, FocusUpNotFoundError),
            (409, {"message": "conflict"}, FocusUpConstraintError),
            (400, {"code": "23505", "message": "duplicate key"}, FocusUpConstraintError),
            (400, {"code": "23503", "message": "foreign key"}, FocusUpConstraintError),
        ],
    )
    async def test_mapped_errors(self, make_store, status, body, expected):
        store, _ = make_store(status=status, body=body)

        with pytest.raises(expected) as exc_info:
            await store.select_where("tasks", {"id": "1"})

        assert exc_info.value.status_code == status
        assert exc_info.value.message == body["message"]
        await store.close()

    async def test_server_error_is_plain_remote_error(self, make_store):
        store, _ = make_store(status=500, body={"message": "boom", "code": "XX000"})

        with pytest.raises(FocusUpRemoteError) as exc_info:
            await store.select_where("tasks", {})

        assert type(exc_info.value) is FocusUpRemoteError
        assert exc_info.value.code == "XX000"
        assert exc_info.value.operation == "select:tasks"
        await store.close()

    @pytest.mark.parametrize(
        "error",
        [
            httpx.ConnectError("connection refused"),
            httpx.ReadTimeout("read timed out"),
        ],
    )
    async def test_transport_failures_are_network_errors(self, make_store, error):
        store, _ = make_store(error=error)

        with pytest.raises(FocusUpNetworkError):
            await store.insert("tasks", {"title": "Read"})
        await store.close()
