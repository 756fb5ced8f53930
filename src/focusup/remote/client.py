"""
Remote Store Client.

Row-level CRUD against the hosted relational backend through its
PostgREST interface. Every table is scoped by a ``user_id`` foreign key.
The client never touches local state; it only returns rows.

Usage:
    async with RemoteStore(base_url="https://xyz.supabase.co", api_key="...") as remote:
        rows = await remote.select_by_owner("tasks", user_id)
        row = await remote.insert("tasks", {"user_id": user_id, "title": "Read"})
"""

from __future__ import annotations

import logging
from types import TracebackType
from typing import Any, TypeVar

import httpx

from focusup.exceptions import (
    FocusUpAuthenticationError,
    FocusUpConstraintError,
    FocusUpNetworkError,
    FocusUpNotFoundError,
    FocusUpRemoteError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="RemoteStore")

NO_ROWS_CODE = "PGRST116"


def _table_name(table: Any) -> str:
    return getattr(table, "value", table)


def _eq_filters(filters: dict[str, Any]) -> dict[str, str]:
    return {column: f"eq.{value}" for column, value in filters.items()}


class RemoteStore:
    """
    Async PostgREST client.

    All failures are translated into the FocusUp exception hierarchy:
    transport problems and timeouts become FocusUpNetworkError so callers
    can fall back to cache-only operation.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: str | None = None,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._access_token = access_token
        self._http = httpx.AsyncClient(
            base_url=f"{self._base_url}/rest/v1",
            timeout=timeout,
            transport=transport,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self: T) -> T:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    def set_access_token(self, token: str | None) -> None:
        """Switch the bearer token after sign-in or sign-out."""
        self._access_token = token

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
            "Content-Type": "application/json",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    # =========================================================================
    # Transport
    # =========================================================================

    async def _request(
        self,
        method: str,
        table: Any,
        *,
        operation: str,
        params: dict[str, str] | None = None,
        json: Any = None,
        prefer: str | None = None,
    ) -> Any:
        path = f"/{_table_name(table)}"
        try:
            response = await self._http.request(
                method,
                path,
                params=params,
                json=json,
                headers=self._headers(prefer),
            )
        except httpx.TimeoutException as e:
            raise FocusUpNetworkError(f"Remote store timed out: {e}", operation=operation) from e
        except httpx.TransportError as e:
            raise FocusUpNetworkError(f"Remote store unreachable: {e}", operation=operation) from e

        self._raise_for_status(response, operation)

        if not response.content:
            return None
        return response.json()

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        if response.is_success:
            return

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        code = str(body.get("code") or "")
        message = body.get("message") or response.text or response.reason_phrase
        kwargs: dict[str, Any] = {
            "operation": operation,
            "status_code": response.status_code,
            "code": code or None,
            "details": {"details": body.get("details"), "hint": body.get("hint")},
        }

        if response.status_code in (401, 403):
            raise FocusUpAuthenticationError(message, **kwargs)
        if response.status_code == 404 or code == NO_ROWS_CODE:
            raise FocusUpNotFoundError(message, **kwargs)
        if response.status_code == 409 or code.startswith("23"):
            raise FocusUpConstraintError(message, **kwargs)
        raise FocusUpRemoteError(message, **kwargs)

    # =========================================================================
    # Row Operations
    # =========================================================================

    async def insert(self, table: Any, row: dict[str, Any]) -> dict[str, Any]:
        """Insert one row and return the created row."""
        data = await self._request(
            "POST",
            table,
            operation=f"insert:{_table_name(table)}",
            json=row,
            prefer="return=representation",
        )
        if not data:
            raise FocusUpRemoteError("Insert returned no row", operation=f"insert:{_table_name(table)}")
        return data[0] if isinstance(data, list) else data

    async def upsert(
        self,
        table: Any,
        rows: dict[str, Any] | list[dict[str, Any]],
        on_conflict: str = "id",
    ) -> list[dict[str, Any]]:
        """Insert or merge rows keyed by ``on_conflict`` columns."""
        data = await self._request(
            "POST",
            table,
            operation=f"upsert:{_table_name(table)}",
            params={"on_conflict": on_conflict},
            json=rows,
            prefer="resolution=merge-duplicates,return=representation",
        )
        return data or []

    async def update(self, table: Any, row_id: str, patch: dict[str, Any]) -> dict[str, Any]:
        """Update one row by id; raises FocusUpNotFoundError if nothing matched."""
        rows = await self.update_where(table, {"id": row_id}, patch)
        if not rows:
            raise FocusUpNotFoundError(
                f"No {_table_name(table)} row with id {row_id}",
                operation=f"update:{_table_name(table)}",
            )
        return rows[0]

    async def update_where(
        self,
        table: Any,
        filters: dict[str, Any],
        patch: dict[str, Any],
    ) -> list[dict[str, Any]]:
        """Update every row matching the equality filters."""
        data = await self._request(
            "PATCH",
            table,
            operation=f"update:{_table_name(table)}",
            params=_eq_filters(filters),
            json=patch,
            prefer="return=representation",
        )
        return data or []

    async def delete(self, table: Any, row_id: str) -> None:
        """Delete one row by id; raises FocusUpNotFoundError if nothing matched."""
        deleted = await self.delete_where(table, {"id": row_id})
        if deleted == 0:
            raise FocusUpNotFoundError(
                f"No {_table_name(table)} row with id {row_id}",
                operation=f"delete:{_table_name(table)}",
            )

    async def delete_where(self, table: Any, filters: dict[str, Any]) -> int:
        """Delete every row matching the equality filters and return the count."""
        data = await self._request(
            "DELETE",
            table,
            operation=f"delete:{_table_name(table)}",
            params=_eq_filters(filters),
            prefer="return=representation",
        )
        return len(data or [])

    async def select_where(
        self,
        table: Any,
        filters: dict[str, Any],
        order: str | None = None,
    ) -> list[dict[str, Any]]:
        """Select all rows matching the equality filters."""
        params = {"select": "*", **_eq_filters(filters)}
        if order:
            params["order"] = order
        data = await self._request(
            "GET",
            table,
            operation=f"select:{_table_name(table)}",
            params=params,
        )
        return data or []

    async def select_by_owner(
        self,
        table: Any,
        owner_id: str,
        order: str | None = "created_at.desc",
    ) -> list[dict[str, Any]]:
        """Select every row owned by ``owner_id``."""
        return await self.select_where(table, {"user_id": owner_id}, order=order)
