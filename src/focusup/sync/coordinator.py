"""
Sync Coordinator.

The central data store. Every mutation is applied to the in-memory
collection first, written through to the persistent cache, and then
pushed to the remote store in the background. ``refresh_all`` merges the
authoritative remote collections back in using id-union semantics.

Record lifecycle (``sync_state``):

    local    owned by a guest (or remote not configured); never sent
    pending  created locally, remote insert not confirmed yet
    dirty    exists remotely, local edits not pushed yet
    synced   local copy matches what was last sent or fetched

Placeholder ids (``task_<ms>_<rand>``) are swapped for the remote id when
an insert succeeds. If a refresh sees the remote row first, the
placeholder is matched by its reserved remote id, or failing that by
natural key and creation-time proximity, and recorded as an alias, so
callers holding the old id keep working.

The remote id of a new record is chosen on this device before its first
insert is sent. Retries upsert that same id, so an insert whose response
was lost never leaves a second copy, and deleting the record also deletes
whatever row the lost request may have written.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import date, datetime, timedelta
from typing import Any, Coroutine, Iterable, Optional, Sequence

from pydantic import ValidationError

from focusup.cache import PersistentCache
from focusup.constants import (
    CacheCollection,
    SessionMode,
    SessionState,
    SyncState,
    Table,
    TaskPriority,
    is_authenticated_id,
)
from focusup.events import Observable
from focusup.exceptions import (
    FocusUpAuthenticationError,
    FocusUpConstraintError,
    FocusUpNetworkError,
    FocusUpNotFoundError,
    FocusUpRemoteError,
    FocusUpValidationError,
)
from focusup.models import (
    FocusSession,
    Habit,
    HabitCompletion,
    OwnedRecord,
    RewardEvent,
    SessionHabitLink,
    SessionTaskLink,
    Task,
    UserStats,
    local_day,
    new_local_id,
    utc_now,
)
from focusup.remote import RemoteStore
from focusup.sync.specs import (
    ALL_SPECS,
    HABIT_COMPLETIONS,
    HABITS,
    REWARD_EVENTS,
    SESSION_HABITS,
    SESSION_TASKS,
    SESSIONS,
    SPECS_BY_NAME,
    TASKS,
    EntitySpec,
    child_references,
)
from focusup.sync.state import CollectionChange, IssueKind, OwnerState, SyncIssue

logger = logging.getLogger(__name__)

MAX_ISSUES = 50

# Fields a caller may never patch.
PROTECTED_FIELDS = frozenset({"id", "user_id", "created_at", "sync_state", "remote_id"})

# Ignored when deciding whether two copies of a record say the same thing.
IDENTITY_FIELDS = frozenset({"id", "created_at", "sync_state", "remote_id"})

UNSENT = (SyncState.LOCAL, SyncState.PENDING)
KNOWN_REMOTELY = (SyncState.SYNCED, SyncState.DIRTY)


def _content(record: OwnedRecord) -> dict[str, Any]:
    return record.model_dump(exclude=set(IDENTITY_FIELDS))


def _newest_first(records: Iterable[OwnedRecord]) -> list[OwnedRecord]:
    return sorted(records, key=lambda r: r.created_at, reverse=True)


class SyncCoordinator:
    """
    Local-first store for every owner-scoped collection.

    All public methods take the owner id first. Remote failures never
    escape a mutating call: they are logged and published on ``issues``.
    """

    def __init__(
        self,
        cache: PersistentCache,
        remote: Optional[RemoteStore] = None,
        *,
        refresh_delay: Optional[float] = 1.5,
        natural_key_window: float = 5.0,
    ) -> None:
        self._cache = cache
        self._remote = remote
        self._refresh_delay = refresh_delay
        self._natural_key_window = timedelta(seconds=natural_key_window)

        self._owners: dict[str, OwnerState] = {}
        self._background: set[asyncio.Task] = set()
        self._in_flight: set[str] = set()
        self._refresh_scheduled: set[str] = set()

        self.issues: Observable[list[SyncIssue]] = Observable([])
        self.changes: Observable[Optional[CollectionChange]] = Observable(None)

    @property
    def remote(self) -> Optional[RemoteStore]:
        return self._remote

    @property
    def cache(self) -> PersistentCache:
        return self._cache

    def is_remote_eligible(self, owner_id: str) -> bool:
        """Only authenticated owners talk to the remote store."""
        return self._remote is not None and is_authenticated_id(owner_id)

    # =========================================================================
    # Loading & Persistence
    # =========================================================================

    async def load(self, owner_id: str) -> OwnerState:
        """Return the in-memory state for ``owner_id``, reading the cache once."""
        state = self._owners.get(owner_id)
        if state is not None:
            return state

        loaded = OwnerState(owner_id=owner_id)
        for spec in ALL_SPECS:
            loaded.collections[spec.name] = await self._read_collection(spec, owner_id)
        loaded.stats = await self._read_stats(owner_id)
        loaded.tombstones = await self._read_tombstones(owner_id)

        # Another caller may have finished loading while we were reading.
        state = self._owners.setdefault(owner_id, loaded)
        return state

    async def _read_json(self, key: str) -> Any:
        raw = await self._cache.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding unreadable cache entry %s", key)
            return None

    async def _read_collection(self, spec: EntitySpec, owner_id: str) -> list[OwnedRecord]:
        data = await self._read_json(spec.collection.key(owner_id)) or []
        records = []
        for item in data:
            try:
                record = spec.model.model_validate(item)
            except ValidationError as e:
                logger.warning("Skipping invalid cached %s record: %s", spec.name, e)
                continue
            if isinstance(record, FocusSession) and record.state == SessionState.COMPLETING:
                record.state = SessionState.ACTIVE
            records.append(record)
        return records

    async def _read_stats(self, owner_id: str) -> Optional[UserStats]:
        data = await self._read_json(CacheCollection.USER_STATS.key(owner_id))
        if not data:
            return None
        try:
            return UserStats.model_validate(data)
        except ValidationError as e:
            logger.warning("Discarding invalid cached stats for %s: %s", owner_id, e)
            return None

    async def _read_tombstones(self, owner_id: str) -> dict[str, set[str]]:
        data = await self._read_json(CacheCollection.TOMBSTONES.key(owner_id)) or {}
        return {table: set(ids) for table, ids in data.items()}

    @staticmethod
    def _dump(spec: EntitySpec, records: Sequence[OwnedRecord]) -> bytes:
        rows = []
        for record in records:
            row = record.model_dump(mode="json")
            # The completing state never reaches the cache.
            if spec is SESSIONS and row.get("state") == SessionState.COMPLETING.value:
                row["state"] = SessionState.ACTIVE.value
            rows.append(row)
        return json.dumps(rows).encode()

    async def _persist(
        self,
        state: OwnerState,
        *specs: EntitySpec,
        stats: bool = False,
        tombstones: bool = False,
    ) -> None:
        """Write the named snapshots in one cache call and publish the change."""
        owner_id = state.owner_id
        items: dict[str, bytes] = {}
        for spec in specs:
            items[spec.collection.key(owner_id)] = self._dump(spec, state.items(spec))
        if stats and state.stats is not None:
            items[CacheCollection.USER_STATS.key(owner_id)] = state.stats.model_dump_json().encode()
        if tombstones:
            data = {table: sorted(ids) for table, ids in state.tombstones.items() if ids}
            items[CacheCollection.TOMBSTONES.key(owner_id)] = json.dumps(data).encode()

        try:
            await self._cache.set_many(items)
        except Exception as e:
            logger.warning("Cache write failed for %s: %s", owner_id, e)
            self._publish_issue(
                SyncIssue(kind=IssueKind.CACHE, collection=",".join(s.name for s in specs), message=str(e))
            )

        for spec in specs:
            self.changes.set(
                CollectionChange(owner_id=owner_id, collection=spec.name, size=len(state.items(spec)))
            )

    async def forget_owner(self, owner_id: str) -> None:
        """Drop every cached snapshot and the in-memory state of ``owner_id``."""
        self._owners.pop(owner_id, None)
        keys = [spec.collection.key(owner_id) for spec in ALL_SPECS]
        keys += [
            CacheCollection.USER_STATS.key(owner_id),
            CacheCollection.TOMBSTONES.key(owner_id),
        ]
        for key in keys:
            await self._cache.remove(key)

    # =========================================================================
    # Background Work
    # =========================================================================

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._on_background_done)

    def _on_background_done(self, task: asyncio.Task) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background sync task failed", exc_info=exc)

    async def flush(self) -> None:
        """Wait until every background push and scheduled refresh has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def close(self) -> None:
        await self.flush()

    def _schedule_refresh(self, owner_id: str) -> None:
        if self._refresh_delay is None or not self.is_remote_eligible(owner_id):
            return
        if owner_id in self._refresh_scheduled:
            return
        self._refresh_scheduled.add(owner_id)
        self._spawn(self._delayed_refresh(owner_id))

    async def _delayed_refresh(self, owner_id: str) -> None:
        try:
            await asyncio.sleep(self._refresh_delay or 0)
        finally:
            self._refresh_scheduled.discard(owner_id)
        await self.refresh_all(owner_id)

    # =========================================================================
    # Issues
    # =========================================================================

    def _publish_issue(self, issue: SyncIssue) -> None:
        self.issues.set([*self.issues.value, issue][-MAX_ISSUES:])

    def _report(self, spec_name: str, record_id: Optional[str], error: FocusUpRemoteError) -> None:
        if isinstance(error, FocusUpNetworkError):
            kind = IssueKind.NETWORK
            message = f"Offline, changes kept on this device: {error.message}"
        elif isinstance(error, FocusUpConstraintError):
            kind = IssueKind.CONSTRAINT
            message = (
                f"The server rejected a change to {spec_name} ({error.message}). "
                "It is kept on this device; edit it and it will be retried."
            )
        elif isinstance(error, FocusUpAuthenticationError):
            kind = IssueKind.AUTH
            message = f"Sign in again to sync {spec_name}: {error.message}"
        else:
            kind = IssueKind.REMOTE
            message = str(error)

        logger.warning("Remote sync of %s %s failed: %s", spec_name, record_id or "", error)
        self._publish_issue(
            SyncIssue(kind=kind, collection=spec_name, record_id=record_id, message=message)
        )

    def clear_issues(self) -> None:
        self.issues.set([])

    # =========================================================================
    # Generic Operations
    # =========================================================================

    async def list_records(self, spec: EntitySpec, owner_id: str) -> list[OwnedRecord]:
        state = await self.load(owner_id)
        return list(state.items(spec))

    async def get_record(self, spec: EntitySpec, owner_id: str, record_id: str) -> Optional[OwnedRecord]:
        state = await self.load(owner_id)
        return state.find(spec, record_id)

    async def create(self, spec: EntitySpec, owner_id: str, fields: dict[str, Any]) -> OwnedRecord:
        """Insert a record at the head of its collection and push it in the background."""
        state = await self.load(owner_id)
        eligible = self.is_remote_eligible(owner_id)
        data = {k: v for k, v in fields.items() if k not in PROTECTED_FIELDS}
        try:
            record = spec.model.model_validate(
                {
                    **data,
                    "id": new_local_id(spec.id_prefix),
                    "user_id": owner_id,
                    "sync_state": SyncState.PENDING if eligible else SyncState.LOCAL,
                }
            )
        except ValidationError as e:
            raise FocusUpValidationError(str(e), operation=f"create:{spec.name}") from e

        state.items(spec).insert(0, record)
        await self._persist(state, spec)

        if eligible:
            self._spawn(self._push_insert(spec, state, record.id))
        self._schedule_refresh(owner_id)
        return record

    async def update(
        self,
        spec: EntitySpec,
        owner_id: str,
        record_id: str,
        patch: dict[str, Any],
    ) -> OwnedRecord:
        """Apply ``patch`` locally, then push it. The local value is never rolled back."""
        state = await self.load(owner_id)
        current = state.find(spec, record_id)
        if current is None:
            raise FocusUpNotFoundError(
                f"No {spec.name} record with id {record_id}", operation=f"update:{spec.name}"
            )

        changes = {k: v for k, v in patch.items() if k not in PROTECTED_FIELDS}
        try:
            updated = spec.model.model_validate({**current.model_dump(), **changes})
        except ValidationError as e:
            raise FocusUpValidationError(str(e), operation=f"update:{spec.name}") from e
        updated.sync_state = self._changed_state(current)

        state.items(spec)[state.index_of(spec, current.id)] = updated
        await self._persist(state, spec)

        if updated.sync_state == SyncState.DIRTY and self.is_remote_eligible(owner_id):
            self._spawn(self._push_update(spec, state, updated.id))
        self._schedule_refresh(owner_id)
        return updated

    async def delete(self, spec: EntitySpec, owner_id: str, record_id: str) -> bool:
        """
        Remove a record (and its dependent records) locally, then remotely.

        Returns False when the record was not present. A failed remote
        delete is queued as a tombstone and retried; the record is never
        brought back by a later refresh.
        """
        state = await self.load(owner_id)
        record = state.find(spec, record_id)
        if record is None:
            return False

        touched: set[EntitySpec] = set()
        queued: list[tuple[EntitySpec, str]] = []
        self._remove_record(state, spec, record, touched, queued)
        await self._persist(state, *touched, tombstones=bool(queued))

        if queued and self.is_remote_eligible(owner_id):
            self._spawn(self._push_deletes(state, queued))
        self._schedule_refresh(owner_id)
        return True

    def _remove_record(
        self,
        state: OwnerState,
        spec: EntitySpec,
        record: OwnedRecord,
        touched: set[EntitySpec],
        queued: list[tuple[EntitySpec, str]],
    ) -> None:
        # Children go first so remote deletes never trip a foreign key.
        for child_spec, field_name in child_references(spec):
            if not child_spec.cascade_delete:
                continue
            for child in list(state.items(child_spec)):
                if getattr(child, field_name) == record.id:
                    self._remove_record(state, child_spec, child, touched, queued)

        state.items(spec).remove(record)
        touched.add(spec)

        if record.sync_state in KNOWN_REMOTELY:
            state.tombstoned(spec).add(record.id)
            queued.append((spec, record.id))
        elif record.id in self._in_flight:
            state.abandoned.add(record.id)
        elif record.remote_id is not None:
            # An earlier insert may have been stored even though its response was lost.
            state.tombstoned(spec).add(record.remote_id)
            queued.append((spec, record.remote_id))

    @staticmethod
    def _changed_state(previous: Optional[OwnedRecord]) -> SyncState:
        if previous is None:
            return SyncState.PENDING
        if previous.sync_state in KNOWN_REMOTELY:
            return SyncState.DIRTY
        return previous.sync_state

    async def commit(
        self,
        owner_id: str,
        records: Sequence[tuple[EntitySpec, OwnedRecord]],
        stats: Optional[UserStats] = None,
    ) -> None:
        """
        Upsert several records (and optionally the stats row) in one cache write.

        Either all of them reach the cache or none do, which is what makes
        session completion atomic from the cache's point of view.
        """
        state = await self.load(owner_id)
        eligible = self.is_remote_eligible(owner_id)
        touched: set[EntitySpec] = set()
        pushed: list[tuple[EntitySpec, str]] = []

        for spec, record in records:
            index = state.index_of(spec, record.id)
            existing = state.items(spec)[index] if index >= 0 else None
            staged = record.model_copy(update={"user_id": owner_id})
            staged.sync_state = self._changed_state(existing)
            if not eligible and staged.sync_state == SyncState.PENDING:
                staged.sync_state = SyncState.LOCAL
            if index >= 0:
                state.items(spec)[index] = staged
            else:
                state.items(spec).insert(0, staged)
            touched.add(spec)
            pushed.append((spec, staged.id))

        if stats is not None:
            state.stats = self._stage_stats(owner_id, stats)

        await self._persist(state, *touched, stats=stats is not None)

        if eligible:
            self._spawn(self._push_batch(state, pushed, stats is not None))
        self._schedule_refresh(owner_id)

    # =========================================================================
    # Remote Pushes
    # =========================================================================
    # Each push returns False only when the remote store is unreachable, so a
    # sweep can stop early instead of timing out once per record.

    def _waiting_on_parent(self, state: OwnerState, spec: EntitySpec, record: OwnedRecord) -> bool:
        for field_name, parent_name in spec.parents.items():
            parent_id = getattr(record, field_name)
            if parent_id is None:
                continue
            parent = state.find(SPECS_BY_NAME[parent_name], parent_id)
            if parent is not None and parent.sync_state in UNSENT:
                return True
        return False

    async def _push_insert(self, spec: EntitySpec, state: OwnerState, local_id: str) -> bool:
        index = state.index_of(spec, local_id)
        if index < 0 or local_id in self._in_flight:
            return True
        record = state.items(spec)[index]
        if record.sync_state not in UNSENT or self._waiting_on_parent(state, spec, record):
            return True

        self._in_flight.add(local_id)
        try:
            retry = record.remote_id is not None
            if not retry:
                # Placeholders never leave the device.
                record.remote_id = record.id if is_authenticated_id(record.id) else str(uuid.uuid4())
                await self._persist(state, spec)
                index = state.index_of(spec, local_id)
                if index < 0:
                    # Deleted while the reserved id was being saved; nothing was sent.
                    state.abandoned.discard(local_id)
                    return True
                record = state.items(spec)[index]

            row = record.to_row()
            row["id"] = record.remote_id
            sent = _content(record)
            try:
                if retry:
                    stored = await self._remote.upsert(spec.table, row, on_conflict="id")
                    created = stored[0] if stored else row
                else:
                    created = await self._remote.insert(spec.table, row)
            except FocusUpNetworkError as e:
                self._report(spec.name, local_id, e)
                await self._release_abandoned(spec, state, local_id, record.remote_id)
                return False
            except FocusUpRemoteError as e:
                self._report(spec.name, local_id, e)
                await self._release_abandoned(spec, state, local_id, record.remote_id)
                return True
        finally:
            self._in_flight.discard(local_id)

        await self._resolve_insert(spec, state, local_id, sent, str(created["id"]))
        return True

    async def _release_abandoned(
        self,
        spec: EntitySpec,
        state: OwnerState,
        local_id: str,
        remote_id: str,
    ) -> None:
        """Queue a delete for a failed insert whose record was deleted meanwhile."""
        if local_id not in state.abandoned:
            return
        state.abandoned.discard(local_id)
        # The failed request may still have written the row.
        state.tombstoned(spec).add(remote_id)
        await self._persist(state, tombstones=True)

    async def _resolve_insert(
        self,
        spec: EntitySpec,
        state: OwnerState,
        local_id: str,
        sent: dict[str, Any],
        remote_id: str,
    ) -> None:
        index = state.index_of(spec, local_id)
        if index < 0:
            if local_id in state.abandoned:
                state.abandoned.discard(local_id)
                logger.info("Deleting %s %s created after its local delete", spec.name, remote_id)
                state.tombstoned(spec).add(remote_id)
                touched: set[EntitySpec] = set()
                # A refresh may have fetched the row before this result arrived.
                fetched = state.find(spec, remote_id)
                if fetched is not None:
                    state.items(spec).remove(fetched)
                    touched.add(spec)
                await self._persist(state, *touched, tombstones=True)
                await self._push_deletes(state, [(spec, remote_id)])
            elif state.aliases.get(local_id) != remote_id:
                logger.warning("Discarding late insert result for %s %s", spec.name, local_id)
            return

        record = state.items(spec)[index]
        adopted = spec.model.model_validate({**record.model_dump(), "id": remote_id})
        # Edits made while the insert was in flight still need an update.
        adopted.sync_state = SyncState.SYNCED if _content(record) == sent else SyncState.DIRTY

        # A refresh may already have brought in the remote copy under its real id.
        items = [r for r in state.items(spec) if r.id != remote_id or r is record]
        items[items.index(record)] = adopted
        state.collections[spec.name] = items
        if local_id != remote_id:
            state.aliases[local_id] = remote_id

        touched = {spec} | self._repoint_children(state, spec, local_id, remote_id)
        await self._persist(state, *touched)

        if adopted.sync_state == SyncState.DIRTY:
            self._spawn(self._push_update(spec, state, remote_id))
        for child_spec, field_name in child_references(spec):
            for child in state.items(child_spec):
                if getattr(child, field_name) == remote_id and child.sync_state in UNSENT:
                    self._spawn(self._push_insert(child_spec, state, child.id))

    def _repoint_children(
        self,
        state: OwnerState,
        spec: EntitySpec,
        old_id: str,
        new_id: str,
    ) -> set[EntitySpec]:
        touched: set[EntitySpec] = set()
        if old_id == new_id:
            return touched
        for child_spec, field_name in child_references(spec):
            items = state.items(child_spec)
            for i, child in enumerate(items):
                if getattr(child, field_name) == old_id:
                    moved = child.model_copy(update={field_name: new_id})
                    moved.sync_state = self._changed_state(child)
                    items[i] = moved
                    touched.add(child_spec)
        return touched

    async def _push_update(self, spec: EntitySpec, state: OwnerState, record_id: str) -> bool:
        index = state.index_of(spec, record_id)
        if index < 0:
            return True
        record = state.items(spec)[index]
        if record.sync_state != SyncState.DIRTY:
            return True

        sent = _content(record)
        row = record.to_row()
        row.pop("id", None)
        try:
            await self._remote.update(spec.table, record_id, row)
        except FocusUpNotFoundError:
            # Gone remotely; the next refresh drops the local copy.
            logger.info("%s %s no longer exists remotely", spec.name, record_id)
        except FocusUpNetworkError as e:
            self._report(spec.name, record_id, e)
            return False
        except FocusUpRemoteError as e:
            self._report(spec.name, record_id, e)
            return True

        current = state.find(spec, record_id)
        if current is not None and current.sync_state == SyncState.DIRTY and _content(current) == sent:
            current.sync_state = SyncState.SYNCED
            await self._persist(state, spec)
        return True

    async def _push_deletes(self, state: OwnerState, targets: Sequence[tuple[EntitySpec, str]]) -> bool:
        for spec, record_id in targets:
            try:
                await self._remote.delete(spec.table, record_id)
            except FocusUpNotFoundError:
                pass
            except FocusUpNetworkError as e:
                self._report(spec.name, record_id, e)
                return False
            except FocusUpRemoteError as e:
                self._report(spec.name, record_id, e)
                continue
            state.deleted.add(record_id)
            state.tombstoned(spec).discard(record_id)
            await self._persist(state, tombstones=True)
        return True

    def _stage_stats(self, owner_id: str, stats: UserStats) -> UserStats:
        staged = stats.model_copy(update={"user_id": owner_id, "updated_at": utc_now()})
        staged.sync_state = SyncState.DIRTY if self.is_remote_eligible(owner_id) else SyncState.LOCAL
        return staged

    async def _push_stats(self, state: OwnerState) -> bool:
        stats = state.stats
        if stats is None or stats.sync_state == SyncState.SYNCED:
            return True
        row = stats.to_row()
        try:
            await self._remote.upsert(Table.USER_STATS, row, on_conflict="user_id")
        except FocusUpNetworkError as e:
            self._report(Table.USER_STATS.value, state.owner_id, e)
            return False
        except FocusUpRemoteError as e:
            self._report(Table.USER_STATS.value, state.owner_id, e)
            return True

        if state.stats is not None and state.stats.to_row() == row:
            state.stats.sync_state = SyncState.SYNCED
            await self._persist(state, stats=True)
        return True

    async def _push_batch(
        self,
        state: OwnerState,
        targets: Sequence[tuple[EntitySpec, str]],
        include_stats: bool,
    ) -> None:
        ordered = sorted(targets, key=lambda t: ALL_SPECS.index(t[0]))
        for spec, record_id in ordered:
            record = state.find(spec, record_id)
            if record is None:
                continue
            if record.sync_state in UNSENT:
                reachable = await self._push_insert(spec, state, record.id)
            else:
                reachable = await self._push_update(spec, state, record.id)
            if not reachable:
                return
        if include_stats:
            await self._push_stats(state)

    async def sync_pending(self, owner_id: str) -> None:
        """
        Reconciliation sweep: retry unsent inserts, unpushed updates and
        queued deletes for an authenticated owner.
        """
        if not self.is_remote_eligible(owner_id):
            return
        state = await self.load(owner_id)

        for spec in ALL_SPECS:
            for record in list(state.items(spec)):
                if record.sync_state in UNSENT:
                    reachable = await self._push_insert(spec, state, record.id)
                elif record.sync_state == SyncState.DIRTY:
                    reachable = await self._push_update(spec, state, record.id)
                else:
                    continue
                if not reachable:
                    return

        queued = [
            (spec, record_id)
            for spec in reversed(ALL_SPECS)
            for record_id in sorted(state.tombstoned(spec))
        ]
        if queued and not await self._push_deletes(state, queued):
            return

        await self._push_stats(state)

    # =========================================================================
    # Refresh & Merge
    # =========================================================================

    async def refresh_all(self, owner_id: str) -> None:
        """
        Fetch every remote collection for ``owner_id`` and merge it in.

        Safe to call repeatedly. When the remote store is unreachable the
        local state is left exactly as it was.
        """
        state = await self.load(owner_id)
        if not self.is_remote_eligible(owner_id):
            return

        await self.sync_pending(owner_id)

        # Background pushes keep running while we fetch; anything they change
        # after this point is newer than the rows we are about to receive.
        before = {
            spec.name: {r.id: (r, r.sync_state) for r in state.items(spec)} for spec in ALL_SPECS
        }
        stats_before = (state.stats, state.stats.sync_state if state.stats else None)

        fetched: list[tuple[EntitySpec, list[dict[str, Any]]]] = []
        try:
            for spec in ALL_SPECS:
                if spec.refreshable:
                    fetched.append((spec, await self._remote.select_by_owner(spec.table, owner_id)))
            stats_rows = await self._remote.select_where(Table.USER_STATS, {"user_id": owner_id})
        except FocusUpRemoteError as e:
            self._report("refresh", None, e)
            return

        touched: set[EntitySpec] = set()
        for spec, rows in fetched:
            touched |= self._merge(state, spec, rows, before[spec.name])

        if stats_rows:
            try:
                remote_stats = UserStats.from_row(stats_rows[0])
            except ValidationError as e:
                logger.warning("Ignoring invalid remote stats for %s: %s", owner_id, e)
            else:
                local = state.stats
                settled = (
                    local is not None
                    and local is stats_before[0]
                    and stats_before[1] == SyncState.SYNCED
                    and local.sync_state == SyncState.SYNCED
                )
                if local is None or settled:
                    state.stats = remote_stats

        await self._persist(state, *touched, stats=state.stats is not None)
        logger.debug("Refreshed %s: %s", owner_id, {s.name: len(state.items(s)) for s in touched})

    def _merge(
        self,
        state: OwnerState,
        spec: EntitySpec,
        rows: list[dict[str, Any]],
        before: dict[str, tuple[OwnedRecord, SyncState]],
    ) -> set[EntitySpec]:
        """
        Id-union merge of one remote collection into local state.

        Remote-only ids are added, unsent local records are kept, and ids
        present on both sides take the remote version unless the local copy
        has edits that were not pushed yet. Synced local records missing
        remotely were deleted elsewhere and are dropped.

        ``before`` is the local snapshot taken when the fetch started. A
        record that changed after that point (a push landed, or the user
        edited it) is newer than the fetched rows and is kept as is.
        """
        dead = state.tombstoned(spec) | state.deleted
        remote: list[OwnedRecord] = []
        for row in rows:
            if str(row.get("id")) in dead:
                continue
            try:
                remote.append(spec.model.from_row(row))
            except ValidationError as e:
                logger.warning("Skipping invalid remote %s row: %s", spec.name, e)

        local = state.items(spec)
        local_ids = {r.id for r in local}
        merged: dict[str, OwnedRecord] = {r.id: r for r in remote}
        claimed: set[str] = set()
        touched: set[EntitySpec] = {spec}
        dirty: list[str] = []

        for record in local:
            snapshot = before.get(record.id)
            unchanged = (
                snapshot is not None
                and snapshot[0] is record
                and snapshot[1] == record.sync_state
            )
            if record.id in merged:
                if record.sync_state == SyncState.DIRTY or not unchanged:
                    merged[record.id] = record
                continue
            if record.sync_state in KNOWN_REMOTELY:
                if not unchanged:
                    merged[record.id] = record
                continue

            match = self._match_placeholder(spec, record, remote, local_ids, claimed)
            if match is None:
                merged[record.id] = record
                continue

            claimed.add(match.id)
            state.aliases[record.id] = match.id
            if _content(record) != _content(match):
                adopted = spec.model.model_validate({**record.model_dump(), "id": match.id})
                adopted.sync_state = SyncState.DIRTY
                merged[match.id] = adopted
                dirty.append(match.id)
            touched |= self._repoint_children(state, spec, record.id, match.id)

        state.collections[spec.name] = _newest_first(merged.values())

        for record_id in dirty:
            self._spawn(self._push_update(spec, state, record_id))
        return touched

    def _match_placeholder(
        self,
        spec: EntitySpec,
        record: OwnedRecord,
        remote: list[OwnedRecord],
        local_ids: set[str],
        claimed: set[str],
    ) -> Optional[OwnedRecord]:
        if record.remote_id is not None:
            for candidate in remote:
                if candidate.id == record.remote_id and candidate.id not in claimed:
                    return candidate
        if spec.natural_key is None:
            return None
        key = spec.natural_key(record)
        for candidate in remote:
            if candidate.id in local_ids or candidate.id in claimed:
                continue
            if spec.natural_key(candidate) != key:
                continue
            if abs(candidate.created_at - record.created_at) <= self._natural_key_window:
                return candidate
        return None

    # =========================================================================
    # Tasks
    # =========================================================================

    async def list_tasks(self, owner_id: str) -> list[Task]:
        return await self.list_records(TASKS, owner_id)

    async def get_task(self, owner_id: str, task_id: str) -> Optional[Task]:
        return await self.get_record(TASKS, owner_id, task_id)

    async def create_task(
        self,
        owner_id: str,
        title: str,
        description: Optional[str] = None,
        deadline_at: Optional[datetime] = None,
        priority: TaskPriority = TaskPriority.MEDIUM,
    ) -> Task:
        return await self.create(
            TASKS,
            owner_id,
            {
                "title": title,
                "description": description,
                "deadline_at": deadline_at,
                "priority": priority,
            },
        )

    async def update_task(self, owner_id: str, task_id: str, patch: dict[str, Any]) -> Task:
        patch = dict(patch)
        if "done" in patch and "completed_at" not in patch:
            current = await self.get_task(owner_id, task_id)
            if current is not None and bool(patch["done"]) != current.done:
                patch.update(Task.completion_patch(bool(patch["done"])))
            elif not patch["done"]:
                patch["completed_at"] = None
        return await self.update(TASKS, owner_id, task_id, patch)

    async def set_task_done(self, owner_id: str, task_id: str, done: bool) -> Task:
        return await self.update_task(owner_id, task_id, {"done": done})

    async def delete_task(self, owner_id: str, task_id: str) -> bool:
        return await self.delete(TASKS, owner_id, task_id)

    # =========================================================================
    # Habits
    # =========================================================================

    async def list_habits(self, owner_id: str) -> list[Habit]:
        return await self.list_records(HABITS, owner_id)

    async def get_habit(self, owner_id: str, habit_id: str) -> Optional[Habit]:
        return await self.get_record(HABITS, owner_id, habit_id)

    async def create_habit(
        self,
        owner_id: str,
        title: str,
        focus_attribute: Any,
        cue: Optional[str] = None,
    ) -> Habit:
        return await self.create(
            HABITS,
            owner_id,
            {"title": title, "focus_attribute": focus_attribute, "cue": cue},
        )

    async def update_habit(self, owner_id: str, habit_id: str, patch: dict[str, Any]) -> Habit:
        return await self.update(HABITS, owner_id, habit_id, patch)

    async def delete_habit(self, owner_id: str, habit_id: str) -> bool:
        """Delete a habit together with its completions and session links."""
        return await self.delete(HABITS, owner_id, habit_id)

    async def list_completions(self, owner_id: str, habit_id: Optional[str] = None) -> list[HabitCompletion]:
        state = await self.load(owner_id)
        completions = state.items(HABIT_COMPLETIONS)
        if habit_id is None:
            return list(completions)
        habit_id = state.resolve(habit_id)
        return [c for c in completions if c.habit_id == habit_id]

    async def _completion_on(self, owner_id: str, habit_id: str, day: date) -> Optional[HabitCompletion]:
        for completion in await self.list_completions(owner_id, habit_id):
            if completion.day == day:
                return completion
        return None

    async def toggle_habit_completion(
        self,
        owner_id: str,
        habit_id: str,
        at: Optional[datetime] = None,
    ) -> Optional[HabitCompletion]:
        """
        Complete a habit for the day of ``at`` (default now), or undo it.

        Returns the new completion, or None when an existing completion for
        that day was removed.
        """
        habit = await self.get_habit(owner_id, habit_id)
        if habit is None:
            raise FocusUpNotFoundError(f"No habit with id {habit_id}", operation="toggle_habit_completion")
        at = at or utc_now()

        existing = await self._completion_on(owner_id, habit.id, local_day(at))
        if existing is not None:
            await self.delete(HABIT_COMPLETIONS, owner_id, existing.id)
            return None
        return await self.create(HABIT_COMPLETIONS, owner_id, {"habit_id": habit.id, "completed_at": at})

    async def is_completed_today(self, owner_id: str, habit_id: str, today: Optional[date] = None) -> bool:
        return await self._completion_on(owner_id, habit_id, today or local_day()) is not None

    async def habit_streak(self, owner_id: str, habit_id: str, today: Optional[date] = None) -> int:
        """Number of consecutive days, ending today, on which the habit was completed."""
        days = {c.day for c in await self.list_completions(owner_id, habit_id)}
        day = today or local_day()
        streak = 0
        while day in days:
            streak += 1
            day -= timedelta(days=1)
        return streak

    # =========================================================================
    # Focus Sessions
    # =========================================================================

    async def list_sessions(self, owner_id: str, state: Optional[SessionState] = None) -> list[FocusSession]:
        sessions = await self.list_records(SESSIONS, owner_id)
        if state is None:
            return sessions
        return [s for s in sessions if s.state == state]

    async def get_session(self, owner_id: str, session_id: str) -> Optional[FocusSession]:
        return await self.get_record(SESSIONS, owner_id, session_id)

    async def _require_session(self, owner_id: str, session_id: str, operation: str) -> FocusSession:
        session = await self.get_session(owner_id, session_id)
        if session is None:
            raise FocusUpNotFoundError(f"No focus session with id {session_id}", operation=operation)
        return session

    async def schedule_session(
        self,
        owner_id: str,
        duration: int,
        scheduled_for: datetime,
        mode: SessionMode = SessionMode.WORK,
    ) -> FocusSession:
        return await self.create(
            SESSIONS,
            owner_id,
            {
                "mode": mode,
                "duration": duration,
                "state": SessionState.SCHEDULED,
                "scheduled_for": scheduled_for,
            },
        )

    async def start_session(
        self,
        owner_id: str,
        duration: Optional[int] = None,
        mode: SessionMode = SessionMode.WORK,
        session_id: Optional[str] = None,
    ) -> FocusSession:
        """Start a scheduled session, or create and start a new one."""
        if session_id is None:
            return await self.create(
                SESSIONS,
                owner_id,
                {
                    "mode": mode,
                    "duration": duration or 0,
                    "state": SessionState.ACTIVE,
                    "started_at": utc_now(),
                },
            )

        session = await self._require_session(owner_id, session_id, "start_session")
        if not session.can_transition(SessionState.ACTIVE) or session.state != SessionState.SCHEDULED:
            raise FocusUpValidationError(
                f"Session {session.id} is {session.state.value}, only scheduled sessions can start",
                operation="start_session",
            )
        patch: dict[str, Any] = {"state": SessionState.ACTIVE, "started_at": utc_now()}
        if duration is not None:
            patch["duration"] = duration
        return await self.update(SESSIONS, owner_id, session.id, patch)

    async def attach_to_session(
        self,
        owner_id: str,
        session_id: str,
        task_ids: Sequence[str] = (),
        habit_ids: Sequence[str] = (),
    ) -> tuple[list[SessionTaskLink], list[SessionHabitLink]]:
        """Link tasks and habits to a session; links that already exist are kept as they are."""
        session = await self._require_session(owner_id, session_id, "attach_to_session")
        if session.state in (SessionState.COMPLETING, SessionState.COMPLETED):
            raise FocusUpValidationError(
                f"Session {session.id} is already {session.state.value}",
                operation="attach_to_session",
            )

        for task_id in task_ids:
            task = await self.get_task(owner_id, task_id)
            if task is None:
                raise FocusUpNotFoundError(f"No task with id {task_id}", operation="attach_to_session")
            links = await self.get_session_tasks(owner_id, session.id)
            if not any(link.task_id == task.id for link in links):
                await self.create(SESSION_TASKS, owner_id, {"session_id": session.id, "task_id": task.id})

        for habit_id in habit_ids:
            habit = await self.get_habit(owner_id, habit_id)
            if habit is None:
                raise FocusUpNotFoundError(f"No habit with id {habit_id}", operation="attach_to_session")
            links = await self.get_session_habits(owner_id, session.id)
            if not any(link.habit_id == habit.id for link in links):
                await self.create(SESSION_HABITS, owner_id, {"session_id": session.id, "habit_id": habit.id})

        return (
            await self.get_session_tasks(owner_id, session.id),
            await self.get_session_habits(owner_id, session.id),
        )

    async def get_session_tasks(self, owner_id: str, session_id: str) -> list[SessionTaskLink]:
        state = await self.load(owner_id)
        session_id = state.resolve(session_id)
        return [link for link in state.items(SESSION_TASKS) if link.session_id == session_id]

    async def get_session_habits(self, owner_id: str, session_id: str) -> list[SessionHabitLink]:
        state = await self.load(owner_id)
        session_id = state.resolve(session_id)
        return [link for link in state.items(SESSION_HABITS) if link.session_id == session_id]

    async def set_session_state(self, owner_id: str, session_id: str, target: SessionState) -> FocusSession:
        """
        Move a session along its lifecycle in memory only.

        Used for the completing window: a crash leaves the cached copy in its
        previous state.
        """
        state = await self.load(owner_id)
        session = state.find(SESSIONS, session_id)
        if session is None:
            raise FocusUpNotFoundError(f"No focus session with id {session_id}", operation="set_session_state")
        if not session.can_transition(target):
            raise FocusUpValidationError(
                f"Session {session.id} cannot move from {session.state.value} to {target.value}",
                operation="set_session_state",
            )
        session.state = target
        return session

    # =========================================================================
    # Stats & Reward Events
    # =========================================================================

    async def get_stats(self, owner_id: str) -> UserStats:
        state = await self.load(owner_id)
        if state.stats is None:
            state.stats = UserStats.empty(owner_id)
        return state.stats.model_copy(deep=True)

    async def save_stats(self, owner_id: str, stats: UserStats) -> UserStats:
        state = await self.load(owner_id)
        state.stats = self._stage_stats(owner_id, stats)
        await self._persist(state, stats=True)
        if self.is_remote_eligible(owner_id):
            self._spawn(self._push_stats(state))
        return state.stats.model_copy(deep=True)

    async def list_reward_events(self, owner_id: str, session_id: Optional[str] = None) -> list[RewardEvent]:
        events = await self.list_records(REWARD_EVENTS, owner_id)
        if session_id is None:
            return events
        return [e for e in events if e.session_id == session_id]

    # =========================================================================
    # Guest Adoption
    # =========================================================================

    async def adopt_owner(self, guest_id: str, auth_id: str) -> None:
        """
        Re-key every cached collection of ``guest_id`` to ``auth_id``.

        Records are merged by id union (the authenticated copy wins on a
        clash) and stats by field-wise maximum, so running this twice leaves
        the same state as running it once.
        """
        guest = await self.load(guest_id)
        owner = await self.load(auth_id)
        eligible = self.is_remote_eligible(auth_id)

        for spec in ALL_SPECS:
            known = {r.id for r in owner.items(spec)}
            moved = []
            for record in guest.items(spec):
                if record.id in known:
                    continue
                adopted = record.model_copy(update={"user_id": auth_id})
                if adopted.sync_state == SyncState.LOCAL and eligible:
                    adopted.sync_state = SyncState.PENDING
                moved.append(adopted)
            owner.collections[spec.name] = _newest_first(moved + owner.items(spec))

        owner.aliases.update(guest.aliases)

        if guest.stats is not None:
            base = owner.stats or UserStats.empty(auth_id)
            owner.stats = self._stage_stats(auth_id, base.merged_with(guest.stats))

        await self._persist(owner, *ALL_SPECS, stats=owner.stats is not None)
        await self.forget_owner(guest_id)
        logger.info("Adopted cached data of %s into %s", guest_id, auth_id)

    async def snapshot(self, owner_id: str) -> dict[str, Any]:
        """JSON-safe copy of every collection and the stats row."""
        state = await self.load(owner_id)
        data: dict[str, Any] = {spec.name: [r.to_row() for r in state.items(spec)] for spec in ALL_SPECS}
        data["user_stats"] = state.stats.to_row() if state.stats is not None else None
        return data
