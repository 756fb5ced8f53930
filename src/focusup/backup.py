"""
Backup and restore of one owner's local data.

    payload = await backup.export_data(owner_id)
    Path("focusup_backup.json").write_text(json.dumps(payload))
    await backup.import_data(json.loads(Path("focusup_backup.json").read_text()))
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from pydantic import ValidationError

from focusup.constants import CacheCollection, Table, is_authenticated_id
from focusup.exceptions import FocusUpConfigurationError, FocusUpValidationError
from focusup.models import DailyCounter, OwnedRecord, UserStats, utc_now
from focusup.rewards import DailyTracker
from focusup.sync import ALL_SPECS, EntitySpec, SyncCoordinator

logger = logging.getLogger(__name__)

BACKUP_VERSION = 1


class BackupService:
    """Export, import, remote backup and cache clearing."""

    def __init__(self, coordinator: SyncCoordinator, tracker: DailyTracker) -> None:
        self.coordinator = coordinator
        self.tracker = tracker

    async def export_data(self, owner_id: str) -> dict[str, Any]:
        """JSON-serializable copy of every collection, the stats row and today's counters."""
        payload = {
            "version": BACKUP_VERSION,
            "exported_at": utc_now().isoformat(),
            "user_id": owner_id,
        }
        payload.update(await self.coordinator.snapshot(owner_id))
        counter = await self.tracker.get_counter(owner_id)
        payload["daily_stats"] = counter.model_dump(mode="json")
        return payload

    async def import_data(self, payload: dict[str, Any], owner_id: Optional[str] = None) -> int:
        """
        Merge an exported payload into ``owner_id`` (default: the exporter).

        Records are upserted by id and stats merged by field-wise maximum,
        so importing the same file twice changes nothing. Returns the
        number of records imported.

        Raises:
            FocusUpValidationError: If the payload is malformed
        """
        owner_id = owner_id or payload.get("user_id")
        if not owner_id:
            raise FocusUpValidationError("Backup has no user_id", operation="import_data")

        records: list[tuple[EntitySpec, OwnedRecord]] = []
        try:
            for spec in ALL_SPECS:
                for row in payload.get(spec.name) or []:
                    records.append((spec, spec.model.model_validate({**row, "user_id": owner_id})))
            imported_stats = payload.get("user_stats")
            stats = None
            if imported_stats:
                current = await self.coordinator.get_stats(owner_id)
                stats = current.merged_with(UserStats.model_validate({**imported_stats, "user_id": owner_id}))
            daily = payload.get("daily_stats")
            counter = DailyCounter.model_validate({**daily, "user_id": owner_id}) if daily else None
        except ValidationError as e:
            raise FocusUpValidationError(f"Invalid backup: {e}", operation="import_data") from e

        await self.coordinator.commit(owner_id, records, stats)
        if counter is not None and counter.day == self.tracker.today():
            await self.coordinator.cache.set(
                CacheCollection.DAILY_STATS.key(owner_id), counter.model_dump_json().encode()
            )
        logger.info("Imported %d records for %s", len(records), owner_id)
        return len(records)

    async def backup_to_remote(self, owner_id: str) -> int:
        """
        Upsert every cached record that already carries a remote id.

        Records still waiting for their first insert are left to the
        regular sync. Returns the number of rows sent.

        Raises:
            FocusUpConfigurationError: Guest owners and cache-only clients
        """
        if not self.coordinator.is_remote_eligible(owner_id):
            raise FocusUpConfigurationError(
                "Remote backup needs a signed-in account and a configured remote store",
                operation="backup_to_remote",
            )
        remote = self.coordinator.remote
        sent = 0
        for spec in ALL_SPECS:
            rows = [
                record.to_row()
                for record in await self.coordinator.list_records(spec, owner_id)
                if is_authenticated_id(record.id)
            ]
            if rows:
                await remote.upsert(spec.table, rows)
                sent += len(rows)

        stats = await self.coordinator.get_stats(owner_id)
        await remote.upsert(Table.USER_STATS, stats.to_row(), on_conflict="user_id")
        logger.info("Backed up %d rows for %s", sent + 1, owner_id)
        return sent + 1

    async def clear_local_cache(self, owner_id: str) -> None:
        """Forget everything cached for ``owner_id``; remote rows are untouched."""
        await self.coordinator.forget_owner(owner_id)
        await self.tracker.clear(owner_id)
        await self.coordinator.cache.remove(CacheCollection.PROFILE_IMAGE.key(owner_id))
        await self.coordinator.cache.remove(CacheCollection.UNLOCKED_LEVEL.key(owner_id))
        logger.info("Cleared local cache for %s", owner_id)
