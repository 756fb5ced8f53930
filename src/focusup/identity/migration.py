"""
Identity Migration Service.

Re-parents everything a guest created to the account they signed in
with. Every step is safe to repeat:

    local   cached collections re-keyed by id union, stats by field-wise max
    remote  user_stats upserted by user_id with the field-wise max of the
            guest and account rows, the guest row deleted, then every
            owned table updated where user_id = guest

A failure anywhere raises FocusUpMigrationError and leaves the guest id
in place so the next sign-in retries.
"""

from __future__ import annotations

import logging
from typing import Optional

from focusup.cache import PersistentCache
from focusup.constants import OWNED_TABLES, CacheCollection, Table, is_guest_id
from focusup.exceptions import FocusUpError, FocusUpMigrationError
from focusup.models import UserStats
from focusup.rewards import DailyTracker, LevelStore
from focusup.sync import SyncCoordinator

logger = logging.getLogger(__name__)

# Compared when deciding whether the local stats row needs rewriting.
VOLATILE_STATS_FIELDS = {"updated_at", "sync_state"}


class IdentityMigrationService:
    """Moves guest-owned data to an authenticated owner id."""

    def __init__(
        self,
        coordinator: SyncCoordinator,
        tracker: DailyTracker,
        levels: Optional[LevelStore] = None,
    ) -> None:
        self.coordinator = coordinator
        self.tracker = tracker
        self.levels = levels or LevelStore(coordinator.cache)

    @property
    def cache(self) -> PersistentCache:
        return self.coordinator.cache

    async def migrate(self, guest_id: str, auth_id: str) -> None:
        """
        Re-point every guest-owned record to ``auth_id``.

        Raises:
            FocusUpMigrationError: If any local or remote step failed
        """
        if guest_id == auth_id:
            return
        logger.info("Migrating data from %s to %s", guest_id, auth_id)

        try:
            await self.coordinator.adopt_owner(guest_id, auth_id)
            await self.tracker.move_owner(guest_id, auth_id)
            await self._move_profile_image(guest_id, auth_id)
            await self.levels.move_owner(guest_id, auth_id)
            if self.coordinator.is_remote_eligible(auth_id):
                await self._migrate_remote(guest_id, auth_id)
        except FocusUpMigrationError:
            raise
        except FocusUpError as e:
            raise FocusUpMigrationError(
                f"Could not move data from {guest_id} to {auth_id}: {e.message}",
                operation="migrate",
                details={"guest_id": guest_id, "auth_id": auth_id},
            ) from e

        # Pushes the adopted records; failures here are reported, not fatal.
        await self.coordinator.refresh_all(auth_id)
        logger.info("Migration from %s to %s complete", guest_id, auth_id)

    async def _move_profile_image(self, guest_id: str, auth_id: str) -> None:
        guest_key = CacheCollection.PROFILE_IMAGE.key(guest_id)
        image = await self.cache.get(guest_key)
        if image is None:
            return
        auth_key = CacheCollection.PROFILE_IMAGE.key(auth_id)
        if await self.cache.get(auth_key) is None:
            await self.cache.set(auth_key, image)
        await self.cache.remove(guest_key)

    async def _migrate_remote(self, guest_id: str, auth_id: str) -> None:
        remote = self.coordinator.remote

        auth_rows = await remote.select_where(Table.USER_STATS, {"user_id": auth_id})
        merged = UserStats.from_row(auth_rows[0]) if auth_rows else UserStats.empty(auth_id)

        guest_rows = await remote.select_where(Table.USER_STATS, {"user_id": guest_id})
        if guest_rows:
            merged = merged.merged_with(UserStats.from_row(guest_rows[0]))
            await remote.upsert(Table.USER_STATS, merged.to_row(), on_conflict="user_id")
            await remote.delete_where(Table.USER_STATS, {"user_id": guest_id})

        for table in OWNED_TABLES:
            moved = await remote.update_where(table, {"user_id": guest_id}, {"user_id": auth_id})
            if moved:
                logger.info("Re-pointed %d %s rows to %s", len(moved), table.value, auth_id)

        local = await self.coordinator.get_stats(auth_id)
        combined = local.merged_with(merged)
        if combined.model_dump(exclude=VOLATILE_STATS_FIELDS) != local.model_dump(exclude=VOLATILE_STATS_FIELDS):
            await self.coordinator.save_stats(auth_id, combined)


def migration_pending(stored_id: Optional[str], auth_id: str) -> bool:
    """Whether a stored guest id still needs moving to ``auth_id``."""
    return is_guest_id(stored_id) and stored_id != auth_id
