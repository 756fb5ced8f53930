"""
Identity store: the guest id, the sign-in migration trigger and the
per-owner profile image.
"""

from __future__ import annotations

import logging
import random
import string
import time
from typing import Optional

from focusup.cache import PersistentCache
from focusup.constants import GUEST_PREFIX, USER_ID_KEY, CacheCollection, is_guest_id
from focusup.events import Observable
from focusup.exceptions import FocusUpMigrationError
from focusup.identity.migration import IdentityMigrationService, migration_pending

logger = logging.getLogger(__name__)


def new_guest_id() -> str:
    """``guest_<ms>_<9 random chars>``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{GUEST_PREFIX}{int(time.time() * 1000)}_{suffix}"


class IdentityStore:
    """Resolves the owner id in effect and fires the guest migration on sign-in."""

    def __init__(self, cache: PersistentCache, migration: IdentityMigrationService) -> None:
        self._cache = cache
        self._migration = migration

    async def stored_guest_id(self) -> Optional[str]:
        raw = await self._cache.get(USER_ID_KEY)
        if raw is None:
            return None
        value = raw.decode()
        return value if is_guest_id(value) else None

    async def guest_id(self) -> str:
        """The persisted guest id, created on first use."""
        existing = await self.stored_guest_id()
        if existing:
            return existing
        guest_id = new_guest_id()
        await self._cache.set(USER_ID_KEY, guest_id.encode())
        logger.info("Created guest id %s", guest_id)
        return guest_id

    async def current_user_id(self, auth_id: Optional[str] = None) -> str:
        """The authenticated id when signed in, the guest id otherwise."""
        if auth_id:
            return auth_id
        return await self.guest_id()

    async def on_signed_in(self, auth_id: str) -> bool:
        """
        Migration trigger, called once per sign-in transition.

        Returns True when guest data was moved. A failed migration is logged
        and the guest id kept, so the next sign-in tries again.
        """
        guest_id = await self.stored_guest_id()
        if not migration_pending(guest_id, auth_id):
            return False
        try:
            await self._migration.migrate(guest_id, auth_id)
        except FocusUpMigrationError as e:
            logger.error("Guest migration failed, will retry on next sign-in: %s", e)
            return False
        await self._cache.remove(USER_ID_KEY)
        return True


class ProfileImageStore:
    """
    Profile image URI of the current owner, persisted per owner and
    broadcast through an Observable.
    """

    def __init__(self, cache: PersistentCache) -> None:
        self._cache = cache
        self.image: Observable[Optional[str]] = Observable(None)

    async def load(self, owner_id: str) -> Optional[str]:
        raw = await self._cache.get(CacheCollection.PROFILE_IMAGE.key(owner_id))
        uri = raw.decode() if raw is not None else None
        self.image.set(uri)
        return uri

    async def set(self, owner_id: str, uri: Optional[str]) -> None:
        key = CacheCollection.PROFILE_IMAGE.key(owner_id)
        if uri:
            await self._cache.set(key, uri.encode())
        else:
            await self._cache.remove(key)
        self.image.set(uri or None)
