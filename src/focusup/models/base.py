"""
Shared model plumbing: base class, clock helpers and local id generation.
"""

from __future__ import annotations

import random
import string
import time
from datetime import date, datetime, timezone
from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ConfigDict, Field

from focusup.constants import SyncState


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def local_day(moment: datetime | None = None) -> date:
    """Calendar day of ``moment`` in the local timezone."""
    moment = moment or utc_now()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone().date()


def new_local_id(prefix: str) -> str:
    """Generate a locally unique placeholder id, e.g. ``task_1718000000000_k3j9x0a1b``."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"{prefix}_{int(time.time() * 1000)}_{suffix}"


class FocusUpModel(BaseModel):
    """Base for every persisted model."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="ignore",
        use_enum_values=False,
    )

    # Fields that exist only in the local cache and are never sent remotely.
    LOCAL_FIELDS: ClassVar[frozenset[str]] = frozenset({"sync_state"})

    def to_row(self) -> dict[str, Any]:
        """Serialize to a remote row (JSON-safe, local-only fields removed)."""
        return self.model_dump(mode="json", exclude=set(self.LOCAL_FIELDS))

    @classmethod
    def from_row(cls, row: dict[str, Any], sync_state: SyncState = SyncState.SYNCED):
        """Build a model from a remote row."""
        return cls.model_validate({**row, "sync_state": sync_state})


class OwnedRecord(FocusUpModel):
    """A record exclusively owned by one user id."""

    id: str
    user_id: str
    created_at: datetime = Field(default_factory=utc_now)
    sync_state: SyncState = SyncState.LOCAL
    # Id reserved for the remote row before the first insert is sent, so a
    # retry after a lost response writes the same row again.
    remote_id: Optional[str] = None

    LOCAL_FIELDS: ClassVar[frozenset[str]] = frozenset({"sync_state", "remote_id"})

    @property
    def is_synced(self) -> bool:
        return self.sync_state == SyncState.SYNCED
