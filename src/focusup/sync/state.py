"""
In-memory per-owner state held by the Sync Coordinator.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from focusup.models import OwnedRecord, UserStats, utc_now
from focusup.sync.specs import ALL_SPECS, EntitySpec


class IssueKind(str, Enum):
    NETWORK = "network"
    CONSTRAINT = "constraint"
    AUTH = "auth"
    REMOTE = "remote"
    CACHE = "cache"


class SyncIssue(BaseModel):
    """A background failure the user may want to hear about."""

    kind: IssueKind
    collection: str
    record_id: Optional[str] = None
    message: str
    at: datetime = Field(default_factory=utc_now)


class CollectionChange(BaseModel):
    """Published every time an owner's collection snapshot changes."""

    owner_id: str
    collection: str
    size: int


@dataclass
class OwnerState:
    owner_id: str
    collections: dict[str, list[OwnedRecord]] = field(
        default_factory=lambda: {spec.name: [] for spec in ALL_SPECS}
    )
    stats: Optional[UserStats] = None
    # remote table name -> ids whose remote delete has not succeeded yet
    tombstones: dict[str, set[str]] = field(default_factory=dict)
    # placeholder id -> remote id
    aliases: dict[str, str] = field(default_factory=dict)
    # placeholders deleted locally while their insert was in flight
    abandoned: set[str] = field(default_factory=set)
    # remote ids this process deleted; a stale fetch must not bring them back
    deleted: set[str] = field(default_factory=set)

    def items(self, spec: EntitySpec) -> list[OwnedRecord]:
        return self.collections[spec.name]

    def resolve(self, record_id: str) -> str:
        seen = set()
        while record_id in self.aliases and record_id not in seen:
            seen.add(record_id)
            record_id = self.aliases[record_id]
        return record_id

    def find(self, spec: EntitySpec, record_id: str) -> Optional[OwnedRecord]:
        record_id = self.resolve(record_id)
        for record in self.items(spec):
            if record.id == record_id:
                return record
        return None

    def index_of(self, spec: EntitySpec, record_id: str) -> int:
        for i, record in enumerate(self.items(spec)):
            if record.id == record_id:
                return i
        return -1

    def tombstoned(self, spec: EntitySpec) -> set[str]:
        return self.tombstones.setdefault(spec.table.value, set())
