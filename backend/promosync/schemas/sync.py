"""Statistics emitted by reconciliation passes."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class SyncState(str, Enum):
    IDLE = "idle"
    FETCHING_LOCATIONS = "fetching_locations"
    FETCHING = "fetching"
    MATCHING = "matching"
    CACHE_POPULATING = "cache_populating"
    WRITING = "writing"
    CLEANUP = "cleanup"


class SyncMode(str, Enum):
    ALL = "all"
    ITEMS = "items"
    PROMOTIONS = "promotions"


@dataclass(slots=True)
class WriteResult:
    """Aggregate outcome of one ``replace_*`` call."""

    created: int = 0
    deleted: int = 0
    dropped: int = 0
    errors: int = 0


@dataclass(slots=True)
class BatchOutcome:
    """Outcome of a single committed (or failed) sink batch."""

    written: int = 0
    skipped: int = 0
    errors: int = 0


@dataclass(slots=True)
class LocationStats:
    location_id: str
    location_name: str
    items_fetched: int = 0
    promotions_fetched: int = 0
    matched_pairs: int = 0
    cached: int = 0
    items_created: int = 0
    items_deleted: int = 0
    promotions_created: int = 0
    promotions_deleted: int = 0
    dropped: int = 0
    errors: int = 0
    failure: str | None = None

    def absorb_items(self, result: WriteResult) -> None:
        self.items_created += result.created
        self.items_deleted += result.deleted
        self.dropped += result.dropped
        self.errors += result.errors

    def absorb_promotions(self, result: WriteResult) -> None:
        self.promotions_created += result.created
        self.promotions_deleted += result.deleted
        self.dropped += result.dropped
        self.errors += result.errors


@dataclass(slots=True)
class SyncStats:
    started_at: datetime
    finished_at: datetime | None = None
    total_locations: int = 0
    locations_skipped: int = 0
    locations_failed: int = 0
    promotions_purged: int = 0
    errors: int = 0
    locations: list[LocationStats] = field(default_factory=list)

    def _sum(self, name: str) -> int:
        return sum(getattr(loc, name) for loc in self.locations)

    @property
    def items_fetched(self) -> int:
        return self._sum("items_fetched")

    @property
    def promotions_fetched(self) -> int:
        return self._sum("promotions_fetched")

    @property
    def matched_pairs(self) -> int:
        return self._sum("matched_pairs")

    @property
    def created(self) -> int:
        return self._sum("items_created") + self._sum("promotions_created")

    @property
    def deleted(self) -> int:
        return self._sum("items_deleted") + self._sum("promotions_deleted") + self.promotions_purged

    @property
    def total_errors(self) -> int:
        return self.errors + self._sum("errors")

    @property
    def duration_sec(self) -> float | None:
        if self.finished_at is None:
            return None
        return round((self.finished_at - self.started_at).total_seconds(), 3)

    def summary(self) -> dict[str, Any]:
        return {
            "total_locations": self.total_locations,
            "locations_skipped": self.locations_skipped,
            "locations_failed": self.locations_failed,
            "items_fetched": self.items_fetched,
            "promotions_fetched": self.promotions_fetched,
            "matched_pairs": self.matched_pairs,
            "created": self.created,
            "deleted": self.deleted,
            "promotions_purged": self.promotions_purged,
            "errors": self.total_errors,
            "duration_sec": self.duration_sec,
            "locations": [asdict(loc) for loc in self.locations],
        }
