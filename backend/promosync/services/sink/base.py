"""Sink contract shared by the relational and REST adapters."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol, Sequence

from promosync.schemas.catalog import CatalogItem, Promotion
from promosync.schemas.location import Location
from promosync.schemas.sync import BatchOutcome

SCHEMA_VERSION = 1


class Sink(Protocol):
    """Destination of reconciled catalog and promotion rows.

    ``write_*`` calls receive one batch and must commit it atomically; the
    batch writer decides batch boundaries, pauses and retries.
    """

    async def negotiate_schema(self) -> None:
        """Verify the destination schema once; raise ``ConfigError`` on mismatch."""

    async def list_locations(self) -> list[Location]: ...

    async def clear_items(self, location_id: str) -> int:
        """Delete every item row of one location; returns the number removed."""

    async def write_items(self, location_id: str, batch: Sequence[CatalogItem]) -> BatchOutcome: ...

    async def detach_promotions(self, location_id: str) -> int:
        """Remove ``location_id`` from every promotion's location list."""

    async def write_promotions(self, location_id: str, batch: Sequence[Promotion]) -> BatchOutcome: ...

    async def purge_promotions(self, now: datetime) -> int:
        """Delete promotions that are expired, soft-deleted or offered nowhere."""

    async def close(self) -> None: ...
