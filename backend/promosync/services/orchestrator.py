"""Reconciliation pass: locations -> fetch -> match -> cache -> write -> cleanup.

Locations are processed strictly one after another so a failing location
cannot disturb the others; within one location the catalog and promotions
are fetched concurrently and the cache is populated in the background
while the sink is written. Location-scoped failures end up in ``SyncStats``;
only a failure to enumerate locations aborts the pass.
"""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from loguru import logger

from promosync.core.cache import CacheStore
from promosync.core.config import Settings, settings
from promosync.core.exceptions import LocationEnumerationError
from promosync.core.logging import location_ctx_var, run_id_ctx_var
from promosync.core.retry import RetryPolicy
from promosync.schemas.catalog import CatalogItem, Promotion
from promosync.schemas.location import Location
from promosync.schemas.sync import LocationStats, SyncMode, SyncState, SyncStats
from promosync.services.batch_writer import BATCH_ERRORS, BatchWriter
from promosync.services.filters import match_promotions
from promosync.services.sink import Sink, build_sink
from promosync.services.source_client import SourceClient


class SyncOrchestrator:
    def __init__(
        self,
        sink: Sink,
        source: SourceClient,
        cache: CacheStore,
        writer: BatchWriter,
        *,
        retry: Optional[RetryPolicy] = None,
        mode: SyncMode = SyncMode.ALL,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._sink = sink
        self._source = source
        self._cache = cache
        self._writer = writer
        self._retry = retry or RetryPolicy()
        self.mode = mode
        self._clock = clock
        self.state = SyncState.IDLE
        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()

    @classmethod
    async def from_settings(cls, cfg: Settings = settings, mode: SyncMode = SyncMode.ALL) -> "SyncOrchestrator":
        sink = build_sink(cfg)
        return cls(
            sink,
            SourceClient.from_settings(cfg),
            await CacheStore.from_settings(cfg),
            BatchWriter.from_settings(sink, cfg),
            retry=RetryPolicy.from_settings(cfg),
            mode=mode,
        )

    async def start(self) -> None:
        """Negotiate the sink schema; raises ``ConfigError`` on mismatch."""

        await self._sink.negotiate_schema()

    async def close(self) -> None:
        await self._source.close()
        await self._cache.close()
        await self._sink.close()

    def stop(self) -> None:
        self._stop.set()

    def _enter(self, state: SyncState) -> None:
        self.state = state
        logger.bind(state=state.value).debug("sync_state")

    async def _load_locations(self, stats: SyncStats) -> list[Location]:
        self._enter(SyncState.FETCHING_LOCATIONS)
        try:
            locations = await self._retry.execute(self._sink.list_locations, label="sink list locations")
        except BATCH_ERRORS as exc:
            logger.bind(error=f"{type(exc).__name__}: {exc}").error("location_enumeration_failed")
            raise LocationEnumerationError(str(exc)) from exc

        stats.total_locations = len(locations)
        ready = []
        for location in locations:
            missing = location.missing_credentials()
            if missing:
                stats.locations_skipped += 1
                logger.bind(location=location.name, missing=missing).warning("location_skipped_missing_credentials")
                continue
            ready.append(location)
        return ready

    async def _populate_cache(
        self,
        location: Location,
        items: Sequence[CatalogItem],
        matches: dict[str, list[Promotion]],
    ) -> int:
        await self._cache.evict(location.key)
        by_id = {item.item_id: item for item in items}
        cached = 0
        for item_id, promotions in matches.items():
            if await self._cache.put(location, by_id[item_id], promotions) is not None:
                cached += 1
        logger.bind(cached=cached, backend=self._cache.backend).info("cache_populated")
        return cached

    async def sync_location(self, location: Location) -> LocationStats:
        """Run one location through fetch, match, cache and write."""

        loc_stats = LocationStats(location_id=location.key, location_name=location.name)
        token = location_ctx_var.set(location.key)
        try:
            self._enter(SyncState.FETCHING)
            writes_promotions = self.mode in (SyncMode.ALL, SyncMode.PROMOTIONS)
            fetches = [self._source.fetch_catalog(location), self._source.fetch_promotions(location)]
            if writes_promotions and self._source.uses_reporting:
                fetches.append(self._source.fetch_promotion_report(location))
            fetched = await asyncio.gather(*fetches, return_exceptions=True)
            for outcome in fetched:
                if isinstance(outcome, BaseException):
                    raise outcome
            catalog, promotions = fetched[0], fetched[1]
            # the matcher always sees promotions with filter sets; the sink may get the report
            report = fetched[2] if len(fetched) > 2 else promotions
            loc_stats.items_fetched = len(catalog.records)
            loc_stats.promotions_fetched = len(promotions.records)
            loc_stats.dropped += catalog.rejected + promotions.rejected

            self._enter(SyncState.MATCHING)
            matches = match_promotions(catalog.records, promotions.records, self._clock())
            loc_stats.matched_pairs = sum(len(hits) for hits in matches.values())

            self._enter(SyncState.CACHE_POPULATING)
            cache_task = asyncio.create_task(self._populate_cache(location, catalog.records, matches))
            try:
                self._enter(SyncState.WRITING)
                if self.mode in (SyncMode.ALL, SyncMode.ITEMS):
                    loc_stats.absorb_items(await self._writer.replace_items(location.key, catalog.records))
                if writes_promotions:
                    if report is not promotions:
                        loc_stats.dropped += report.rejected
                    loc_stats.absorb_promotions(await self._writer.replace_promotions(location.key, report.records))
            finally:
                loc_stats.cached = await cache_task
        except BATCH_ERRORS as exc:
            loc_stats.failure = f"{type(exc).__name__}: {exc}"
            logger.bind(location=location.name, error=loc_stats.failure).error("location_sync_failed")
        else:
            logger.bind(
                location=location.name,
                items=loc_stats.items_fetched,
                promotions=loc_stats.promotions_fetched,
                matched=loc_stats.matched_pairs,
                created=loc_stats.items_created + loc_stats.promotions_created,
                errors=loc_stats.errors,
            ).info("location_synced")
        finally:
            location_ctx_var.reset(token)
        return loc_stats

    async def _cleanup(self, stats: SyncStats) -> None:
        self._enter(SyncState.CLEANUP)
        try:
            stats.promotions_purged = await self._retry.execute(
                lambda: self._sink.purge_promotions(self._clock()), label="sink purge promotions"
            )
        except BATCH_ERRORS as exc:
            stats.errors += 1
            logger.bind(error=f"{type(exc).__name__}: {exc}").error("sink_cleanup_failed")

    async def run_once(self) -> SyncStats:
        """One full pass over every location. Concurrent callers queue up."""

        async with self._lock:
            token = run_id_ctx_var.set(uuid.uuid4().hex[:12])
            stats = SyncStats(started_at=self._clock())
            logger.bind(mode=self.mode.value).info("sync_started")
            try:
                for location in await self._load_locations(stats):
                    loc_stats = await self.sync_location(location)
                    if loc_stats.failure is not None:
                        stats.locations_failed += 1
                    stats.locations.append(loc_stats)
                await self._cleanup(stats)
            finally:
                stats.finished_at = self._clock()
                self._enter(SyncState.IDLE)
                logger.bind(**{k: v for k, v in stats.summary().items() if k != "locations"}).info(
                    "sync_completed"
                )
                run_id_ctx_var.reset(token)
            return stats

    async def run_forever(self, interval_minutes: float) -> None:
        """Repeat ``run_once`` every ``interval_minutes`` until ``stop()``."""

        while not self._stop.is_set():
            try:
                await self.run_once()
            except LocationEnumerationError as exc:
                logger.bind(error=str(exc)).error("sync_run_aborted")
            try:
                await asyncio.wait_for(self._stop.wait(), timeout=interval_minutes * 60)
            except asyncio.TimeoutError:
                continue
