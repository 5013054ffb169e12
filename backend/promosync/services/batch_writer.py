"""Replace a location's sink rows in independently committed batches."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

import httpx
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from promosync.core.config import Settings, settings
from promosync.core.exceptions import PromoSyncError
from promosync.core.retry import RetryPolicy
from promosync.schemas.catalog import CatalogItem, Promotion
from promosync.schemas.sync import BatchOutcome, WriteResult
from promosync.services.sink.base import Sink

RowT = TypeVar("RowT", CatalogItem, Promotion)

# failures that end one batch without aborting the location
BATCH_ERRORS = (PromoSyncError, SQLAlchemyError, httpx.HTTPError, OSError, asyncio.TimeoutError, ValueError)


def item_is_valid(item: CatalogItem, min_quantity: float) -> bool:
    return bool(item.item_id) and item.quantity_available >= min_quantity


def promotion_is_valid(promotion: Promotion, now: datetime) -> bool:
    return (
        bool(promotion.promotion_id)
        and promotion.is_active
        and not promotion.is_deleted
        and not promotion.is_expired(now)
    )


def chunked(rows: Sequence[RowT], size: int) -> list[Sequence[RowT]]:
    size = max(1, size)
    return [rows[i : i + size] for i in range(0, len(rows), size)]


class BatchWriter:
    """Delete-then-insert for items, detach-then-upsert for promotions.

    A failed batch is counted in ``errors`` (one per row) and never rolls
    back the batches committed before it.
    """

    def __init__(
        self,
        sink: Sink,
        *,
        retry: Optional[RetryPolicy] = None,
        batch_size: int = settings.SINK_BATCH_SIZE,
        batch_delay: float = settings.SINK_BATCH_DELAY_SEC,
        min_quantity: float = settings.MIN_QUANTITY_AVAILABLE,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._sink = sink
        self._retry = retry or RetryPolicy()
        self._batch_size = batch_size
        self._batch_delay = batch_delay
        self._min_quantity = min_quantity
        self._clock = clock
        self._sleep = sleep

    @classmethod
    def from_settings(cls, sink: Sink, cfg: Settings = settings) -> "BatchWriter":
        return cls(
            sink,
            retry=RetryPolicy.from_settings(cfg),
            batch_size=cfg.SINK_BATCH_SIZE,
            batch_delay=cfg.SINK_BATCH_DELAY_SEC,
            min_quantity=cfg.MIN_QUANTITY_AVAILABLE,
        )

    async def _write_batches(
        self,
        location_id: str,
        rows: Sequence[RowT],
        write: Callable[[str, Sequence[RowT]], Awaitable[BatchOutcome]],
        kind: str,
        result: WriteResult,
    ) -> None:
        batches = chunked(rows, self._batch_size)
        for index, batch in enumerate(batches):
            if index:
                await self._sleep(self._batch_delay)
            try:
                outcome = await self._retry.execute(
                    lambda batch=batch: write(location_id, batch),
                    label=f"sink {kind} batch {index + 1}/{len(batches)}",
                )
            except BATCH_ERRORS as exc:
                result.errors += len(batch)
                logger.bind(
                    kind=kind,
                    batch=index + 1,
                    batches=len(batches),
                    size=len(batch),
                    error=f"{type(exc).__name__}: {exc}",
                ).error("sink_batch_failed")
                continue
            result.created += outcome.written
            result.errors += outcome.errors

    async def replace_items(self, location_id: str, items: Sequence[CatalogItem]) -> WriteResult:
        valid = [item for item in items if item_is_valid(item, self._min_quantity)]
        result = WriteResult(dropped=len(items) - len(valid))
        result.deleted = await self._retry.execute(
            lambda: self._sink.clear_items(location_id), label=f"sink clear items {location_id}"
        )
        await self._write_batches(location_id, valid, self._sink.write_items, "item", result)
        logger.bind(
            created=result.created, deleted=result.deleted, dropped=result.dropped, errors=result.errors
        ).info("sink_items_replaced")
        return result

    async def replace_promotions(self, location_id: str, promotions: Sequence[Promotion]) -> WriteResult:
        now = self._clock()
        valid = [p for p in promotions if promotion_is_valid(p, now)]
        result = WriteResult(dropped=len(promotions) - len(valid))
        result.deleted = await self._retry.execute(
            lambda: self._sink.detach_promotions(location_id), label=f"sink detach promotions {location_id}"
        )
        await self._write_batches(location_id, valid, self._sink.write_promotions, "promotion", result)
        logger.bind(
            created=result.created, deleted=result.deleted, dropped=result.dropped, errors=result.errors
        ).info("sink_promotions_replaced")
        return result
