"""REST sink: the CMS collections ``stores``, ``inventories`` and ``discounts``.

Responses may wrap fields in an ``attributes`` object; ``_normalize`` flattens
them here so nothing past this module sees the wrapper. Rows inside one batch
are written concurrently under a semaphore. Lookups return tagged results.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx
from loguru import logger

from promosync.core.concurrency import gather_limited
from promosync.core.config import Settings, settings
from promosync.core.exceptions import ConfigError, SinkError, TransientSinkError
from promosync.core.retry import is_transient
from promosync.schemas.catalog import CatalogItem, Promotion, as_utc
from promosync.schemas.location import Location
from promosync.schemas.sync import BatchOutcome
from promosync.services.sink.base import SCHEMA_VERSION
from promosync.services.sink.results import FatalError, Found, LookupResult, NotFound, TransientError, unwrap
from promosync.services.sink.rows import as_json_payload, item_row, promotion_row

STORES = "stores"
INVENTORIES = "inventories"
DISCOUNTS = "discounts"

WRITTEN = "written"
SKIPPED = "skipped"


def _normalize(entry: dict[str, Any]) -> dict[str, Any]:
    attributes = entry.get("attributes")
    if isinstance(attributes, dict):
        return {"id": entry.get("id"), **attributes}
    return dict(entry)


def _filter_params(filters: dict[str, Any]) -> dict[str, Any]:
    return {f"filters[{field}][$eq]": value for field, value in filters.items()}


def _is_conflict(response: httpx.Response) -> bool:
    if response.status_code == 409:
        return True
    return response.status_code == 400 and "unique" in response.text.lower()


def _raise_for_status(response: httpx.Response) -> None:
    if response.status_code >= 500:
        raise TransientSinkError(
            f"{response.request.method} {response.request.url}: {response.status_code}", response.status_code
        )
    if response.status_code >= 400:
        raise SinkError(
            f"{response.request.method} {response.request.url}: {response.status_code} {response.text[:200]}",
            response.status_code,
        )


class RestSink:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        page_size: int = settings.SINK_PAGE_SIZE,
        max_concurrency: int = settings.SINK_MAX_CONCURRENCY,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._client = client
        self._page_size = page_size
        self._max_concurrency = max_concurrency
        self._clock = clock

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "RestSink":
        client = httpx.AsyncClient(
            base_url=cfg.SINK_API_URL.rstrip("/"),
            headers={"Authorization": f"Bearer {cfg.SINK_API_TOKEN}", "Content-Type": "application/json"},
            timeout=cfg.SINK_TIMEOUT_SEC,
        )
        return cls(client, page_size=cfg.SINK_PAGE_SIZE, max_concurrency=cfg.SINK_MAX_CONCURRENCY)

    async def close(self) -> None:
        await self._client.aclose()

    # low-level helpers

    async def _list(self, collection: str, filters: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        rows: list[dict[str, Any]] = []
        page = 1
        while True:
            params = {"pagination[page]": page, "pagination[pageSize]": self._page_size}
            params.update(_filter_params(filters or {}))
            response = await self._client.get(f"/api/{collection}", params=params)
            _raise_for_status(response)
            body = response.json()
            data = body.get("data") or []
            rows.extend(_normalize(entry) for entry in data)
            page_count = (body.get("meta") or {}).get("pagination", {}).get("pageCount", page)
            if not data or page >= page_count:
                return rows
            page += 1

    async def lookup(self, collection: str, filters: dict[str, Any]) -> LookupResult:
        """First row matching ``filters``, as a tagged result."""

        params = {"pagination[pageSize]": 1, **_filter_params(filters)}
        try:
            response = await self._client.get(f"/api/{collection}", params=params)
        except httpx.TransportError as exc:
            return TransientError(f"{type(exc).__name__}: {exc}")
        if response.status_code >= 500:
            return TransientError(response.text[:200], response.status_code)
        if response.status_code == 404:
            return NotFound()
        if response.status_code >= 400:
            return FatalError(response.text[:200], response.status_code)
        data = response.json().get("data") or []
        if not data:
            return NotFound()
        return Found(_normalize(data[0]))

    async def _create(self, collection: str, payload: dict[str, Any]) -> Optional[httpx.Response]:
        """POST a row; None when the server reports a unique-key conflict."""

        response = await self._client.post(f"/api/{collection}", json={"data": payload})
        if _is_conflict(response):
            return None
        _raise_for_status(response)
        return response

    async def _update(self, collection: str, row_id: Any, payload: dict[str, Any]) -> bool:
        """PUT a row; False when it disappeared in the meantime."""

        response = await self._client.put(f"/api/{collection}/{row_id}", json={"data": payload})
        if response.status_code == 404:
            return False
        _raise_for_status(response)
        return True

    async def _delete(self, collection: str, row_id: Any) -> bool:
        response = await self._client.delete(f"/api/{collection}/{row_id}")
        if response.status_code == 404:
            return False
        _raise_for_status(response)
        return True

    async def _run_rows(self, calls: list[Callable[[], Awaitable[str]]], kind: str) -> BatchOutcome:
        outcome = BatchOutcome()
        results = await gather_limited(calls, self._max_concurrency)
        transient: Optional[BaseException] = None
        for result in results:
            if isinstance(result, BaseException):
                if is_transient(result):
                    transient = transient or result
                    continue
                outcome.errors += 1
                logger.bind(kind=kind, error=f"{type(result).__name__}: {result}").warning("sink_row_failed")
            elif result == WRITTEN:
                outcome.written += 1
            else:
                outcome.skipped += 1
        if transient is not None:
            # re-raised so the batch writer retries the whole batch
            raise transient
        return outcome

    # schema

    async def negotiate_schema(self) -> None:
        for collection in (STORES, INVENTORIES, DISCOUNTS):
            try:
                response = await self._client.get(f"/api/{collection}", params={"pagination[pageSize]": 1})
            except httpx.TransportError as exc:
                raise ConfigError(f"sink unreachable: {exc}") from exc
            if response.status_code in (401, 403, 404):
                logger.bind(collection=collection, status=response.status_code).error("sink_schema_mismatch")
                raise ConfigError(f"sink collection {collection!r} unavailable ({response.status_code})")
            _raise_for_status(response)
        logger.bind(mode="rest", version=SCHEMA_VERSION).info("sink_schema_ok")

    # locations

    async def list_locations(self) -> list[Location]:
        rows = await self._list(STORES)
        locations = []
        for row in rows:
            location = Location.model_validate(row)
            if location.is_active:
                locations.append(location)
        return locations

    # items

    async def clear_items(self, location_id: str) -> int:
        rows = await self._list(INVENTORIES, {"location_id": location_id})
        results = await gather_limited(
            [lambda row_id=row["id"]: self._delete(INVENTORIES, row_id) for row in rows],
            self._max_concurrency,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return sum(1 for result in results if result)

    async def _upsert_item(self, payload: dict[str, Any]) -> str:
        if await self._create(INVENTORIES, payload) is not None:
            return WRITTEN
        existing = unwrap(
            await self.lookup(
                INVENTORIES,
                {"location_id": payload["location_id"], "inventory_id": payload["inventory_id"]},
            )
        )
        if existing is None:
            return SKIPPED
        return WRITTEN if await self._update(INVENTORIES, existing["id"], payload) else SKIPPED

    async def write_items(self, location_id: str, batch: Sequence[CatalogItem]) -> BatchOutcome:
        now = self._clock()
        payloads = [as_json_payload(item_row(location_id, item, now)) for item in batch]
        return await self._run_rows([lambda p=p: self._upsert_item(p) for p in payloads], "item")

    # promotions

    async def detach_promotions(self, location_id: str) -> int:
        rows = await self._list(DISCOUNTS)
        attached = [row for row in rows if location_id in (row.get("applies_to_locations") or [])]

        async def _detach(row: dict[str, Any]) -> bool:
            remaining = [loc for loc in row.get("applies_to_locations") or [] if loc != location_id]
            return await self._update(DISCOUNTS, row["id"], {"applies_to_locations": remaining})

        results = await gather_limited([lambda row=row: _detach(row) for row in attached], self._max_concurrency)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return sum(1 for result in results if result)

    async def _upsert_promotion(self, location_id: str, payload: dict[str, Any]) -> str:
        existing = unwrap(await self.lookup(DISCOUNTS, {"discount_id": payload["discount_id"]}))
        if existing is None:
            created = await self._create(DISCOUNTS, {**payload, "applies_to_locations": [location_id]})
            if created is not None:
                return WRITTEN
            # lost a race with another writer
            existing = unwrap(await self.lookup(DISCOUNTS, {"discount_id": payload["discount_id"]}))
            if existing is None:
                return SKIPPED
        locations = list(existing.get("applies_to_locations") or [])
        if location_id not in locations:
            locations.append(location_id)
        updated = await self._update(DISCOUNTS, existing["id"], {**payload, "applies_to_locations": locations})
        return WRITTEN if updated else SKIPPED

    async def write_promotions(self, location_id: str, batch: Sequence[Promotion]) -> BatchOutcome:
        now = self._clock()
        payloads = [as_json_payload(promotion_row(p, now)) for p in batch]
        return await self._run_rows(
            [lambda p=p: self._upsert_promotion(location_id, p) for p in payloads], "promotion"
        )

    async def purge_promotions(self, now: datetime) -> int:
        rows = await self._list(DISCOUNTS)
        stale = []
        for row in rows:
            valid_until = row.get("valid_until")
            expired = False
            if valid_until:
                expired = as_utc(datetime.fromisoformat(str(valid_until).replace("Z", "+00:00"))) < now
            if expired or row.get("is_deleted") or not row.get("applies_to_locations"):
                stale.append(row)
        results = await gather_limited(
            [lambda row_id=row["id"]: self._delete(DISCOUNTS, row_id) for row in stale],
            self._max_concurrency,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        purged = sum(1 for result in results if result)
        if purged:
            logger.bind(count=purged).info("sink_promotions_purged")
        return purged
