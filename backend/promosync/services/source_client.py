"""Read-only client for the upstream POS API.

Each location authenticates with its own API key (HTTP Basic, key as the
username, empty password). Transport errors and 5xx responses are retried
through ``RetryPolicy``; a 404 on a list endpoint means "nothing there";
any other 4xx is fatal for the location.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Generic, Optional, TypeVar

import httpx
from loguru import logger

from promosync.core.config import Settings, settings
from promosync.core.exceptions import MissingCredentialsError, SourceAPIError
from promosync.core.retry import RetryPolicy
from promosync.schemas.catalog import CatalogItem, Promotion, parse_records
from promosync.schemas.location import Location

RecordT = TypeVar("RecordT")


@dataclass(slots=True)
class FetchResult(Generic[RecordT]):
    records: list[RecordT] = field(default_factory=list)
    rejected: int = 0


class SourceClient:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        retry: Optional[RetryPolicy] = None,
        use_reporting: bool = settings.SOURCE_USE_REPORTING,
        lookback_hours: int = settings.SOURCE_LOOKBACK_HOURS,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._client = client
        self._retry = retry or RetryPolicy()
        self._use_reporting = use_reporting
        self._lookback = timedelta(hours=lookback_hours)
        self._clock = clock

    @classmethod
    def from_settings(cls, cfg: Settings = settings) -> "SourceClient":
        client = httpx.AsyncClient(
            base_url=cfg.SOURCE_API_URL.rstrip("/"),
            headers={"Accept": "application/json"},
            timeout=cfg.SOURCE_TIMEOUT_SEC,
        )
        return cls(
            client,
            retry=RetryPolicy.from_settings(cfg),
            use_reporting=cfg.SOURCE_USE_REPORTING,
            lookback_hours=cfg.SOURCE_LOOKBACK_HOURS,
        )

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _auth(location: Location) -> httpx.BasicAuth:
        missing = location.missing_credentials()
        if missing:
            raise MissingCredentialsError(location.name, missing)
        return httpx.BasicAuth(location.api_key, "")

    async def _get(self, location: Location, path: str, params: dict[str, Any]) -> Optional[Any]:
        """GET ``path`` with retries; None on 404."""

        auth = self._auth(location)

        async def _call() -> httpx.Response:
            response = await self._client.get(path, params=params, auth=auth)
            if response.status_code >= 500:
                # HTTPStatusError with a 5xx is classified as transient
                response.raise_for_status()
            return response

        response = await self._retry.execute(_call, label=f"source {path} {location.key}")
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise SourceAPIError(response.status_code, str(response.request.url), response.text[:200])
        return response.json()

    async def _get_list(self, location: Location, path: str, params: dict[str, Any]) -> list[Any]:
        body = await self._get(location, path, params)
        if body is None:
            logger.bind(location=location.key, path=path).info("source_list_not_found")
            return []
        if isinstance(body, dict):
            # some deployments wrap list payloads
            body = body.get("data") or body.get("items") or []
        return body if isinstance(body, list) else []

    async def fetch_catalog(self, location: Location) -> FetchResult[CatalogItem]:
        if self._use_reporting:
            path, params = "/reporting/inventory", {"includeRoomQuantities": "true"}
        else:
            since = (self._clock() - self._lookback).astimezone(timezone.utc)
            path = "/products"
            params = {
                "fromLastModifiedDateUTC": since.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
                "isActive": "true",
            }
        rows = await self._get_list(location, path, params)
        records, rejected = parse_records(CatalogItem, rows, kind="item")
        logger.bind(location=location.key, path=path, fetched=len(records), rejected=rejected).info(
            "source_catalog_fetched"
        )
        return FetchResult(records, rejected)

    @property
    def uses_reporting(self) -> bool:
        return self._use_reporting

    async def _fetch_promotions(
        self, location: Location, path: str, params: dict[str, Any]
    ) -> FetchResult[Promotion]:
        rows = await self._get_list(location, path, params)
        records, rejected = parse_records(Promotion, rows, kind="promotion")
        logger.bind(location=location.key, path=path, fetched=len(records), rejected=rejected).info(
            "source_promotions_fetched"
        )
        return FetchResult(records, rejected)

    async def fetch_promotions(self, location: Location) -> FetchResult[Promotion]:
        """Promotions with their inclusion/exclusion filter sets, for matching."""

        return await self._fetch_promotions(
            location, "/discounts", {"includeInactive": "false", "includeInclusionExclusionData": "true"}
        )

    async def fetch_promotion_report(self, location: Location) -> FetchResult[Promotion]:
        """Reporting snapshot of promotions, used only for sink reconciliation."""

        return await self._fetch_promotions(
            location, "/reporting/discounts", {"includeInclusionExclusionData": "true"}
        )

    async def fetch_product(self, location: Location, product_id: str) -> Optional[CatalogItem]:
        body = await self._get(location, f"/products/{product_id}", {"isActive": "true"})
        if not isinstance(body, dict):
            return None
        records, _ = parse_records(CatalogItem, [body], kind="item")
        return records[0] if records else None

    async def fetch_promotion(self, location: Location, promotion_id: str) -> Optional[Promotion]:
        body = await self._get(
            location,
            f"/discounts/{promotion_id}",
            {"includeInactive": "false", "includeInclusionExclusionData": "true"},
        )
        if not isinstance(body, dict):
            return None
        records, _ = parse_records(Promotion, [body], kind="promotion")
        return records[0] if records else None
