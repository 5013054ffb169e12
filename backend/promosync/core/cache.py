"""Item -> promotion association cache: Redis when available, in-memory otherwise.

Entries are keyed ``{prefix}:{location_id}:{item_id}`` and expire when the
last of their promotions ends (or after the default TTL when none carries an
end). Every failure is logged and swallowed: the cache is a memoization
layer and must never break a sync pass.
"""

from __future__ import annotations

import asyncio
import fnmatch
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import redis.asyncio as redis
from loguru import logger
from pydantic import ValidationError
from redis.exceptions import RedisError

from promosync.core.config import Settings, settings
from promosync.schemas.cache import CachedItem, CachedPromotion, CacheEntry, CacheStats
from promosync.schemas.catalog import CatalogItem, Promotion
from promosync.schemas.location import Location

CACHE_ERRORS = (RedisError, OSError, asyncio.TimeoutError, ValidationError, ValueError)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def build_redis_client(cfg: Settings = settings) -> Optional[redis.Redis]:
    """Connect to Redis, or return None so callers fall back to memory."""

    if not cfg.REDIS_ENABLED:
        return None
    client = redis.Redis(
        host=cfg.REDIS_HOST,
        port=cfg.REDIS_PORT,
        db=cfg.REDIS_DB,
        password=cfg.REDIS_PASSWORD,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=5,
    )
    try:
        await asyncio.wait_for(client.ping(), timeout=2)
    except (RedisError, OSError, asyncio.TimeoutError) as exc:
        logger.bind(host=cfg.REDIS_HOST, port=cfg.REDIS_PORT, error=str(exc)).warning(
            "redis_unavailable_memory_fallback"
        )
        await client.aclose()
        return None
    logger.bind(host=cfg.REDIS_HOST, port=cfg.REDIS_PORT).info("redis_connected")
    return client


def compute_expiry(
    promotions: Iterable[Promotion],
    now: datetime,
    default_ttl: timedelta,
) -> datetime:
    """Latest validity end among ``promotions``; ``now + default_ttl`` when none ends later."""

    ends = [p.valid_until for p in promotions if p.valid_until is not None]
    latest = max(ends) if ends else None
    if latest is None or latest <= now:
        return now + default_ttl
    return latest


class CacheStore:
    """TTL-keyed (location, item) -> promotions store."""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        *,
        key_prefix: str = settings.CACHE_KEY_PREFIX,
        default_ttl: int = settings.CACHE_DEFAULT_TTL_SEC,
        memory_max_entries: int = settings.CACHE_MEMORY_MAX_ENTRIES,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._client = client
        self._prefix = key_prefix
        self._default_ttl = timedelta(seconds=default_ttl)
        self._memory_max = memory_max_entries
        self._clock = clock
        # {key: (json_payload, expiry_epoch_seconds)}
        self._memory: Dict[str, Tuple[str, float]] = {}

    @classmethod
    async def from_settings(cls, cfg: Settings = settings) -> "CacheStore":
        client = await build_redis_client(cfg)
        return cls(
            client,
            key_prefix=cfg.CACHE_KEY_PREFIX,
            default_ttl=cfg.CACHE_DEFAULT_TTL_SEC,
            memory_max_entries=cfg.CACHE_MEMORY_MAX_ENTRIES,
        )

    @property
    def backend(self) -> str:
        return "redis" if self._client is not None else "memory"

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def _key(self, location_id: str, item_id: str) -> str:
        return f"{self._prefix}:{location_id}:{item_id}"

    # memory backend

    def _memory_get(self, key: str) -> Optional[str]:
        found = self._memory.get(key)
        if found is None:
            return None
        payload, expiry = found
        if self._clock().timestamp() > expiry:
            del self._memory[key]
            return None
        return payload

    def _memory_set(self, key: str, payload: str, ttl: int) -> None:
        if key not in self._memory and len(self._memory) >= self._memory_max:
            # Drop the oldest 10% (insertion order)
            for stale in list(self._memory.keys())[: max(1, self._memory_max // 10)]:
                del self._memory[stale]
        self._memory[key] = (payload, self._clock().timestamp() + ttl)

    def _memory_keys(self, pattern: str) -> List[str]:
        return [k for k in list(self._memory) if fnmatch.fnmatchcase(k, pattern)]

    # raw key access

    async def _set_raw(self, key: str, payload: str, ttl: int) -> None:
        if self._client is not None:
            await self._client.setex(key, ttl, payload)
        else:
            self._memory_set(key, payload, ttl)

    async def _get_raw(self, key: str) -> Optional[str]:
        if self._client is not None:
            return await self._client.get(key)
        return self._memory_get(key)

    async def _keys(self, pattern: str) -> List[str]:
        if self._client is not None:
            return [key async for key in self._client.scan_iter(match=pattern, count=500)]
        return self._memory_keys(pattern)

    async def _get_many(self, keys: List[str]) -> List[Optional[str]]:
        if not keys:
            return []
        if self._client is not None:
            return await self._client.mget(keys)
        return [self._memory_get(k) for k in keys]

    def _decode(self, payload: Optional[str]) -> Optional[CacheEntry]:
        if payload is None:
            return None
        entry = CacheEntry.model_validate_json(payload)
        now = self._clock()
        live = [p for p in entry.promotions if p.valid_until is None or p.valid_until >= now]
        if not live:
            return None
        entry.promotions = live
        return entry

    # public API

    async def put(
        self,
        location: Location,
        item: CatalogItem,
        promotions: List[Promotion],
        expiry: Optional[datetime] = None,
    ) -> Optional[CacheEntry]:
        """Write one entry, fully replacing any previous one for the same key."""

        now = self._clock()
        expiry = expiry or compute_expiry(promotions, now, self._default_ttl)
        ttl = max(1, int((expiry - now).total_seconds()))
        entry = CacheEntry(
            location_id=location.key,
            location_name=location.name,
            item=CachedItem(
                item_id=item.item_id,
                product_id=item.product_id,
                product_name=item.product_name,
                brand_name=item.brand_name,
                category=item.category,
                image_url=item.image_url,
                unit_price=item.unit_price,
                quantity_available=item.quantity_available,
            ),
            promotions=[
                CachedPromotion(
                    promotion_id=p.promotion_id,
                    name=p.name,
                    amount=p.amount,
                    discount_type=p.discount_type,
                    valid_from=p.valid_from,
                    valid_until=p.valid_until,
                    is_active=p.is_active,
                )
                for p in promotions
            ],
            last_updated=now,
            expires_at=expiry,
        )
        key = self._key(location.key, item.item_id)
        try:
            await self._set_raw(key, entry.model_dump_json(), ttl)
        except CACHE_ERRORS as exc:
            logger.bind(key=key, error=str(exc)).warning("cache_put_failed")
            return None
        return entry

    async def get(self, location_id: str, item_id: str) -> Optional[CacheEntry]:
        key = self._key(location_id, item_id)
        try:
            return self._decode(await self._get_raw(key))
        except CACHE_ERRORS as exc:
            logger.bind(key=key, error=str(exc)).warning("cache_get_failed")
            return None

    async def _list(self, pattern: str) -> List[CacheEntry]:
        try:
            keys = sorted(await self._keys(pattern))
            payloads = await self._get_many(keys)
            entries = [self._decode(p) for p in payloads]
        except CACHE_ERRORS as exc:
            logger.bind(pattern=pattern, error=str(exc)).warning("cache_list_failed")
            return []
        return [e for e in entries if e is not None]

    async def list_by_location(self, location_id: str) -> List[CacheEntry]:
        return await self._list(f"{self._prefix}:{location_id}:*")

    async def list_all(self) -> List[CacheEntry]:
        return await self._list(f"{self._prefix}:*")

    async def _delete_pattern(self, pattern: str) -> int:
        try:
            keys = await self._keys(pattern)
            if not keys:
                return 0
            if self._client is not None:
                return int(await self._client.delete(*keys))
            for key in keys:
                self._memory.pop(key, None)
            return len(keys)
        except CACHE_ERRORS as exc:
            logger.bind(pattern=pattern, error=str(exc)).warning("cache_delete_failed")
            return 0

    async def evict(self, location_id: str) -> int:
        """Remove every entry of one location; returns the number removed."""

        return await self._delete_pattern(f"{self._prefix}:{location_id}:*")

    async def clear_all(self) -> int:
        return await self._delete_pattern(f"{self._prefix}:*")

    async def stats(self) -> CacheStats:
        try:
            keys = await self._keys(f"{self._prefix}:*")
            memory_used = "unknown"
            if self._client is not None:
                info: Dict[str, Any] = await self._client.info("memory")
                memory_used = str(info.get("used_memory_human", "unknown"))
        except CACHE_ERRORS as exc:
            logger.bind(error=str(exc)).warning("cache_stats_failed")
            return CacheStats(backend=self.backend, total_keys=0)
        return CacheStats(backend=self.backend, total_keys=len(keys), memory_used=memory_used)
