from collections import OrderedDict
from math import ceil
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from loguru import logger

from promosync.core.cache import CacheStore
from promosync.core.config import settings
from promosync.schemas.cache import CacheEntry, CacheEntryPage, CacheStats, RankedCacheEntry
from promosync.services.filters import rank_promotions

router = APIRouter(tags=["cache"])


def get_cache(request: Request) -> CacheStore:
    return request.app.state.cache


def _ranked(entry: CacheEntry, max_discounts: int) -> RankedCacheEntry:
    best = rank_promotions(entry.promotions, max_discounts)
    return RankedCacheEntry(
        **entry.model_dump(exclude={"promotions"}),
        promotions=best,
        total_promotions=len(entry.promotions),
        showing_top=len(best),
    )


def _paginate(entries: List[RankedCacheEntry], page: int, limit: int) -> dict:
    start = (page - 1) * limit
    data = entries[start : start + limit]
    return {
        "page": page,
        "limit": limit,
        "total": len(entries),
        "total_pages": ceil(len(entries) / limit) if entries else 0,
        "count": len(data),
        "data": data,
    }


@router.get("/cache/stats", response_model=CacheStats)
async def cache_stats(cache: CacheStore = Depends(get_cache)) -> CacheStats:
    return await cache.stats()


@router.get("/products/discounts", response_model=CacheEntryPage)
async def list_discounted_products(
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    max_discounts: int = Query(settings.API_DEFAULT_MAX_DISCOUNTS, ge=1, alias="maxDiscounts"),
    products_per_store: int = Query(6, ge=1, alias="productsPerStore"),
    cache: CacheStore = Depends(get_cache),
) -> CacheEntryPage:
    """Discounted products across every location, ``productsPerStore`` from each."""

    by_location: "OrderedDict[str, List[CacheEntry]]" = OrderedDict()
    for entry in await cache.list_all():
        by_location.setdefault(entry.location_id, []).append(entry)

    balanced = [
        _ranked(entry, max_discounts)
        for entries in by_location.values()
        for entry in entries[:products_per_store]
    ]
    return CacheEntryPage(
        **_paginate(balanced, page, limit),
        locations_count=len(by_location),
        products_per_store=products_per_store,
    )


@router.get("/stores/{location_id}/products/discounts", response_model=CacheEntryPage)
async def list_location_products(
    location_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    max_discounts: int = Query(settings.API_DEFAULT_MAX_DISCOUNTS, ge=1, alias="maxDiscounts"),
    cache: CacheStore = Depends(get_cache),
) -> CacheEntryPage:
    entries = [_ranked(entry, max_discounts) for entry in await cache.list_by_location(location_id)]
    return CacheEntryPage(**_paginate(entries, page, limit), location_id=location_id)


@router.get("/stores/{location_id}/products/{item_id}", response_model=RankedCacheEntry)
async def get_product(
    location_id: str,
    item_id: str,
    max_discounts: int = Query(settings.API_DEFAULT_MAX_DISCOUNTS, ge=1, alias="maxDiscounts"),
    cache: CacheStore = Depends(get_cache),
) -> RankedCacheEntry:
    entry = await cache.get(location_id, item_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Product not found in cache")
    return _ranked(entry, max_discounts)


@router.delete("/stores/{location_id}/cache")
async def evict_location(location_id: str, cache: CacheStore = Depends(get_cache)) -> dict:
    removed = await cache.evict(location_id)
    logger.bind(location=location_id, removed=removed).info("cache_location_evicted")
    return {"location_id": location_id, "removed": removed}
