from datetime import timedelta

import pytest

from factories import NOW, Clock, make_item, make_location, make_promotion
from promosync.core.cache import CacheStore, compute_expiry


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def cache(clock):
    return CacheStore(None, key_prefix="product", default_ttl=86400, memory_max_entries=100, clock=clock)


def test_expiry_is_latest_validity_end():
    promos = [
        make_promotion("a", valid_until=NOW + timedelta(hours=1)),
        make_promotion("b", valid_until=NOW + timedelta(hours=5)),
        make_promotion("c"),
    ]
    assert compute_expiry(promos, NOW, timedelta(days=1)) == NOW + timedelta(hours=5)


def test_expiry_defaults_when_no_promotion_ends():
    assert compute_expiry([make_promotion()], NOW, timedelta(days=1)) == NOW + timedelta(days=1)


@pytest.mark.anyio
async def test_put_then_get(cache):
    location = make_location("store-1")
    entry = await cache.put(location, make_item("i1", unit_price=25.0), [make_promotion("d1")])

    assert cache.backend == "memory"
    assert entry.expires_at == NOW + timedelta(days=1)
    found = await cache.get("store-1", "i1")
    assert found.location_name == "Store store-1"
    assert found.item.unit_price == 25.0
    assert [p.promotion_id for p in found.promotions] == ["d1"]
    assert await cache.get("store-1", "missing") is None


@pytest.mark.anyio
async def test_entry_disappears_after_last_promotion_ends(cache, clock):
    location = make_location()
    entry = await cache.put(location, make_item(), [make_promotion(valid_until=NOW + timedelta(hours=2))])
    assert entry.expires_at == NOW + timedelta(hours=2)

    clock.advance(hours=1)
    assert await cache.get(location.key, "i1") is not None
    clock.advance(hours=2)
    assert await cache.get(location.key, "i1") is None


@pytest.mark.anyio
async def test_reads_never_serve_expired_promotions(cache, clock):
    location = make_location()
    await cache.put(
        location,
        make_item(),
        [
            make_promotion("short", valid_until=NOW + timedelta(hours=1)),
            make_promotion("long", valid_until=NOW + timedelta(hours=3)),
        ],
    )

    clock.advance(hours=2)
    entry = await cache.get(location.key, "i1")

    assert [p.promotion_id for p in entry.promotions] == ["long"]


@pytest.mark.anyio
async def test_evict_only_touches_one_location(cache):
    a, b = make_location("store-1"), make_location("store-2")
    for item_id in ("i1", "i2", "i3"):
        await cache.put(a, make_item(item_id), [make_promotion()])
    await cache.put(b, make_item("i1"), [make_promotion()])

    assert await cache.evict("store-1") == 3
    assert await cache.list_by_location("store-1") == []
    assert [e.item.item_id for e in await cache.list_all()] == ["i1"]
    stats = await cache.stats()
    assert (stats.backend, stats.total_keys) == ("memory", 1)


@pytest.mark.anyio
async def test_put_replaces_previous_entry(cache):
    location = make_location()
    await cache.put(location, make_item(), [make_promotion("old")])
    await cache.put(location, make_item(), [make_promotion("new")])

    entry = await cache.get(location.key, "i1")
    assert [p.promotion_id for p in entry.promotions] == ["new"]


@pytest.mark.anyio
async def test_memory_store_is_bounded(clock):
    cache = CacheStore(None, memory_max_entries=10, clock=clock)
    location = make_location()
    for n in range(15):
        await cache.put(location, make_item(f"i{n:02d}"), [make_promotion()])

    keys = [e.item.item_id for e in await cache.list_by_location(location.key)]
    assert len(keys) <= 10
    assert "i14" in keys and "i00" not in keys
