from datetime import timedelta

import pytest

from factories import NOW, Clock, exclude, include, make_item, make_promotion, no_sleep
from promosync.core.db import build_engine, build_session_factory
from promosync.core.exceptions import ConfigError
from promosync.core.retry import RetryPolicy
from promosync.models import Store
from promosync.services.batch_writer import BatchWriter
from promosync.services.sink import SqlSink


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(url=f"sqlite+aiosqlite:///{tmp_path / 'sink.db'}")
    yield engine
    await engine.dispose()


@pytest.fixture
async def sql_sink(engine):
    sink = SqlSink(engine, create_tables=True, clock=Clock())
    await sink.negotiate_schema()
    return sink


def _writer(sink, **kwargs) -> BatchWriter:
    kwargs.setdefault("batch_size", 2)
    return BatchWriter(
        sink,
        retry=RetryPolicy(base_delay=0.0, jitter=0.0, sleep=no_sleep),
        batch_delay=0.0,
        min_quantity=5,
        clock=Clock(),
        sleep=no_sleep,
        **kwargs,
    )


@pytest.mark.anyio
async def test_schema_mismatch_is_a_config_error(tmp_path):
    engine = build_engine(url=f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    sink = SqlSink(engine)
    try:
        with pytest.raises(ConfigError) as info:
            await sink.negotiate_schema()
        assert "discount_locations" in str(info.value)
    finally:
        await sink.close()


@pytest.mark.anyio
async def test_list_locations_skips_inactive_stores(sql_sink, engine):
    sessions = build_session_factory(engine)
    async with sessions() as session:
        session.add_all(
            [
                Store(name="Downtown", external_store_id="dt", api_key="k1"),
                Store(name="Closed", external_store_id="cl", api_key="k2", is_active=False),
                Store(name="New", external_store_id=None, api_key=None),
            ]
        )
        await session.commit()

    locations = await sql_sink.list_locations()

    assert [loc.name for loc in locations] == ["Downtown", "New"]
    assert locations[0].key == "dt"
    assert locations[1].missing_credentials() == ["api_key", "external_store_id"]


@pytest.mark.anyio
async def test_replace_items_applies_quantity_floor(sql_sink):
    items = [make_item("low", quantity_available=4), make_item("edge", quantity_available=5)]

    result = await _writer(sql_sink).replace_items("store-1", items)

    rows = await sql_sink.list_items("store-1")
    assert [r.inventory_id for r in rows] == ["edge"]
    assert (result.created, result.dropped, result.errors) == (1, 1, 0)


@pytest.mark.anyio
async def test_replace_items_is_idempotent_and_scoped(sql_sink):
    writer = _writer(sql_sink)
    items = [make_item(f"i{n}", tags=["sale"]) for n in range(5)]
    await writer.replace_items("store-2", [make_item("other")])

    first = await writer.replace_items("store-1", items)
    second = await writer.replace_items("store-1", items)

    rows = await sql_sink.list_items("store-1")
    assert [r.inventory_id for r in rows] == ["i0", "i1", "i2", "i3", "i4"]
    assert rows[0].tags == ["sale"]
    assert (first.created, first.deleted) == (5, 0)
    assert (second.created, second.deleted) == (5, 5)
    assert [r.inventory_id for r in await sql_sink.list_items("store-2")] == ["other"]


@pytest.mark.anyio
async def test_replace_items_removes_rows_no_longer_reported(sql_sink):
    writer = _writer(sql_sink)
    await writer.replace_items("store-1", [make_item("a"), make_item("b")])
    await writer.replace_items("store-1", [make_item("b", quantity_available=50)])

    rows = await sql_sink.list_items("store-1")
    assert [(r.inventory_id, r.quantity_available) for r in rows] == [("b", 50)]


@pytest.mark.anyio
async def test_duplicate_ids_in_one_batch_collapse(sql_sink):
    outcome = await sql_sink.write_items("store-1", [make_item("a", sku="one"), make_item("a", sku="two")])

    rows = await sql_sink.list_items("store-1")
    assert [(r.inventory_id, r.sku) for r in rows] == [("a", "two")]
    assert (outcome.written, outcome.skipped) == (1, 1)


@pytest.mark.anyio
async def test_promotions_are_shared_between_locations(sql_sink):
    writer = _writer(sql_sink)
    shared = make_promotion("shared", brands=exclude("b9"), valid_until=NOW + timedelta(days=3))
    only_one = make_promotion("only-one", products=include("p1"))

    await writer.replace_promotions("store-1", [shared, only_one])
    await writer.replace_promotions("store-2", [shared])
    result = await writer.replace_promotions("store-1", [shared])

    assert result.deleted == 2
    assert [d.discount_id for d in await sql_sink.list_promotions("store-1")] == ["shared"]
    assert [d.discount_id for d in await sql_sink.list_promotions("store-2")] == ["shared"]
    stored = {d.discount_id: d for d in await sql_sink.list_promotions()}
    assert stored["shared"].brands == {"ids": ["b9"], "is_exclusion": True}

    assert await sql_sink.purge_promotions(NOW) == 1
    assert [d.discount_id for d in await sql_sink.list_promotions()] == ["shared"]


@pytest.mark.anyio
async def test_invalid_promotions_are_dropped_and_expired_ones_purged(sql_sink):
    writer = _writer(sql_sink)
    promos = [
        make_promotion("live", valid_until=NOW + timedelta(hours=1)),
        make_promotion("expired", valid_until=NOW - timedelta(hours=1)),
        make_promotion("inactive", is_active=False),
        make_promotion("deleted", is_deleted=True),
    ]

    result = await writer.replace_promotions("store-1", promos)

    assert (result.created, result.dropped) == (1, 3)
    assert await sql_sink.purge_promotions(NOW) == 0
    assert await sql_sink.purge_promotions(NOW + timedelta(hours=2)) == 1
    assert await sql_sink.list_promotions() == []
