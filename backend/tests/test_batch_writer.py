import pytest

from factories import Clock, make_item, make_promotion, no_sleep
from promosync.core.exceptions import SinkError, TransientSinkError
from promosync.core.retry import RetryPolicy
from promosync.schemas.sync import BatchOutcome
from promosync.services.batch_writer import BatchWriter, chunked


class DummySink:
    """Records batch calls; ``failures`` maps batch number -> exceptions to raise in turn."""

    def __init__(self, failures=None):
        self.failures = failures or {}
        self.batches = []
        self.calls = 0
        self.cleared = []

    async def clear_items(self, location_id):
        self.cleared.append(location_id)
        return 7

    async def detach_promotions(self, location_id):
        return 0

    async def write_items(self, location_id, batch):
        self.calls += 1
        pending = self.failures.get(len(self.batches) + 1)
        if pending:
            raise pending.pop(0)
        self.batches.append([getattr(row, "item_id", None) or row.promotion_id for row in batch])
        return BatchOutcome(written=len(batch))

    write_promotions = write_items


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def _writer(sink, sleep=no_sleep, batch_size=2) -> BatchWriter:
    return BatchWriter(
        sink,
        retry=RetryPolicy(base_delay=0.0, jitter=0.0, sleep=no_sleep),
        batch_size=batch_size,
        batch_delay=0.1,
        min_quantity=5,
        clock=Clock(),
        sleep=sleep,
    )


def test_chunked_keeps_order():
    assert chunked([1, 2, 3, 4, 5], 2) == [[1, 2], [3, 4], [5]]
    assert chunked([], 100) == []


@pytest.mark.anyio
async def test_batches_are_paced():
    sink, sleep = DummySink(), RecordingSleep()
    items = [make_item(f"i{n}") for n in range(5)]

    result = await _writer(sink, sleep=sleep).replace_items("store-1", items)

    assert sink.cleared == ["store-1"]
    assert sink.batches == [["i0", "i1"], ["i2", "i3"], ["i4"]]
    assert sleep.delays == [0.1, 0.1]
    assert (result.created, result.deleted, result.errors) == (5, 7, 0)


@pytest.mark.anyio
async def test_failed_batch_does_not_undo_earlier_batches():
    sink = DummySink(failures={2: [SinkError("constraint violated", 400)]})
    items = [make_item(f"i{n}") for n in range(5)]

    result = await _writer(sink).replace_items("store-1", items)

    # batch 2 is lost, batch 3 is written as the second committed batch
    assert sink.batches == [["i0", "i1"], ["i4"]]
    assert (result.created, result.errors) == (3, 2)


@pytest.mark.anyio
async def test_transient_batch_failure_is_retried():
    sink = DummySink(failures={1: [TransientSinkError("503", 503), TransientSinkError("503", 503)]})

    result = await _writer(sink).replace_items("store-1", [make_item("a"), make_item("b")])

    assert sink.calls == 3
    assert (result.created, result.errors) == (2, 0)


@pytest.mark.anyio
async def test_invalid_rows_are_dropped_before_writing():
    sink = DummySink()
    promos = [make_promotion("ok"), make_promotion("off", is_active=False), make_promotion("gone", is_deleted=True)]

    result = await _writer(sink, batch_size=10).replace_promotions("store-1", promos)

    assert sink.batches == [["ok"]]
    assert (result.created, result.dropped) == (1, 2)
