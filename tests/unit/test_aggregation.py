"""
Tests for the aggregation layer.
"""

import asyncio
import concurrent.futures
import threading
import time

import pytest
from ff_logpipe.aggregation import BatchAggregator, CompositeAggregator, TimeBasedAggregator
from ff_logpipe.records import LogRecord


def records(count):
    return [LogRecord.create("info", f"m{i}") for i in range(count)]


def messages(batch):
    return [item.record.message for item in batch]


class TestBatchAggregator:
    """Test size-triggered batching."""

    def test_flush_empty_is_noop(self, formatter):
        """Flushing an empty buffer never calls the callback."""
        batches = []
        aggregator = BatchAggregator(max_size=3, flush_callback=batches.append)

        assert aggregator.flush() is None
        assert batches == []

    def test_flush_at_max_size(self, formatter):
        """Exactly max_size records trigger exactly one flush, in arrival order."""
        batches = []
        aggregator = BatchAggregator(max_size=3, flush_callback=batches.append)

        for record in records(3):
            aggregator.aggregate(record, formatter)

        assert len(batches) == 1
        assert messages(batches[0]) == ["m0", "m1", "m2"]
        assert batches[0][0].formatter is formatter
        assert aggregator.buffered == 0

    def test_below_max_size(self, formatter):
        batches = []
        aggregator = BatchAggregator(max_size=3, flush_callback=batches.append)

        for record in records(2):
            aggregator.aggregate(record, formatter)

        assert batches == []
        assert aggregator.buffered == 2

    def test_manual_flush(self, formatter):
        batches = []
        aggregator = BatchAggregator(max_size=10, flush_callback=batches.append)
        for record in records(2):
            aggregator.aggregate(record, formatter)

        aggregator.flush()

        assert [messages(b) for b in batches] == [["m0", "m1"]]

    def test_sync_failure_restores_batch(self, formatter):
        """A failed batch is kept for the next flush."""
        calls = []

        def callback(batch):
            calls.append(messages(batch))
            if len(calls) == 1:
                raise RuntimeError("sink down")

        aggregator = BatchAggregator(max_size=10, flush_callback=callback)
        for record in records(2):
            aggregator.aggregate(record, formatter)

        with pytest.raises(RuntimeError):
            aggregator.flush()
        assert aggregator.buffered == 2

        aggregator.aggregate(LogRecord.create("info", "late"), formatter)
        aggregator.flush()

        assert calls[-1] == ["m0", "m1", "late"]

    def test_requires_callback(self):
        with pytest.raises(ValueError):
            BatchAggregator(max_size=1)

    @pytest.mark.asyncio
    async def test_async_flush_coalesces(self, formatter, scheduler):
        """While an async flush is in flight, flush returns the same future."""
        release = asyncio.Event()
        batches = []

        async def callback(batch):
            batches.append(messages(batch))
            await release.wait()

        aggregator = BatchAggregator(max_size=2, flush_callback=callback, scheduler=scheduler)
        for record in records(2):
            aggregator.aggregate(record, formatter)

        assert aggregator.flush_in_progress
        pending = aggregator.flush()

        # Records keep accumulating without triggering another flush
        for record in records(3):
            aggregator.aggregate(record, formatter)
        assert aggregator.flush() is pending
        assert aggregator.buffered == 3

        release.set()
        await pending

        assert not aggregator.flush_in_progress
        await aggregator.flush()
        assert batches == [["m0", "m1"], ["m0", "m1", "m2"]]

    @pytest.mark.asyncio
    async def test_async_failure_restores_batch(self, formatter, scheduler):
        attempts = []

        async def callback(batch):
            attempts.append(messages(batch))
            if len(attempts) == 1:
                raise RuntimeError("sink down")

        aggregator = BatchAggregator(max_size=10, flush_callback=callback, scheduler=scheduler)
        for record in records(2):
            aggregator.aggregate(record, formatter)

        with pytest.raises(RuntimeError):
            await aggregator.flush()
        assert aggregator.buffered == 2

        await aggregator.flush()
        assert attempts == [["m0", "m1"], ["m0", "m1"]]
        assert aggregator.buffered == 0


class TestTimeBasedAggregator:
    """Test interval-triggered batching."""

    @pytest.mark.asyncio
    async def test_flushes_after_interval(self, formatter, scheduler):
        batches = []
        aggregator = TimeBasedAggregator(0.02, batches.append, scheduler=scheduler)

        for record in records(2):
            aggregator.aggregate(record, formatter)
        assert aggregator.timer_active
        assert batches == []

        await asyncio.sleep(0.05)

        assert [messages(b) for b in batches] == [["m0", "m1"]]
        assert not aggregator.timer_active

    @pytest.mark.asyncio
    async def test_manual_flush_cancels_timer(self, formatter, scheduler):
        batches = []
        aggregator = TimeBasedAggregator(0.02, batches.append, scheduler=scheduler)
        aggregator.aggregate(records(1)[0], formatter)

        aggregator.flush()
        assert not aggregator.timer_active
        await asyncio.sleep(0.05)

        assert len(batches) == 1

    @pytest.mark.asyncio
    async def test_stop_cancels_without_flushing(self, formatter, scheduler):
        batches = []
        aggregator = TimeBasedAggregator(0.02, batches.append, scheduler=scheduler)
        aggregator.aggregate(records(1)[0], formatter)

        aggregator.stop()
        await asyncio.sleep(0.05)

        assert batches == []
        assert aggregator.buffered == 1

    @pytest.mark.asyncio
    async def test_new_timer_after_flush(self, formatter, scheduler):
        batches = []
        aggregator = TimeBasedAggregator(0.02, batches.append, scheduler=scheduler)

        aggregator.aggregate(records(1)[0], formatter)
        await asyncio.sleep(0.05)
        aggregator.aggregate(records(1)[0], formatter)
        assert aggregator.timer_active
        await asyncio.sleep(0.05)

        assert len(batches) == 2

    def test_timer_without_event_loop(self, formatter):
        """Outside a loop the timer runs on a background thread."""
        flushed = threading.Event()
        aggregator = TimeBasedAggregator(0.01, lambda batch: flushed.set())

        aggregator.aggregate(records(1)[0], formatter)

        assert flushed.wait(1.0)

    def test_background_timer_flushes_lose_no_records(self, formatter, scheduler):
        """Timer threads flushing while the caller appends neither drop nor repeat records."""
        delivered = []
        lock = threading.Lock()

        def collect(batch):
            with lock:
                delivered.extend(messages(batch))

        aggregator = TimeBasedAggregator(0.001, collect, scheduler=scheduler)
        sent = records(3000)
        for record in sent:
            aggregator.aggregate(record, formatter)

        aggregator.stop()
        aggregator.flush()
        deadline = time.monotonic() + 1.0
        while time.monotonic() < deadline:
            with lock:
                received = list(delivered)
            if len(received) >= len(sent):
                break
            time.sleep(0.01)

        assert sorted(received) == sorted(record.message for record in sent)
        assert aggregator.buffered == 0


class TestCompositeAggregator:
    """Test fan-out aggregation."""

    def test_forwards_to_children(self, formatter):
        first, second = [], []
        composite = CompositeAggregator(
            [
                BatchAggregator(max_size=1, flush_callback=first.append),
                BatchAggregator(max_size=1, flush_callback=second.append),
            ]
        )

        composite.aggregate(records(1)[0], formatter)

        assert len(first) == 1
        assert len(second) == 1

    def test_sync_flush_returns_none(self, formatter):
        batches = []
        composite = CompositeAggregator([BatchAggregator(max_size=10, flush_callback=batches.append)])
        composite.aggregate(records(1)[0], formatter)

        assert composite.flush() is None
        assert len(batches) == 1

    @pytest.mark.asyncio
    async def test_async_flush_waits_for_all(self, formatter, scheduler):
        done = []

        async def slow(batch):
            await asyncio.sleep(0.01)
            done.append("slow")

        sync_batches = []
        composite = CompositeAggregator(
            [
                BatchAggregator(max_size=10, flush_callback=slow, scheduler=scheduler),
                BatchAggregator(max_size=10, flush_callback=sync_batches.append),
            ]
        )
        composite.aggregate(records(1)[0], formatter)

        result = composite.flush()
        assert result is not None
        await result

        assert done == ["slow"]
        assert len(sync_batches) == 1

    def test_flush_without_loop_waits_for_async_child(self, formatter, scheduler):
        """Outside an event loop the composite returns a future that waits for every child."""
        release = threading.Event()
        done = []

        async def slow(batch):
            await asyncio.get_running_loop().run_in_executor(None, release.wait, 1.0)
            done.append(messages(batch))

        child = BatchAggregator(max_size=10, flush_callback=slow, scheduler=scheduler)
        composite = CompositeAggregator([child], scheduler=scheduler)
        composite.aggregate(records(1)[0], formatter)

        result = composite.flush()

        assert isinstance(result, concurrent.futures.Future)
        assert not result.done()
        release.set()
        result.result(timeout=1.0)
        assert done == [["m0"]]

    def test_flush_without_loop_reports_child_failure(self, formatter, scheduler):
        """A failing asynchronous child fails the combined future and keeps its batch."""

        async def broken(batch):
            raise RuntimeError("sink down")

        child = BatchAggregator(max_size=10, flush_callback=broken, scheduler=scheduler)
        composite = CompositeAggregator([child], scheduler=scheduler)
        composite.aggregate(records(1)[0], formatter)

        result = composite.flush()

        with pytest.raises(RuntimeError, match="sink down"):
            result.result(timeout=1.0)
        assert child.buffered == 1

    @pytest.mark.asyncio
    async def test_stop_stops_children(self, formatter, scheduler):
        batches = []
        timed = TimeBasedAggregator(0.02, batches.append, scheduler=scheduler)
        composite = CompositeAggregator([timed])
        composite.aggregate(records(1)[0], formatter)

        composite.stop()
        await asyncio.sleep(0.05)

        assert batches == []
