"""
Log aggregation: secondary sinks that buffer records and hand them to a
callback in batches, independently of transport delivery.
"""

import asyncio
import concurrent.futures
import inspect
import threading
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, NamedTuple

import structlog

from .dispatch import Submitted, TaskScheduler, TimerHandle, get_default_scheduler, running_loop
from .formatters import Formatter
from .records import LogRecord

logger = structlog.get_logger(__name__)


class AggregatedRecord(NamedTuple):
    record: LogRecord
    formatter: Formatter


FlushCallback = Callable[[list[AggregatedRecord]], Awaitable[Any] | None]
FlushResult = Awaitable[Any] | concurrent.futures.Future | None


def is_pending(result: Any) -> bool:
    """Whether a flush result still has to be waited for."""
    return isinstance(result, concurrent.futures.Future) or inspect.isawaitable(result)


def as_awaitable(result: Awaitable[Any] | concurrent.futures.Future) -> Awaitable[Any]:
    """Make a pending flush result awaitable from the running loop."""
    if isinstance(result, concurrent.futures.Future):
        return asyncio.wrap_future(result)
    return result


async def _wait_all(results: list) -> list:
    return await asyncio.gather(*(as_awaitable(result) for result in results))


class LogAggregator(ABC):
    """Interface for log aggregation targets."""

    @abstractmethod
    def aggregate(self, record: LogRecord, formatter: Formatter) -> None:
        """Take one record for aggregation."""

    @abstractmethod
    def flush(self) -> FlushResult:
        """Flush pending records; returns an awaitable or future when the flush is asynchronous."""

    def stop(self) -> None:
        """Cancel any pending timers."""


class BufferedAggregator(LogAggregator):
    """
    Shared buffer handling for the concrete aggregators.

    A flush swaps the buffer for a fresh list before the callback runs, so
    records arriving during the flush start a new batch. If the callback
    fails, the batch goes back in front of whatever arrived meanwhile.

    Timers and asynchronous flushes may run on the scheduler's background
    thread, so every change to the buffer happens under ``_lock``. The flush
    callback itself runs outside it.
    """

    def __init__(self, flush_callback: FlushCallback, scheduler: TaskScheduler | None = None):
        self.flush_callback = flush_callback
        self.scheduler = scheduler
        self._buffer: list[AggregatedRecord] = []
        self._lock = threading.RLock()

    @property
    def buffered(self) -> int:
        with self._lock:
            return len(self._buffer)

    def _append(self, record: LogRecord, formatter: Formatter) -> int:
        with self._lock:
            self._buffer.append(AggregatedRecord(record, formatter))
            return len(self._buffer)

    def _flush_buffer(self) -> Submitted | None:
        with self._lock:
            batch, self._buffer = self._buffer, []
        if not batch:
            return None

        try:
            result = self.flush_callback(batch)
        except Exception:
            self._restore(batch)
            raise

        if inspect.isawaitable(result):
            scheduler = self.scheduler or get_default_scheduler()
            return scheduler.submit(self._settle(result, batch))
        return None

    async def _settle(self, result: Awaitable[Any], batch: list[AggregatedRecord]) -> None:
        try:
            await result
        except Exception:
            self._restore(batch)
            raise

    def _restore(self, batch: list[AggregatedRecord]) -> None:
        with self._lock:
            self._buffer[:0] = batch


class BatchAggregator(BufferedAggregator):
    """
    Flushes whenever ``max_size`` records have accumulated.

    At most one asynchronous flush is in flight. While it runs, further
    flush requests return the in-flight future and new records keep
    accumulating for the next batch.
    """

    def __init__(
        self,
        max_size: int = 100,
        flush_callback: FlushCallback | None = None,
        scheduler: TaskScheduler | None = None,
    ):
        if flush_callback is None:
            raise ValueError("BatchAggregator requires a flush_callback")
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        super().__init__(flush_callback, scheduler)
        self.max_size = max_size
        self._pending: Submitted | None = None

    @property
    def flush_in_progress(self) -> bool:
        return self._pending is not None

    def aggregate(self, record: LogRecord, formatter: Formatter) -> None:
        if self._append(record, formatter) >= self.max_size and self._pending is None:
            self.flush()

    def flush(self) -> Submitted | None:
        if self._pending is not None:
            return self._pending

        result = self._flush_buffer()
        if result is not None:
            self._pending = result
            result.add_done_callback(self._flush_settled)
        return result

    def _flush_settled(self, future: Submitted) -> None:
        if self._pending is future:
            self._pending = None


class TimeBasedAggregator(BufferedAggregator):
    """
    Flushes ``flush_interval`` seconds after the first record of a batch.

    A manual ``flush`` cancels the timer and flushes at once; ``stop`` cancels
    the timer and leaves the buffer untouched.
    """

    def __init__(
        self,
        flush_interval: float,
        flush_callback: FlushCallback,
        scheduler: TaskScheduler | None = None,
    ):
        super().__init__(flush_callback, scheduler)
        self.flush_interval = flush_interval
        self._timer: TimerHandle | None = None

    @property
    def timer_active(self) -> bool:
        return self._timer is not None

    def aggregate(self, record: LogRecord, formatter: Formatter) -> None:
        with self._lock:
            self._append(record, formatter)
            if self._timer is None:
                scheduler = self.scheduler or get_default_scheduler()
                self._timer = scheduler.call_later(self.flush_interval, self._on_timer)

    def _on_timer(self) -> None:
        with self._lock:
            self._timer = None
        try:
            self.flush()
        except Exception as e:
            logger.error(
                "time_based_flush_failed",
                error=str(e),
                error_type=type(e).__name__,
                buffered=self.buffered,
            )

    def flush(self) -> Submitted | None:
        with self._lock:
            if not self._buffer:
                return None
            self._cancel_timer()
        return self._flush_buffer()

    def stop(self) -> None:
        with self._lock:
            self._cancel_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class CompositeAggregator(LogAggregator):
    """Fans every record out to several aggregators."""

    def __init__(self, aggregators: Iterable[LogAggregator], scheduler: TaskScheduler | None = None):
        self.aggregators = list(aggregators)
        self.scheduler = scheduler

    def aggregate(self, record: LogRecord, formatter: Formatter) -> None:
        for aggregator in self.aggregators:
            aggregator.aggregate(record, formatter)

    def flush(self) -> FlushResult:
        """
        Flush every child.

        Returns None when all children flushed synchronously. Otherwise it
        returns something that completes only when every asynchronous child
        flush has: an awaitable inside a running loop, or a
        ``concurrent.futures.Future`` bound to the scheduler's background
        loop when there is none.
        """
        pending = []
        for aggregator in self.aggregators:
            result = aggregator.flush()
            if is_pending(result):
                pending.append(result)

        if not pending:
            return None
        if running_loop() is None:
            scheduler = self.scheduler or get_default_scheduler()
            return scheduler.submit(_wait_all(pending))
        return asyncio.gather(*(as_awaitable(result) for result in pending))

    def stop(self) -> None:
        for aggregator in self.aggregators:
            aggregator.stop()
