"""
Deferred dispatch for ff-logpipe.

Everything the pipeline does "later" goes through a TaskScheduler: deferred
transport deliveries, the retry decorator's fire-and-forget entry point, and
aggregator flushes and timers. Work is submitted to the asyncio loop running in
the calling thread, or, when there is none, to a single background loop thread
started on first use.
"""

import asyncio
import concurrent.futures
import threading
from collections.abc import Callable, Coroutine
from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)

Submitted = asyncio.Future | concurrent.futures.Future


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


def running_loop() -> asyncio.AbstractEventLoop | None:
    """Return the loop running in this thread, if any."""
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


class TaskScheduler:
    """
    Fire-and-forget executor with drain support.

    Submitted coroutines are expected to report their own failures; an
    exception escaping one is logged when the task finishes.
    """

    def __init__(self, name: str = "ff-logpipe-dispatch"):
        self.name = name
        self._pending: set[Submitted] = set()
        self._lock = threading.Lock()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None

    def submit(self, coro: Coroutine[Any, Any, Any]) -> Submitted:
        """
        Schedule a coroutine and return immediately.

        Returns an asyncio task when called from a running loop, otherwise a
        ``concurrent.futures.Future`` bound to the background loop.
        """
        loop = running_loop()
        if loop is not None:
            future: Submitted = loop.create_task(coro)
        else:
            future = asyncio.run_coroutine_threadsafe(coro, self._ensure_background_loop())

        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._on_done)
        return future

    def call_later(self, delay: float, callback: Callable[[], Any]) -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds; the handle can cancel it."""
        loop = running_loop()
        if loop is not None:
            return loop.call_later(delay, callback)

        timer = threading.Timer(delay, callback)
        timer.daemon = True
        timer.start()
        return timer

    @property
    def pending(self) -> int:
        with self._lock:
            return sum(1 for future in self._pending if not future.done())

    async def drain(self) -> None:
        """Wait for every submitted task, including ones submitted meanwhile."""
        current = asyncio.get_running_loop()
        while True:
            with self._lock:
                waiting = [future for future in self._pending if not future.done()]

            awaitables = []
            for future in waiting:
                if isinstance(future, concurrent.futures.Future):
                    awaitables.append(asyncio.wrap_future(future))
                elif future.get_loop() is current:
                    awaitables.append(future)

            if not awaitables:
                return
            await asyncio.gather(*awaitables, return_exceptions=True)

    def close(self, timeout: float = 5.0) -> None:
        """Stop the background loop, if one was started."""
        with self._lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None

        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        if thread is not None:
            thread.join(timeout)
        if not loop.is_running():
            loop.close()

    def _ensure_background_loop(self) -> asyncio.AbstractEventLoop:
        with self._lock:
            if self._loop is None or self._loop.is_closed():
                loop = asyncio.new_event_loop()
                thread = threading.Thread(
                    target=self._run_loop, args=(loop,), name=self.name, daemon=True
                )
                thread.start()
                self._loop, self._thread = loop, thread
            return self._loop

    @staticmethod
    def _run_loop(loop: asyncio.AbstractEventLoop) -> None:
        asyncio.set_event_loop(loop)
        loop.run_forever()

    def _on_done(self, future: Submitted) -> None:
        with self._lock:
            self._pending.discard(future)

        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(
                "deferred_task_failed",
                scheduler=self.name,
                error=str(error),
                error_type=type(error).__name__,
            )

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name!r}, pending={self.pending})"


_default_scheduler: TaskScheduler | None = None


def get_default_scheduler() -> TaskScheduler:
    """Process-wide scheduler used when a component is not given one."""
    global _default_scheduler
    if _default_scheduler is None:
        _default_scheduler = TaskScheduler()
    return _default_scheduler
