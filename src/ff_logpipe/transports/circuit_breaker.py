"""
Circuit-breaker-only transport decorator with delivery metrics.

State names reported by this decorator are inverted relative to the usual
convention, and callers depend on them:

    "open"       healthy, deliveries flow through
    "closed"     tripped, deliveries fail fast
    "half-open"  timeout elapsed, one trial delivery allowed

Unlike RetryTransport, a success does not clear the failure counter. It
shrinks it by 10% (never below 1), so a transport that keeps failing
intermittently trips sooner than one that failed once long ago.
"""

import time
from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any, Union

import structlog

from ..breaker import INVERTED_LABELS, BreakerState, CircuitBreaker, MultiplicativeDecay
from ..dispatch import TaskScheduler, TimerHandle, get_default_scheduler
from ..errors import CircuitOpenError
from ..formatters import Formatter
from ..records import LogRecord
from .base import AsyncTransport, Transport, deliver

logger = structlog.get_logger(__name__)

# Weight of the previous average in the smoothed response time.
RESPONSE_TIME_SMOOTHING = 0.9


@dataclass
class CircuitBreakerMetrics:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    current_state: str = INVERTED_LABELS[BreakerState.CLOSED]
    average_response_time: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


TransportSource = Union[Transport, Callable[[], Transport]]


def _build_transport(source: TransportSource) -> Transport:
    if isinstance(source, type):
        return source()
    if callable(getattr(source, "write", None)):
        return source
    if callable(source):
        return source()
    raise TypeError(f"Invalid transport configuration: {source!r}")


class CircuitBreakerTransport(AsyncTransport):
    """
    Fails fast while the wrapped transport is unhealthy.

    Args:
        transport: Transport instance, or a zero-argument factory/class
        threshold: Failures that trip the breaker
        timeout: Seconds before a tripped breaker allows a trial delivery
        reset_timeout: If set, fully reset the breaker this many seconds after it trips
        on_state_change: Called with (old_state, new_state) names
        on_trip: Called with the failure count when the breaker trips
        on_reset: Called when a tripped breaker becomes healthy again
        scheduler: Scheduler for the auto-reset timer
    """

    def __init__(
        self,
        transport: TransportSource,
        threshold: int = 5,
        timeout: float = 60.0,
        reset_timeout: float | None = None,
        on_state_change: Callable[[str, str], None] | None = None,
        on_trip: Callable[[int], None] | None = None,
        on_reset: Callable[[], None] | None = None,
        scheduler: TaskScheduler | None = None,
    ):
        self.transport = _build_transport(transport)
        self.reset_timeout = reset_timeout
        self.on_state_change = on_state_change
        self.on_trip = on_trip
        self.on_reset = on_reset
        self.scheduler = scheduler

        self.breaker = CircuitBreaker(
            threshold=threshold,
            timeout=timeout,
            decay=MultiplicativeDecay(factor=0.9, floor=1),
            labels=INVERTED_LABELS,
            on_state_change=self._on_breaker_change,
        )
        self._metrics = CircuitBreakerMetrics(current_state=self.breaker.state_label)
        self._reset_timer: TimerHandle | None = None

    @property
    def state(self) -> str:
        return self.breaker.state_label

    @property
    def failure_count(self) -> int:
        return self.breaker.failure_count

    def write(self, record: LogRecord, formatter: Formatter) -> None:
        started = self._begin()
        try:
            self.transport.write(record, formatter)
        except Exception:
            self._failed()
            raise
        self._succeeded(started)

    async def write_async(self, record: LogRecord, formatter: Formatter) -> None:
        started = self._begin()
        try:
            await deliver(self.transport, record, formatter)
        except Exception:
            self._failed()
            raise
        self._succeeded(started)

    def _begin(self) -> float:
        if not self.breaker.allow_request():
            raise CircuitOpenError("Circuit breaker is open")
        self._metrics.total_requests += 1
        return time.monotonic()

    def _succeeded(self, started: float) -> None:
        self._metrics.successful_requests += 1
        self.breaker.record_success()

        elapsed = time.monotonic() - started
        if self._metrics.successful_requests == 1:
            self._metrics.average_response_time = elapsed
        else:
            self._metrics.average_response_time = (
                RESPONSE_TIME_SMOOTHING * self._metrics.average_response_time
                + (1 - RESPONSE_TIME_SMOOTHING) * elapsed
            )

    def _failed(self) -> None:
        self._metrics.failed_requests += 1
        self.breaker.record_failure()

    def _on_breaker_change(self, old: str, new: str) -> None:
        healthy = self.breaker.labels[BreakerState.CLOSED]
        tripped = self.breaker.labels[BreakerState.OPEN]
        if self.on_state_change is not None:
            self.on_state_change(old, new)

        if new == tripped:
            logger.warning(
                "circuit_breaker_tripped",
                failure_count=self.breaker.failure_count,
                transport=type(self.transport).__name__,
            )
            if self.on_trip is not None:
                self.on_trip(self.breaker.failure_count)
            self._schedule_reset()
        elif new == healthy and old != healthy:
            if self.on_reset is not None:
                self.on_reset()

    def _schedule_reset(self) -> None:
        if self.reset_timeout is None:
            return
        self._cancel_reset_timer()
        scheduler = self.scheduler or get_default_scheduler()
        self._reset_timer = scheduler.call_later(self.reset_timeout, self.reset)

    def _cancel_reset_timer(self) -> None:
        if self._reset_timer is not None:
            self._reset_timer.cancel()
            self._reset_timer = None

    def get_metrics(self) -> CircuitBreakerMetrics:
        metrics = CircuitBreakerMetrics(**asdict(self._metrics))
        metrics.current_state = self.breaker.state_label
        return metrics

    def reset(self) -> None:
        """Return to the healthy state and clear all metrics."""
        self._cancel_reset_timer()
        self.breaker.reset()
        self._metrics = CircuitBreakerMetrics(current_state=self.breaker.state_label)

    def close(self) -> None:
        self._cancel_reset_timer()
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(transport={self.transport!r}, state={self.state!r})"
