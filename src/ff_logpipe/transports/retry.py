"""
Retrying transport decorator with exponential backoff and a circuit breaker.
"""

import asyncio
import random
import re
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from re import Pattern

import structlog

from ..breaker import BreakerState, CircuitBreaker, ResetOnSuccess
from ..dispatch import TaskScheduler, get_default_scheduler
from ..errors import (
    CircuitOpenError,
    ErrorEvent,
    ErrorListener,
    ErrorListeners,
    RetryExhaustedError,
    error_code,
)
from ..formatters import Formatter
from ..records import LogRecord
from .base import AsyncTransport, Transport, deliver

logger = structlog.get_logger(__name__)

DEFAULT_RETRYABLE_CODES = frozenset(
    {
        "ECONNRESET",
        "ECONNREFUSED",
        "ETIMEDOUT",
        "ENOTFOUND",
        "EAI_AGAIN",
        "EHOSTUNREACH",
        "ENETUNREACH",
        "ENOENT",
        "EMFILE",
        "ENFILE",
    }
)

DEFAULT_RETRYABLE_PATTERNS: list[Pattern] = [
    re.compile(r"timeout", re.I),
    re.compile(r"timed out", re.I),
    re.compile(r"network", re.I),
    re.compile(r"connection", re.I),
    re.compile(r"temporary", re.I),
    re.compile(r"rate limit", re.I),
    re.compile(r"too many requests", re.I),
    re.compile(r"service unavailable", re.I),
    re.compile(r"bad gateway", re.I),
]


@dataclass(frozen=True)
class RetryContext:
    """Snapshot passed to retry callbacks."""

    attempt: int
    total_attempts: int
    error: BaseException
    delay: float
    started_at: float


@dataclass(frozen=True)
class RetryExhaustedContext:
    last_error: BaseException
    attempts: int
    elapsed: float
    record: LogRecord


class RetryTransport(AsyncTransport):
    """
    Retries failed deliveries of a wrapped transport.

    Failures are retried only when their error code is in
    ``retryable_error_codes`` or their message matches one of
    ``retryable_error_patterns``. Each delivery that still fails after
    ``max_attempts`` counts once against the circuit breaker; once the breaker
    trips, deliveries fail immediately with CircuitOpenError until
    ``circuit_breaker_timeout`` seconds have passed.

    ``write`` never raises: it schedules the delivery and reports a final
    failure to the ``on_error`` listeners. ``write_async`` raises.
    """

    def __init__(
        self,
        transport: Transport,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        backoff_multiplier: float = 2,
        jitter: bool = True,
        retryable_error_codes: Iterable[str] | None = None,
        retryable_error_patterns: Iterable[Pattern | str] | None = None,
        circuit_breaker_threshold: int = 5,
        circuit_breaker_timeout: float = 60.0,
        on_retry_attempt: Callable[[RetryContext], None] | None = None,
        on_retry_exhausted: Callable[[RetryExhaustedContext], None] | None = None,
        on_circuit_open: Callable[[], None] | None = None,
        on_circuit_close: Callable[[], None] | None = None,
        on_error: Iterable[ErrorListener] | None = None,
        scheduler: TaskScheduler | None = None,
    ):
        if transport is None:
            raise ValueError("RetryTransport requires a transport to wrap")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.transport = transport
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_multiplier = backoff_multiplier
        self.jitter = jitter
        self.retryable_error_codes = frozenset(
            DEFAULT_RETRYABLE_CODES if retryable_error_codes is None else retryable_error_codes
        )
        if retryable_error_patterns is None:
            self.retryable_error_patterns = list(DEFAULT_RETRYABLE_PATTERNS)
        else:
            self.retryable_error_patterns = [
                re.compile(p, re.I) if isinstance(p, str) else p for p in retryable_error_patterns
            ]

        self.on_retry_attempt = on_retry_attempt
        self.on_retry_exhausted = on_retry_exhausted
        self.on_circuit_open = on_circuit_open
        self.on_circuit_close = on_circuit_close
        self.errors = ErrorListeners(list(on_error or []))
        self.scheduler = scheduler

        self.breaker = CircuitBreaker(
            threshold=circuit_breaker_threshold,
            timeout=circuit_breaker_timeout,
            decay=ResetOnSuccess(),
            on_state_change=self._on_breaker_change,
        )

    @property
    def wrapped_transport(self) -> Transport:
        return self.transport

    @property
    def circuit_state(self) -> BreakerState:
        return self.breaker.state

    @property
    def failure_count(self) -> int:
        return self.breaker.failure_count

    def reset_circuit_breaker(self) -> None:
        self.breaker.reset()

    def write(self, record: LogRecord, formatter: Formatter) -> None:
        scheduler = self.scheduler or get_default_scheduler()
        scheduler.submit(self._write_reporting(record, formatter))

    async def write_async(self, record: LogRecord, formatter: Formatter) -> None:
        await self._write_with_retry(record, formatter)

    async def _write_reporting(self, record: LogRecord, formatter: Formatter) -> None:
        try:
            await self._write_with_retry(record, formatter)
        except Exception as e:
            self.errors.emit(ErrorEvent(type="transport", error=e, source=self))

    async def _write_with_retry(self, record: LogRecord, formatter: Formatter) -> None:
        if not self.breaker.allow_request():
            raise CircuitOpenError()
        # A half-open breaker admits exactly one real attempt.
        budget = 1 if self.breaker.state is BreakerState.HALF_OPEN else self.max_attempts

        started_at = time.monotonic()
        last_error: Exception | None = None
        attempt = 0

        while attempt < budget:
            attempt += 1
            try:
                await deliver(self.transport, record, formatter)
            except Exception as e:
                last_error = e
                if not self.is_retryable(e) or attempt >= budget:
                    break

                delay = self.calculate_delay(attempt)
                context = RetryContext(
                    attempt=attempt,
                    total_attempts=budget,
                    error=e,
                    delay=delay,
                    started_at=started_at,
                )
                logger.debug(
                    "retry_attempt",
                    attempt=attempt,
                    max_attempts=budget,
                    delay=delay,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                if self.on_retry_attempt is not None:
                    self.on_retry_attempt(context)
                await asyncio.sleep(delay)
            else:
                self.breaker.record_success()
                return

        self.breaker.record_failure()

        elapsed = time.monotonic() - started_at
        logger.warning(
            "retry_exhausted",
            attempts=attempt,
            elapsed=round(elapsed, 3),
            error=str(last_error),
            error_type=type(last_error).__name__,
            record_level=record.level,
        )
        if self.on_retry_exhausted is not None:
            self.on_retry_exhausted(
                RetryExhaustedContext(
                    last_error=last_error, attempts=attempt, elapsed=elapsed, record=record
                )
            )
        raise RetryExhaustedError(last_error, attempts=attempt, elapsed=elapsed) from last_error

    def is_retryable(self, error: BaseException) -> bool:
        if isinstance(error, CircuitOpenError):
            return False
        code = error_code(error)
        if code is not None and code in self.retryable_error_codes:
            return True
        message = str(error)
        return any(pattern.search(message) for pattern in self.retryable_error_patterns)

    def calculate_delay(self, attempt: int) -> float:
        """Backoff delay in seconds before retrying after ``attempt`` failed."""
        delay = self.base_delay * self.backoff_multiplier ** (attempt - 1)
        delay = min(delay, self.max_delay)
        if self.jitter:
            delay += random.uniform(-0.25, 0.25) * delay
        return max(0.0, delay)

    def _on_breaker_change(self, old: str, new: str) -> None:
        if new == "open":
            logger.warning("circuit_breaker_open", failure_count=self.breaker.failure_count)
            if self.on_circuit_open is not None:
                self.on_circuit_open()
        elif new == "closed" and old == "half_open":
            logger.info("circuit_breaker_closed")
            if self.on_circuit_close is not None:
                self.on_circuit_close()

    def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(transport={self.transport!r}, "
            f"max_attempts={self.max_attempts}, breaker={self.breaker!r})"
        )
