"""
Exceptions and error events for ff-logpipe.
"""

import errno
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

import structlog

logger = structlog.get_logger(__name__)

ErrorEventType = Literal["transport", "aggregator", "enricher"]


class LogPipeError(Exception):
    """Base exception for all ff-logpipe errors."""

    pass


class TransportError(LogPipeError):
    """Raised by transports when a record cannot be delivered."""

    def __init__(self, message: str, code: str | None = None):
        self.code = code
        super().__init__(message)


class CircuitOpenError(TransportError):
    """Raised when a circuit breaker rejects a delivery without attempting it."""

    def __init__(self, message: str = "Circuit breaker is open - rejecting requests"):
        super().__init__(message, code="ECIRCUITOPEN")


class RetryExhaustedError(TransportError):
    """Raised when every delivery attempt of a retrying transport has failed."""

    def __init__(self, last_error: BaseException, attempts: int, elapsed: float):
        self.last_error = last_error
        self.attempts = attempts
        self.elapsed = elapsed
        super().__init__(
            f"Delivery failed after {attempts} attempt(s) in {elapsed:.3f}s: {last_error}",
            code=error_code(last_error),
        )


def error_code(error: BaseException) -> str | None:
    """
    Return the symbolic error code of an exception, if it has one.

    Exceptions carrying a string ``code`` attribute (``TransportError`` and
    most client libraries) report it directly. ``OSError`` instances report
    the errno symbol, e.g. ``ETIMEDOUT``.
    """
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code
    if isinstance(error, OSError) and error.errno is not None:
        return errno.errorcode.get(error.errno)
    return None


@dataclass(frozen=True)
class ErrorEvent:
    """A failure isolated by the pipeline and reported instead of raised."""

    type: ErrorEventType
    error: BaseException
    source: Any = None


ErrorListener = Callable[[ErrorEvent], None]


class ErrorListeners:
    """
    Explicit set of error callbacks owned by one logger or decorator.

    Emitting never raises: a failing listener is logged and skipped, and an
    event nobody listens to is logged instead of being lost.
    """

    def __init__(self, listeners: list[ErrorListener] | None = None):
        self._listeners: list[ErrorListener] = list(listeners or [])

    def add(self, listener: ErrorListener) -> None:
        self._listeners.append(listener)

    def remove(self, listener: ErrorListener) -> None:
        self._listeners.remove(listener)

    def copy(self) -> "ErrorListeners":
        return ErrorListeners(self._listeners)

    def __iter__(self):
        return iter(list(self._listeners))

    def __len__(self) -> int:
        return len(self._listeners)

    def emit(self, event: ErrorEvent) -> None:
        if not self._listeners:
            logger.error(
                "unhandled_error_event",
                event_type=event.type,
                error=str(event.error),
                error_type=type(event.error).__name__,
            )
            return

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.warning(
                    "error_listener_failed",
                    event_type=event.type,
                    error=str(e),
                    error_type=type(e).__name__,
                )
