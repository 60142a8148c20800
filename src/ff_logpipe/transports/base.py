"""
Transport capability consumed by the logger and every decorator.
"""

from abc import ABC, abstractmethod
from typing import Any

from ..formatters import Formatter
from ..records import LogRecord


class Transport(ABC):
    """
    A delivery sink.

    ``write`` attempts delivery and raises on failure. Transports that can
    deliver without blocking also provide ``write_async`` (see AsyncTransport);
    callers check with ``supports_async``.
    """

    @abstractmethod
    def write(self, record: LogRecord, formatter: Formatter) -> None:
        """Deliver one record, raising if it could not be persisted or sent."""

    def close(self) -> None:
        """Release resources held by the transport."""

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class AsyncTransport(Transport):
    """A transport with a native asynchronous delivery path."""

    @abstractmethod
    async def write_async(self, record: LogRecord, formatter: Formatter) -> None:
        """Deliver one record without blocking the event loop."""


def supports_async(transport: Any) -> bool:
    return callable(getattr(transport, "write_async", None))


async def deliver(transport: Any, record: LogRecord, formatter: Formatter) -> None:
    """Deliver through ``write_async`` when available, else through ``write``."""
    if supports_async(transport):
        await transport.write_async(record, formatter)
    else:
        transport.write(record, formatter)
