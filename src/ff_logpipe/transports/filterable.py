"""
Transport wrapper that applies filters before delivery.
"""

from collections.abc import Iterable

from ..filters import Filter, FilterLike, as_filter
from ..formatters import Formatter
from ..records import LogRecord
from .base import AsyncTransport, Transport, deliver


class FilterableTransport(AsyncTransport):
    """Delivers a record only when every filter lets it through."""

    def __init__(self, transport: Transport, filters: Iterable[FilterLike]):
        self.transport = transport
        self.filters: list[Filter] = [as_filter(f) for f in filters]

    def _should_emit(self, record: LogRecord) -> bool:
        return all(f.should_emit(record) for f in self.filters)

    def write(self, record: LogRecord, formatter: Formatter) -> None:
        if self._should_emit(record):
            self.transport.write(record, formatter)

    async def write_async(self, record: LogRecord, formatter: Formatter) -> None:
        if self._should_emit(record):
            await deliver(self.transport, record, formatter)

    def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(transport={self.transport!r}, filters={len(self.filters)})"
