"""
Null and capturing transports.
"""

from ..formatters import Formatter
from ..records import LogRecord
from .base import AsyncTransport, Transport


class NullTransport(Transport):
    """
    A zero-cost transport that discards every record.

    The formatter is never invoked, so no string is ever built.
    """

    def write(self, record: LogRecord, formatter: Formatter) -> None:
        pass


class CaptureTransport(Transport):
    """
    A transport that keeps every record it receives.
    Useful for verifying that your code logs the right things.
    """

    def __init__(self, format_records: bool = False):
        """
        Args:
            format_records: Also keep the formatted line of each record
        """
        self.format_records = format_records
        self.records: list[LogRecord] = []
        self.lines: list[str] = []

    def write(self, record: LogRecord, formatter: Formatter) -> None:
        if self.format_records:
            self.lines.append(formatter.format(record))
        self.records.append(record)

    @property
    def levels(self) -> list[str]:
        return [record.level for record in self.records]

    @property
    def messages(self) -> list[str]:
        return [record.message for record in self.records]

    def clear(self) -> None:
        """Clear captured records."""
        self.records.clear()
        self.lines.clear()

    def __len__(self) -> int:
        return len(self.records)


class AsyncCaptureTransport(CaptureTransport, AsyncTransport):
    """CaptureTransport that also exposes the asynchronous delivery path."""

    def __init__(self, format_records: bool = False):
        super().__init__(format_records=format_records)
        self.async_writes = 0

    async def write_async(self, record: LogRecord, formatter: Formatter) -> None:
        self.async_writes += 1
        self.write(record, formatter)
