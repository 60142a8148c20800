"""
Plain append-only file transport.
"""

import asyncio
from pathlib import Path

from ..formatters import Formatter
from ..records import LogRecord
from .base import AsyncTransport


class FileTransport(AsyncTransport):
    """Appends one formatted line per record to a file."""

    def __init__(self, path: str | Path, encoding: str = "utf-8"):
        self.path = Path(path)
        self.encoding = encoding
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, record: LogRecord, formatter: Formatter) -> None:
        line = formatter.format(record) + "\n"
        with open(self.path, "a", encoding=self.encoding) as f:
            f.write(line)

    async def write_async(self, record: LogRecord, formatter: Formatter) -> None:
        await asyncio.to_thread(self.write, record, formatter)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(path={str(self.path)!r})"
