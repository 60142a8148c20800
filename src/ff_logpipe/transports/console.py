"""
Console transport.
"""

import sys
from typing import TextIO

from ..formatters import Formatter
from ..records import LogRecord
from .base import Transport


class ConsoleTransport(Transport):
    """
    Writes formatted records to the console.
    Errors and warnings go to ``error_stream``, everything else to ``stream``.
    """

    def __init__(
        self,
        stream: TextIO | None = None,
        error_stream: TextIO | None = None,
    ):
        """
        Initialize a console transport.

        Args:
            stream: Output stream (default: sys.stdout)
            error_stream: Stream for warn/error records (default: sys.stderr)
        """
        self._stream = stream
        self._error_stream = error_stream

    @property
    def stream(self) -> TextIO:
        return self._stream or sys.stdout

    @property
    def error_stream(self) -> TextIO:
        return self._error_stream or sys.stderr

    def write(self, record: LogRecord, formatter: Formatter) -> None:
        output = formatter.format(record)
        stream = self.error_stream if record.level in ("warn", "error") else self.stream
        stream.write(output + "\n")
        stream.flush()
