"""
Dead letter queue transport decorator.

Records the wrapped transport cannot deliver, after a bounded number of
retries, are kept in memory and optionally appended to a JSON Lines file
for manual inspection and replay.
"""

import asyncio
import json
import random
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog

from ..errors import error_code
from ..formatters import Formatter
from ..records import LogRecord
from .base import AsyncTransport, Transport, deliver

logger = structlog.get_logger(__name__)

DEFAULT_DLQ_RETRYABLE_CODES = frozenset({"ECONNREFUSED", "ETIMEDOUT", "ECONNRESET", "ENOTFOUND"})


@dataclass(frozen=True)
class DeadLetter:
    """A record that could not be delivered, with the reason it failed."""

    record: LogRecord
    reason: str
    retry_count: int
    original_error_code: str | None = None
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        data = self.record.to_dict()
        data.update(
            {
                "dead_letter_reason": self.reason,
                "original_error_code": self.original_error_code,
                "retry_count": self.retry_count,
                "failed_at": self.failed_at.isoformat(),
            }
        )
        return data

    def to_json(self) -> str:
        # json.dumps escapes newlines inside strings, so this is always one line
        return json.dumps(self.to_dict(), default=str)


class DeadLetterQueue(AsyncTransport):
    """
    Captures records that permanently fail delivery.

    Failures whose error code is in ``retryable_error_codes`` are retried up to
    ``max_retries`` times with exponential backoff. Any other failure, or one
    that is still failing when retries run out, becomes a dead letter and the
    original exception is re-raised so outer decorators still see it.

    The in-memory list grows without bound; call ``clear_dead_letters``
    periodically in long-running processes.
    """

    def __init__(
        self,
        transport: Transport,
        max_retries: int = 3,
        retryable_error_codes: Iterable[str] | None = None,
        dead_letter_file: str | Path | None = None,
        on_dead_letter: Callable[[DeadLetter], None] | None = None,
        base_delay: float = 1.0,
        backoff_multiplier: float = 2,
        max_delay: float = 30.0,
        jitter: float = 0.1,
    ):
        if max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        self.transport = transport
        self.max_retries = max_retries
        self.retryable_error_codes = frozenset(
            DEFAULT_DLQ_RETRYABLE_CODES if retryable_error_codes is None else retryable_error_codes
        )
        self.dead_letter_file = Path(dead_letter_file) if dead_letter_file else None
        self.on_dead_letter = on_dead_letter
        self.base_delay = base_delay
        self.backoff_multiplier = backoff_multiplier
        self.max_delay = max_delay
        self.jitter = jitter
        self._dead_letters: list[DeadLetter] = []

    def write(self, record: LogRecord, formatter: Formatter) -> None:
        attempt = 0
        while True:
            try:
                self.transport.write(record, formatter)
                return
            except Exception as e:
                if not self._should_retry(e, attempt):
                    dead_letter = self._record(record, e, attempt)
                    if self.dead_letter_file is not None:
                        self._append_to_file(dead_letter)
                    self._notify(dead_letter)
                    raise
                time.sleep(self.retry_delay(attempt))
                attempt += 1

    async def write_async(self, record: LogRecord, formatter: Formatter) -> None:
        attempt = 0
        while True:
            try:
                await deliver(self.transport, record, formatter)
                return
            except Exception as e:
                if not self._should_retry(e, attempt):
                    dead_letter = self._record(record, e, attempt)
                    if self.dead_letter_file is not None:
                        await asyncio.to_thread(self._append_to_file, dead_letter)
                    self._notify(dead_letter)
                    raise
                await asyncio.sleep(self.retry_delay(attempt))
                attempt += 1

    def _should_retry(self, error: BaseException, attempt: int) -> bool:
        return error_code(error) in self.retryable_error_codes and attempt < self.max_retries

    def retry_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt + 1``, with +/- ``jitter`` spread."""
        delay = min(self.base_delay * self.backoff_multiplier**attempt, self.max_delay)
        if self.jitter:
            delay += random.uniform(-self.jitter, self.jitter) * delay
        return max(0.0, delay)

    def _record(self, record: LogRecord, error: BaseException, attempt: int) -> DeadLetter:
        dead_letter = DeadLetter(
            record=record,
            reason=str(error) or type(error).__name__,
            original_error_code=error_code(error) or "UNKNOWN",
            retry_count=attempt,
        )
        self._dead_letters.append(dead_letter)
        logger.warning(
            "dead_letter_recorded",
            reason=dead_letter.reason,
            error_code=dead_letter.original_error_code,
            retry_count=attempt,
        )
        return dead_letter

    def _notify(self, dead_letter: DeadLetter) -> None:
        if self.on_dead_letter is not None:
            self.on_dead_letter(dead_letter)

    def _append_to_file(self, dead_letter: DeadLetter) -> None:
        try:
            self.dead_letter_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.dead_letter_file, "a", encoding="utf-8") as f:
                f.write(dead_letter.to_json() + "\n")
        except (OSError, TypeError, ValueError) as e:
            logger.error(
                "dead_letter_write_failed",
                path=str(self.dead_letter_file),
                error=str(e),
                error_type=type(e).__name__,
            )

    def get_dead_letters(self) -> list[DeadLetter]:
        return list(self._dead_letters)

    def clear_dead_letters(self) -> None:
        self._dead_letters = []

    def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if callable(close):
            close()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(transport={self.transport!r}, "
            f"max_retries={self.max_retries}, dead_letters={len(self._dead_letters)})"
        )
