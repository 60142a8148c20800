"""
Record formatters built on structlog's renderers.
"""

from collections.abc import Mapping
from typing import Any

import structlog

from .records import LogRecord

# Keys the renderers own; colliding metadata keys are prefixed with ``x_``.
RESERVED_FIELDS = frozenset({"event", "level", "message", "timestamp", "prefix", "logger"})

ANSI_COLORS: dict[str, str] = {
    "black": "\x1b[30m",
    "red": "\x1b[31m",
    "green": "\x1b[32m",
    "yellow": "\x1b[33m",
    "blue": "\x1b[34m",
    "magenta": "\x1b[35m",
    "purple": "\x1b[35m",
    "cyan": "\x1b[36m",
    "white": "\x1b[37m",
    "brightRed": "\x1b[91m",
    "brightGreen": "\x1b[92m",
    "brightYellow": "\x1b[93m",
    "brightBlue": "\x1b[94m",
    "brightMagenta": "\x1b[95m",
    "brightCyan": "\x1b[96m",
    "brightWhite": "\x1b[97m",
}

DEFAULT_LEVEL_COLORS: dict[str, str] = {
    "boring": "white",
    "debug": "cyan",
    "info": "green",
    "warn": "yellow",
    "error": "red",
}


def sanitize_metadata(metadata: Mapping[str, Any] | None) -> dict[str, Any]:
    """Copy metadata, renaming keys that clash with rendered fields."""
    if not metadata:
        return {}
    return {(f"x_{key}" if key in RESERVED_FIELDS else key): value for key, value in metadata.items()}


class Formatter:
    """Turns a record into a single line of text. Must not mutate the record."""

    def format(self, record: LogRecord) -> str:
        raise NotImplementedError


class TextFormatter(Formatter):
    """
    Human-readable formatter using structlog's ConsoleRenderer.

    Args:
        colorize: Whether to emit ANSI colors
        timestamp: Whether to include the record timestamp
        timestamp_format: strftime format, or "iso" for ISO 8601
        custom_colors: Level name to color name overrides
    """

    def __init__(
        self,
        colorize: bool = True,
        timestamp: bool = False,
        timestamp_format: str = "%Y-%m-%d %H:%M:%S",
        custom_colors: Mapping[str, str] | None = None,
    ):
        self.colorize = colorize
        self.timestamp = timestamp
        self.timestamp_format = timestamp_format
        self.custom_colors = dict(custom_colors or {})

        renderer_kwargs: dict[str, Any] = {
            "colors": colorize,
            "level_styles": self._level_styles(),
        }
        if colorize:
            renderer_kwargs["exception_formatter"] = structlog.dev.rich_traceback
        self._renderer = structlog.dev.ConsoleRenderer(**renderer_kwargs)

    def _level_styles(self) -> dict[str, str]:
        styles = dict(structlog.dev.ConsoleRenderer.get_default_level_styles(colors=self.colorize))
        if not self.colorize:
            return styles
        for level, color in {**DEFAULT_LEVEL_COLORS, **self.custom_colors}.items():
            styles[level] = ANSI_COLORS.get(color, "")
        return styles

    def format(self, record: LogRecord) -> str:
        event_dict: dict[str, Any] = sanitize_metadata(record.metadata)
        event_dict["event"] = record.message
        event_dict["level"] = record.level
        if record.prefix:
            event_dict["logger"] = record.prefix
        if self.timestamp:
            if self.timestamp_format.lower() == "iso":
                event_dict["timestamp"] = record.timestamp.isoformat()
            else:
                event_dict["timestamp"] = record.timestamp.strftime(self.timestamp_format)
        return self._renderer(None, record.level, event_dict)

    def get_custom_colors(self) -> dict[str, str]:
        return dict(self.custom_colors)


class JSONFormatter(Formatter):
    """Single-line JSON formatter using structlog's JSONRenderer."""

    def __init__(self, timestamp: bool = False, **dumps_kw: Any):
        self.timestamp = timestamp
        self._renderer = structlog.processors.JSONRenderer(**dumps_kw)

    def format(self, record: LogRecord) -> str:
        event_dict: dict[str, Any] = sanitize_metadata(record.metadata)
        event_dict["level"] = record.level
        event_dict["message"] = record.message
        if self.timestamp:
            event_dict["timestamp"] = record.timestamp.isoformat()
        if record.prefix:
            event_dict["prefix"] = record.prefix
        return self._renderer(None, record.level, event_dict)


def build_formatter(
    json: bool = False,
    colorize: bool = True,
    timestamp: bool = False,
    timestamp_format: str = "%Y-%m-%d %H:%M:%S",
    custom_colors: Mapping[str, str] | None = None,
) -> Formatter:
    if json:
        return JSONFormatter(timestamp=timestamp)
    return TextFormatter(
        colorize=colorize,
        timestamp=timestamp,
        timestamp_format=timestamp_format,
        custom_colors=custom_colors,
    )
