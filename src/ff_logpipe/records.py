"""
Log records and level priorities.
"""

import dataclasses
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any

# Levels nobody registered always pass the threshold.
UNKNOWN_LEVEL_PRIORITY = 1_000_000

SILENT = "silent"

DEFAULT_LEVELS: dict[str, int] = {
    "silent": 0,
    "boring": 1,
    "debug": 2,
    "info": 3,
    "warn": 4,
    "error": 5,
}

LEVEL_ALIASES = {"warning": "warn"}


@dataclass(frozen=True)
class LogRecord:
    """
    A single log event.

    Records are never changed after creation, and their metadata is a
    read-only view over a private copy. Enrichers derive new records with
    ``evolve`` or ``with_metadata``.
    """

    level: str
    message: str
    timestamp: datetime
    metadata: Mapping[str, Any] | None = None
    prefix: str | None = None

    def __post_init__(self):
        if self.metadata is not None:
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    @classmethod
    def create(
        cls,
        level: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
        prefix: str | None = None,
    ) -> "LogRecord":
        return cls(
            level=level,
            message=message,
            timestamp=datetime.now(timezone.utc),
            metadata=dict(metadata) if metadata else None,
            prefix=prefix,
        )

    def evolve(self, **changes: Any) -> "LogRecord":
        """Return a shallow copy with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    def with_metadata(self, **fields: Any) -> "LogRecord":
        """Return a copy whose metadata is extended (new keys win)."""
        return self.evolve(metadata={**(self.metadata or {}), **fields})

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "level": self.level,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.metadata is not None:
            data["metadata"] = dict(self.metadata)
        if self.prefix is not None:
            data["prefix"] = self.prefix
        return data


class LevelRegistry:
    """Totally ordered level priorities, including caller-registered levels."""

    def __init__(self, custom_levels: Mapping[str, int] | None = None):
        self._priorities = dict(DEFAULT_LEVELS)
        for name, priority in (custom_levels or {}).items():
            self.register(name, priority)

    @staticmethod
    def normalize(level: str) -> str:
        level = level.lower()
        return LEVEL_ALIASES.get(level, level)

    def register(self, name: str, priority: int) -> None:
        self._priorities[self.normalize(name)] = priority

    def priority(self, level: str) -> int:
        return self._priorities.get(self.normalize(level), UNKNOWN_LEVEL_PRIORITY)

    def is_known(self, level: str) -> bool:
        return self.normalize(level) in self._priorities

    def should_log(self, level: str, threshold: str) -> bool:
        """Whether a record at ``level`` passes a logger set to ``threshold``."""
        level = self.normalize(level)
        threshold = self.normalize(threshold)
        if level == SILENT or threshold == SILENT:
            return False
        return self.priority(level) >= self.priority(threshold)

    def custom_levels(self) -> dict[str, int]:
        """Levels that differ from the built-in table."""
        return {
            name: priority
            for name, priority in self._priorities.items()
            if DEFAULT_LEVELS.get(name) != priority
        }

    def as_dict(self) -> dict[str, int]:
        return dict(self._priorities)
