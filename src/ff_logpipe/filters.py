"""
Record filters.

A filter decides whether a record is emitted at all. Chains of filters are
combined with AND logic: the first filter that says no suppresses the record.
"""

from collections.abc import Callable, Iterable, Mapping
from typing import Any, Union

from .records import LogRecord

FilterPredicate = Callable[[LogRecord], bool]


class Filter:
    """Base class for filters."""

    def should_emit(self, record: LogRecord) -> bool:
        """Return True to emit the record, False to drop it."""
        raise NotImplementedError

    def __call__(self, record: LogRecord) -> bool:
        return self.should_emit(record)


FilterLike = Union[Filter, FilterPredicate]


def as_filter(candidate: FilterLike) -> Filter:
    """Accept either a Filter or a plain predicate function."""
    if isinstance(candidate, Filter):
        return candidate
    if callable(candidate):
        return PredicateFilter(candidate)
    raise TypeError(f"Not a filter: {candidate!r}")


class CompositeFilter(Filter):
    """
    All filters must emit.

    With no filters this emits everything (vacuous truth).
    """

    def __init__(self, filters: Iterable[FilterLike]):
        self.filters = [as_filter(f) for f in filters]

    def should_emit(self, record: LogRecord) -> bool:
        return all(f.should_emit(record) for f in self.filters)


class OrFilter(Filter):
    """
    Any filter may emit.

    With no filters this emits nothing.
    """

    def __init__(self, filters: Iterable[FilterLike]):
        self.filters = [as_filter(f) for f in filters]

    def should_emit(self, record: LogRecord) -> bool:
        return any(f.should_emit(record) for f in self.filters)


class NotFilter(Filter):
    def __init__(self, inner: FilterLike):
        self.inner = as_filter(inner)

    def should_emit(self, record: LogRecord) -> bool:
        return not self.inner.should_emit(record)


class PredicateFilter(Filter):
    def __init__(self, predicate: FilterPredicate):
        self.predicate = predicate

    def should_emit(self, record: LogRecord) -> bool:
        return bool(self.predicate(record))


class LevelFilter(Filter):
    """Emits only the listed levels."""

    def __init__(self, allowed_levels: Iterable[str]):
        self.allowed_levels = frozenset(allowed_levels)

    def should_emit(self, record: LogRecord) -> bool:
        return record.level in self.allowed_levels


class PrefixFilter(Filter):
    """Emits only records whose prefix is listed; "" admits records without one."""

    def __init__(self, allowed_prefixes: Iterable[str]):
        self.allowed_prefixes = frozenset(allowed_prefixes)

    def should_emit(self, record: LogRecord) -> bool:
        return (record.prefix or "") in self.allowed_prefixes


class MetadataFilter(Filter):
    """Emits records whose metadata contains every required key/value pair."""

    def __init__(self, required_metadata: Mapping[str, Any]):
        self.required_metadata = dict(required_metadata)

    def should_emit(self, record: LogRecord) -> bool:
        if not record.metadata:
            return not self.required_metadata
        return all(
            key in record.metadata and record.metadata[key] == value
            for key, value in self.required_metadata.items()
        )


class FieldFilter(Filter):
    """Emits records whose metadata field equals ``expected_value``."""

    def __init__(self, field_name: str, expected_value: Any):
        self.field_name = field_name
        self.expected_value = expected_value

    def should_emit(self, record: LogRecord) -> bool:
        if not record.metadata or self.field_name not in record.metadata:
            return False
        return record.metadata[self.field_name] == self.expected_value
