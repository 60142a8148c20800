"""
The logger: level check, context merge, filters, enrichers, and dispatch to
transports and aggregators.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import Any

from .aggregation import LogAggregator, as_awaitable, is_pending
from .dispatch import TaskScheduler, get_default_scheduler
from .enrichers import Enricher, EnrichmentPipeline
from .errors import ErrorEvent, ErrorListener, ErrorListeners
from .filters import Filter, FilterLike, as_filter
from .formatters import Formatter, build_formatter
from .records import LevelRegistry, LogRecord
from .transports.base import Transport, deliver
from .transports.console import ConsoleTransport
from .transports.file import FileTransport
from .transports.null import NullTransport
from .transports.retry import RetryTransport

TransportSpec = Transport | Mapping[str, Any]


@dataclass(frozen=True)
class LoggerConfig:
    """
    Effective configuration of one logger.

    A child's config is computed once, when the child is created, from its
    parent's config and the child's overrides. It never refers back to the
    parent afterwards.
    """

    level: str = "info"
    prefix: str = ""
    context: dict[str, Any] = field(default_factory=dict)
    filters: tuple[Filter, ...] = ()
    enrichers: tuple[Enricher, ...] = ()
    aggregators: tuple[LogAggregator, ...] = ()
    async_mode: bool = False
    custom_levels: dict[str, int] = field(default_factory=dict)
    custom_colors: dict[str, str] = field(default_factory=dict)
    colorize: bool = True
    json: bool = False
    timestamp: bool = False
    timestamp_format: str = "%Y-%m-%d %H:%M:%S"
    error_listeners: tuple[ErrorListener, ...] = ()

    def merge(
        self,
        level: str | None = None,
        prefix: str | None = None,
        context: Mapping[str, Any] | None = None,
        filters: Iterable[FilterLike] | None = None,
        enrichers: Iterable[Enricher] | EnrichmentPipeline | None = None,
        aggregators: Iterable[LogAggregator] | None = None,
        async_mode: bool | None = None,
        custom_levels: Mapping[str, int] | None = None,
        custom_colors: Mapping[str, str] | None = None,
        colorize: bool | None = None,
        json: bool | None = None,
        timestamp: bool | None = None,
        timestamp_format: str | None = None,
        on_error: Iterable[ErrorListener] | ErrorListener | None = None,
    ) -> "LoggerConfig":
        """
        Combine this config with overrides.

        Scalars are replaced when given. Context, custom levels and custom
        colors are merged key by key with the overrides winning. Filters,
        enrichers, aggregators and error listeners are appended after the
        existing ones.
        """
        scalars = {
            "level": level,
            "prefix": prefix,
            "async_mode": async_mode,
            "colorize": colorize,
            "json": json,
            "timestamp": timestamp,
            "timestamp_format": timestamp_format,
        }
        return replace(
            self,
            **{key: value for key, value in scalars.items() if value is not None},
            context={**self.context, **(context or {})},
            filters=self.filters + tuple(as_filter(f) for f in (filters or ())),
            enrichers=self.enrichers + _enricher_tuple(enrichers),
            aggregators=self.aggregators + tuple(aggregators or ()),
            custom_levels={**self.custom_levels, **(custom_levels or {})},
            custom_colors={**self.custom_colors, **(custom_colors or {})},
            error_listeners=self.error_listeners + _listener_tuple(on_error),
        )


def _enricher_tuple(enrichers: Iterable[Enricher] | EnrichmentPipeline | None) -> tuple:
    if enrichers is None:
        return ()
    if isinstance(enrichers, EnrichmentPipeline):
        return tuple(enrichers.enrichers)
    return tuple(enrichers)


def _listener_tuple(listeners: Iterable[ErrorListener] | ErrorListener | None) -> tuple:
    if listeners is None:
        return ()
    if callable(listeners):
        return (listeners,)
    return tuple(listeners)


def resolve_transport(spec: TransportSpec) -> Transport:
    """
    Turn a transport spec into a transport.

    Accepts a transport instance, or a mapping such as
    ``{"type": "file", "options": {"path": "app.log"}}`` or
    ``{"type": "custom", "instance": my_transport}``.
    """
    if not isinstance(spec, Mapping):
        return spec

    transport_type = spec.get("type", "custom")
    options = dict(spec.get("options") or {})
    if transport_type == "console":
        return ConsoleTransport(**options)
    if transport_type == "file":
        return FileTransport(**options)
    if transport_type in ("null", "none"):
        return NullTransport()
    if transport_type == "custom":
        instance = spec.get("instance")
        if instance is None:
            raise ValueError("Custom transport spec requires an 'instance'")
        return instance
    raise ValueError(f"Unknown transport type: {transport_type}")


class Logger:
    """
    Structured logger with pluggable transports.

    Each ``log`` call runs, in order: the level check, the merge of the
    logger's context with call-site metadata, the filters, the enrichers, then
    delivery to every transport and finally to every aggregator.

    In synchronous mode transports are called inline and the first transport
    exception is re-raised once all transports and aggregators have had the
    record. In async mode each delivery is submitted to the scheduler, the
    call returns at once, and failures are reported to the error listeners.
    Enricher and aggregator failures are always reported, never raised.

    Args:
        level: Minimum level to emit
        prefix: Prefix attached to every record
        context: Metadata merged into every record
        filters: Filters (or predicates) a record must pass
        enrichers: Record transforms applied in order
        aggregators: Secondary batching sinks
        transports: Transports or transport specs (default: console)
        async_mode: Deliver through the scheduler instead of inline
        custom_levels: Extra level names and their priorities
        custom_colors: Level name to color name for text output
        colorize: Colored text output
        json: JSON output instead of text
        timestamp: Include timestamps in formatted output
        timestamp_format: strftime format for text timestamps
        retry_options: If given, wrap each transport in a RetryTransport with these options
        on_error: Error listener or listeners
        scheduler: Scheduler for deferred work (default: process-wide scheduler)
        parent: Logger to inherit configuration from
    """

    def __init__(
        self,
        level: str | None = None,
        prefix: str | None = None,
        context: Mapping[str, Any] | None = None,
        filters: Iterable[FilterLike] | None = None,
        enrichers: Iterable[Enricher] | EnrichmentPipeline | None = None,
        aggregators: Iterable[LogAggregator] | None = None,
        transports: Iterable[TransportSpec] | None = None,
        async_mode: bool | None = None,
        custom_levels: Mapping[str, int] | None = None,
        custom_colors: Mapping[str, str] | None = None,
        colorize: bool | None = None,
        json: bool | None = None,
        timestamp: bool | None = None,
        timestamp_format: str | None = None,
        retry_options: Mapping[str, Any] | None = None,
        on_error: Iterable[ErrorListener] | ErrorListener | None = None,
        scheduler: TaskScheduler | None = None,
        parent: "Logger | None" = None,
    ):
        base = parent.config if parent is not None else LoggerConfig()
        self._config = base.merge(
            level=level,
            prefix=prefix,
            context=context,
            filters=filters,
            enrichers=enrichers,
            aggregators=aggregators,
            async_mode=async_mode,
            custom_levels=custom_levels,
            custom_colors=custom_colors,
            colorize=colorize,
            json=json,
            timestamp=timestamp,
            timestamp_format=timestamp_format,
            on_error=on_error,
        )
        self._scheduler = scheduler or (parent._scheduler if parent is not None else None)
        self._errors = ErrorListeners(list(self._config.error_listeners))
        self._levels = LevelRegistry(self._config.custom_levels)
        self._filters = list(self._config.filters)
        self._enrichers = list(self._config.enrichers)
        self._aggregators = list(self._config.aggregators)
        self._formatter = self._build_formatter()

        if transports is not None:
            self._transports = [self._wrap(resolve_transport(t), retry_options) for t in transports]
            self._transports_shared = False
        elif parent is not None:
            # Same list object as the parent; copied before either side mutates it.
            self._transports = parent._transports
            self._transports_shared = True
            parent._transports_shared = True
        else:
            self._transports = [self._wrap(ConsoleTransport(), retry_options)]
            self._transports_shared = False

    def _build_formatter(self) -> Formatter:
        return build_formatter(
            json=self._config.json,
            colorize=self._config.colorize,
            timestamp=self._config.timestamp,
            timestamp_format=self._config.timestamp_format,
            custom_colors=self._config.custom_colors,
        )

    def _wrap(self, transport: Transport, retry_options: Mapping[str, Any] | None) -> Transport:
        if retry_options is None:
            return transport
        options = dict(retry_options)
        options.setdefault("scheduler", self._scheduler)
        options.setdefault("on_error", [self._errors.emit])
        return RetryTransport(transport, **options)

    def create_child(self, **overrides: Any) -> "Logger":
        """
        Create a child logger.

        The child starts from this logger's current configuration and applies
        ``overrides`` (same keyword arguments as the constructor). Later changes
        to this logger do not reach children that already exist.
        """
        return self.__class__(parent=self, **overrides)

    # Logging

    def log(
        self,
        level: str,
        message: str,
        metadata: Mapping[str, Any] | None = None,
        **fields: Any,
    ) -> None:
        """
        Log at a specific level.

        Args:
            level: Built-in or custom level name
            message: Log message
            metadata: Structured data for this record
            **fields: Additional structured data (wins over ``metadata``)
        """
        if not self._levels.should_log(level, self._config.level):
            return

        record = self._build_record(level, message, metadata, fields)
        if not all(f.should_emit(record) for f in self._filters):
            return

        record = self._enrich(record)
        if self._config.async_mode:
            self._dispatch_deferred(record)
        else:
            self._dispatch_sync(record)

    def log_with_level(
        self, level: str, message: str, metadata: Mapping[str, Any] | None = None, **fields: Any
    ) -> None:
        self.log(level, message, metadata, **fields)

    def boring(self, message: str, metadata: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log("boring", message, metadata, **fields)

    def debug(self, message: str, metadata: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log("debug", message, metadata, **fields)

    def info(self, message: str, metadata: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log("info", message, metadata, **fields)

    def warn(self, message: str, metadata: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log("warn", message, metadata, **fields)

    warning = warn

    def error(self, message: str, metadata: Mapping[str, Any] | None = None, **fields: Any) -> None:
        self.log("error", message, metadata, **fields)

    def silent(self, message: str, metadata: Mapping[str, Any] | None = None, **fields: Any) -> None:
        """Never emits; kept so call sites can be silenced by renaming the method."""
        self.log("silent", message, metadata, **fields)

    def _build_record(
        self,
        level: str,
        message: str,
        metadata: Mapping[str, Any] | None,
        fields: Mapping[str, Any],
    ) -> LogRecord:
        merged = {**self._config.context, **(metadata or {}), **fields}
        return LogRecord.create(
            level=LevelRegistry.normalize(level),
            message=message,
            metadata=merged or None,
            prefix=self._config.prefix,
        )

    def _enrich(self, record: LogRecord) -> LogRecord:
        enriched = record
        try:
            for enricher in self._enrichers:
                enriched = enricher(enriched)
                if not isinstance(enriched, LogRecord):
                    raise TypeError(f"Enricher {enricher!r} returned {type(enriched).__name__}")
        except Exception as e:
            self._errors.emit(ErrorEvent(type="enricher", error=e, source=self))
            return record
        return enriched

    def _dispatch_sync(self, record: LogRecord) -> None:
        formatter = self._formatter
        first_error: Exception | None = None
        for transport in self._transports:
            try:
                transport.write(record, formatter)
            except Exception as e:
                if first_error is None:
                    first_error = e

        self._aggregate(record, formatter)
        if first_error is not None:
            raise first_error

    def _dispatch_deferred(self, record: LogRecord) -> None:
        formatter = self._formatter
        scheduler = self._scheduler or get_default_scheduler()
        for transport in self._transports:
            scheduler.submit(self._deliver_deferred(transport, record, formatter))
        self._aggregate(record, formatter)

    async def _deliver_deferred(
        self, transport: Transport, record: LogRecord, formatter: Formatter
    ) -> None:
        try:
            await deliver(transport, record, formatter)
        except Exception as e:
            self._errors.emit(ErrorEvent(type="transport", error=e, source=transport))

    def _aggregate(self, record: LogRecord, formatter: Formatter) -> None:
        for aggregator in self._aggregators:
            try:
                aggregator.aggregate(record, formatter)
            except Exception as e:
                self._errors.emit(ErrorEvent(type="aggregator", error=e, source=aggregator))

    # Configuration

    @property
    def level(self) -> str:
        return self._config.level

    def set_level(self, level: str) -> None:
        self._config = replace(self._config, level=level)

    def get_level(self) -> str:
        return self._config.level

    @property
    def prefix(self) -> str:
        return self._config.prefix

    @property
    def context(self) -> dict[str, Any]:
        return dict(self._config.context)

    @property
    def async_mode(self) -> bool:
        return self._config.async_mode

    def set_async(self, enabled: bool) -> None:
        self._config = replace(self._config, async_mode=enabled)

    @property
    def formatter(self) -> Formatter:
        return self._formatter

    def set_format(self, format: str) -> None:
        """Switch between "text" and "json" output."""
        self._config = replace(self._config, json=format.lower() == "json")
        self._formatter = self._build_formatter()

    @property
    def timestamp(self) -> bool:
        return self._config.timestamp

    @property
    def custom_colors(self) -> dict[str, str]:
        return dict(self._config.custom_colors)

    @property
    def level_registry(self) -> LevelRegistry:
        return self._levels

    @property
    def config(self) -> LoggerConfig:
        return replace(
            self._config,
            filters=tuple(self._filters),
            enrichers=tuple(self._enrichers),
            aggregators=tuple(self._aggregators),
            error_listeners=tuple(self._errors),
        )

    def add_filter(self, filter: FilterLike) -> None:
        self._filters.append(as_filter(filter))

    def add_enricher(self, enricher: Enricher) -> None:
        self._enrichers.append(enricher)

    def add_aggregator(self, aggregator: LogAggregator) -> None:
        self._aggregators.append(aggregator)

    def add_transport(self, transport: TransportSpec) -> None:
        if self._transports_shared:
            self._transports = list(self._transports)
            self._transports_shared = False
        self._transports.append(resolve_transport(transport))

    def add_level(self, name: str, priority: int) -> None:
        self._levels.register(name, priority)
        self._config = replace(
            self._config, custom_levels={**self._config.custom_levels, name: priority}
        )

    def on_error(self, listener: ErrorListener) -> None:
        self._errors.add(listener)

    def get_transports(self) -> list[Transport]:
        return list(self._transports)

    def get_filters(self) -> list[Filter]:
        return list(self._filters)

    def get_enrichers(self) -> list[Enricher]:
        return list(self._enrichers)

    def get_aggregators(self) -> list[LogAggregator]:
        return list(self._aggregators)

    # Lifecycle

    async def flush_aggregators(self) -> None:
        """Flush every aggregator, waiting for asynchronous flushes."""
        for aggregator in list(self._aggregators):
            try:
                result = aggregator.flush()
                if is_pending(result):
                    await as_awaitable(result)
            except Exception as e:
                self._errors.emit(ErrorEvent(type="aggregator", error=e, source=aggregator))

    async def drain(self) -> None:
        """Wait for every deferred delivery submitted so far."""
        await (self._scheduler or get_default_scheduler()).drain()

    async def aclose(self) -> None:
        """Deliver everything pending, flush and stop the aggregators."""
        await self.drain()
        await self.flush_aggregators()
        for aggregator in self._aggregators:
            aggregator.stop()
        await self.drain()

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(level={self.level!r}, prefix={self.prefix!r}, "
            f"transports={len(self._transports)}, async_mode={self.async_mode})"
        )
