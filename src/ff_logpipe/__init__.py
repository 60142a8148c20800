"""
ff-logpipe: Structured logging pipeline for Fenixflow applications.

Provides a logger with pluggable transports, resilient transport decorators
(retry with circuit breaker, dead letter queue, circuit breaker), filters,
enrichers and batching aggregators.
"""

__version__ = "0.1.0"

from .aggregation import (
    AggregatedRecord,
    BatchAggregator,
    CompositeAggregator,
    LogAggregator,
    TimeBasedAggregator,
)
from .breaker import BreakerState, CircuitBreaker
from .config import configure_logging, get_config, get_logger, reset_config
from .dispatch import TaskScheduler, get_default_scheduler
from .enrichers import EnrichmentPipeline, MetadataEnricher
from .errors import (
    CircuitOpenError,
    ErrorEvent,
    LogPipeError,
    RetryExhaustedError,
    TransportError,
)
from .filters import (
    CompositeFilter,
    FieldFilter,
    Filter,
    LevelFilter,
    MetadataFilter,
    NotFilter,
    OrFilter,
    PrefixFilter,
)
from .formatters import Formatter, JSONFormatter, TextFormatter
from .logger import Logger, LoggerConfig
from .records import LevelRegistry, LogRecord
from .transports import (
    CaptureTransport,
    CircuitBreakerTransport,
    ConsoleTransport,
    DeadLetterQueue,
    FileTransport,
    FilterableTransport,
    NullTransport,
    RetryTransport,
    Transport,
)

__all__ = [
    "Logger",
    "LoggerConfig",
    "LogRecord",
    "LevelRegistry",
    "Formatter",
    "TextFormatter",
    "JSONFormatter",
    "Transport",
    "ConsoleTransport",
    "FileTransport",
    "NullTransport",
    "CaptureTransport",
    "FilterableTransport",
    "RetryTransport",
    "DeadLetterQueue",
    "CircuitBreakerTransport",
    "CircuitBreaker",
    "BreakerState",
    "LogAggregator",
    "AggregatedRecord",
    "BatchAggregator",
    "TimeBasedAggregator",
    "CompositeAggregator",
    "Filter",
    "CompositeFilter",
    "OrFilter",
    "NotFilter",
    "LevelFilter",
    "PrefixFilter",
    "MetadataFilter",
    "FieldFilter",
    "MetadataEnricher",
    "EnrichmentPipeline",
    "TaskScheduler",
    "get_default_scheduler",
    "ErrorEvent",
    "LogPipeError",
    "TransportError",
    "CircuitOpenError",
    "RetryExhaustedError",
    "configure_logging",
    "get_logger",
    "get_config",
    "reset_config",
]
