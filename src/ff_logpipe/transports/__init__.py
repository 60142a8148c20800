"""
Transports and transport decorators.
"""

from .base import AsyncTransport, Transport, deliver, supports_async
from .circuit_breaker import CircuitBreakerMetrics, CircuitBreakerTransport
from .console import ConsoleTransport
from .dead_letter import DeadLetter, DeadLetterQueue
from .file import FileTransport
from .filterable import FilterableTransport
from .null import AsyncCaptureTransport, CaptureTransport, NullTransport
from .retry import RetryContext, RetryExhaustedContext, RetryTransport

__all__ = [
    "Transport",
    "AsyncTransport",
    "deliver",
    "supports_async",
    "ConsoleTransport",
    "FileTransport",
    "NullTransport",
    "CaptureTransport",
    "AsyncCaptureTransport",
    "FilterableTransport",
    "RetryTransport",
    "RetryContext",
    "RetryExhaustedContext",
    "DeadLetterQueue",
    "DeadLetter",
    "CircuitBreakerTransport",
    "CircuitBreakerMetrics",
]
