"""
Shared fixtures for ff-logpipe tests.
"""

import pytest
from ff_logpipe.dispatch import TaskScheduler
from ff_logpipe.errors import TransportError
from ff_logpipe.formatters import JSONFormatter
from ff_logpipe.records import LogRecord
from ff_logpipe.transports import CaptureTransport, Transport


class FlakyTransport(Transport):
    """Fails the first ``failures`` deliveries, then captures records."""

    def __init__(self, failures: int, code: str | None = "ECONNRESET", message="connection reset"):
        self.failures = failures
        self.code = code
        self.message = message
        self.calls = 0
        self.records = []

    def write(self, record, formatter):
        self.calls += 1
        if self.calls <= self.failures:
            raise TransportError(self.message, code=self.code)
        self.records.append(record)


class AlwaysFailingTransport(Transport):
    def __init__(self, error: Exception | None = None):
        self.error = error or TransportError("boom", code="EBOOM")
        self.calls = 0

    def write(self, record, formatter):
        self.calls += 1
        raise self.error


@pytest.fixture
def capture():
    """A capturing transport."""
    return CaptureTransport()


@pytest.fixture
def scheduler():
    """A scheduler private to one test."""
    scheduler = TaskScheduler(name="test-dispatch")
    yield scheduler
    scheduler.close()


@pytest.fixture
def formatter():
    return JSONFormatter()


@pytest.fixture
def record():
    return LogRecord.create("info", "hello", {"user_id": 1}, prefix="TEST")


@pytest.fixture
def flaky():
    """Factory for transports that fail a fixed number of times."""
    return FlakyTransport


@pytest.fixture
def failing():
    """Factory for transports that always fail."""
    return AlwaysFailingTransport
