"""
Tests for RetryTransport.
"""

import asyncio
import time

import pytest
from ff_logpipe.breaker import BreakerState
from ff_logpipe.errors import CircuitOpenError, RetryExhaustedError, TransportError
from ff_logpipe.transports import RetryTransport
from structlog.testing import capture_logs


def make_retry(transport, **kwargs):
    options = {"base_delay": 0.001, "jitter": False}
    options.update(kwargs)
    return RetryTransport(transport, **options)


class TestRetryAttempts:
    """Test the attempt budget."""

    @pytest.mark.asyncio
    async def test_recovers_within_budget(self, flaky, record, formatter):
        """k < max_attempts retryable failures take exactly k + 1 attempts."""
        transport = flaky(failures=2)
        retry = make_retry(transport, max_attempts=3)

        await retry.write_async(record, formatter)

        assert transport.calls == 3
        assert transport.records == [record]

    @pytest.mark.asyncio
    async def test_exhausts_budget(self, flaky, record, formatter):
        """k >= max_attempts failures take exactly max_attempts attempts."""
        transport = flaky(failures=5)
        retry = make_retry(transport, max_attempts=3)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry.write_async(record, formatter)

        assert transport.calls == 3
        error = exc_info.value
        assert error.attempts == 3
        assert isinstance(error.last_error, TransportError)
        assert error.__cause__ is error.last_error
        assert error.code == "ECONNRESET"

    @pytest.mark.asyncio
    async def test_non_retryable_error_is_not_retried(self, flaky, record, formatter):
        """Errors matching no code or pattern fail after one attempt."""
        transport = flaky(failures=1, code="EINVAL", message="bad payload")
        retry = make_retry(transport, max_attempts=5)

        with pytest.raises(RetryExhaustedError):
            await retry.write_async(record, formatter)

        assert transport.calls == 1

    @pytest.mark.asyncio
    async def test_message_pattern_is_retryable(self, flaky, record, formatter):
        """Errors without a known code are retried when the message matches."""
        transport = flaky(failures=1, code=None, message="upstream Service Unavailable")
        retry = make_retry(transport, max_attempts=2)

        await retry.write_async(record, formatter)

        assert transport.calls == 2

    @pytest.mark.asyncio
    async def test_os_errors_use_errno_symbol(self, record, formatter):
        """OSError codes are classified by their errno symbol."""
        calls = []

        class Socketish:
            def write(self, record, formatter):
                calls.append(record)
                if len(calls) == 1:
                    raise ConnectionRefusedError(111, "refused")

        retry = make_retry(Socketish(), max_attempts=2, retryable_error_patterns=[])

        await retry.write_async(record, formatter)

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_backoff_timing(self, flaky, record, formatter):
        """Two ETIMEDOUT failures with 10ms base delay wait at least 30ms."""
        transport = flaky(failures=2, code="ETIMEDOUT", message="timed out")
        retry = RetryTransport(transport, max_attempts=3, base_delay=0.01, jitter=False)

        started = time.monotonic()
        await retry.write_async(record, formatter)
        elapsed = time.monotonic() - started

        assert transport.calls == 3
        assert elapsed >= 0.029

    @pytest.mark.asyncio
    async def test_retry_attempt_callback(self, flaky, record, formatter):
        """on_retry_attempt sees every failed attempt that will be retried."""
        contexts = []
        transport = flaky(failures=2)
        retry = make_retry(transport, max_attempts=3, on_retry_attempt=contexts.append)

        await retry.write_async(record, formatter)

        assert [c.attempt for c in contexts] == [1, 2]
        assert all(c.total_attempts == 3 for c in contexts)

    @pytest.mark.asyncio
    async def test_retry_exhausted_callback_and_log(self, flaky, record, formatter):
        exhausted = []
        retry = make_retry(flaky(failures=9), max_attempts=2, on_retry_exhausted=exhausted.append)

        with capture_logs() as logs:
            with pytest.raises(RetryExhaustedError):
                await retry.write_async(record, formatter)

        assert exhausted[0].attempts == 2
        assert exhausted[0].record is record
        assert any(log["event"] == "retry_exhausted" for log in logs)

    def test_invalid_attempts(self, capture):
        with pytest.raises(ValueError):
            RetryTransport(capture, max_attempts=0)


class TestDelayCalculation:
    """Test backoff delays."""

    def test_exponential_without_jitter(self, capture):
        retry = RetryTransport(capture, base_delay=1.0, backoff_multiplier=2, max_delay=30.0, jitter=False)
        assert [retry.calculate_delay(n) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_at_max_delay(self, capture):
        retry = RetryTransport(capture, base_delay=1.0, max_delay=5.0, jitter=False)
        assert retry.calculate_delay(10) == 5.0

    def test_jitter_bounds(self, capture):
        """Jitter stays within 25% of the nominal delay."""
        retry = RetryTransport(capture, base_delay=1.0, jitter=True)
        for _ in range(100):
            assert 0.75 <= retry.calculate_delay(1) <= 1.25


class TestRetryCircuitBreaker:
    """Test the breaker guarding the retry loop."""

    @pytest.mark.asyncio
    async def test_trips_after_threshold(self, failing, record, formatter):
        """After threshold terminal failures the next call is rejected without an attempt."""
        opened = []
        transport = failing()
        retry = make_retry(
            transport, max_attempts=1, circuit_breaker_threshold=2, on_circuit_open=lambda: opened.append(1)
        )

        for _ in range(2):
            with pytest.raises(RetryExhaustedError):
                await retry.write_async(record, formatter)

        assert retry.circuit_state is BreakerState.OPEN
        assert opened == [1]

        with pytest.raises(CircuitOpenError):
            await retry.write_async(record, formatter)
        assert transport.calls == 2

    @pytest.mark.asyncio
    async def test_failure_counted_once_per_delivery(self, flaky, record, formatter):
        """All attempts of one delivery count as a single breaker failure."""
        retry = make_retry(flaky(failures=10), max_attempts=3, circuit_breaker_threshold=5)

        with pytest.raises(RetryExhaustedError):
            await retry.write_async(record, formatter)

        assert retry.failure_count == 1
        assert retry.circuit_state is BreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_success_resets_failures(self, flaky, record, formatter):
        transport = flaky(failures=1, code="EINVAL")
        retry = make_retry(transport, max_attempts=1, circuit_breaker_threshold=5)

        with pytest.raises(RetryExhaustedError):
            await retry.write_async(record, formatter)
        await retry.write_async(record, formatter)

        assert retry.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_trial_success_closes(self, flaky, record, formatter):
        """After the timeout a successful trial closes the breaker."""
        closed = []
        transport = flaky(failures=1, code="EINVAL")
        retry = make_retry(
            transport,
            max_attempts=1,
            circuit_breaker_threshold=1,
            circuit_breaker_timeout=0.05,
            on_circuit_close=lambda: closed.append(1),
        )

        with pytest.raises(RetryExhaustedError):
            await retry.write_async(record, formatter)
        assert retry.circuit_state is BreakerState.OPEN

        await asyncio.sleep(0.06)
        await retry.write_async(record, formatter)

        assert retry.circuit_state is BreakerState.CLOSED
        assert closed == [1]
        assert transport.records == [record]

    @pytest.mark.asyncio
    async def test_half_open_trial_failure_reopens(self, failing, record, formatter):
        """A failed trial trips the breaker again."""
        transport = failing()
        retry = make_retry(
            transport, max_attempts=1, circuit_breaker_threshold=1, circuit_breaker_timeout=0.05
        )

        with pytest.raises(RetryExhaustedError):
            await retry.write_async(record, formatter)
        await asyncio.sleep(0.06)
        with pytest.raises(RetryExhaustedError):
            await retry.write_async(record, formatter)

        assert retry.circuit_state is BreakerState.OPEN
        with pytest.raises(CircuitOpenError):
            await retry.write_async(record, formatter)
        assert transport.calls == 2

    @pytest.mark.asyncio
    async def test_half_open_allows_exactly_one_attempt(self, failing, record, formatter):
        """After the timeout only one real attempt is made, whatever max_attempts is."""
        transport = failing(TransportError("timed out", code="ETIMEDOUT"))
        retry = make_retry(
            transport, max_attempts=3, circuit_breaker_threshold=1, circuit_breaker_timeout=0.05
        )

        with pytest.raises(RetryExhaustedError):
            await retry.write_async(record, formatter)
        assert transport.calls == 3

        await asyncio.sleep(0.06)
        with pytest.raises(RetryExhaustedError) as exc_info:
            await retry.write_async(record, formatter)

        assert transport.calls == 4
        assert exc_info.value.attempts == 1
        assert retry.circuit_state is BreakerState.OPEN

    @pytest.mark.asyncio
    async def test_full_budget_returns_after_trial_success(self, flaky, record, formatter):
        """Once the trial closes the breaker, writes retry up to max_attempts again."""
        transport = flaky(failures=3, code="ETIMEDOUT")
        retry = make_retry(
            transport, max_attempts=3, circuit_breaker_threshold=1, circuit_breaker_timeout=0.05
        )

        with pytest.raises(RetryExhaustedError):
            await retry.write_async(record, formatter)
        await asyncio.sleep(0.06)
        await retry.write_async(record, formatter)
        assert transport.calls == 4
        assert retry.circuit_state is BreakerState.CLOSED

        transport.failures = 6
        await retry.write_async(record, formatter)
        assert transport.calls == 7

    @pytest.mark.asyncio
    async def test_concurrent_writes_while_half_open(self, record, formatter):
        """Only one of several concurrent writes reaches a half-open transport."""

        class GatedTransport:
            def __init__(self):
                self.calls = 0
                self.fail = True
                self.gate = asyncio.Event()

            async def write_async(self, record, formatter):
                self.calls += 1
                if self.fail:
                    raise TransportError("boom", code="EBOOM")
                await self.gate.wait()

        transport = GatedTransport()
        retry = make_retry(
            transport, max_attempts=3, circuit_breaker_threshold=1, circuit_breaker_timeout=0.05
        )
        with pytest.raises(RetryExhaustedError):
            await retry.write_async(record, formatter)
        await asyncio.sleep(0.06)

        transport.fail = False
        trial = asyncio.create_task(retry.write_async(record, formatter))
        await asyncio.sleep(0)
        for _ in range(3):
            with pytest.raises(CircuitOpenError):
                await retry.write_async(record, formatter)

        transport.gate.set()
        await trial

        assert transport.calls == 2
        assert retry.circuit_state is BreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_reset_circuit_breaker(self, failing, record, formatter):
        retry = make_retry(failing(), max_attempts=1, circuit_breaker_threshold=1)
        with pytest.raises(RetryExhaustedError):
            await retry.write_async(record, formatter)

        retry.reset_circuit_breaker()

        assert retry.circuit_state is BreakerState.CLOSED
        assert retry.failure_count == 0


class TestSynchronousEntry:
    """Test the fire-and-forget write path."""

    @pytest.mark.asyncio
    async def test_write_reports_instead_of_raising(self, failing, record, formatter, scheduler):
        """write() schedules delivery and reports the final failure."""
        events = []
        retry = make_retry(failing(), max_attempts=2, on_error=[events.append], scheduler=scheduler)

        retry.write(record, formatter)
        await scheduler.drain()

        assert len(events) == 1
        assert events[0].type == "transport"
        assert isinstance(events[0].error, RetryExhaustedError)
        assert events[0].source is retry

    @pytest.mark.asyncio
    async def test_write_delivers(self, capture, record, formatter, scheduler):
        retry = make_retry(capture, scheduler=scheduler)

        retry.write(record, formatter)
        assert len(capture) == 0
        await scheduler.drain()

        assert capture.records == [record]
