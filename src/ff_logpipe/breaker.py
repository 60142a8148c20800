"""
Circuit breaker state machine shared by the transport decorators.

The decorators differ only in how a success treats the failure counter
(the decay policy) and in the names they report for each state.
"""

import math
import time
from collections.abc import Callable, Mapping
from enum import Enum

import structlog

logger = structlog.get_logger(__name__)


class BreakerState(str, Enum):
    """Breaker states, named conventionally: CLOSED lets traffic through."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


STANDARD_LABELS: dict[BreakerState, str] = {
    BreakerState.CLOSED: "closed",
    BreakerState.OPEN: "open",
    BreakerState.HALF_OPEN: "half_open",
}

# Vocabulary of the breaker-only transport: healthy is "open", tripped is "closed".
INVERTED_LABELS: dict[BreakerState, str] = {
    BreakerState.CLOSED: "open",
    BreakerState.OPEN: "closed",
    BreakerState.HALF_OPEN: "half-open",
}


class DecayPolicy:
    """How a successful delivery changes the failure counter."""

    def on_success(self, failure_count: int) -> int:
        raise NotImplementedError


class ResetOnSuccess(DecayPolicy):
    """Any success clears the failure counter."""

    def on_success(self, failure_count: int) -> int:
        return 0

    def __repr__(self) -> str:
        return "ResetOnSuccess()"


class MultiplicativeDecay(DecayPolicy):
    """A success shrinks the failure counter by ``factor``, never below ``floor``."""

    def __init__(self, factor: float = 0.9, floor: int = 1):
        self.factor = factor
        self.floor = floor

    def on_success(self, failure_count: int) -> int:
        if failure_count == 0:
            return 0
        return max(self.floor, math.floor(failure_count * self.factor))

    def __repr__(self) -> str:
        return f"MultiplicativeDecay(factor={self.factor}, floor={self.floor})"


StateChangeCallback = Callable[[str, str], None]


class CircuitBreaker:
    """
    Three-state circuit breaker.

    CLOSED counts failures and trips to OPEN at ``threshold``. OPEN rejects
    requests until ``timeout`` seconds have passed since it tripped, then
    moves to HALF_OPEN and admits a single trial request. Further requests
    are rejected until that trial reports back. Its success closes the
    breaker and its failure trips it again. A trial that has not reported
    back within ``timeout`` is treated as lost and another one is admitted.

    Args:
        threshold: Failure count that trips the breaker
        timeout: Seconds to stay open before admitting a trial request
        decay: Policy applied to the failure counter on success
        labels: Names reported by ``state_label`` and to ``on_state_change``
        on_state_change: Called with (old_label, new_label) on every transition
        clock: Monotonic time source
    """

    def __init__(
        self,
        threshold: int = 5,
        timeout: float = 60.0,
        decay: DecayPolicy | None = None,
        labels: Mapping[BreakerState, str] | None = None,
        on_state_change: StateChangeCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if threshold < 1:
            raise ValueError("threshold must be at least 1")
        self.threshold = threshold
        self.timeout = timeout
        self.decay = decay or ResetOnSuccess()
        self.labels = dict(labels or STANDARD_LABELS)
        self.on_state_change = on_state_change
        self._clock = clock

        self._state = BreakerState.CLOSED
        self._failure_count = 0
        self._opened_at: float | None = None
        self._last_failure_at: float | None = None
        self._trial_started_at: float | None = None

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def state_label(self) -> str:
        return self.labels[self._state]

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def opened_at(self) -> float | None:
        return self._opened_at

    @property
    def last_failure_at(self) -> float | None:
        return self._last_failure_at

    @property
    def trial_in_flight(self) -> bool:
        return self._state is BreakerState.HALF_OPEN and self._trial_started_at is not None

    def allow_request(self) -> bool:
        """
        Whether a delivery may be attempted now.

        A True answer while the breaker is not CLOSED reserves the single
        trial slot, and the caller must report the outcome with
        ``record_success`` or ``record_failure``.
        """
        now = self._clock()
        if self._state is BreakerState.OPEN:
            if now - (self._opened_at or 0.0) < self.timeout:
                return False
            self._transition(BreakerState.HALF_OPEN)
            self._trial_started_at = now
            return True
        if self._state is BreakerState.HALF_OPEN:
            if self._trial_started_at is not None and now - self._trial_started_at < self.timeout:
                return False
            self._trial_started_at = now
        return True

    def record_success(self) -> None:
        self._trial_started_at = None
        self._failure_count = self.decay.on_success(self._failure_count)
        if self._state is BreakerState.HALF_OPEN:
            self._transition(BreakerState.CLOSED)

    def record_failure(self) -> None:
        self._trial_started_at = None
        self._failure_count += 1
        self._last_failure_at = self._clock()

        if self._state is BreakerState.HALF_OPEN:
            self._trip()
        elif self._state is BreakerState.CLOSED and self._failure_count >= self.threshold:
            self._trip()

    def reset(self) -> None:
        """Force the breaker closed and forget all failures."""
        self._failure_count = 0
        self._opened_at = None
        self._last_failure_at = None
        self._trial_started_at = None
        self._transition(BreakerState.CLOSED)

    def _trip(self) -> None:
        self._opened_at = self._clock()
        self._transition(BreakerState.OPEN)

    def _transition(self, new_state: BreakerState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state

        old_label, new_label = self.labels[old_state], self.labels[new_state]
        logger.debug(
            "circuit_breaker_transition",
            from_state=old_label,
            to_state=new_label,
            failure_count=self._failure_count,
        )
        if self.on_state_change is not None:
            self.on_state_change(old_label, new_label)

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(state={self.state_label!r}, "
            f"failures={self._failure_count}, threshold={self.threshold})"
        )
