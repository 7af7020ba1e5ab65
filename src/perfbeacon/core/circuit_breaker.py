"""Process-wide health tracking for the collector endpoint.

State machine::

    CLOSED --(threshold consecutive failures)--> OPEN
    OPEN --(reset due, checked explicitly)--> HALF_OPEN
    HALF_OPEN --(success)--> CLOSED
    HALF_OPEN --(failure)--> OPEN

While OPEN and no reset is due, callers are short-circuited without
touching the endpoint. All state changes happen under one lock because
delivery outcomes arrive concurrently from several worker threads.
"""

import enum
import logging
import threading
import time
from collections.abc import Callable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_RECOVERY_TIMEOUT = 60.0
DEFAULT_RETRY_TIMEOUT = 300.0


class CircuitState(enum.Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class _CircuitOpen:
    def __repr__(self) -> str:
        return "CIRCUIT_OPEN"


CIRCUIT_OPEN: Any = _CircuitOpen()


class CircuitBreaker:
    """Consecutive-failure circuit breaker.

    Args:
        failure_threshold: Consecutive failures that open the circuit.
        recovery_timeout: Seconds after the last failure before a trial is
            allowed.
        retry_timeout: Longer periodic-retry window, honoured even if the
            recovery check was skipped.
        clock: Monotonic clock returning seconds.
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        recovery_timeout: float = DEFAULT_RECOVERY_TIMEOUT,
        retry_timeout: float = DEFAULT_RETRY_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be positive")
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.retry_timeout = retry_timeout
        self._clock = clock
        self._lock = threading.RLock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._last_success_time: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> CircuitState:
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_time(self) -> float | None:
        return self._last_failure_time

    @property
    def last_success_time(self) -> float | None:
        return self._last_success_time

    def should_attempt_reset(self) -> bool:
        """Return True once a recovery or retry timeout has elapsed.

        Always False before any failure has been recorded.
        """
        with self._lock:
            if self._last_failure_time is None:
                return False
            elapsed = self._clock() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                return True
            return elapsed >= self.retry_timeout

    def allow_request(self) -> bool:
        """Decide whether a delivery attempt may proceed right now.

        CLOSED admits everything. OPEN admits a single trial (moving to
        HALF_OPEN) once a reset is due. HALF_OPEN admits nothing further
        until the trial's outcome is recorded.
        """
        with self._lock:
            if self._state is CircuitState.CLOSED:
                return True
            if self._state is CircuitState.OPEN:
                if not self.should_attempt_reset():
                    return False
                self._state = CircuitState.HALF_OPEN
                self._trial_in_flight = True
                logger.debug("Circuit half-open; admitting trial request")
                return True
            if self._trial_in_flight:
                return False
            self._trial_in_flight = True
            return True

    def call(
        self,
        fn: Callable[[], T],
        is_success: Callable[[T], bool] = lambda _result: True,
    ) -> T:
        """Run ``fn`` through the breaker.

        Args:
            fn: Operation to protect.
            is_success: Classifies a returned value as success or failure.

        Returns:
            The operation's result, or CIRCUIT_OPEN when short-circuited.

        Raises:
            Exception: Whatever ``fn`` raises, after recording a failure.
        """
        if not self.allow_request():
            return CIRCUIT_OPEN
        try:
            result = fn()
        except Exception:
            self.on_failure()
            raise
        if is_success(result):
            self.on_success()
        else:
            self.on_failure()
        return result

    def on_success(self) -> None:
        """Record a successful delivery: close the circuit."""
        with self._lock:
            was_closed = self._state is CircuitState.CLOSED
            self._failure_count = 0
            self._last_success_time = self._clock()
            self._state = CircuitState.CLOSED
            self._trial_in_flight = False
        if not was_closed:
            logger.info("Circuit closed; deliveries resuming")

    def on_failure(self) -> None:
        """Record a failed delivery, opening the circuit at the threshold."""
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()
            self._trial_in_flight = False
            opened = False
            if self._state is CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                opened = True
            elif (
                self._state is CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._state = CircuitState.OPEN
                opened = True
            failures = self._failure_count
        if opened:
            logger.info("Circuit opened after %d failures", failures)

    def release_trial(self) -> None:
        """Give back a half-open trial slot whose request was never sent."""
        with self._lock:
            self._trial_in_flight = False

    def reset(self) -> None:
        """Force the circuit closed and forget recorded failures."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None
            self._trial_in_flight = False

    def trip(self) -> None:
        """Force the circuit open as if a failure just happened."""
        with self._lock:
            self._state = CircuitState.OPEN
            self._last_failure_time = self._clock()
            self._trial_in_flight = False

    def snapshot(self) -> dict[str, Any]:
        """Return the current state as a plain mapping."""
        with self._lock:
            return {
                "state": self._state.value,
                "failure_count": self._failure_count,
                "last_failure_time": self._last_failure_time,
                "last_success_time": self._last_success_time,
            }
