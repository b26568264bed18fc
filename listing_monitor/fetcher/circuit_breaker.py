"""Circuit breaker guarding the monitoring cycle."""

import asyncio
import threading
import time
from collections import deque
from typing import Any, Callable, Deque, Optional, Protocol

from listing_monitor.models.data_models import CircuitBreakerStats, CircuitState
from listing_monitor.monitoring.logger import StructuredLogger


class Clock(Protocol):
    """Clock interface for testable time management."""

    def now(self) -> float:
        """Return current time in seconds."""
        ...


class MonotonicClock:
    """Default clock implementation using time.monotonic."""

    def now(self) -> float:
        return time.monotonic()


class CircuitBreaker:
    """
    Circuit breaker with CLOSED/OPEN/HALF_OPEN states.

    Stops monitoring after repeated failures:
    - Opens after ``max_consecutive_errors`` consecutive errors
    - Opens when the windowed error rate exceeds ``error_rate_threshold``
    - Moves to HALF_OPEN after ``recovery_seconds`` (auto-recovery timer)
    - Closes on the first success in HALF_OPEN, re-opens on any error
    """

    def __init__(
        self,
        max_consecutive_errors: int = 5,
        error_rate_threshold: float = 0.5,
        window_seconds: float = 3600.0,
        recovery_seconds: float = 1800.0,
        auto_recovery_enabled: bool = True,
        min_error_samples: int = 10,
        expected_check_interval_seconds: float = 300.0,
        clock: Optional[Clock] = None,
        logger: Optional[StructuredLogger] = None,
        on_state_change: Optional[Callable[[CircuitState, CircuitState], Any]] = None
    ):
        """
        Initialize circuit breaker.

        Args:
            max_consecutive_errors: Consecutive errors before opening
            error_rate_threshold: Windowed error rate (0-1) that opens the circuit
            window_seconds: Length of the sliding error window
            recovery_seconds: Delay before OPEN moves to HALF_OPEN
            auto_recovery_enabled: Schedule the recovery timer when opening
            min_error_samples: Errors required in the window before the rate counts
            expected_check_interval_seconds: Expected spacing between checks
            clock: Clock interface for time management (defaults to MonotonicClock)
            logger: Structured logger for state transitions
            on_state_change: Callback invoked with (old, new) on every transition
        """
        self.max_consecutive_errors = max_consecutive_errors
        self.error_rate_threshold = error_rate_threshold
        self.window_seconds = window_seconds
        self.recovery_seconds = recovery_seconds
        self.auto_recovery_enabled = auto_recovery_enabled
        self.min_error_samples = min_error_samples
        self.expected_check_interval_seconds = expected_check_interval_seconds
        self.clock = clock or MonotonicClock()
        self.logger = logger or StructuredLogger()
        self.on_state_change = on_state_change

        self._state = CircuitState.CLOSED
        self._consecutive_errors = 0
        self._error_times: Deque[float] = deque()
        self._last_open_time: Optional[float] = None
        self._recovery_handle: Optional[Any] = None

    @property
    def state(self) -> CircuitState:
        return self._state

    def can_execute(self) -> bool:
        """True unless the circuit is OPEN."""
        return self._state != CircuitState.OPEN

    def record_success(self) -> None:
        """Reset the consecutive counter; a success in HALF_OPEN closes the circuit."""
        self._consecutive_errors = 0
        if self._state == CircuitState.HALF_OPEN:
            self._transition(CircuitState.CLOSED)

    def record_error(self, reason: str = "") -> bool:
        """
        Record a failed check.

        Args:
            reason: Short failure description for the log

        Returns:
            True if monitoring should stop (the circuit is now OPEN)
        """
        now = self.clock.now()
        self._consecutive_errors += 1
        self._error_times.append(now)
        self._prune(now)

        if self._state == CircuitState.HALF_OPEN:
            self._open(reason or "error during half-open probe")
            return True

        if self._state == CircuitState.OPEN:
            return True

        if self._consecutive_errors >= self.max_consecutive_errors:
            self._open(reason or f"{self._consecutive_errors} consecutive errors")
            return True

        error_rate = self._error_rate()
        if error_rate > self.error_rate_threshold:
            self._open(reason or f"error rate {error_rate:.2f}")
            return True

        return False

    def attempt_recovery(self) -> None:
        """Move OPEN to HALF_OPEN; no effect in other states."""
        self._recovery_handle = None
        if self._state != CircuitState.OPEN:
            return
        self._consecutive_errors = 0
        self._transition(CircuitState.HALF_OPEN)

    def reset(self) -> None:
        """Return to CLOSED with empty counters and no pending timer."""
        self._cancel_recovery()
        previous = self._state
        self._state = CircuitState.CLOSED
        self._consecutive_errors = 0
        self._error_times.clear()
        self._last_open_time = None
        if previous != CircuitState.CLOSED:
            self._notify(previous, CircuitState.CLOSED)

    def get_stats(self) -> CircuitBreakerStats:
        self._prune(self.clock.now())
        return CircuitBreakerStats(
            state=self._state,
            consecutive_errors=self._consecutive_errors,
            error_rate=self._error_rate(),
            recent_error_count=len(self._error_times),
            last_open_time=self._last_open_time,
        )

    def _error_rate(self) -> float:
        recent = len(self._error_times)
        if recent < self.min_error_samples:
            return 0.0
        expected_checks = self.window_seconds / self.expected_check_interval_seconds
        return min(1.0, recent / max(expected_checks, self.min_error_samples))

    def _prune(self, now: float) -> None:
        cutoff = now - self.window_seconds
        while self._error_times and self._error_times[0] < cutoff:
            self._error_times.popleft()

    def _open(self, reason: str) -> None:
        self._last_open_time = self.clock.now()
        self._transition(CircuitState.OPEN, reason=reason)
        if self.auto_recovery_enabled:
            self._schedule_recovery()

    def _transition(self, new_state: CircuitState, **kwargs: Any) -> None:
        previous = self._state
        self._state = new_state
        self.logger.circuit_breaker_state(
            new_state.value,
            previous=previous.value,
            consecutive_errors=self._consecutive_errors,
            **kwargs
        )
        self._notify(previous, new_state)

    def _notify(self, previous: CircuitState, new_state: CircuitState) -> None:
        if self.on_state_change is not None:
            self.on_state_change(previous, new_state)

    def _schedule_recovery(self) -> None:
        self._cancel_recovery()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            timer = threading.Timer(self.recovery_seconds, self.attempt_recovery)
            timer.daemon = True
            timer.start()
            self._recovery_handle = timer
        else:
            self._recovery_handle = loop.call_later(self.recovery_seconds, self.attempt_recovery)

    def _cancel_recovery(self) -> None:
        if self._recovery_handle is not None:
            self._recovery_handle.cancel()
            self._recovery_handle = None
