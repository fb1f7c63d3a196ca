"""
Circuit Breaker

Count-based sliding-window circuit breaker, one instance per external
dependency (process-wide, shared by every tenant).

States:
- CLOSED: calls flow; outcomes are recorded into a ring buffer of size N.
- OPEN: calls are short-circuited until the cooldown elapses.
- HALF_OPEN: a limited number of trial calls are permitted. All trials
  succeeding closes the breaker, any trial failing reopens it.

Only dependency-origin outcomes (and slow calls) enter the window.
Configuration errors are ignored entirely so that a single misconfigured
tenant cannot open the breaker for everyone.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from threading import Lock
from typing import Any, Callable

import structlog

from activity_sync.resilience.classifier import SyncOutcome

logger = structlog.get_logger()


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class CircuitBreakerConfig:
    window_size: int = 20
    minimum_calls: int = 10
    failure_rate_threshold: float = 50.0  # percent
    open_seconds: float = 60.0
    half_open_calls: int = 3
    slow_call_seconds: float = 10.0

    def __post_init__(self) -> None:
        if self.window_size < 1:
            raise ValueError("window_size must be at least 1")
        if self.minimum_calls < 1:
            raise ValueError("minimum_calls must be at least 1")
        if not 0 < self.failure_rate_threshold <= 100:
            raise ValueError("failure_rate_threshold must be in (0, 100]")
        if self.open_seconds <= 0:
            raise ValueError("open_seconds must be positive")
        if self.half_open_calls < 1:
            raise ValueError("half_open_calls must be at least 1")


class CircuitBreaker:
    """
    Sliding-window circuit breaker.

    Thread-safe: all state is guarded by a lock so the same instance can be
    shared by every worker task (and thread) calling the dependency.

    Usage (normally driven by `ResilienceWrapper`):
        if not breaker.try_acquire_permission():
            ...  # short-circuit, no network I/O
        outcome, duration = await call()
        breaker.on_result(outcome, duration)
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_state_change: Callable[[str, CircuitState], None] | None = None,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._on_state_change = on_state_change

        self._lock = Lock()
        self._state = CircuitState.CLOSED
        # True = failure (or slow call), False = success
        self._window: deque[bool] = deque(maxlen=self.config.window_size)
        self._opened_at: float | None = None
        self._half_open_permits = 0
        self._half_open_successes = 0

        self._times_opened = 0
        self._short_circuited = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    def try_acquire_permission(self) -> bool:
        """Return True when a call may proceed, False to short-circuit."""
        with self._lock:
            self._maybe_half_open()

            if self._state is CircuitState.CLOSED:
                return True

            if self._state is CircuitState.HALF_OPEN:
                if self._half_open_permits < self.config.half_open_calls:
                    self._half_open_permits += 1
                    return True

            self._short_circuited += 1
            return False

    def on_result(self, outcome: SyncOutcome, duration_seconds: float = 0.0) -> None:
        """Record the classified outcome of a permitted call."""
        with self._lock:
            if outcome.is_success:
                failed = duration_seconds >= self.config.slow_call_seconds
                if failed:
                    logger.warning(
                        "Slow call recorded as circuit failure",
                        breaker=self.name,
                        duration_seconds=round(duration_seconds, 3),
                        threshold_seconds=self.config.slow_call_seconds,
                    )
            elif outcome.counts_as_circuit_failure:
                failed = True
            else:
                # Configuration errors and resilience signals never enter the window.
                if self._state is CircuitState.HALF_OPEN and self._half_open_permits > 0:
                    self._half_open_permits -= 1
                return

            if self._state is CircuitState.HALF_OPEN:
                self._record_half_open(failed)
                return

            if self._state is CircuitState.OPEN:
                # A call permitted before the breaker opened finished late.
                return

            self._window.append(failed)
            if self._should_open():
                self._transition(CircuitState.OPEN)

    def release_permission(self) -> None:
        """Return a half-open trial permit without recording an outcome."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN and self._half_open_permits > 0:
                self._half_open_permits -= 1

    def failure_rate(self) -> float:
        """Failure rate (percent) over the current window, -1 below minimum_calls."""
        with self._lock:
            return self._failure_rate()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            self._maybe_half_open()
            return {
                "name": self.name,
                "state": self._state.value,
                "window_calls": len(self._window),
                "window_failures": sum(1 for failed in self._window if failed),
                "failure_rate": self._failure_rate(),
                "times_opened": self._times_opened,
                "short_circuited": self._short_circuited,
            }

    def time_until_half_open(self) -> float:
        with self._lock:
            if self._state is not CircuitState.OPEN or self._opened_at is None:
                return 0.0
            remaining = self._opened_at + self.config.open_seconds - self._clock()
            return max(0.0, remaining)

    # Internal helpers (lock must be held)

    def _failure_rate(self) -> float:
        calls = len(self._window)
        if calls < self.config.minimum_calls:
            return -1.0
        failures = sum(1 for failed in self._window if failed)
        return failures * 100.0 / calls

    def _should_open(self) -> bool:
        rate = self._failure_rate()
        return rate >= 0 and rate >= self.config.failure_rate_threshold

    def _record_half_open(self, failed: bool) -> None:
        if failed:
            self._transition(CircuitState.OPEN)
            return
        self._half_open_successes += 1
        if self._half_open_successes >= self.config.half_open_calls:
            self._transition(CircuitState.CLOSED)

    def _maybe_half_open(self) -> None:
        if self._state is not CircuitState.OPEN or self._opened_at is None:
            return
        if self._clock() - self._opened_at >= self.config.open_seconds:
            self._transition(CircuitState.HALF_OPEN)

    def _transition(self, target: CircuitState) -> None:
        previous = self._state
        self._state = target
        self._half_open_permits = 0
        self._half_open_successes = 0

        if target is CircuitState.OPEN:
            self._opened_at = self._clock()
            self._times_opened += 1
            logger.warning(
                "Circuit breaker opened",
                breaker=self.name,
                previous_state=previous.value,
                failure_rate=self._failure_rate(),
                open_seconds=self.config.open_seconds,
            )
        elif target is CircuitState.CLOSED:
            self._opened_at = None
            self._window.clear()
            logger.info("Circuit breaker closed", breaker=self.name)
        else:
            logger.info("Circuit breaker half-open", breaker=self.name)

        if self._on_state_change is not None:
            try:
                self._on_state_change(self.name, target)
            except Exception as exc:
                logger.warning("Circuit state listener failed", breaker=self.name, error=str(exc))
