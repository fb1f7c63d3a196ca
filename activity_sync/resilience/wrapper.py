"""
Resilience Wrapper

Composes, per external call: a per-attempt timeout, the dependency's shared
circuit breaker and rate limiter, and bounded retries with backoff.

Order of operations for each attempt:
1. Ask the breaker for permission (short-circuit without any I/O if denied)
2. Wait for a rate-limit slot
3. Run the call under `asyncio.wait_for`
4. Classify the result and feed the breaker
5. Retry dependency-origin failures while attempts remain

Every terminal failure surfaces as `ExternalCallError` carrying the classified
outcome, so callers never need to inspect raw transport exceptions.
"""

from __future__ import annotations

import asyncio
import time
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar

import structlog

from activity_sync.config import Settings, get_settings
from activity_sync.errors import ExternalCallError, HttpStatusError
from activity_sync.monitoring.metrics import SyncMetrics, get_metrics
from activity_sync.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from activity_sync.resilience.classifier import SyncOutcome, classify_exception
from activity_sync.resilience.rate_limiter import RateLimiter
from activity_sync.resilience.retry import RetryPolicy

logger = structlog.get_logger()

T = TypeVar("T")

JIRA = "jira"
GITHUB = "github"
CONFIG_SERVICE = "config-service"


class ResilienceWrapper:
    """Timeout + circuit breaker + retry around calls to one dependency."""

    def __init__(
        self,
        dependency: str,
        *,
        breaker: CircuitBreaker,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float = 30.0,
        rate_limiter: RateLimiter | None = None,
        metrics: SyncMetrics | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.dependency = dependency
        self.breaker = breaker
        self.retry_policy = retry_policy or RetryPolicy()
        self.timeout_seconds = timeout_seconds
        self.rate_limiter = rate_limiter
        self._metrics = metrics
        self._sleep = sleep
        self._clock = clock

    @property
    def metrics(self) -> SyncMetrics:
        if self._metrics is None:
            self._metrics = get_metrics()
        return self._metrics

    async def call(
        self,
        func: Callable[[], Awaitable[T]],
        *,
        operation: str,
        timeout_seconds: float | None = None,
    ) -> T:
        """Run `func` with the full resilience stack and return its result."""
        timeout = timeout_seconds if timeout_seconds is not None else self.timeout_seconds
        attempt = 0

        while True:
            attempt += 1

            if not self.breaker.try_acquire_permission():
                self.metrics.track_external_call(
                    self.dependency, SyncOutcome.FAILED_CIRCUIT_OPEN.value
                )
                logger.warning(
                    "External call short-circuited",
                    dependency=self.dependency,
                    operation=operation,
                    retry_in_seconds=round(self.breaker.time_until_half_open(), 1),
                )
                raise ExternalCallError(
                    outcome=SyncOutcome.FAILED_CIRCUIT_OPEN,
                    dependency=self.dependency,
                    message=f"circuit breaker for {self.dependency} is open",
                    attempts=attempt,
                )

            if self.rate_limiter is not None:
                try:
                    await self.rate_limiter.acquire()
                except asyncio.CancelledError:
                    self.breaker.release_permission()
                    raise

            started = self._clock()
            try:
                result = await asyncio.wait_for(func(), timeout=timeout)
            except asyncio.CancelledError:
                self.breaker.release_permission()
                raise
            except Exception as exc:
                duration = self._clock() - started
                outcome = classify_exception(exc)
                self.breaker.on_result(outcome, duration)
                self.metrics.track_external_call(self.dependency, outcome.value)

                if self.retry_policy.should_retry(outcome, attempt):
                    delay = self.retry_policy.backoff_seconds(
                        attempt,
                        retry_after=getattr(exc, "retry_after", None),
                    )
                    logger.warning(
                        "Retrying external call",
                        dependency=self.dependency,
                        operation=operation,
                        outcome=outcome.value,
                        attempt=attempt,
                        delay=round(delay, 3),
                        error=_describe(exc),
                    )
                    await self._sleep(delay)
                    continue

                logger.warning(
                    "External call failed",
                    dependency=self.dependency,
                    operation=operation,
                    outcome=outcome.value,
                    attempts=attempt,
                    error=_describe(exc),
                )
                raise ExternalCallError(
                    outcome=outcome,
                    dependency=self.dependency,
                    message=_describe(exc),
                    attempts=attempt,
                    status_code=getattr(exc, "status_code", None),
                ) from exc

            duration = self._clock() - started
            self.breaker.on_result(SyncOutcome.SUCCESS, duration)
            self.metrics.track_external_call(self.dependency, SyncOutcome.SUCCESS.value)
            return result


def resilient(
    call: Callable[..., Awaitable[T]],
    *,
    breaker: CircuitBreaker,
    retry_policy: RetryPolicy | None = None,
    timeout_seconds: float = 30.0,
    operation: str | None = None,
    metrics: SyncMetrics | None = None,
) -> Callable[..., Awaitable[T]]:
    """
    Wrap a coroutine function with timeout, circuit breaker and retries.

    Usage:
        fetch = resilient(client.fetch_issues, breaker=jira_breaker)
        issues = await fetch(credentials)
    """
    wrapper = ResilienceWrapper(
        breaker.name,
        breaker=breaker,
        retry_policy=retry_policy,
        timeout_seconds=timeout_seconds,
        metrics=metrics,
    )
    op_name = operation or getattr(call, "__name__", "call")

    @wraps(call)
    async def _wrapped(*args: Any, **kwargs: Any) -> T:
        return await wrapper.call(lambda: call(*args, **kwargs), operation=op_name)

    return _wrapped


def _describe(exc: BaseException) -> str:
    if isinstance(exc, asyncio.TimeoutError) and not str(exc):
        return "call timed out"
    if isinstance(exc, HttpStatusError):
        return exc.message
    return str(exc) or type(exc).__name__


class ResilienceRegistry:
    """
    Process-wide wrappers, one per external dependency.

    Breakers and rate limiters are shared by every tenant that talks to the
    same dependency.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        metrics: SyncMetrics | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        self._metrics = metrics
        self._sleep = sleep
        self._clock = clock
        self._wrappers: dict[str, ResilienceWrapper] = {}

    def _timeout_for(self, dependency: str) -> float:
        if dependency == JIRA:
            return self.settings.jira_timeout_seconds
        if dependency == GITHUB:
            return self.settings.github_timeout_seconds
        if dependency == CONFIG_SERVICE:
            return self.settings.config_service_timeout_seconds
        return 30.0

    def _rate_limit_for(self, dependency: str) -> int:
        if dependency == JIRA:
            return self.settings.jira_rate_limit_per_minute
        if dependency == GITHUB:
            return self.settings.github_rate_limit_per_minute
        if dependency == CONFIG_SERVICE:
            return self.settings.config_service_rate_limit_per_minute
        return 0

    def _on_state_change(self, dependency: str, state: CircuitState) -> None:
        metrics = self._metrics if self._metrics is not None else get_metrics()
        metrics.set_circuit_state(dependency, state.value)

    def get(self, dependency: str) -> ResilienceWrapper:
        wrapper = self._wrappers.get(dependency)
        if wrapper is not None:
            return wrapper

        s = self.settings
        breaker = CircuitBreaker(
            dependency,
            CircuitBreakerConfig(
                window_size=s.circuit_breaker_window_size,
                minimum_calls=s.circuit_breaker_minimum_calls,
                failure_rate_threshold=s.circuit_breaker_failure_rate_threshold,
                open_seconds=s.circuit_breaker_open_seconds,
                half_open_calls=s.circuit_breaker_half_open_calls,
                slow_call_seconds=s.circuit_breaker_slow_call_seconds,
            ),
            clock=self._clock,
            on_state_change=self._on_state_change,
        )
        wrapper = ResilienceWrapper(
            dependency,
            breaker=breaker,
            retry_policy=RetryPolicy(
                max_attempts=s.retry_max_attempts,
                base_backoff_seconds=s.retry_base_backoff_seconds,
                max_backoff_seconds=s.retry_max_backoff_seconds,
            ),
            timeout_seconds=self._timeout_for(dependency),
            rate_limiter=RateLimiter(
                dependency,
                self._rate_limit_for(dependency),
                sleep=self._sleep,
                clock=self._clock,
            ),
            metrics=self._metrics,
            sleep=self._sleep,
            clock=self._clock,
        )
        self._wrappers[dependency] = wrapper
        return wrapper

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return {name: w.breaker.snapshot() for name, w in self._wrappers.items()}
