"""
Unit tests for the resilience wrapper (timeout + circuit breaker + retry).
"""

import asyncio

import httpx
import pytest

from activity_sync.errors import ExternalCallError, HttpStatusError
from activity_sync.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from activity_sync.resilience.classifier import SyncOutcome
from activity_sync.resilience.rate_limiter import RateLimiter
from activity_sync.resilience.retry import RetryPolicy
from activity_sync.resilience.wrapper import JIRA, ResilienceRegistry, ResilienceWrapper, resilient
from tests.support.clock import FakeClock
from tests.support.metrics import sample

pytestmark = pytest.mark.unit


class FlakyCall:
    """Raises the queued errors in order, then returns `result`."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


def _wrapper(metrics, clock, *, max_attempts=3, breaker=None, timeout_seconds=30.0):
    breaker = breaker or CircuitBreaker(JIRA, clock=clock)
    return ResilienceWrapper(
        JIRA,
        breaker=breaker,
        retry_policy=RetryPolicy(max_attempts=max_attempts, base_backoff_seconds=0.5),
        timeout_seconds=timeout_seconds,
        metrics=metrics,
        sleep=clock.sleep,
        clock=clock,
    )


def _server_error():
    return HttpStatusError(status_code=500, url="https://jira.test/rest/api/3/search")


@pytest.mark.asyncio
async def test_success_is_recorded(metrics):
    clock = FakeClock()
    wrapper = _wrapper(metrics, clock)

    assert await wrapper.call(FlakyCall(), operation="search") == "ok"
    assert sample(metrics, "external_call_outcomes_total", dependency=JIRA, outcome="SUCCESS") == 1
    assert wrapper.breaker.snapshot()["window_calls"] == 1


@pytest.mark.asyncio
async def test_transient_failure_is_retried_with_backoff(metrics):
    clock = FakeClock()
    wrapper = _wrapper(metrics, clock)
    call = FlakyCall(_server_error(), httpx.ConnectError("refused"))

    assert await wrapper.call(call, operation="search") == "ok"
    assert call.calls == 3
    assert len(clock.sleeps) == 2
    assert 0.5 <= clock.sleeps[0] <= 0.75
    assert 1.0 <= clock.sleeps[1] <= 1.5
    assert (
        sample(metrics, "external_call_outcomes_total", dependency=JIRA, outcome="FAILED_SERVER_ERROR")
        == 1
    )


@pytest.mark.asyncio
async def test_retry_after_header_drives_the_delay(metrics):
    clock = FakeClock()
    wrapper = _wrapper(metrics, clock)
    throttled = HttpStatusError(status_code=429, url="https://jira.test", retry_after=2.0)

    await wrapper.call(FlakyCall(throttled), operation="search")

    assert clock.sleeps == [2.0]


@pytest.mark.asyncio
async def test_configuration_error_is_not_retried(metrics):
    clock = FakeClock()
    wrapper = _wrapper(metrics, clock)
    call = FlakyCall(HttpStatusError(status_code=401, url="https://jira.test"))

    with pytest.raises(ExternalCallError) as exc_info:
        await wrapper.call(call, operation="search")

    assert exc_info.value.outcome is SyncOutcome.FAILED_INVALID_CREDENTIAL
    assert exc_info.value.status_code == 401
    assert call.calls == 1
    assert clock.sleeps == []
    assert wrapper.breaker.snapshot()["window_calls"] == 0


@pytest.mark.asyncio
async def test_exhausted_retries_raise_classified_error(metrics):
    clock = FakeClock()
    wrapper = _wrapper(metrics, clock)
    call = FlakyCall(_server_error(), _server_error(), _server_error())

    with pytest.raises(ExternalCallError) as exc_info:
        await wrapper.call(call, operation="search")

    err = exc_info.value
    assert err.outcome is SyncOutcome.FAILED_SERVER_ERROR
    assert err.attempts == 3
    assert err.dependency == JIRA
    assert isinstance(err.__cause__, HttpStatusError)
    assert call.calls == 3


@pytest.mark.asyncio
async def test_open_circuit_short_circuits_without_calling(metrics):
    clock = FakeClock()
    breaker = CircuitBreaker(
        JIRA,
        CircuitBreakerConfig(window_size=10, minimum_calls=2, open_seconds=60),
        clock=clock,
    )
    wrapper = _wrapper(metrics, clock, max_attempts=1, breaker=breaker)

    for _ in range(2):
        with pytest.raises(ExternalCallError):
            await wrapper.call(FlakyCall(_server_error()), operation="search")
    assert wrapper.breaker.state is CircuitState.OPEN

    call = FlakyCall()
    with pytest.raises(ExternalCallError) as exc_info:
        await wrapper.call(call, operation="search")

    assert exc_info.value.outcome is SyncOutcome.FAILED_CIRCUIT_OPEN
    assert call.calls == 0
    assert (
        sample(metrics, "external_call_outcomes_total", dependency=JIRA, outcome="FAILED_CIRCUIT_OPEN")
        == 1
    )


@pytest.mark.asyncio
async def test_timeout_is_classified(metrics):
    clock = FakeClock()
    wrapper = _wrapper(metrics, clock, max_attempts=1, timeout_seconds=0.01)

    async def hang():
        await asyncio.sleep(5)

    with pytest.raises(ExternalCallError) as exc_info:
        await wrapper.call(hang, operation="search")

    assert exc_info.value.outcome is SyncOutcome.FAILED_TIMEOUT
    assert "timed out" in exc_info.value.message


@pytest.mark.asyncio
async def test_resilient_decorator_passes_arguments(metrics):
    breaker = CircuitBreaker("github")

    async def fetch(owner, repo, *, page):
        return f"{owner}/{repo}#{page}"

    wrapped = resilient(fetch, breaker=breaker, metrics=metrics)

    assert await wrapped("octo", "repo", page=2) == "octo/repo#2"
    assert wrapped.__name__ == "fetch"
    assert sample(metrics, "external_call_outcomes_total", dependency="github", outcome="SUCCESS") == 1


def test_registry_shares_one_breaker_per_dependency(metrics, settings):
    registry = ResilienceRegistry(settings, metrics=metrics)

    assert registry.get(JIRA) is registry.get(JIRA)
    assert registry.get(JIRA).breaker is not registry.get("github").breaker
    assert registry.get(JIRA).timeout_seconds == settings.jira_timeout_seconds
    assert registry.get("config-service").timeout_seconds == settings.config_service_timeout_seconds
    assert set(registry.snapshot()) == {JIRA, "github", "config-service"}


@pytest.mark.asyncio
async def test_registry_reports_breaker_state_changes(metrics):
    from activity_sync.config import Settings

    clock = FakeClock()
    registry = ResilienceRegistry(
        Settings(circuit_breaker_minimum_calls=1, retry_max_attempts=1),
        metrics=metrics,
        sleep=clock.sleep,
        clock=clock,
    )

    with pytest.raises(ExternalCallError):
        await registry.get(JIRA).call(FlakyCall(_server_error()), operation="search")

    assert sample(metrics, "circuit_breaker_state", dependency=JIRA) == 1


@pytest.mark.asyncio
async def test_rate_limiter_paces_every_attempt(metrics):
    clock = FakeClock()
    wrapper = ResilienceWrapper(
        JIRA,
        breaker=CircuitBreaker(JIRA, clock=clock),
        retry_policy=RetryPolicy(max_attempts=2, base_backoff_seconds=0.0, max_backoff_seconds=0.0),
        rate_limiter=RateLimiter(JIRA, 120, sleep=clock.sleep, clock=clock),
        metrics=metrics,
        sleep=clock.sleep,
        clock=clock,
    )

    await wrapper.call(FlakyCall(), operation="search")
    await wrapper.call(FlakyCall(_server_error()), operation="search")

    assert clock.sleeps == [0.5, 0.0, 0.5]


def test_registry_builds_rate_limiters_from_settings(metrics):
    from activity_sync.config import Settings

    registry = ResilienceRegistry(
        Settings(jira_rate_limit_per_minute=120, github_rate_limit_per_minute=60),
        metrics=metrics,
    )

    assert registry.get(JIRA).rate_limiter.rate_per_minute == 120
    assert registry.get("github").rate_limiter.rate_per_minute == 60
    assert not registry.get("config-service").rate_limiter.enabled
