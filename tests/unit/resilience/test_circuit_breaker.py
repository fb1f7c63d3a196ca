"""
Unit tests for the sliding-window circuit breaker.
"""

import pytest

from activity_sync.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from activity_sync.resilience.classifier import SyncOutcome
from tests.support.clock import FakeClock

pytestmark = pytest.mark.unit

FAIL = SyncOutcome.FAILED_SERVER_ERROR
OK = SyncOutcome.SUCCESS


def _breaker(clock, **overrides):
    config = CircuitBreakerConfig(
        **{
            "window_size": 10,
            "minimum_calls": 4,
            "failure_rate_threshold": 50.0,
            "open_seconds": 30.0,
            "half_open_calls": 2,
            "slow_call_seconds": 5.0,
            **overrides,
        }
    )
    transitions = []
    breaker = CircuitBreaker(
        "jira",
        config,
        clock=clock,
        on_state_change=lambda name, state: transitions.append((name, state)),
    )
    return breaker, transitions


def _record(breaker, *outcomes):
    for outcome in outcomes:
        assert breaker.try_acquire_permission()
        breaker.on_result(outcome)


def test_stays_closed_below_minimum_calls():
    breaker, _ = _breaker(FakeClock())
    _record(breaker, FAIL, FAIL, FAIL)

    assert breaker.state is CircuitState.CLOSED
    assert breaker.failure_rate() == -1.0


def test_opens_at_threshold_and_short_circuits():
    breaker, transitions = _breaker(FakeClock())
    _record(breaker, OK, OK, FAIL, FAIL)

    assert breaker.state is CircuitState.OPEN
    assert transitions == [("jira", CircuitState.OPEN)]
    assert breaker.try_acquire_permission() is False
    assert breaker.snapshot()["short_circuited"] == 1


def test_configuration_errors_do_not_open_the_breaker():
    breaker, _ = _breaker(FakeClock())
    _record(
        breaker,
        *[SyncOutcome.FAILED_INVALID_CREDENTIAL] * 5,
        *[SyncOutcome.FAILED_NOT_FOUND] * 5,
    )

    assert breaker.state is CircuitState.CLOSED
    assert breaker.snapshot()["window_calls"] == 0


def test_slow_success_counts_as_failure():
    breaker, _ = _breaker(FakeClock())
    for _ in range(4):
        assert breaker.try_acquire_permission()
        breaker.on_result(OK, duration_seconds=6.0)

    assert breaker.state is CircuitState.OPEN


def test_window_slides_over_old_outcomes():
    breaker, _ = _breaker(FakeClock(), window_size=4, minimum_calls=4)
    _record(breaker, FAIL, OK, OK, OK)
    assert breaker.failure_rate() == 25.0

    _record(breaker, OK)
    assert breaker.failure_rate() == 0.0


def test_half_open_after_cooldown_then_closes_on_successful_trials():
    clock = FakeClock()
    breaker, transitions = _breaker(clock)
    _record(breaker, FAIL, FAIL, FAIL, FAIL)
    assert breaker.time_until_half_open() == 30.0

    clock.advance(30)
    assert breaker.state is CircuitState.HALF_OPEN

    assert breaker.try_acquire_permission()
    assert breaker.try_acquire_permission()
    # Only `half_open_calls` trial permits are handed out.
    assert breaker.try_acquire_permission() is False

    breaker.on_result(OK)
    breaker.on_result(OK)

    assert breaker.state is CircuitState.CLOSED
    assert breaker.snapshot()["window_calls"] == 0
    assert [state for _, state in transitions] == [
        CircuitState.OPEN,
        CircuitState.HALF_OPEN,
        CircuitState.CLOSED,
    ]


def test_half_open_trial_failure_reopens():
    clock = FakeClock()
    breaker, _ = _breaker(clock)
    _record(breaker, FAIL, FAIL, FAIL, FAIL)
    clock.advance(31)

    assert breaker.try_acquire_permission()
    breaker.on_result(SyncOutcome.FAILED_TIMEOUT)

    assert breaker.state is CircuitState.OPEN
    assert breaker.snapshot()["times_opened"] == 2


def test_released_permit_can_be_reused_in_half_open():
    clock = FakeClock()
    breaker, _ = _breaker(clock, half_open_calls=1)
    _record(breaker, FAIL, FAIL, FAIL, FAIL)
    clock.advance(30)

    assert breaker.try_acquire_permission()
    assert breaker.try_acquire_permission() is False
    breaker.release_permission()
    assert breaker.try_acquire_permission()


def test_results_arriving_while_open_are_ignored():
    breaker, _ = _breaker(FakeClock())
    _record(breaker, FAIL, FAIL, FAIL, FAIL)
    window_calls = breaker.snapshot()["window_calls"]

    breaker.on_result(OK)

    assert breaker.state is CircuitState.OPEN
    assert breaker.snapshot()["window_calls"] == window_calls


def test_invalid_config_is_rejected():
    with pytest.raises(ValueError):
        CircuitBreakerConfig(window_size=0)
    with pytest.raises(ValueError):
        CircuitBreakerConfig(failure_rate_threshold=0)
