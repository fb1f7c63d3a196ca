"""
Unit tests for the retry policy.
"""

import pytest

from activity_sync.resilience.classifier import SyncOutcome
from activity_sync.resilience.retry import RetryPolicy

pytestmark = pytest.mark.unit


def test_retries_only_dependency_failures_within_budget():
    policy = RetryPolicy(max_attempts=3)

    assert policy.should_retry(SyncOutcome.FAILED_SERVER_ERROR, attempt=1)
    assert policy.should_retry(SyncOutcome.FAILED_RATE_LIMITED, attempt=2)
    assert not policy.should_retry(SyncOutcome.FAILED_SERVER_ERROR, attempt=3)
    assert not policy.should_retry(SyncOutcome.FAILED_INVALID_CREDENTIAL, attempt=1)
    assert not policy.should_retry(SyncOutcome.FAILED_CIRCUIT_OPEN, attempt=1)


def test_exponential_backoff_with_bounded_jitter():
    policy = RetryPolicy(base_backoff_seconds=0.5, max_backoff_seconds=8.0)

    for attempt, base in [(1, 0.5), (2, 1.0), (3, 2.0), (6, 8.0)]:
        delay = policy.backoff_seconds(attempt)
        assert base <= delay <= base * 1.5


def test_retry_after_is_honoured_and_capped():
    policy = RetryPolicy(max_backoff_seconds=8.0)

    assert policy.backoff_seconds(1, retry_after=3) == 3.0
    assert policy.backoff_seconds(1, retry_after=120) == 8.0


def test_rejects_invalid_policy():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
