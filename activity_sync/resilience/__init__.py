"""
Resilience Module

Failure classification, circuit breaking, rate limiting and retry around
external calls.
"""

from activity_sync.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from activity_sync.resilience.classifier import (
    BULKHEAD_FULL,
    CIRCUIT_OPEN,
    SyncOutcome,
    classify,
    classify_exception,
)
from activity_sync.resilience.rate_limiter import RateLimiter
from activity_sync.resilience.retry import RetryPolicy
from activity_sync.resilience.wrapper import (
    CONFIG_SERVICE,
    GITHUB,
    JIRA,
    ResilienceRegistry,
    ResilienceWrapper,
    resilient,
)

__all__ = [
    "BULKHEAD_FULL",
    "CIRCUIT_OPEN",
    "CONFIG_SERVICE",
    "GITHUB",
    "JIRA",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    "RateLimiter",
    "ResilienceRegistry",
    "ResilienceWrapper",
    "RetryPolicy",
    "SyncOutcome",
    "classify",
    "classify_exception",
    "resilient",
]
