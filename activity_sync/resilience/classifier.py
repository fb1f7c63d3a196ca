"""
Failure Classifier

Maps the outcome of an external call (HTTP status code, synthetic resilience
signal, or raised exception) to a semantic `SyncOutcome`.

Every outcome carries three fixed facets:
- counts_as_circuit_failure: only dependency-origin failures feed the breaker
- is_retryable: transient failures worth another attempt
- is_configuration_error: requires tenant correction, never retried

Configuration errors (401/403/404/400) must never trip the shared circuit
breaker, otherwise one misconfigured tenant would block every tenant that
uses the same external dependency.
"""

from __future__ import annotations

import asyncio
from enum import Enum

import httpx

from activity_sync.errors import (
    ConfigurationServiceError,
    ExternalCallError,
    HttpStatusError,
)

# Synthetic outcome codes produced by the resilience layer itself.
CIRCUIT_OPEN = "CIRCUIT_OPEN"
BULKHEAD_FULL = "BULKHEAD_FULL"


class SyncOutcome(str, Enum):
    """Semantic status of an external call."""

    SUCCESS = "SUCCESS"

    # Configuration errors (4xx)
    FAILED_INVALID_CREDENTIAL = "FAILED_INVALID_CREDENTIAL"
    FAILED_NOT_FOUND = "FAILED_NOT_FOUND"
    FAILED_BAD_REQUEST = "FAILED_BAD_REQUEST"

    # Dependency failures
    FAILED_EXTERNAL_DEPENDENCY = "FAILED_EXTERNAL_DEPENDENCY"
    FAILED_TIMEOUT = "FAILED_TIMEOUT"
    FAILED_SERVER_ERROR = "FAILED_SERVER_ERROR"
    FAILED_RATE_LIMITED = "FAILED_RATE_LIMITED"

    # Resilience-state signals
    FAILED_CIRCUIT_OPEN = "FAILED_CIRCUIT_OPEN"
    FAILED_BULKHEAD_FULL = "FAILED_BULKHEAD_FULL"

    @property
    def is_success(self) -> bool:
        return self is SyncOutcome.SUCCESS

    @property
    def counts_as_circuit_failure(self) -> bool:
        return self in _DEPENDENCY_FAILURES

    @property
    def is_retryable(self) -> bool:
        return self in _DEPENDENCY_FAILURES or self in _RESILIENCE_SIGNALS

    @property
    def is_configuration_error(self) -> bool:
        return self in _CONFIGURATION_ERRORS

    @property
    def is_resilience_signal(self) -> bool:
        return self in _RESILIENCE_SIGNALS


_DEPENDENCY_FAILURES = frozenset(
    {
        SyncOutcome.FAILED_EXTERNAL_DEPENDENCY,
        SyncOutcome.FAILED_TIMEOUT,
        SyncOutcome.FAILED_SERVER_ERROR,
        SyncOutcome.FAILED_RATE_LIMITED,
    }
)

_CONFIGURATION_ERRORS = frozenset(
    {
        SyncOutcome.FAILED_INVALID_CREDENTIAL,
        SyncOutcome.FAILED_NOT_FOUND,
        SyncOutcome.FAILED_BAD_REQUEST,
    }
)

_RESILIENCE_SIGNALS = frozenset(
    {
        SyncOutcome.FAILED_CIRCUIT_OPEN,
        SyncOutcome.FAILED_BULKHEAD_FULL,
    }
)

_STATUS_CODE_OUTCOMES: dict[int, SyncOutcome] = {
    200: SyncOutcome.SUCCESS,
    201: SyncOutcome.SUCCESS,
    202: SyncOutcome.SUCCESS,
    204: SyncOutcome.SUCCESS,
    400: SyncOutcome.FAILED_BAD_REQUEST,
    401: SyncOutcome.FAILED_INVALID_CREDENTIAL,
    403: SyncOutcome.FAILED_INVALID_CREDENTIAL,
    404: SyncOutcome.FAILED_NOT_FOUND,
    429: SyncOutcome.FAILED_RATE_LIMITED,
    500: SyncOutcome.FAILED_SERVER_ERROR,
    502: SyncOutcome.FAILED_SERVER_ERROR,
    503: SyncOutcome.FAILED_EXTERNAL_DEPENDENCY,
    504: SyncOutcome.FAILED_TIMEOUT,
}

_SYNTHETIC_OUTCOMES: dict[str, SyncOutcome] = {
    CIRCUIT_OPEN: SyncOutcome.FAILED_CIRCUIT_OPEN,
    BULKHEAD_FULL: SyncOutcome.FAILED_BULKHEAD_FULL,
}


def classify(outcome_code: int | str) -> SyncOutcome:
    """
    Classify a status code or synthetic resilience code.

    Total over integers: unmapped codes >= 500 are server errors, everything
    else unmapped is a bad request.
    """
    if isinstance(outcome_code, str):
        try:
            return _SYNTHETIC_OUTCOMES[outcome_code]
        except KeyError:
            raise ValueError(f"Unknown synthetic outcome code: {outcome_code!r}") from None

    code = int(outcome_code)
    mapped = _STATUS_CODE_OUTCOMES.get(code)
    if mapped is not None:
        return mapped
    return SyncOutcome.FAILED_SERVER_ERROR if code >= 500 else SyncOutcome.FAILED_BAD_REQUEST


def classify_exception(exc: BaseException) -> SyncOutcome:
    """Classify an exception raised by an external call."""
    if isinstance(exc, ExternalCallError):
        return exc.outcome
    if isinstance(exc, HttpStatusError):
        if exc.rate_limited:
            return SyncOutcome.FAILED_RATE_LIMITED
        return classify(exc.status_code)
    if isinstance(exc, ConfigurationServiceError):
        return classify(exc.status_code)
    if isinstance(exc, httpx.HTTPStatusError):
        return classify(exc.response.status_code)
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException)):
        return SyncOutcome.FAILED_TIMEOUT
    if isinstance(exc, (httpx.TransportError, ConnectionError, OSError)):
        return SyncOutcome.FAILED_EXTERNAL_DEPENDENCY
    return SyncOutcome.FAILED_EXTERNAL_DEPENDENCY
