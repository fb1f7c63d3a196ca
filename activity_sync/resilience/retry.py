"""Retry policy: bounded attempts with exponential backoff + jitter."""

from __future__ import annotations

import random
from dataclasses import dataclass

from activity_sync.resilience.classifier import SyncOutcome


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_backoff_seconds: float = 0.5
    max_backoff_seconds: float = 8.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_backoff_seconds < 0 or self.max_backoff_seconds < 0:
            raise ValueError("backoff must be non-negative")

    def should_retry(self, outcome: SyncOutcome, attempt: int) -> bool:
        """
        Retry only dependency-origin failures, and only while attempts remain.

        Circuit-open and bulkhead-full are retryable by the next scheduled run,
        never inside the same call.
        """
        return outcome.counts_as_circuit_failure and attempt < self.max_attempts

    def backoff_seconds(self, attempt: int, retry_after: float | None = None) -> float:
        """Delay before the attempt following `attempt` (1-based)."""
        if retry_after is not None and retry_after >= 0:
            return min(float(retry_after), self.max_backoff_seconds)
        delay = min(self.max_backoff_seconds, self.base_backoff_seconds * (2 ** (attempt - 1)))
        return delay + random.uniform(0, delay / 2)
