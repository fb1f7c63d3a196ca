from __future__ import annotations

import re
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from activity_sync.resilience.classifier import SyncOutcome


_ERROR_CODE_RE = re.compile(r"^[a-z][a-z0-9_]*(\.[a-z][a-z0-9_]*)*$")


class SyncServiceError(Exception):
    """Base typed error for the sync service.

    Goals:
    - Stable `code` for programmatic handling and log filtering.
    - Human-readable `message` that ends up in `SyncJob.error_message`.
    - Optional `meta` payload for debugging (never contains credentials).
    """

    def __init__(
        self,
        *,
        code: str,
        message: str,
        meta: dict[str, Any] | None = None,
    ) -> None:
        if not _ERROR_CODE_RE.fullmatch(code):
            raise ValueError(
                "Invalid error code. Expected dot-separated lowercase tokens, "
                f"got: {code!r}"
            )
        super().__init__(message)
        self.code = code
        self.message = message
        self.meta = dict(meta or {})


class ExternalCallError(SyncServiceError):
    """An external call that ended in a non-success classified outcome.

    Raised by the resilience wrapper once retries are exhausted, on a
    non-retryable outcome, or when the circuit breaker short-circuits.
    """

    def __init__(
        self,
        *,
        outcome: SyncOutcome,
        dependency: str,
        message: str,
        attempts: int = 1,
        status_code: int | None = None,
    ) -> None:
        super().__init__(
            code="external.call_failed",
            message=f"{outcome.value}: {message}",
            meta={"dependency": dependency, "attempts": attempts, "status_code": status_code},
        )
        self.outcome = outcome
        self.dependency = dependency
        self.attempts = attempts
        self.status_code = status_code


class HttpStatusError(SyncServiceError):
    """Non-2xx response from an external HTTP API."""

    def __init__(
        self,
        *,
        status_code: int,
        url: str,
        retry_after: float | None = None,
        detail: str | None = None,
        rate_limited: bool = False,
    ) -> None:
        message = f"HTTP {status_code} from {url}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(
            code="external.http_status",
            message=message,
            meta={"status_code": status_code, "url": url},
        )
        self.status_code = int(status_code)
        self.url = url
        self.retry_after = retry_after
        # Throttling signalled with a non-429 status (GitHub uses 403).
        self.rate_limited = rate_limited


class ConfigurationServiceError(SyncServiceError):
    """The configuration collaborator answered with an error or an unusable payload."""

    def __init__(self, *, message: str, status_code: int = 502, config_id: int | None = None) -> None:
        super().__init__(
            code="config_service.error",
            message=message,
            meta={"status_code": status_code, "config_id": config_id},
        )
        self.status_code = int(status_code)
        self.config_id = config_id


class TaskRejectedError(SyncServiceError):
    """The bounded executor is saturated and refused the task."""

    def __init__(self, *, outstanding: int, capacity: int) -> None:
        super().__init__(
            code="executor.rejected",
            message=f"Executor saturated ({outstanding}/{capacity} outstanding), task rejected",
            meta={"outstanding": outstanding, "capacity": capacity},
        )
        self.outstanding = outstanding
        self.capacity = capacity


class ExecutorShutdownError(SyncServiceError):
    def __init__(self) -> None:
        super().__init__(code="executor.shutdown", message="Executor is shut down")


class BatchAbortedError(SyncServiceError):
    """Listing eligible configurations failed; nothing was dispatched."""

    def __init__(self, *, correlation_id: str, cause: str) -> None:
        super().__init__(
            code="sync.batch_aborted",
            message=f"Sync batch {correlation_id} aborted: {cause}",
            meta={"correlation_id": correlation_id},
        )
        self.correlation_id = correlation_id


class InvalidJobTransitionError(SyncServiceError):
    def __init__(self, *, job_id: str, current: str, target: str) -> None:
        super().__init__(
            code="ledger.invalid_transition",
            message=f"SyncJob {job_id} cannot move from {current} to {target}",
            meta={"job_id": job_id, "current": current, "target": target},
        )
        self.job_id = job_id
        self.current = current
        self.target = target


class DuplicateRecordError(SyncServiceError):
    """A concurrent writer inserted the same natural key first."""

    def __init__(self, *, table: str, detail: str | None = None) -> None:
        super().__init__(
            code="store.duplicate_record",
            message=f"Unique constraint violation in {table}" + (f": {detail}" if detail else ""),
            meta={"table": table},
        )
        self.table = table


class UnsupportedJobTypeError(SyncServiceError):
    def __init__(self, *, job_type: str) -> None:
        super().__init__(
            code="sync.unsupported_job_type",
            message=f"Job type {job_type} has no fetch pipeline",
            meta={"job_type": job_type},
        )
        self.job_type = job_type
