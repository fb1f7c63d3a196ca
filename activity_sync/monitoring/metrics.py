"""
Prometheus Metrics

Defines and exports metrics for monitoring the sync service.
"""

import structlog
from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram

logger = structlog.get_logger()

# Singleton metrics instance
_metrics: "SyncMetrics | None" = None

_CIRCUIT_STATE_VALUES = {"closed": 0, "open": 1, "half_open": 2}


class SyncMetrics:
    """
    Prometheus metrics for the sync service.

    Tracks:
    - Sync job outcomes and durations
    - Parser warnings and constraint violations during persistence
    - Executor saturation (rejections, cancellations, queue depth)
    - External call outcomes and circuit breaker state

    Every `track_*` method swallows collector errors: metrics must never
    affect the outcome of a sync job.
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        registry = registry if registry is not None else REGISTRY
        self.registry = registry

        # Job metrics
        self.sync_jobs_total = Counter(
            "sync_jobs",
            "Total sync jobs by terminal status",
            ["job_type", "status"],
            registry=registry,
        )

        self.sync_duration_seconds = Histogram(
            "sync_duration_seconds",
            "Sync job duration in seconds",
            ["job_type"],
            buckets=[0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 300.0, 600.0, 1500.0],
            registry=registry,
        )

        self.sync_job_total_count = Counter(
            "sync_job_total_count",
            "Total sync jobs started (failure-rate denominator)",
            registry=registry,
        )

        self.sync_job_failure_count = Counter(
            "sync_job_failure_count",
            "Total sync jobs that ended FAILED",
            registry=registry,
        )

        # Persistence / parsing
        self.constraint_violation_count = Counter(
            "constraint_violation_count",
            "Unique-constraint violations raised by concurrent upserts",
            registry=registry,
        )

        self.parser_warning_count = Counter(
            "parser_warning_count",
            "Fields that failed to parse and fell back to a default",
            registry=registry,
        )

        self.records_parsed_total = Counter(
            "records_parsed",
            "Records normalized from external payloads",
            registry=registry,
        )

        # Executor
        self.sync_tasks_rejected_total = Counter(
            "sync_tasks_rejected",
            "Sync tasks rejected by the bounded executor",
            ["job_type"],
            registry=registry,
        )

        self.sync_batch_partial_rejection_total = Counter(
            "sync_batch_partial_rejection",
            "Sync batches in which at least one task was rejected",
            ["job_type"],
            registry=registry,
        )

        self.sync_tasks_cancelled_total = Counter(
            "sync_tasks_cancelled",
            "Queued sync tasks cancelled during shutdown",
            registry=registry,
        )

        self.sync_executor_queue_depth = Gauge(
            "sync_executor_queue_depth",
            "Sync tasks waiting for a worker",
            registry=registry,
        )

        self.sync_executor_active_workers = Gauge(
            "sync_executor_active_workers",
            "Sync tasks currently running",
            registry=registry,
        )

        # Resilience
        self.external_call_outcomes_total = Counter(
            "external_call_outcomes",
            "Classified outcomes of external calls",
            ["dependency", "outcome"],
            registry=registry,
        )

        self.circuit_breaker_state = Gauge(
            "circuit_breaker_state",
            "Circuit breaker state (0=closed, 1=open, 2=half_open)",
            ["dependency"],
            registry=registry,
        )

        logger.info("Prometheus metrics initialized")

    def track_sync_job_started(self) -> None:
        """Count a job at its start, whether or not it is ever finalized."""
        try:
            self.sync_job_total_count.inc()
        except Exception:
            pass

    def track_sync_job(
        self,
        job_type: str,
        status: str,
        duration_seconds: float | None = None,
    ) -> None:
        """Track a sync job reaching a terminal state."""
        try:
            self.sync_jobs_total.labels(job_type=job_type, status=status).inc()
            if status == "FAILED":
                self.sync_job_failure_count.inc()
            if duration_seconds is not None:
                self.sync_duration_seconds.labels(job_type=job_type).observe(
                    max(float(duration_seconds), 0.0)
                )
        except Exception as exc:
            logger.debug("Failed to record sync job metric", error=str(exc))

    def track_parser_warning(self) -> None:
        try:
            self.parser_warning_count.inc()
        except Exception:
            pass

    def track_records_parsed(self, count: int = 1) -> None:
        if count <= 0:
            return
        try:
            self.records_parsed_total.inc(count)
        except Exception:
            pass

    def track_constraint_violation(self) -> None:
        try:
            self.constraint_violation_count.inc()
        except Exception:
            pass

    def track_task_rejected(self, job_type: str) -> None:
        try:
            self.sync_tasks_rejected_total.labels(job_type=job_type).inc()
        except Exception:
            pass

    def track_batch_partial_rejection(self, job_type: str) -> None:
        try:
            self.sync_batch_partial_rejection_total.labels(job_type=job_type).inc()
        except Exception:
            pass

    def track_task_cancelled(self, count: int = 1) -> None:
        if count <= 0:
            return
        try:
            self.sync_tasks_cancelled_total.inc(count)
        except Exception:
            pass

    def set_executor_load(self, *, queued: int, active: int) -> None:
        try:
            self.sync_executor_queue_depth.set(max(queued, 0))
            self.sync_executor_active_workers.set(max(active, 0))
        except Exception:
            pass

    def track_external_call(self, dependency: str, outcome: str) -> None:
        try:
            self.external_call_outcomes_total.labels(
                dependency=dependency,
                outcome=outcome,
            ).inc()
        except Exception:
            pass

    def set_circuit_state(self, dependency: str, state: str) -> None:
        try:
            self.circuit_breaker_state.labels(dependency=dependency).set(
                _CIRCUIT_STATE_VALUES.get(state, -1)
            )
        except Exception:
            pass


def get_metrics() -> SyncMetrics:
    """Get or create the singleton metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = SyncMetrics()
    return _metrics
