"""
Job Ledger

Append-only bookkeeping of SyncJob executions. Every job starts RUNNING and
moves exactly once to COMPLETED, PARTIAL_FAILURE or FAILED; the terminal
write also records the job metrics.
"""

from __future__ import annotations

from typing import Callable

import structlog

from activity_sync.db.store import SyncStore
from activity_sync.errors import InvalidJobTransitionError
from activity_sync.monitoring.metrics import SyncMetrics
from activity_sync.sync.models import SyncJob, SyncJobStatus, SyncJobType

logger = structlog.get_logger()


class JobLedger:
    def __init__(self, store: SyncStore, metrics: SyncMetrics):
        self.store = store
        self.metrics = metrics

    async def start(
        self,
        configuration_id: int,
        job_type: SyncJobType,
        correlation_id: str | None,
    ) -> SyncJob:
        self.metrics.track_sync_job_started()
        job = await self.store.create_job(
            configuration_id=configuration_id,
            job_type=job_type,
            correlation_id=correlation_id,
        )
        logger.info(
            "Sync job started",
            job_id=job.id,
            config_id=configuration_id,
            job_type=job_type.value,
            run_attempt=job.run_attempt,
        )
        return job

    async def complete(self, job: SyncJob, *, records_fetched: int, records_saved: int) -> SyncJob:
        return await self._transition(
            job,
            lambda pending: pending.mark_completed(records_fetched, records_saved),
        )

    async def partial_failure(
        self,
        job: SyncJob,
        *,
        error_message: str,
        records_fetched: int = 0,
        records_saved: int = 0,
    ) -> SyncJob:
        return await self._transition(
            job,
            lambda pending: pending.mark_partial_failure(records_fetched, records_saved, error_message),
        )

    async def fail(self, job: SyncJob, *, error_message: str) -> SyncJob:
        return await self._transition(job, lambda pending: pending.mark_failed(error_message))

    async def cancel(self, job: SyncJob, *, reason: str) -> SyncJob:
        """Finalize a job that never ran because shutdown dropped it.

        Recorded as FAILED so no RUNNING row is orphaned, but counted as
        cancelled rather than as a failure.
        """
        return await self._transition(job, lambda pending: pending.mark_failed(reason), track=False)

    async def _transition(
        self,
        job: SyncJob,
        apply: Callable[[SyncJob], None],
        *,
        track: bool = True,
    ) -> SyncJob:
        """Apply a terminal transition to `job` only once the store accepted it.

        If the write fails, `job` is left RUNNING so the caller can still
        finalize it.
        """
        pending = job.model_copy()
        apply(pending)
        await self._persist(pending, track=track)
        for name in SyncJob.model_fields:
            setattr(job, name, getattr(pending, name))
        return job

    async def _persist(self, job: SyncJob, *, track: bool = True) -> SyncJob:
        if not await self.store.finish_job(job):
            # Someone else already finalized the row; the stored state wins.
            stored = await self.store.get_job(job.id) if job.id is not None else None
            raise InvalidJobTransitionError(
                job_id=str(job.id),
                current=stored.status.value if stored else SyncJobStatus.RUNNING.value,
                target=job.status.value,
            )

        duration_ms = job.duration_ms
        if track:
            self.metrics.track_sync_job(
                job.job_type.value,
                job.status.value,
                duration_ms / 1000.0 if duration_ms is not None else None,
            )

        log = logger.info if job.status is SyncJobStatus.COMPLETED else logger.warning
        log(
            "Sync job finished",
            job_id=job.id,
            config_id=job.configuration_id,
            job_type=job.job_type.value,
            status=job.status.value,
            records_fetched=job.records_fetched,
            records_saved=job.records_saved,
            duration_ms=duration_ms,
            error=job.error_message,
        )
        return job
