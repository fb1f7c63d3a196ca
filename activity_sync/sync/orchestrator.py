"""
Sync Orchestrator

Fans one job type out across every eligible configuration:

1. Bind a batch correlation id (`SYNC-xxxxxxxx`) into the log context
2. List eligible configurations; a failure here aborts the whole batch
   before any SyncJob row is written
3. Per configuration: create a RUNNING SyncJob and submit it to the bounded
   executor. Rejections are handled one by one, so the rest of the batch is
   still dispatched
4. Await every dispatched task and aggregate a BatchResult

Every job reaches a terminal state: rejected and unexpectedly-crashed tasks
are failed here, and tasks dropped at shutdown are finalized as cancelled.
"""

from __future__ import annotations

import asyncio

import structlog

from activity_sync.connectors.config_service import ConfigurationServiceClient
from activity_sync.errors import BatchAbortedError, ExecutorShutdownError, TaskRejectedError
from activity_sync.kernel.ids import new_correlation_id
from activity_sync.monitoring.metrics import SyncMetrics
from activity_sync.resilience.classifier import SyncOutcome
from activity_sync.sync.executor import BoundedTaskExecutor
from activity_sync.sync.ledger import JobLedger
from activity_sync.sync.models import (
    BatchResult,
    PipelineResult,
    SyncJob,
    SyncJobStatus,
    SyncJobType,
)
from activity_sync.sync.pipeline import SyncPipeline, ensure_supported

logger = structlog.get_logger()

CANCELLED_REASON = "Task cancelled during shutdown before completion"


class SyncOrchestrator:
    def __init__(
        self,
        *,
        config_client: ConfigurationServiceClient,
        pipeline: SyncPipeline,
        ledger: JobLedger,
        executor: BoundedTaskExecutor,
        metrics: SyncMetrics,
    ) -> None:
        self.config_client = config_client
        self.pipeline = pipeline
        self.ledger = ledger
        self.executor = executor
        self.metrics = metrics

        self._active_batches = 0
        self._idle = asyncio.Event()
        self._idle.set()

    async def execute_full_sync(self, job_type: SyncJobType) -> BatchResult:
        """Run one batch of `job_type` for every eligible configuration."""
        ensure_supported(job_type)
        correlation_id = new_correlation_id()

        with structlog.contextvars.bound_contextvars(
            correlation_id=correlation_id,
            job_type=job_type.value,
        ):
            self._active_batches += 1
            self._idle.clear()
            try:
                return await self._run_batch(job_type, correlation_id)
            finally:
                self._active_batches -= 1
                if self._active_batches == 0:
                    self._idle.set()

    async def wait_idle(self, timeout: float | None = None) -> bool:
        """Wait until no batch is in progress. Returns False on timeout."""
        try:
            await asyncio.wait_for(self._idle.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run_batch(self, job_type: SyncJobType, correlation_id: str) -> BatchResult:
        logger.info("Sync batch started")

        try:
            config_ids = await self.config_client.list_eligible_configurations()
        except Exception as exc:
            logger.error("Sync batch aborted: could not list configurations", error=str(exc))
            raise BatchAbortedError(correlation_id=correlation_id, cause=str(exc)) from exc

        batch = BatchResult(correlation_id=correlation_id, job_type=job_type, total=len(config_ids))
        if not config_ids:
            logger.info("No eligible configurations, nothing to sync")
            return batch

        dispatched: list[tuple[SyncJob, asyncio.Future[PipelineResult]]] = []
        for config_id in config_ids:
            try:
                job = await self.ledger.start(config_id, job_type, correlation_id)
            except Exception as exc:
                logger.error("Could not create sync job", config_id=config_id, error=str(exc))
                batch.add(
                    PipelineResult(
                        config_id=config_id,
                        job_type=job_type,
                        status=SyncJobStatus.FAILED,
                        error_message=f"{type(exc).__name__}: {exc}",
                    )
                )
                continue

            try:
                future = self.executor.submit(lambda job=job: self._run_job(job))
            except TaskRejectedError as exc:
                batch.rejected += 1
                self.metrics.track_task_rejected(job_type.value)
                logger.error(
                    "Sync task rejected, executor saturated",
                    config_id=config_id,
                    job_id=job.id,
                    outstanding=exc.outstanding,
                    capacity=exc.capacity,
                )
                batch.add(
                    await self._fail(
                        job,
                        f"{SyncOutcome.FAILED_BULKHEAD_FULL.value}: task never attempted, {exc.message}",
                    )
                )
                continue
            except ExecutorShutdownError:
                batch.cancelled += 1
                self.metrics.track_task_cancelled()
                batch.add(await self._cancel(job))
                continue

            dispatched.append((job, future))

        if batch.rejected:
            self.metrics.track_batch_partial_rejection(job_type.value)
            logger.error(
                "Sync batch partially rejected",
                rejected=batch.rejected,
                dispatched=len(dispatched),
            )

        outcomes = await asyncio.gather(*(future for _, future in dispatched), return_exceptions=True)
        for (job, _), outcome in zip(dispatched, outcomes):
            if isinstance(outcome, PipelineResult):
                batch.add(outcome)
            elif isinstance(outcome, asyncio.CancelledError):
                batch.cancelled += 1
                batch.add(await self._cancel(job))
            else:
                logger.error(
                    "Sync task crashed",
                    config_id=job.configuration_id,
                    job_id=job.id,
                    error=str(outcome),
                    error_type=type(outcome).__name__,
                )
                batch.add(await self._fail(job, f"{type(outcome).__name__}: {outcome}"))

        logger.info(
            "Sync batch finished",
            total=batch.total,
            completed=batch.completed,
            partial_failures=batch.partial_failures,
            failed=batch.failed,
            rejected=batch.rejected,
            cancelled=batch.cancelled,
        )
        return batch

    async def _run_job(self, job: SyncJob) -> PipelineResult:
        log = logger.bind(config_id=job.configuration_id, job_id=job.id)
        try:
            return await self.pipeline.run(job)
        except asyncio.CancelledError:
            if job.status is SyncJobStatus.RUNNING:
                log.warning("Sync task cancelled mid-run")
                await self._finalize(self.ledger.cancel(job, reason=CANCELLED_REASON), job)
            raise

    async def _fail(self, job: SyncJob, message: str) -> PipelineResult:
        if job.status is SyncJobStatus.RUNNING:
            await self._finalize(self.ledger.fail(job, error_message=message), job)
        return PipelineResult.from_job(job)

    async def _cancel(self, job: SyncJob) -> PipelineResult:
        if job.status is SyncJobStatus.RUNNING:
            await self._finalize(self.ledger.cancel(job, reason=CANCELLED_REASON), job)
        return PipelineResult.from_job(job)

    @staticmethod
    async def _finalize(write, job: SyncJob) -> None:
        try:
            await write
        except Exception as exc:
            logger.error(
                "Could not finalize sync job",
                config_id=job.configuration_id,
                job_id=job.id,
                target_status=job.status.value,
                error=str(exc),
            )

