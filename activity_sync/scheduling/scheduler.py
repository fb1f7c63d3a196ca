"""
Sync Scheduler

APScheduler-driven periodic triggers. Every replica runs the same schedule;
the SchedulerGate makes sure only one of them does the work per tick.

Jobs:
- JIRA_ISSUES sync (cron, default every 30 minutes)
- GITHUB_COMMITS sync (cron, default every 15 minutes)
- health check (interval, default every 60 seconds)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from activity_sync.config import Settings, get_settings
from activity_sync.errors import SyncServiceError
from activity_sync.kernel.ids import new_correlation_id
from activity_sync.resilience.wrapper import ResilienceRegistry
from activity_sync.scheduling.gate import GateResult, SchedulerGate
from activity_sync.sync.executor import BoundedTaskExecutor
from activity_sync.sync.models import BatchResult, SyncJobType
from activity_sync.sync.orchestrator import SyncOrchestrator

logger = structlog.get_logger()

HEALTH_CHECK_LOCK = "schedulerHealthCheck"
HEALTH_CHECK_MAX_HOLD = timedelta(seconds=50)
HEALTH_CHECK_MIN_HOLD = timedelta(seconds=10)


@dataclass(frozen=True)
class SyncSchedule:
    job_type: SyncJobType
    lock_name: str
    cron: str
    max_hold: timedelta
    min_hold: timedelta
    enabled: bool = True


def default_schedules(settings: Settings) -> list[SyncSchedule]:
    return [
        SyncSchedule(
            job_type=SyncJobType.JIRA_ISSUES,
            lock_name="syncJiraIssues",
            cron=settings.sync_jira_issues_cron,
            max_hold=timedelta(seconds=settings.sync_jira_issues_lock_max_seconds),
            min_hold=timedelta(seconds=settings.sync_jira_issues_lock_min_seconds),
            enabled=settings.sync_jira_issues_enabled,
        ),
        SyncSchedule(
            job_type=SyncJobType.GITHUB_COMMITS,
            lock_name="syncGithubCommits",
            cron=settings.sync_github_commits_cron,
            max_hold=timedelta(seconds=settings.sync_github_commits_lock_max_seconds),
            min_hold=timedelta(seconds=settings.sync_github_commits_lock_min_seconds),
            enabled=settings.sync_github_commits_enabled,
        ),
    ]


class SyncScheduler:
    """
    Periodic trigger for full syncs.

    Usage:
        scheduler = SyncScheduler(gate=gate, orchestrator=orchestrator,
                                  executor=executor, resilience=registry)
        scheduler.start()
        ...
        scheduler.shutdown()
    """

    def __init__(
        self,
        *,
        gate: SchedulerGate,
        orchestrator: SyncOrchestrator,
        executor: BoundedTaskExecutor,
        resilience: ResilienceRegistry,
        settings: Settings | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> None:
        self.gate = gate
        self.orchestrator = orchestrator
        self.executor = executor
        self.resilience = resilience
        self.settings = settings or get_settings()
        self._scheduler = scheduler or AsyncIOScheduler()
        self.schedules = {s.job_type: s for s in default_schedules(self.settings)}

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Register the enabled jobs and start the scheduler."""
        if self._scheduler.running:
            return
        if not self.settings.sync_scheduler_enabled:
            logger.info("Sync scheduler disabled")
            return

        for schedule in self.schedules.values():
            if not schedule.enabled:
                logger.info("Sync job disabled", job_type=schedule.job_type.value)
                continue
            self._scheduler.add_job(
                self.run_sync,
                trigger=CronTrigger.from_crontab(schedule.cron),
                args=[schedule.job_type],
                id=f"sync_{schedule.job_type.value.lower()}",
                name=f"Sync {schedule.job_type.value}",
                replace_existing=True,
                coalesce=True,  # Skip missed runs
                max_instances=1,  # Don't overlap
            )
            logger.info("Scheduled sync job", job_type=schedule.job_type.value, cron=schedule.cron)

        self._scheduler.add_job(
            self.run_health_check,
            trigger=IntervalTrigger(seconds=self.settings.sync_health_check_interval_seconds),
            id="scheduler_health_check",
            name="Scheduler health check",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

        self._scheduler.start()
        logger.info("Sync scheduler started", jobs=len(self._scheduler.get_jobs()))

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Sync scheduler stopped")

    def list_scheduled_jobs(self) -> list[dict[str, Any]]:
        jobs = []
        for job in self._scheduler.get_jobs():
            next_run = getattr(job, "next_run_time", None)
            jobs.append(
                {
                    "id": job.id,
                    "name": job.name,
                    "next_run_time": next_run.isoformat() if next_run else None,
                }
            )
        return jobs

    async def run_sync(self, job_type: SyncJobType) -> GateResult[BatchResult] | None:
        """One cron tick. Errors are logged, never raised into APScheduler."""
        schedule = self.schedules[job_type]
        with structlog.contextvars.bound_contextvars(
            scheduler_run_id=new_correlation_id("SCHED"),
            lock_name=schedule.lock_name,
        ):
            try:
                result = await self.gate.attempt_run(
                    schedule.lock_name,
                    schedule.max_hold,
                    schedule.min_hold,
                    lambda: self.orchestrator.execute_full_sync(job_type),
                )
            except SyncServiceError as exc:
                logger.error("Scheduled sync failed", job_type=job_type.value, error=exc.message, code=exc.code)
                return None
            except Exception as exc:
                logger.error(
                    "Scheduled sync failed unexpectedly",
                    job_type=job_type.value,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return None
            return result

    async def run_health_check(self) -> GateResult[dict[str, Any]] | None:
        with structlog.contextvars.bound_contextvars(scheduler_run_id=new_correlation_id("SCHED")):
            try:
                return await self.gate.attempt_run(
                    HEALTH_CHECK_LOCK,
                    HEALTH_CHECK_MAX_HOLD,
                    HEALTH_CHECK_MIN_HOLD,
                    self._health_check,
                )
            except Exception as exc:
                logger.error("Scheduler health check failed", error=str(exc), error_type=type(exc).__name__)
                return None

    async def _health_check(self) -> dict[str, Any]:
        report = {
            "executor": {
                "running": self.executor.running,
                "queued": self.executor.queued,
                "capacity": self.executor.capacity,
                "accepting": self.executor.is_running,
            },
            "circuit_breakers": self.resilience.snapshot(),
        }
        open_circuits = [
            name for name, snap in report["circuit_breakers"].items() if snap.get("state") != "closed"
        ]
        if open_circuits:
            logger.warning("Scheduler health check: degraded dependencies", dependencies=open_circuits, **report)
        else:
            logger.info("Scheduler health check", **report)
        return report
