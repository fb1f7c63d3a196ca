"""
Fetch-and-Normalize Pipeline

Runs one SyncJob end to end, strictly sequentially:
credentials -> fetch (paginated) -> normalize -> upsert -> finalize job.

Outcome mapping:
- success                               -> COMPLETED
- dependency failure after retries      -> PARTIAL_FAILURE, zero records (degraded)
- configuration error (401/403/404/400) -> FAILED, tenant must fix the config
- circuit open                          -> FAILED
- anything unexpected                   -> FAILED with the exception message
"""

from __future__ import annotations

from typing import Awaitable, Callable, Sequence

import structlog

from activity_sync.connectors.config_service import ConfigurationServiceClient
from activity_sync.connectors.github import GithubClient
from activity_sync.connectors.jira import JiraClient
from activity_sync.db.store import SyncStore
from activity_sync.errors import (
    ConfigurationServiceError,
    DuplicateRecordError,
    ExternalCallError,
    UnsupportedJobTypeError,
)
from activity_sync.monitoring.metrics import SyncMetrics
from activity_sync.resilience.classifier import SyncOutcome, classify_exception
from activity_sync.sync.ledger import JobLedger
from activity_sync.sync.models import PipelineResult, SyncJob, SyncJobType, UnifiedActivity
from activity_sync.sync.normalization import Normalizer

logger = structlog.get_logger()

SaveFn = Callable[[Sequence, Sequence[UnifiedActivity]], Awaitable[int]]


def outcome_message(outcome: SyncOutcome, exc: BaseException) -> str:
    """Error text for SyncJob.error_message, always prefixed with the outcome."""
    text = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    prefix = f"{outcome.value}: "
    return text if text.startswith(prefix) else f"{prefix}{text}"


def ensure_supported(job_type: SyncJobType) -> None:
    if not job_type.is_implemented:
        raise UnsupportedJobTypeError(job_type=job_type.value)


class SyncPipeline:
    def __init__(
        self,
        *,
        config_client: ConfigurationServiceClient,
        jira_client: JiraClient,
        github_client: GithubClient,
        store: SyncStore,
        ledger: JobLedger,
        metrics: SyncMetrics,
    ) -> None:
        self.config_client = config_client
        self.jira_client = jira_client
        self.github_client = github_client
        self.store = store
        self.ledger = ledger
        self.metrics = metrics
        self.normalizer = Normalizer(metrics)

    async def run(self, job: SyncJob) -> PipelineResult:
        """Execute `job` and move it to a terminal state."""
        ensure_supported(job.job_type)
        log = logger.bind(job_id=job.id, config_id=job.configuration_id, job_type=job.job_type.value)

        try:
            # No database connection is held while talking to collaborators.
            credentials = await self.config_client.get_decrypted_credentials(job.configuration_id)

            if job.job_type is SyncJobType.JIRA_ISSUES:
                issues = await self.jira_client.fetch_issues(credentials)
                records = [self.normalizer.jira_issue_record(i, job.configuration_id) for i in issues]
                activities = [self.normalizer.jira_activity(r) for r in records]
                saved = await self._save(self.store.save_jira_issues, records, activities)
            else:
                commits = await self.github_client.fetch_commits(credentials)
                records = [self.normalizer.github_commit_record(c, job.configuration_id) for c in commits]
                activities = [self.normalizer.github_activity(r) for r in records]
                saved = await self._save(self.store.save_github_commits, records, activities)

        except (ExternalCallError, ConfigurationServiceError) as exc:
            outcome = classify_exception(exc)
            message = outcome_message(outcome, exc)
            if outcome.counts_as_circuit_failure:
                log.warning("External dependency unavailable, degrading job", outcome=outcome.value)
                job = await self.ledger.partial_failure(job, error_message=message)
            else:
                if outcome.is_configuration_error:
                    log.warning("Configuration error, tenant correction required", outcome=outcome.value)
                job = await self.ledger.fail(job, error_message=message)
            return PipelineResult.from_job(job)

        except Exception as exc:
            log.error("Sync job failed unexpectedly", error=str(exc), error_type=type(exc).__name__)
            job = await self.ledger.fail(job, error_message=f"{type(exc).__name__}: {exc}")
            return PipelineResult.from_job(job)

        job = await self.ledger.complete(job, records_fetched=len(records), records_saved=saved)
        return PipelineResult.from_job(job)

    async def _save(
        self,
        save: SaveFn,
        records: Sequence,
        activities: Sequence[UnifiedActivity],
    ) -> int:
        """Upsert, retrying once when a concurrent writer won the insert race."""
        if not records:
            return 0
        try:
            return await save(records, activities)
        except DuplicateRecordError as exc:
            self.metrics.track_constraint_violation()
            logger.warning("Concurrent duplicate insert, retrying as update", table=exc.table)

        try:
            return await save(records, activities)
        except DuplicateRecordError as exc:
            # The other writer's row is already in place.
            self.metrics.track_constraint_violation()
            logger.warning("Duplicate insert persisted after retry, treating as saved", table=exc.table)
            return len({r.natural_key for r in records})

