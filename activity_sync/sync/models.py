"""
Sync Models

Domain types shared by the pipeline, the ledger and the store:
- SyncJob and its state machine (RUNNING -> COMPLETED | PARTIAL_FAILURE | FAILED)
- Raw per-source records (Jira issues, GitHub commits and their files)
- UnifiedActivity, the normalized cross-source view
- Pipeline and batch results
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from activity_sync.errors import InvalidJobTransitionError
from activity_sync.kernel.time import utc_now


class SyncJobType(str, Enum):
    JIRA_ISSUES = "JIRA_ISSUES"
    JIRA_SPRINTS = "JIRA_SPRINTS"
    GITHUB_COMMITS = "GITHUB_COMMITS"
    GITHUB_PRS = "GITHUB_PRS"

    @property
    def is_implemented(self) -> bool:
        return self in (SyncJobType.JIRA_ISSUES, SyncJobType.GITHUB_COMMITS)


class SyncJobStatus(str, Enum):
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    PARTIAL_FAILURE = "PARTIAL_FAILURE"  # degraded run, empty result
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self is not SyncJobStatus.RUNNING


class SyncJob(BaseModel):
    """One execution of one job type for one configuration."""

    id: int | None = None
    configuration_id: int
    job_type: SyncJobType
    status: SyncJobStatus = SyncJobStatus.RUNNING
    run_attempt: int = 1
    correlation_id: str | None = None
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: datetime | None = None
    records_fetched: int = 0
    records_saved: int = 0
    error_message: str | None = None

    @property
    def duration_ms(self) -> int | None:
        if self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)

    def _finish(self, target: SyncJobStatus) -> None:
        if self.status.is_terminal:
            raise InvalidJobTransitionError(
                job_id=str(self.id),
                current=self.status.value,
                target=target.value,
            )
        self.status = target
        self.completed_at = utc_now()

    def mark_completed(self, records_fetched: int, records_saved: int) -> None:
        self._finish(SyncJobStatus.COMPLETED)
        self.records_fetched = records_fetched
        self.records_saved = records_saved

    def mark_partial_failure(self, records_fetched: int, records_saved: int, error_message: str) -> None:
        self._finish(SyncJobStatus.PARTIAL_FAILURE)
        self.records_fetched = records_fetched
        self.records_saved = records_saved
        self.error_message = error_message

    def mark_failed(self, error_message: str) -> None:
        self._finish(SyncJobStatus.FAILED)
        self.error_message = error_message


class ActivitySource(str, Enum):
    JIRA = "JIRA"
    GITHUB = "GITHUB"


class ActivityType(str, Enum):
    TASK = "TASK"
    ISSUE = "ISSUE"
    BUG = "BUG"
    STORY = "STORY"
    COMMIT = "COMMIT"
    PULL_REQUEST = "PULL_REQUEST"


class UnifiedActivity(BaseModel):
    """Normalized activity, unique on (project_config_id, source, external_id)."""

    project_config_id: int
    source: ActivitySource
    activity_type: ActivityType
    external_id: str
    title: str | None = None
    description: str | None = None
    author_email: str | None = None
    author_name: str | None = None
    status: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def natural_key(self) -> tuple[int, str, str]:
        return (self.project_config_id, self.source.value, self.external_id)


class JiraIssueRecord(BaseModel):
    """Denormalized Jira issue, unique on (project_config_id, issue_key)."""

    project_config_id: int
    issue_key: str
    issue_id: str | None = None
    summary: str | None = None
    description: str | None = None
    issue_type: str | None = None
    status: str | None = None
    assignee_email: str | None = None
    assignee_name: str | None = None
    reporter_email: str | None = None
    reporter_name: str | None = None
    priority: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def natural_key(self) -> tuple[int, str]:
        return (self.project_config_id, self.issue_key)


class GithubCommitFileRecord(BaseModel):
    """Per-file change, unique on (project_config_id, commit_sha, filename)."""

    project_config_id: int
    commit_sha: str
    filename: str
    status: str | None = None
    additions: int = 0
    deletions: int = 0
    changes: int = 0

    @property
    def natural_key(self) -> tuple[int, str, str]:
        return (self.project_config_id, self.commit_sha, self.filename)


class GithubCommitRecord(BaseModel):
    """Denormalized commit, unique on (project_config_id, commit_sha)."""

    project_config_id: int
    commit_sha: str
    message: str | None = None
    author_email: str | None = None
    author_name: str | None = None
    author_login: str | None = None
    additions: int = 0
    deletions: int = 0
    total_changes: int = 0
    files_changed: int = 0
    committed_date: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    files: list[GithubCommitFileRecord] = Field(default_factory=list)

    @property
    def natural_key(self) -> tuple[int, str]:
        return (self.project_config_id, self.commit_sha)


class PipelineResult(BaseModel):
    """Terminal outcome of one pipeline run, already applied to its SyncJob."""

    config_id: int
    job_type: SyncJobType
    status: SyncJobStatus
    job_id: int | None = None
    records_fetched: int = 0
    records_saved: int = 0
    error_message: str | None = None

    @classmethod
    def from_job(cls, job: SyncJob) -> "PipelineResult":
        return cls(
            config_id=job.configuration_id,
            job_type=job.job_type,
            status=job.status,
            job_id=job.id,
            records_fetched=job.records_fetched,
            records_saved=job.records_saved,
            error_message=job.error_message,
        )


class BatchResult(BaseModel):
    """Aggregate of one `execute_full_sync` invocation."""

    correlation_id: str
    job_type: SyncJobType
    total: int = 0
    completed: int = 0
    partial_failures: int = 0
    failed: int = 0
    rejected: int = 0
    cancelled: int = 0
    results: list[PipelineResult] = Field(default_factory=list)

    @property
    def partial_rejection(self) -> bool:
        return self.rejected > 0

    def add(self, result: PipelineResult) -> None:
        self.results.append(result)
        if result.status is SyncJobStatus.COMPLETED:
            self.completed += 1
        elif result.status is SyncJobStatus.PARTIAL_FAILURE:
            self.partial_failures += 1
        else:
            self.failed += 1
