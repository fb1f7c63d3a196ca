from __future__ import annotations

from typing import Any, Sequence

from activity_sync.errors import DuplicateRecordError
from activity_sync.kernel.time import utc_now
from activity_sync.sync.models import (
    GithubCommitRecord,
    JiraIssueRecord,
    SyncJob,
    SyncJobType,
    UnifiedActivity,
)


class FakeSyncStore:
    """
    In-memory SyncStore.

    - `duplicate_races`: number of upcoming save calls that raise
      DuplicateRecordError, as if a concurrent writer won the insert
    - `fail_create_for`: configuration ids whose create_job raises
    - `fail_finish_times`: number of upcoming finish_job calls that raise
      ConnectionResetError, as if the connection dropped mid-write
    """

    def __init__(self) -> None:
        self.jobs: dict[int, SyncJob] = {}
        self.jira_issues: dict[Any, JiraIssueRecord] = {}
        self.github_commits: dict[Any, GithubCommitRecord] = {}
        self.github_files: dict[Any, Any] = {}
        self.activities: dict[Any, UnifiedActivity] = {}
        self.duplicate_races = 0
        self.save_calls = 0
        self.fail_create_for: set[int] = set()
        self.fail_finish_times = 0
        self._next_id = 1

    async def create_job(
        self,
        *,
        configuration_id: int,
        job_type: SyncJobType,
        correlation_id: str | None,
    ) -> SyncJob:
        if configuration_id in self.fail_create_for:
            raise RuntimeError("database unavailable")
        attempts = [
            j.run_attempt
            for j in self.jobs.values()
            if j.configuration_id == configuration_id and j.job_type is job_type
        ]
        job = SyncJob(
            id=self._next_id,
            configuration_id=configuration_id,
            job_type=job_type,
            run_attempt=max(attempts, default=0) + 1,
            correlation_id=correlation_id,
            started_at=utc_now(),
        )
        self._next_id += 1
        self.jobs[job.id] = job.model_copy()
        return job

    async def finish_job(self, job: SyncJob) -> bool:
        if self.fail_finish_times > 0:
            self.fail_finish_times -= 1
            raise ConnectionResetError("connection reset")
        stored = self.jobs.get(job.id)
        if stored is None or stored.status.is_terminal:
            return False
        self.jobs[job.id] = job.model_copy()
        return True

    async def get_job(self, job_id: int) -> SyncJob | None:
        stored = self.jobs.get(job_id)
        return stored.model_copy() if stored else None

    async def save_jira_issues(
        self,
        issues: Sequence[JiraIssueRecord],
        activities: Sequence[UnifiedActivity],
    ) -> int:
        self._maybe_race("jira_issues")
        for issue in issues:
            self.jira_issues[issue.natural_key] = issue
        self._save_activities(activities)
        return len({i.natural_key for i in issues})

    async def save_github_commits(
        self,
        commits: Sequence[GithubCommitRecord],
        activities: Sequence[UnifiedActivity],
    ) -> int:
        self._maybe_race("github_commits")
        for commit in commits:
            self.github_commits[commit.natural_key] = commit
            for f in commit.files:
                self.github_files[f.natural_key] = f
        self._save_activities(activities)
        return len({c.natural_key for c in commits})

    def jobs_for(self, configuration_id: int) -> list[SyncJob]:
        return [j for j in self.jobs.values() if j.configuration_id == configuration_id]

    def _maybe_race(self, table: str) -> None:
        self.save_calls += 1
        if self.duplicate_races > 0:
            self.duplicate_races -= 1
            raise DuplicateRecordError(table=table, detail="concurrent insert")

    def _save_activities(self, activities: Sequence[UnifiedActivity]) -> None:
        for activity in activities:
            self.activities[activity.natural_key] = activity
