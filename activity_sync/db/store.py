"""
Sync Store

Persistence port for the job ledger and the normalized records, plus its
Postgres implementation on the raw asyncpg pool.

All record writes are upserts keyed on the natural uniqueness constraint, so
repeated or retried runs never duplicate rows. Writes go in batches of at
most `UPSERT_BATCH_SIZE`, one transaction per batch.
"""

from __future__ import annotations

from typing import Any, Iterable, Protocol, Sequence, TypeVar

import asyncpg
import structlog

from activity_sync.db import client as db_client
from activity_sync.errors import DuplicateRecordError
from activity_sync.sync.models import (
    GithubCommitRecord,
    JiraIssueRecord,
    SyncJob,
    SyncJobStatus,
    SyncJobType,
    UnifiedActivity,
)

logger = structlog.get_logger()

UPSERT_BATCH_SIZE = 500

T = TypeVar("T")


class SyncStore(Protocol):
    """Storage contract used by the ledger and the pipeline."""

    async def create_job(
        self,
        *,
        configuration_id: int,
        job_type: SyncJobType,
        correlation_id: str | None,
    ) -> SyncJob:
        """Insert a RUNNING job with the next run_attempt for (config, job_type)."""
        ...

    async def finish_job(self, job: SyncJob) -> bool:
        """Persist a terminal job. Returns False if the row was no longer RUNNING."""
        ...

    async def get_job(self, job_id: int) -> SyncJob | None:
        ...

    async def save_jira_issues(
        self,
        issues: Sequence[JiraIssueRecord],
        activities: Sequence[UnifiedActivity],
    ) -> int:
        """Upsert issues and their activities; returns the number of issues saved."""
        ...

    async def save_github_commits(
        self,
        commits: Sequence[GithubCommitRecord],
        activities: Sequence[UnifiedActivity],
    ) -> int:
        """Upsert commits, their files and activities; returns the number of commits saved."""
        ...


def chunked(items: Sequence[T], size: int = UPSERT_BATCH_SIZE) -> Iterable[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def dedupe_by_key(items: Iterable[T]) -> list[T]:
    """Keep the last item per `natural_key`, preserving first-seen order."""
    by_key: dict[Any, T] = {}
    for item in items:
        by_key[item.natural_key] = item  # type: ignore[attr-defined]
    return list(by_key.values())


_JOB_COLUMNS = """
    id, project_config_id, job_type, status, run_attempt, correlation_id,
    started_at, completed_at, records_fetched, records_saved, error_message
"""

_INSERT_JOB = f"""
    INSERT INTO sync_jobs (
        project_config_id, job_type, status, run_attempt, correlation_id,
        started_at, records_fetched, records_saved
    )
    VALUES (
        $1, $2, 'RUNNING',
        COALESCE(
            (SELECT MAX(run_attempt) FROM sync_jobs
             WHERE project_config_id = $1 AND job_type = $2),
            0
        ) + 1,
        $3, now(), 0, 0
    )
    RETURNING {_JOB_COLUMNS}
"""

_UPSERT_JIRA_ISSUE = """
    INSERT INTO jira_issues (
        project_config_id, issue_key, issue_id, summary, description, issue_type,
        status, assignee_email, assignee_name, reporter_email, reporter_name,
        priority, created_at, updated_at, synced_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, now())
    ON CONFLICT (project_config_id, issue_key) DO UPDATE SET
        issue_id = EXCLUDED.issue_id,
        summary = EXCLUDED.summary,
        description = EXCLUDED.description,
        issue_type = EXCLUDED.issue_type,
        status = EXCLUDED.status,
        assignee_email = EXCLUDED.assignee_email,
        assignee_name = EXCLUDED.assignee_name,
        reporter_email = EXCLUDED.reporter_email,
        reporter_name = EXCLUDED.reporter_name,
        priority = EXCLUDED.priority,
        created_at = EXCLUDED.created_at,
        updated_at = EXCLUDED.updated_at,
        synced_at = now()
"""

_UPSERT_GITHUB_COMMIT = """
    INSERT INTO github_commits (
        project_config_id, commit_sha, message, author_email, author_name,
        author_login, additions, deletions, total_changes, files_changed,
        committed_date, created_at, updated_at, synced_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, now())
    ON CONFLICT (project_config_id, commit_sha) DO UPDATE SET
        message = EXCLUDED.message,
        author_email = EXCLUDED.author_email,
        author_name = EXCLUDED.author_name,
        author_login = EXCLUDED.author_login,
        additions = EXCLUDED.additions,
        deletions = EXCLUDED.deletions,
        total_changes = EXCLUDED.total_changes,
        files_changed = EXCLUDED.files_changed,
        committed_date = EXCLUDED.committed_date,
        created_at = EXCLUDED.created_at,
        updated_at = EXCLUDED.updated_at,
        synced_at = now()
"""

_UPSERT_GITHUB_COMMIT_FILE = """
    INSERT INTO github_commit_files (
        project_config_id, commit_sha, filename, status, additions, deletions, changes
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7)
    ON CONFLICT (project_config_id, commit_sha, filename) DO UPDATE SET
        status = EXCLUDED.status,
        additions = EXCLUDED.additions,
        deletions = EXCLUDED.deletions,
        changes = EXCLUDED.changes
"""

_UPSERT_ACTIVITY = """
    INSERT INTO unified_activities (
        project_config_id, source, activity_type, external_id, title, description,
        author_email, author_name, status, created_at, updated_at, synced_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, now())
    ON CONFLICT (project_config_id, source, external_id) DO UPDATE SET
        activity_type = EXCLUDED.activity_type,
        title = EXCLUDED.title,
        description = EXCLUDED.description,
        author_email = EXCLUDED.author_email,
        author_name = EXCLUDED.author_name,
        status = EXCLUDED.status,
        created_at = EXCLUDED.created_at,
        updated_at = EXCLUDED.updated_at,
        synced_at = now()
"""


def _job_from_row(row: Any) -> SyncJob:
    return SyncJob(
        id=row["id"],
        configuration_id=row["project_config_id"],
        job_type=SyncJobType(row["job_type"]),
        status=SyncJobStatus(row["status"]),
        run_attempt=row["run_attempt"],
        correlation_id=row["correlation_id"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        records_fetched=row["records_fetched"] or 0,
        records_saved=row["records_saved"] or 0,
        error_message=row["error_message"],
    )


def _activity_args(activity: UnifiedActivity) -> tuple[Any, ...]:
    return (
        activity.project_config_id,
        activity.source.value,
        activity.activity_type.value,
        activity.external_id,
        activity.title,
        activity.description,
        activity.author_email,
        activity.author_name,
        activity.status,
        activity.created_at,
        activity.updated_at,
    )


class PostgresSyncStore:
    """SyncStore on the shared asyncpg pool."""

    async def create_job(
        self,
        *,
        configuration_id: int,
        job_type: SyncJobType,
        correlation_id: str | None,
    ) -> SyncJob:
        args = (configuration_id, job_type.value, correlation_id)
        try:
            return await self._insert_job(*args)
        except asyncpg.UniqueViolationError:
            # Two replicas computed the same next run_attempt; the loser retries once.
            logger.info(
                "Concurrent run_attempt allocation, retrying",
                config_id=configuration_id,
                job_type=job_type.value,
            )
        try:
            return await self._insert_job(*args)
        except asyncpg.UniqueViolationError as exc:
            raise DuplicateRecordError(table="sync_jobs", detail=exc.constraint_name) from exc

    async def _insert_job(self, *args: Any) -> SyncJob:
        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(_INSERT_JOB, *args)
        return _job_from_row(row)

    async def finish_job(self, job: SyncJob) -> bool:
        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE sync_jobs
                SET status = $2,
                    completed_at = $3,
                    records_fetched = $4,
                    records_saved = $5,
                    error_message = $6
                WHERE id = $1
                  AND status = 'RUNNING'
                RETURNING id
                """,
                job.id,
                job.status.value,
                job.completed_at,
                job.records_fetched,
                job.records_saved,
                job.error_message,
            )
        return row is not None

    async def get_job(self, job_id: int) -> SyncJob | None:
        pool = await db_client.get_db_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT {_JOB_COLUMNS} FROM sync_jobs WHERE id = $1",
                job_id,
            )
        return _job_from_row(row) if row else None

    async def save_jira_issues(
        self,
        issues: Sequence[JiraIssueRecord],
        activities: Sequence[UnifiedActivity],
    ) -> int:
        issues = dedupe_by_key(issues)
        activities = dedupe_by_key(activities)
        issue_args = [
            (
                i.project_config_id,
                i.issue_key,
                i.issue_id,
                i.summary,
                i.description,
                i.issue_type,
                i.status,
                i.assignee_email,
                i.assignee_name,
                i.reporter_email,
                i.reporter_name,
                i.priority,
                i.created_at,
                i.updated_at,
            )
            for i in issues
        ]
        await self._upsert_batches("jira_issues", _UPSERT_JIRA_ISSUE, issue_args)
        await self._upsert_batches(
            "unified_activities", _UPSERT_ACTIVITY, [_activity_args(a) for a in activities]
        )
        return len(issues)

    async def save_github_commits(
        self,
        commits: Sequence[GithubCommitRecord],
        activities: Sequence[UnifiedActivity],
    ) -> int:
        commits = dedupe_by_key(commits)
        activities = dedupe_by_key(activities)
        commit_args = [
            (
                c.project_config_id,
                c.commit_sha,
                c.message,
                c.author_email,
                c.author_name,
                c.author_login,
                c.additions,
                c.deletions,
                c.total_changes,
                c.files_changed,
                c.committed_date,
                c.created_at,
                c.updated_at,
            )
            for c in commits
        ]
        file_args = [
            (
                f.project_config_id,
                f.commit_sha,
                f.filename,
                f.status,
                f.additions,
                f.deletions,
                f.changes,
            )
            for f in dedupe_by_key(f for c in commits for f in c.files)
        ]
        await self._upsert_batches("github_commits", _UPSERT_GITHUB_COMMIT, commit_args)
        await self._upsert_batches("github_commit_files", _UPSERT_GITHUB_COMMIT_FILE, file_args)
        await self._upsert_batches(
            "unified_activities", _UPSERT_ACTIVITY, [_activity_args(a) for a in activities]
        )
        return len(commits)

    async def _upsert_batches(self, table: str, sql: str, rows: list[tuple[Any, ...]]) -> None:
        if not rows:
            return
        pool = await db_client.get_db_pool()
        for batch in chunked(rows):
            async with pool.acquire() as conn:
                try:
                    async with conn.transaction():
                        await conn.executemany(sql, batch)
                except asyncpg.UniqueViolationError as exc:
                    raise DuplicateRecordError(table=table, detail=exc.constraint_name) from exc
            logger.debug("Upserted batch", table=table, rows=len(batch))
