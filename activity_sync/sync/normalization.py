"""
Normalization

Maps source DTOs to raw per-source records and to UnifiedActivity rows.

A malformed optional field never aborts a record: timestamps that fail to
parse fall back to the sync time, and the fallback is counted and logged so
alert triage can find the offending record.
"""

from __future__ import annotations

from datetime import datetime

import structlog

from activity_sync.connectors.github import GithubCommit
from activity_sync.connectors.jira import JiraIssue
from activity_sync.kernel.time import parse_iso8601, utc_now
from activity_sync.monitoring.metrics import SyncMetrics
from activity_sync.sync.models import (
    ActivitySource,
    ActivityType,
    GithubCommitFileRecord,
    GithubCommitRecord,
    JiraIssueRecord,
    UnifiedActivity,
)

logger = structlog.get_logger()

_JIRA_ACTIVITY_TYPES = {
    "bug": ActivityType.BUG,
    "story": ActivityType.STORY,
    "task": ActivityType.TASK,
}

COMMIT_STATUS = "committed"


def jira_activity_type(issue_type: str | None) -> ActivityType:
    if issue_type is None:
        return ActivityType.TASK
    return _JIRA_ACTIVITY_TYPES.get(issue_type.lower(), ActivityType.ISSUE)


class Normalizer:
    """Stateless mapper; holds only the metrics sink for parser warnings."""

    def __init__(self, metrics: SyncMetrics):
        self.metrics = metrics

    def parse_timestamp(self, raw: str | None, *, field: str, record_id: str) -> datetime | None:
        """Parse an ISO-8601 value; blank is None, garbage falls back to now (UTC)."""
        if raw is None or not raw.strip():
            return None
        try:
            return parse_iso8601(raw)
        except ValueError as exc:
            logger.warning(
                "Failed to parse timestamp, falling back to sync time",
                field=field,
                record_id=record_id,
                raw_value=raw,
                error=str(exc),
            )
            self.metrics.track_parser_warning()
            return utc_now()

    # Jira

    def jira_issue_record(self, issue: JiraIssue, config_id: int) -> JiraIssueRecord:
        self.metrics.track_records_parsed()
        fields = issue.fields
        return JiraIssueRecord(
            project_config_id=config_id,
            issue_key=issue.key,
            issue_id=issue.id,
            summary=fields.summary,
            description=fields.description,
            issue_type=fields.issue_type.name if fields.issue_type else None,
            status=fields.status.name if fields.status else None,
            assignee_email=fields.assignee.email_address if fields.assignee else None,
            assignee_name=fields.assignee.display_name if fields.assignee else None,
            reporter_email=fields.reporter.email_address if fields.reporter else None,
            reporter_name=fields.reporter.display_name if fields.reporter else None,
            priority=fields.priority.name if fields.priority else None,
            created_at=self.parse_timestamp(fields.created, field="created_at", record_id=issue.key),
            updated_at=self.parse_timestamp(fields.updated, field="updated_at", record_id=issue.key),
        )

    @staticmethod
    def jira_activity(record: JiraIssueRecord) -> UnifiedActivity:
        return UnifiedActivity(
            project_config_id=record.project_config_id,
            source=ActivitySource.JIRA,
            activity_type=jira_activity_type(record.issue_type),
            external_id=record.issue_key,
            title=record.summary,
            description=record.description,
            author_email=record.reporter_email,
            author_name=record.reporter_name,
            status=record.status,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )

    # GitHub

    def github_commit_record(self, commit: GithubCommit, config_id: int) -> GithubCommitRecord:
        self.metrics.track_records_parsed()
        details = commit.commit
        author = details.author if details else None
        stats = commit.stats

        committed = self.parse_timestamp(
            author.date if author else None,
            field="committed_date",
            record_id=commit.sha,
        )
        return GithubCommitRecord(
            project_config_id=config_id,
            commit_sha=commit.sha,
            message=details.message if details else None,
            author_email=author.email if author else None,
            author_name=author.name if author else None,
            author_login=commit.author.login if commit.author else None,
            additions=stats.additions if stats else 0,
            deletions=stats.deletions if stats else 0,
            total_changes=stats.total if stats else 0,
            files_changed=len(commit.files),
            # Commits are immutable: the commit date doubles as created/updated.
            committed_date=committed,
            created_at=committed,
            updated_at=committed,
            files=[
                GithubCommitFileRecord(
                    project_config_id=config_id,
                    commit_sha=commit.sha,
                    filename=change.filename,
                    status=change.status,
                    additions=change.additions,
                    deletions=change.deletions,
                    changes=change.changes,
                )
                for change in commit.files
            ],
        )

    @staticmethod
    def github_activity(record: GithubCommitRecord) -> UnifiedActivity:
        return UnifiedActivity(
            project_config_id=record.project_config_id,
            source=ActivitySource.GITHUB,
            activity_type=ActivityType.COMMIT,
            external_id=record.commit_sha,
            title=record.message,
            description=f"+{record.additions} -{record.deletions} lines",
            author_email=record.author_email,
            author_name=record.author_name,
            status=COMMIT_STATUS,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
