"""
Sync Database Models

SQLAlchemy models for the sync job ledger, raw source records, unified
activities and the scheduler lease table. Runtime SQL goes through the raw
asyncpg pool; these models define the schema for Alembic.
"""

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class SyncJobRow(Base):
    """
    One execution of one job type for one configuration.

    Rows are append-only history: never deleted, and terminal statuses are
    never updated again (guarded by `WHERE status = 'RUNNING'`).
    """

    __tablename__ = "sync_jobs"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    project_config_id = Column(BigInteger, nullable=False)
    job_type = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False)  # RUNNING | COMPLETED | PARTIAL_FAILURE | FAILED
    run_attempt = Column(Integer, nullable=False, default=1)
    correlation_id = Column(String(100), nullable=True)

    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    records_fetched = Column(Integer, nullable=False, default=0)
    records_saved = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "project_config_id", "job_type", "run_attempt", name="uq_sync_jobs_config_type_attempt"
        ),
        Index("idx_sync_jobs_config_status", "project_config_id", "status"),
        Index("idx_sync_jobs_created_at", "created_at"),
    )


class JiraIssueRow(Base):
    __tablename__ = "jira_issues"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    project_config_id = Column(BigInteger, nullable=False)
    issue_key = Column(String(100), nullable=False)
    issue_id = Column(String(100), nullable=True)
    summary = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    issue_type = Column(String(100), nullable=True)
    status = Column(String(100), nullable=True)
    assignee_email = Column(String(255), nullable=True)
    assignee_name = Column(String(255), nullable=True)
    reporter_email = Column(String(255), nullable=True)
    reporter_name = Column(String(255), nullable=True)
    priority = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("project_config_id", "issue_key", name="uq_jira_issues_config_key"),
    )


class GithubCommitRow(Base):
    __tablename__ = "github_commits"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    project_config_id = Column(BigInteger, nullable=False)
    commit_sha = Column(String(64), nullable=False)
    message = Column(Text, nullable=True)
    author_email = Column(String(255), nullable=True)
    author_name = Column(String(255), nullable=True)
    author_login = Column(String(255), nullable=True)
    additions = Column(Integer, nullable=False, default=0)
    deletions = Column(Integer, nullable=False, default=0)
    total_changes = Column(Integer, nullable=False, default=0)
    files_changed = Column(Integer, nullable=False, default=0)
    committed_date = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("project_config_id", "commit_sha", name="uq_github_commits_config_sha"),
    )


class GithubCommitFileRow(Base):
    __tablename__ = "github_commit_files"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    project_config_id = Column(BigInteger, nullable=False)
    commit_sha = Column(String(64), nullable=False)
    filename = Column(Text, nullable=False)
    status = Column(String(50), nullable=True)
    additions = Column(Integer, nullable=False, default=0)
    deletions = Column(Integer, nullable=False, default=0)
    changes = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint(
            "project_config_id", "commit_sha", "filename", name="uq_github_commit_files_config_sha_file"
        ),
    )


class UnifiedActivityRow(Base):
    """Cross-source activity feed; exactly one row per source record."""

    __tablename__ = "unified_activities"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    project_config_id = Column(BigInteger, nullable=False)
    source = Column(String(20), nullable=False)  # JIRA | GITHUB
    activity_type = Column(String(20), nullable=False)
    external_id = Column(String(255), nullable=False)
    title = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    author_email = Column(String(255), nullable=True)
    author_name = Column(String(255), nullable=True)
    status = Column(String(100), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)
    synced_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "project_config_id", "source", "external_id", name="uq_unified_activities_config_source_ext"
        ),
        Index("idx_unified_activities_config_created", "project_config_id", "created_at"),
    )


class SchedulerLockRow(Base):
    """Lease record behind the distributed scheduler gate."""

    __tablename__ = "scheduler_locks"

    name = Column(String(64), primary_key=True)
    lock_until = Column(DateTime(timezone=True), nullable=False)
    locked_at = Column(DateTime(timezone=True), nullable=False)
    locked_by = Column(String(255), nullable=False)
