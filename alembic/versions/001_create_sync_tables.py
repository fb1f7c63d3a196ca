"""Create sync ledger, source record, activity and scheduler lock tables.

Revision ID: 001_create_sync_tables
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "001_create_sync_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # Sync job ledger
    # ==========================================================================
    op.create_table(
        "sync_jobs",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("project_config_id", sa.BigInteger, nullable=False),
        sa.Column("job_type", sa.String(50), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("run_attempt", sa.Integer, nullable=False, server_default="1"),
        sa.Column("correlation_id", sa.String(100), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("records_fetched", sa.Integer, nullable=False, server_default="0"),
        sa.Column("records_saved", sa.Integer, nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "project_config_id", "job_type", "run_attempt", name="uq_sync_jobs_config_type_attempt"
        ),
    )
    op.create_index("ix_sync_jobs_job_type", "sync_jobs", ["job_type"])
    op.create_index("idx_sync_jobs_config_status", "sync_jobs", ["project_config_id", "status"])
    op.create_index("idx_sync_jobs_created_at", "sync_jobs", ["created_at"])

    # ==========================================================================
    # Raw source records
    # ==========================================================================
    op.create_table(
        "jira_issues",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("project_config_id", sa.BigInteger, nullable=False),
        sa.Column("issue_key", sa.String(100), nullable=False),
        sa.Column("issue_id", sa.String(100), nullable=True),
        sa.Column("summary", sa.Text, nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("issue_type", sa.String(100), nullable=True),
        sa.Column("status", sa.String(100), nullable=True),
        sa.Column("assignee_email", sa.String(255), nullable=True),
        sa.Column("assignee_name", sa.String(255), nullable=True),
        sa.Column("reporter_email", sa.String(255), nullable=True),
        sa.Column("reporter_name", sa.String(255), nullable=True),
        sa.Column("priority", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "synced_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("project_config_id", "issue_key", name="uq_jira_issues_config_key"),
    )

    op.create_table(
        "github_commits",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("project_config_id", sa.BigInteger, nullable=False),
        sa.Column("commit_sha", sa.String(64), nullable=False),
        sa.Column("message", sa.Text, nullable=True),
        sa.Column("author_email", sa.String(255), nullable=True),
        sa.Column("author_name", sa.String(255), nullable=True),
        sa.Column("author_login", sa.String(255), nullable=True),
        sa.Column("additions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("deletions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("total_changes", sa.Integer, nullable=False, server_default="0"),
        sa.Column("files_changed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("committed_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "synced_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("project_config_id", "commit_sha", name="uq_github_commits_config_sha"),
    )

    op.create_table(
        "github_commit_files",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("project_config_id", sa.BigInteger, nullable=False),
        sa.Column("commit_sha", sa.String(64), nullable=False),
        sa.Column("filename", sa.Text, nullable=False),
        sa.Column("status", sa.String(50), nullable=True),
        sa.Column("additions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("deletions", sa.Integer, nullable=False, server_default="0"),
        sa.Column("changes", sa.Integer, nullable=False, server_default="0"),
        sa.UniqueConstraint(
            "project_config_id",
            "commit_sha",
            "filename",
            name="uq_github_commit_files_config_sha_file",
        ),
    )

    # ==========================================================================
    # Unified activity feed
    # ==========================================================================
    op.create_table(
        "unified_activities",
        sa.Column("id", sa.BigInteger, primary_key=True, autoincrement=True),
        sa.Column("project_config_id", sa.BigInteger, nullable=False),
        sa.Column("source", sa.String(20), nullable=False),
        sa.Column("activity_type", sa.String(20), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("title", sa.Text, nullable=True),
        sa.Column("description", sa.Text, nullable=True),
        sa.Column("author_email", sa.String(255), nullable=True),
        sa.Column("author_name", sa.String(255), nullable=True),
        sa.Column("status", sa.String(100), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "synced_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "project_config_id",
            "source",
            "external_id",
            name="uq_unified_activities_config_source_ext",
        ),
    )
    op.create_index(
        "idx_unified_activities_config_created",
        "unified_activities",
        ["project_config_id", "created_at"],
    )

    # ==========================================================================
    # Scheduler leases
    # ==========================================================================
    op.create_table(
        "scheduler_locks",
        sa.Column("name", sa.String(64), primary_key=True),
        sa.Column("lock_until", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("locked_by", sa.String(255), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("scheduler_locks")
    op.drop_index("idx_unified_activities_config_created", table_name="unified_activities")
    op.drop_table("unified_activities")
    op.drop_table("github_commit_files")
    op.drop_table("github_commits")
    op.drop_table("jira_issues")
    op.drop_index("idx_sync_jobs_created_at", table_name="sync_jobs")
    op.drop_index("idx_sync_jobs_config_status", table_name="sync_jobs")
    op.drop_index("ix_sync_jobs_job_type", table_name="sync_jobs")
    op.drop_table("sync_jobs")
