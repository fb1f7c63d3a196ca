"""
Jira Client

Paginated issue search against the Jira Cloud REST API v3.

Auth: Basic with an API token (the username part is ignored by Jira for
token auth, so a placeholder is used).
"""

from __future__ import annotations

import base64
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator

from activity_sync.config import Settings, get_settings
from activity_sync.connectors.config_service import SyncCredentials
from activity_sync.connectors.http import request_json
from activity_sync.errors import ExternalCallError
from activity_sync.resilience.classifier import SyncOutcome
from activity_sync.resilience.wrapper import JIRA, ResilienceWrapper

logger = structlog.get_logger()

SEARCH_PATH = "/rest/api/3/search"
SEARCH_FIELDS = "summary,description,issuetype,status,assignee,reporter,priority,created,updated"


class JiraNamed(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None


class JiraUser(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    email_address: str | None = Field(default=None, alias="emailAddress")
    display_name: str | None = Field(default=None, alias="displayName")


class JiraIssueFields(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    summary: str | None = None
    description: str | None = None
    issue_type: JiraNamed | None = Field(default=None, alias="issuetype")
    status: JiraNamed | None = None
    assignee: JiraUser | None = None
    reporter: JiraUser | None = None
    priority: JiraNamed | None = None
    created: str | None = None
    updated: str | None = None

    @field_validator("description", mode="before")
    @classmethod
    def _flatten_document(cls, value: Any) -> Any:
        # API v3 returns rich text as an Atlassian Document Format tree.
        if isinstance(value, dict):
            return _adf_to_text(value) or None
        return value


class JiraIssue(BaseModel):
    """One issue from the search endpoint."""

    model_config = ConfigDict(extra="ignore")

    id: str | None = None
    key: str
    fields: JiraIssueFields = Field(default_factory=JiraIssueFields)


def _adf_to_text(node: dict[str, Any]) -> str:
    parts: list[str] = []

    def walk(current: Any) -> None:
        if isinstance(current, dict):
            if current.get("type") == "text" and isinstance(current.get("text"), str):
                parts.append(current["text"])
            for child in current.get("content") or []:
                walk(child)
            if current.get("type") in {"paragraph", "heading", "listItem"}:
                parts.append("\n")
        elif isinstance(current, list):
            for child in current:
                walk(child)

    walk(node)
    return "".join(parts).strip()


def _basic_auth(api_token: str) -> str:
    encoded = base64.b64encode(f"x:{api_token}".encode()).decode()
    return f"Basic {encoded}"


def _jql_string(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _base_url(host_url: str) -> str:
    host_url = host_url.strip().rstrip("/")
    if not host_url.startswith(("http://", "https://")):
        host_url = f"https://{host_url}"
    return host_url


class JiraClient:
    """Fetches all issues of one project, newest update first."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        resilience: ResilienceWrapper,
        settings: Settings | None = None,
    ) -> None:
        self._client = client
        self._resilience = resilience
        settings = settings or get_settings()
        self.page_size = max(1, settings.sync_page_size)
        self.max_pages = max(1, settings.sync_max_pages)

    async def fetch_issues(self, credentials: SyncCredentials) -> list[JiraIssue]:
        if not credentials.has_jira:
            raise ExternalCallError(
                outcome=SyncOutcome.FAILED_BAD_REQUEST,
                dependency=JIRA,
                message=f"config {credentials.config_id} has no Jira host, token or project key",
            )

        url = f"{_base_url(credentials.jira_host_url)}{SEARCH_PATH}"
        headers = {
            "Authorization": _basic_auth(credentials.jira_api_token.get_secret_value()),
            "Accept": "application/json",
        }
        jql = f"project = {_jql_string(credentials.jira_project_key)} ORDER BY updated DESC"

        issues: list[JiraIssue] = []
        start_at = 0
        for _ in range(self.max_pages):
            params = {
                "jql": jql,
                "startAt": start_at,
                "maxResults": self.page_size,
                "fields": SEARCH_FIELDS,
            }
            data = await self._resilience.call(
                lambda: request_json(self._client, "GET", url, params=params, headers=headers),
                operation="jira.search",
            )
            data = data or {}
            raw_issues = data.get("issues") or []
            issues.extend(JiraIssue.model_validate(raw) for raw in raw_issues)

            total = int(data.get("total") or 0)
            start_at += len(raw_issues)
            if not raw_issues or start_at >= total:
                break
        else:
            logger.warning(
                "Jira page limit reached, remaining issues deferred to the next run",
                config_id=credentials.config_id,
                project_key=credentials.jira_project_key,
                max_pages=self.max_pages,
            )

        logger.info(
            "Fetched Jira issues",
            config_id=credentials.config_id,
            project_key=credentials.jira_project_key,
            count=len(issues),
        )
        return issues
