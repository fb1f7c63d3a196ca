"""
GitHub Client

Paginated commit listing for one repository, enriched with the per-commit
detail endpoint (the listing omits stats and changed files).
"""

from __future__ import annotations

from urllib.parse import urlparse

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field

from activity_sync.config import Settings, get_settings
from activity_sync.connectors.config_service import SyncCredentials
from activity_sync.connectors.http import request_json
from activity_sync.errors import ExternalCallError
from activity_sync.resilience.classifier import SyncOutcome
from activity_sync.resilience.wrapper import GITHUB, ResilienceWrapper

logger = structlog.get_logger()

API_VERSION = "2022-11-28"


class GithubCommitAuthor(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    email: str | None = None
    date: str | None = None


class GithubCommitDetails(BaseModel):
    model_config = ConfigDict(extra="ignore")

    message: str | None = None
    author: GithubCommitAuthor | None = None


class GithubAccount(BaseModel):
    model_config = ConfigDict(extra="ignore")

    login: str | None = None


class GithubStats(BaseModel):
    model_config = ConfigDict(extra="ignore")

    additions: int = 0
    deletions: int = 0
    total: int = 0


class GithubFileChange(BaseModel):
    model_config = ConfigDict(extra="ignore")

    filename: str
    status: str | None = None
    additions: int = 0
    deletions: int = 0
    changes: int = 0


class GithubCommit(BaseModel):
    """A commit as returned by the listing, optionally merged with its detail."""

    model_config = ConfigDict(extra="ignore")

    sha: str
    commit: GithubCommitDetails | None = None
    author: GithubAccount | None = None
    stats: GithubStats | None = None
    files: list[GithubFileChange] = Field(default_factory=list)


def parse_repo_url(repo_url: str) -> tuple[str, str]:
    """
    Extract (owner, repo) from a repository URL.

    Accepts `https://github.com/owner/repo(.git)`, enterprise hosts, and a bare
    `owner/repo`.
    """
    raw = (repo_url or "").strip()
    path = urlparse(raw).path if "://" in raw else raw
    path = path.strip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]

    parts = [part for part in path.split("/") if part]
    if len(parts) < 2:
        raise ExternalCallError(
            outcome=SyncOutcome.FAILED_BAD_REQUEST,
            dependency=GITHUB,
            message=f"invalid GitHub repo URL: {repo_url!r}",
        )
    return parts[0], parts[1]


class GithubClient:
    """Fetches recent commits of one repository."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        resilience: ResilienceWrapper,
        settings: Settings | None = None,
    ) -> None:
        self._client = client
        self._resilience = resilience
        settings = settings or get_settings()
        self.api_url = settings.github_api_url.rstrip("/")
        self.page_size = min(100, max(1, settings.sync_page_size))
        self.max_pages = max(1, settings.sync_max_pages)

    def _headers(self, access_token: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
        }

    async def fetch_commits(self, credentials: SyncCredentials) -> list[GithubCommit]:
        if not credentials.has_github:
            raise ExternalCallError(
                outcome=SyncOutcome.FAILED_BAD_REQUEST,
                dependency=GITHUB,
                message=f"config {credentials.config_id} has no GitHub repo URL or token",
            )

        owner, repo = parse_repo_url(credentials.github_repo_url)
        headers = self._headers(credentials.github_access_token.get_secret_value())
        url = f"{self.api_url}/repos/{owner}/{repo}/commits"

        listed: list[GithubCommit] = []
        for page in range(1, self.max_pages + 1):
            params = {"per_page": self.page_size, "page": page}
            data = await self._resilience.call(
                lambda: request_json(self._client, "GET", url, params=params, headers=headers),
                operation="github.list_commits",
            )
            raw_commits = data or []
            listed.extend(GithubCommit.model_validate(raw) for raw in raw_commits)
            if len(raw_commits) < self.page_size:
                break
        else:
            logger.warning(
                "GitHub page limit reached, older commits deferred to the next run",
                config_id=credentials.config_id,
                repo=f"{owner}/{repo}",
                max_pages=self.max_pages,
            )

        commits = [await self._with_detail(url, commit, headers) for commit in listed]

        logger.info(
            "Fetched GitHub commits",
            config_id=credentials.config_id,
            repo=f"{owner}/{repo}",
            count=len(commits),
        )
        return commits

    async def _with_detail(
        self,
        commits_url: str,
        commit: GithubCommit,
        headers: dict[str, str],
    ) -> GithubCommit:
        if commit.stats is not None:
            return commit

        detail_url = f"{commits_url}/{commit.sha}"
        data = await self._resilience.call(
            lambda: request_json(self._client, "GET", detail_url, headers=headers),
            operation="github.get_commit",
        )
        detail = GithubCommit.model_validate(data or {"sha": commit.sha})
        return commit.model_copy(
            update={
                "stats": detail.stats or GithubStats(),
                "files": detail.files,
                "commit": commit.commit or detail.commit,
                "author": commit.author or detail.author,
            }
        )
