"""
Configuration Service Client

Reads tenant sync configurations from the project-config service:
- which configurations are eligible (VERIFIED) for a sync run
- the decrypted credentials for one configuration

Credentials are fetched fresh on every run and never cached, so a revoked
token takes effect on the next tick.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError

from activity_sync.config import Settings, get_settings
from activity_sync.connectors.http import request_json
from activity_sync.errors import ConfigurationServiceError
from activity_sync.resilience.wrapper import ResilienceWrapper

logger = structlog.get_logger()

VERIFIED_STATE = "VERIFIED"


class SyncCredentials(BaseModel):
    """Decrypted credentials and endpoints for one tenant configuration."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    config_id: int = Field(alias="configId")
    group_id: int | None = Field(default=None, alias="groupId")
    jira_host_url: str | None = Field(default=None, alias="jiraHostUrl")
    jira_api_token: SecretStr | None = Field(default=None, alias="jiraApiToken")
    jira_project_key: str | None = Field(default=None, alias="jiraProjectKey")
    github_repo_url: str | None = Field(default=None, alias="githubRepoUrl")
    github_access_token: SecretStr | None = Field(default=None, alias="githubAccessToken")
    state: str = Field(default=VERIFIED_STATE)

    @property
    def has_jira(self) -> bool:
        return bool(self.jira_host_url and self.jira_api_token and self.jira_project_key)

    @property
    def has_github(self) -> bool:
        return bool(self.github_repo_url and self.github_access_token)


class ConfigurationServiceClient:
    """HTTP client for the internal project-config endpoints."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        resilience: ResilienceWrapper,
        settings: Settings | None = None,
    ) -> None:
        self._client = client
        self._resilience = resilience
        self._settings = settings or get_settings()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self._settings.config_service_token
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    def _url(self, path: str) -> str:
        return f"{self._settings.config_service_url.rstrip('/')}{path}"

    async def list_eligible_configurations(self) -> list[int]:
        """Return ids of all VERIFIED configurations."""
        url = self._url("/internal/project-configs")

        payload = await self._resilience.call(
            lambda: request_json(
                self._client,
                "GET",
                url,
                params={"state": VERIFIED_STATE},
                headers=self._headers(),
            ),
            operation="list_eligible_configurations",
            timeout_seconds=self._settings.config_service_list_timeout_seconds,
        )

        config_ids = _parse_config_ids(payload)
        logger.debug("Listed eligible configurations", count=len(config_ids))
        return config_ids

    async def get_decrypted_credentials(self, config_id: int) -> SyncCredentials:
        url = self._url(f"/internal/project-configs/{config_id}/decrypted")

        payload = await self._resilience.call(
            lambda: request_json(self._client, "GET", url, headers=self._headers()),
            operation="get_decrypted_credentials",
            timeout_seconds=self._settings.config_service_timeout_seconds,
        )

        if not isinstance(payload, dict):
            raise ConfigurationServiceError(
                message=f"Unexpected credentials payload for config {config_id}",
                config_id=config_id,
            )
        try:
            credentials = SyncCredentials.model_validate(payload)
        except ValidationError as exc:
            raise ConfigurationServiceError(
                message=f"Invalid credentials payload for config {config_id}: {exc.error_count()} errors",
                config_id=config_id,
            ) from exc

        if credentials.config_id != config_id:
            raise ConfigurationServiceError(
                message=f"Config service returned config {credentials.config_id}, expected {config_id}",
                config_id=config_id,
            )
        return credentials


def _parse_config_ids(payload: Any) -> list[int]:
    if not isinstance(payload, dict) or not isinstance(payload.get("configs"), list):
        raise ConfigurationServiceError(message="Unexpected configuration listing payload")

    config_ids: list[int] = []
    seen: set[int] = set()
    for item in payload["configs"]:
        raw = item.get("configId") if isinstance(item, dict) else None
        try:
            config_id = int(raw)
        except (TypeError, ValueError):
            raise ConfigurationServiceError(
                message=f"Configuration listing contains an invalid id: {raw!r}"
            ) from None
        if config_id not in seen:
            seen.add(config_id)
            config_ids.append(config_id)
    return config_ids
