"""Client for the project configuration service."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from sdlc_agent.orchestrator.models import ProjectConfig, RepositoryConfig

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_BASE_BRANCH = "main"


class ConfigApiError(RuntimeError):
    """Project configuration lookup failed."""

    def __init__(self, message: str, *, transport: bool = False) -> None:
        super().__init__(message)
        self.transport = transport


class ProjectNotFoundError(ConfigApiError):
    """No project is configured for the requested project key."""


class ConfigApiClient:
    """Looks up project configuration by issue-tracker project key."""

    def __init__(
        self,
        *,
        base_url: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    def get_project(self, jira_project_key: str) -> ProjectConfig:
        try:
            response = self._client.get(
                "/api/projects",
                params={"jira_project_key": jira_project_key},
            )
        except httpx.HTTPError as exc:
            raise ConfigApiError(
                f"failed to call configuration API: {exc}",
                transport=True,
            ) from exc

        if response.status_code == httpx.codes.NOT_FOUND:
            raise ProjectNotFoundError(
                f"project not found for jira_project_key: {jira_project_key}",
            )
        if response.status_code != httpx.codes.OK:
            raise ConfigApiError(
                f"configuration API returned status {response.status_code}: "
                f"{response.text[:500]}",
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise ConfigApiError(f"failed to decode project response: {exc}") from exc
        project = parse_project(payload)
        logger.info(
            "Loaded project configuration key=%s project_id=%s repositories=%d",
            jira_project_key,
            project.project_id,
            len(project.repositories),
        )
        return project

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ConfigApiClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def parse_project(payload: Any) -> ProjectConfig:
    if not isinstance(payload, dict):
        raise ConfigApiError("failed to decode project response: expected JSON object")
    raw_repositories = payload.get("repositories") or []
    if not isinstance(raw_repositories, list):
        raise ConfigApiError("failed to decode project response: repositories must be a list")

    repositories = []
    for raw in raw_repositories:
        if not isinstance(raw, dict) or not raw.get("url"):
            raise ConfigApiError("failed to decode project response: repository without url")
        repositories.append(
            RepositoryConfig(
                repository_id=str(raw.get("repository_id") or raw.get("id") or ""),
                url=str(raw["url"]),
                access_token=str(raw.get("git_access_token") or ""),
                description=str(raw.get("description") or ""),
                base_branch=str(raw.get("base_branch") or DEFAULT_BASE_BRANCH),
            ),
        )

    return ProjectConfig(
        project_id=str(payload.get("id") or ""),
        name=str(payload.get("name") or ""),
        jira_project_key=str(payload.get("jira_project_key") or ""),
        scope=str(payload.get("scope") or ""),
        description=str(payload.get("description") or ""),
        repositories=tuple(repositories),
    )
