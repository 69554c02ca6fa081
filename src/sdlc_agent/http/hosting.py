"""Pull/merge request creation on GitHub and GitLab."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import quote, urlparse

import httpx

logger = logging.getLogger(__name__)

DEFAULT_GITHUB_API_URL = "https://api.github.com"
GITLAB_COM_API_URL = "https://gitlab.com/api/v4"
DEFAULT_TIMEOUT_SECONDS = 30.0
REQUEST_FOOTER = "*This pull request was automatically generated by SDLC AI Agent*"


class HostingPlatform(str, Enum):
    GITHUB = "github"
    GITLAB = "gitlab"


class PullRequestError(RuntimeError):
    """Hosting platform rejected or failed a pull/merge request call."""

    def __init__(self, message: str, *, transport: bool = False) -> None:
        super().__init__(message)
        self.transport = transport


@dataclass(slots=True, frozen=True)
class RepoCoordinates:
    """Platform, API root and owner/name parsed from a clone URL."""

    platform: HostingPlatform
    api_url: str
    owner: str
    name: str

    @property
    def path(self) -> str:
        return f"{self.owner}/{self.name}"


def parse_repo_url(repo_url: str, *, github_api_url: str = DEFAULT_GITHUB_API_URL) -> RepoCoordinates:
    """Select the hosting platform from the clone URL host."""

    trimmed = repo_url.strip().rstrip("/")
    trimmed = trimmed.removesuffix(".git")
    parsed = urlparse(trimmed)
    host = (parsed.hostname or "").lower()

    if "github.com" in host:
        platform, api_url = HostingPlatform.GITHUB, github_api_url.rstrip("/")
    elif "gitlab.com" in host:
        platform, api_url = HostingPlatform.GITLAB, GITLAB_COM_API_URL
    elif "gitlab" in host:
        platform = HostingPlatform.GITLAB
        api_url = f"{parsed.scheme or 'https'}://{parsed.netloc.rpartition('@')[2]}/api/v4"
    else:
        raise PullRequestError(f"could not determine platform from URL: {trimmed}")

    parts = [part for part in parsed.path.split("/") if part]
    if len(parts) < 2:
        raise PullRequestError(f"invalid repository path: {parsed.path.strip('/')}")
    return RepoCoordinates(platform=platform, api_url=api_url, owner=parts[0], name=parts[1])


def build_request_title(jira_issue_key: str, summary: str) -> str:
    return f"[{jira_issue_key}] {summary}"


def build_request_body(jira_issue_key: str, description: str) -> str:
    sections = [f"## JIRA Issue: {jira_issue_key}\n\n"]
    if description:
        sections.append(f"## Description\n\n{description}\n\n")
    sections.append(f"---\n\n{REQUEST_FOOTER}\n")
    return "".join(sections)


class PullRequestClient:
    """Opens pull requests (GitHub) and merge requests (GitLab)."""

    def __init__(
        self,
        *,
        github_api_url: str = DEFAULT_GITHUB_API_URL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.github_api_url = github_api_url
        self._client = httpx.Client(timeout=httpx.Timeout(timeout_seconds), transport=transport)

    def open_request(
        self,
        *,
        repo_url: str,
        branch: str,
        base_branch: str,
        title: str,
        body: str,
        access_token: str,
    ) -> str:
        """Open a request from ``branch`` into ``base_branch`` and return its web URL."""

        coordinates = parse_repo_url(repo_url, github_api_url=self.github_api_url)
        logger.info(
            "Opening %s request repo=%s branch=%s base=%s",
            coordinates.platform.value,
            coordinates.path,
            branch,
            base_branch,
        )
        if coordinates.platform is HostingPlatform.GITHUB:
            url = self._open_github_pull(
                coordinates,
                branch=branch,
                base_branch=base_branch,
                title=title,
                body=body,
                access_token=access_token,
            )
        else:
            url = self._open_gitlab_merge(
                coordinates,
                branch=branch,
                base_branch=base_branch,
                title=title,
                body=body,
                access_token=access_token,
            )
        logger.info("Opened %s request url=%s", coordinates.platform.value, url)
        return url

    def _open_github_pull(
        self,
        coordinates: RepoCoordinates,
        *,
        branch: str,
        base_branch: str,
        title: str,
        body: str,
        access_token: str,
    ) -> str:
        response = self._send(
            "POST",
            f"{coordinates.api_url}/repos/{coordinates.owner}/{coordinates.name}/pulls",
            action="create PR",
            headers={
                "Authorization": f"token {access_token}",
                "Accept": "application/vnd.github.v3+json",
            },
            json={"title": title, "body": body, "head": branch, "base": base_branch},
        )
        _expect_status(response, httpx.codes.CREATED, platform="GitHub")
        return _string_field(_json_object(response), "html_url")

    def _open_gitlab_merge(
        self,
        coordinates: RepoCoordinates,
        *,
        branch: str,
        base_branch: str,
        title: str,
        body: str,
        access_token: str,
    ) -> str:
        headers = {"Authorization": f"Bearer {access_token}"}
        project_response = self._send(
            "GET",
            f"{coordinates.api_url}/projects/{quote(coordinates.path, safe='')}",
            action="get project",
            headers=headers,
        )
        _expect_status(project_response, httpx.codes.OK, platform="GitLab")
        project_id = _json_object(project_response).get("id")
        if not isinstance(project_id, int):
            raise PullRequestError("failed to parse project: missing numeric id")

        response = self._send(
            "POST",
            f"{coordinates.api_url}/projects/{project_id}/merge_requests",
            action="create MR",
            headers=headers,
            json={
                "source_branch": branch,
                "target_branch": base_branch,
                "title": title,
                "description": body,
            },
        )
        _expect_status(response, httpx.codes.CREATED, platform="GitLab")
        return _string_field(_json_object(response), "web_url")

    def _send(self, method: str, url: str, *, action: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise PullRequestError(f"failed to {action}: {exc}", transport=True) from exc

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> PullRequestClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _expect_status(response: httpx.Response, expected: int, *, platform: str) -> None:
    if response.status_code != expected:
        raise PullRequestError(
            f"{platform} API returned status {response.status_code}: {response.text[:500]}",
        )


def _json_object(response: httpx.Response) -> dict[str, Any]:
    try:
        payload = response.json()
    except ValueError as exc:
        raise PullRequestError(f"failed to parse response: {exc}") from exc
    if not isinstance(payload, dict):
        raise PullRequestError("failed to parse response: expected JSON object")
    return payload


def _string_field(payload: dict[str, Any], name: str) -> str:
    value = payload.get(name)
    if not isinstance(value, str) or not value:
        raise PullRequestError(f"failed to parse response: missing {name}")
    return value
