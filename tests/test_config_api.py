from __future__ import annotations

import allure
import httpx
import pytest

from sdlc_agent.http.config_api import (
    ConfigApiClient,
    ConfigApiError,
    ProjectNotFoundError,
    parse_project,
)

pytestmark = [
    allure.epic("Configuration"),
    allure.feature("Project Lookup"),
]

PROJECT_PAYLOAD = {
    "id": "p-1",
    "name": "Proj Service",
    "jira_project_key": "PROJ",
    "scope": "Backend services",
    "repositories": [
        {
            "id": "r-1",
            "url": "https://github.com/acme/service",
            "git_access_token": "tkn",
            "description": "API",
        },
        {"repository_id": "r-2", "url": "https://gitlab.com/acme/web", "base_branch": "develop"},
    ],
}


def _client(handler) -> ConfigApiClient:
    return ConfigApiClient(base_url="http://config.local/", transport=httpx.MockTransport(handler))


def test_get_project_queries_by_project_key() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=PROJECT_PAYLOAD)

    with _client(handler) as client:
        project = client.get_project("PROJ")

    assert str(seen[0].url) == "http://config.local/api/projects?jira_project_key=PROJ"
    assert project.name == "Proj Service"
    assert [repository.repository_id for repository in project.repositories] == ["r-1", "r-2"]
    assert project.repositories[0].access_token == "tkn"
    assert project.repositories[0].base_branch == "main"
    assert project.repositories[1].base_branch == "develop"


def test_missing_project_is_not_found() -> None:
    client = _client(lambda request: httpx.Response(404, json={"error": "not found"}))

    with pytest.raises(ProjectNotFoundError, match="project not found for jira_project_key: NOPE"):
        client.get_project("NOPE")


def test_server_error_is_reported_with_status() -> None:
    client = _client(lambda request: httpx.Response(503, text="unavailable"))

    with pytest.raises(ConfigApiError, match="status 503: unavailable") as excinfo:
        client.get_project("PROJ")
    assert not excinfo.value.transport


def test_transport_error_is_flagged() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ConfigApiError) as excinfo:
        _client(handler).get_project("PROJ")
    assert excinfo.value.transport


def test_invalid_json_is_reported() -> None:
    client = _client(lambda request: httpx.Response(200, text="<html>"))

    with pytest.raises(ConfigApiError, match="failed to decode project response"):
        client.get_project("PROJ")


def test_parse_project_rejects_repository_without_url() -> None:
    with pytest.raises(ConfigApiError, match="repository without url"):
        parse_project({"repositories": [{"id": "r-1"}]})


def test_parse_project_allows_empty_repository_list() -> None:
    assert parse_project({"name": "Empty"}).repositories == ()
