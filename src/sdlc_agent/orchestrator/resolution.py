"""Pick the repository a work request targets within its project."""

from __future__ import annotations

from sdlc_agent.orchestrator.models import ProjectConfig, RepositoryConfig


class RepositoryResolutionError(RuntimeError):
    """No repository of the project matches the request."""


def normalize_repo_url(url: str) -> str:
    """Drop surrounding whitespace, trailing slashes and a ``.git`` suffix."""

    normalized = url.strip().rstrip("/")
    normalized = normalized.removesuffix(".git")
    return normalized.rstrip("/")


def resolve_repository(project: ProjectConfig, requested_url: str | None) -> RepositoryConfig:
    if not project.repositories:
        raise RepositoryResolutionError("no repositories configured for project")
    if not requested_url:
        return project.repositories[0]

    wanted = normalize_repo_url(requested_url)
    for repository in project.repositories:
        if normalize_repo_url(repository.url) == wanted:
            return repository
    raise RepositoryResolutionError(
        f"repository {requested_url} not found in project {project.jira_project_key or project.name}",
    )
