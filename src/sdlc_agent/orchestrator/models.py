"""Domain models for development requests, records and collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class DevelopmentStatus(str, Enum):
    """Durable development record lifecycle states."""

    READY = "ready"
    COMPLETED = "completed"
    FAILED = "failed"


class PipelineStep(str, Enum):
    """Ordered pipeline steps, in execution order."""

    RESOLVE = "resolve"
    CLONE = "clone"
    ANALYZE = "analyze"
    GENERATE = "generate"
    COMMIT = "commit"
    PUSH = "push"
    OPEN_REQUEST = "open_request"
    RECORD = "record"


class FailureClass(str, Enum):
    """Normalized failure classes recorded on failed developments."""

    TRANSPORT = "transport"
    MALFORMED_INPUT = "malformed_input"
    BUSINESS_RULE = "business_rule"
    EXTERNAL_TOOL = "external_tool"
    TIMEOUT = "timeout"
    INTERNAL = "internal"


class EmptyDiffPolicy(str, Enum):
    """What the pipeline does when generation leaves the tree unchanged."""

    OPEN_REQUEST = "open_request"
    SKIP_REQUEST = "skip_request"


@dataclass(slots=True, frozen=True)
class WorkRequest:
    """One requested code change, decoded from the work queue."""

    jira_issue_id: str
    jira_issue_key: str
    jira_project_key: str
    summary: str = ""
    description: str = ""
    repository: str | None = None

    def to_payload(self) -> dict[str, str]:
        payload = {
            "jira_issue_id": self.jira_issue_id,
            "jira_issue_key": self.jira_issue_key,
            "jira_project_key": self.jira_project_key,
            "summary": self.summary,
            "description": self.description,
        }
        if self.repository:
            payload["repository"] = self.repository
        return payload


@dataclass(slots=True, frozen=True)
class RepositoryConfig:
    """Repository entry of a project configuration."""

    repository_id: str
    url: str
    access_token: str = ""
    description: str = ""
    base_branch: str = "main"


@dataclass(slots=True, frozen=True)
class ProjectConfig:
    """Project configuration returned by the config lookup service."""

    project_id: str
    name: str
    jira_project_key: str
    scope: str = ""
    description: str = ""
    repositories: tuple[RepositoryConfig, ...] = ()


@dataclass(slots=True)
class RepositoryAnalysis:
    """Structural hints about a checked-out repository."""

    entry_points: list[str] = field(default_factory=list)
    key_directories: list[str] = field(default_factory=list)
    config_files: list[str] = field(default_factory=list)
    languages: list[str] = field(default_factory=list)
    patterns: dict[str, str] = field(default_factory=dict)
    project_type: str = "Unknown"
    dependency_managers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_points": list(self.entry_points),
            "key_directories": list(self.key_directories),
            "config_files": list(self.config_files),
            "languages": list(self.languages),
            "patterns": dict(self.patterns),
            "project_type": self.project_type,
            "dependency_managers": list(self.dependency_managers),
        }


@dataclass(slots=True)
class GenerationResult:
    """Output of a successful code-generation step."""

    output: str
    files_changed: int
    signalled: bool = True


@dataclass(slots=True)
class DevelopmentCreate:
    """Input payload for creating a development record."""

    jira_issue_id: str
    jira_issue_key: str
    jira_project_key: str
    development_id: str | None = None


@dataclass(slots=True)
class DevelopmentView:
    """Readable development record for CLI and pipeline logic."""

    development_id: str
    jira_issue_id: str
    jira_issue_key: str
    jira_project_key: str
    repository_url: str | None
    branch_name: str | None
    pr_mr_url: str | None
    status: DevelopmentStatus
    development_details: str | None
    error_message: str | None
    failure_class: FailureClass | None
    failed_step: PipelineStep | None
    created_at: datetime
    completed_at: datetime | None

    @property
    def is_terminal(self) -> bool:
        return self.status is not DevelopmentStatus.READY


@dataclass(slots=True)
class DevelopmentEventView:
    """Development event entry for audit trail."""

    event_id: int
    development_id: str
    event_type: str
    step: PipelineStep | None
    status_from: DevelopmentStatus | None
    status_to: DevelopmentStatus | None
    created_at: datetime
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class PipelineResult:
    """Outcome handed back to the queue consumer."""

    ok: bool
    development_id: str | None
    pr_mr_url: str | None = None
    error: str | None = None
    failed_step: PipelineStep | None = None
    failure_class: FailureClass | None = None
