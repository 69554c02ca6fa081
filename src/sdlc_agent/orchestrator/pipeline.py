"""Step-sequenced development pipeline for one work request.

Steps run in a fixed order and short-circuit on the first failure. Every
run creates its development record before any external call and ends with
exactly one terminal write: ``mark_completed`` after the record step, or
``mark_failed`` naming the failed step. The workspace is entered on the
run's exit stack, so it is removed whichever way the run ends.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import ExitStack
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol, TypeVar

from sdlc_agent.config import PipelineSettings
from sdlc_agent.http.hosting import build_request_body, build_request_title
from sdlc_agent.orchestrator.analyzer import RepositoryAnalyzer
from sdlc_agent.orchestrator.failure_classifier import classify_failure
from sdlc_agent.orchestrator.generation import CodeGenerator
from sdlc_agent.orchestrator.git import GitClient, redact_url
from sdlc_agent.orchestrator.models import (
    DevelopmentCreate,
    EmptyDiffPolicy,
    GenerationResult,
    PipelineResult,
    PipelineStep,
    ProjectConfig,
    RepositoryAnalysis,
    RepositoryConfig,
    WorkRequest,
)
from sdlc_agent.orchestrator.prompts import build_instruction
from sdlc_agent.orchestrator.repository import DevelopmentRepository
from sdlc_agent.orchestrator.resolution import resolve_repository
from sdlc_agent.orchestrator.workspace import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)

_T = TypeVar("_T")

COMMIT_FOOTER = "Automated commit by SDLC AI Agent"
EMPTY_DIFF_NOTE = "No changes were generated; pull request was not opened."


class ProjectLookup(Protocol):
    def get_project(self, jira_project_key: str) -> ProjectConfig:
        """Return the project configured for ``jira_project_key``."""


class RequestOpener(Protocol):
    def open_request(  # noqa: PLR0913
        self,
        *,
        repo_url: str,
        branch: str,
        base_branch: str,
        title: str,
        body: str,
        access_token: str,
    ) -> str:
        """Open a pull/merge request and return its URL."""


@dataclass(slots=True)
class _RunState:
    """Values produced by earlier steps of one run."""

    request: WorkRequest
    development_id: str
    resources: ExitStack
    project: ProjectConfig | None = None
    repository: RepositoryConfig | None = None
    workspace: Workspace | None = None
    analysis: RepositoryAnalysis | None = None
    generation: GenerationResult | None = None
    committed: bool = False
    skip_request: bool = False
    pr_mr_url: str | None = None


class DevelopmentPipeline:
    """Drives one work request from project lookup to a recorded outcome."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        repository: DevelopmentRepository,
        config_api: ProjectLookup,
        git: GitClient,
        analyzer: RepositoryAnalyzer,
        generator: CodeGenerator,
        hosting: RequestOpener,
        workspaces: WorkspaceManager,
        settings: PipelineSettings,
    ) -> None:
        self.repository = repository
        self.config_api = config_api
        self.git = git
        self.analyzer = analyzer
        self.generator = generator
        self.hosting = hosting
        self.workspaces = workspaces
        self.settings = settings
        self._steps: tuple[tuple[PipelineStep, Callable[[_RunState], None]], ...] = (
            (PipelineStep.RESOLVE, self._resolve),
            (PipelineStep.CLONE, self._clone),
            (PipelineStep.ANALYZE, self._analyze),
            (PipelineStep.GENERATE, self._generate),
            (PipelineStep.COMMIT, self._commit),
            (PipelineStep.PUSH, self._push),
            (PipelineStep.OPEN_REQUEST, self._open_request),
            (PipelineStep.RECORD, self._record),
        )

    def recover_abandoned(self) -> list[str]:
        if self.settings.abandoned_after_seconds <= 0:
            return []
        return self.repository.recover_abandoned(
            stale_after=timedelta(seconds=self.settings.abandoned_after_seconds),
        )

    def process(self, request: WorkRequest) -> PipelineResult:
        """Run all steps for ``request``; never raises for a step failure."""

        try:
            development = self.repository.create_development(
                DevelopmentCreate(
                    jira_issue_id=request.jira_issue_id,
                    jira_issue_key=request.jira_issue_key,
                    jira_project_key=request.jira_project_key,
                ),
            )
        except Exception as error:  # noqa: BLE001
            return self._fail(request=request, development_id=None, step=None, error=error)
        development_id = development.development_id
        logger.info(
            "Processing development issue=%s development_id=%s",
            request.jira_issue_key,
            development_id,
        )

        current: PipelineStep | None = None
        try:
            with ExitStack() as resources:
                state = _RunState(
                    request=request,
                    development_id=development_id,
                    resources=resources,
                )
                for step, handler in self._steps:
                    current = step
                    if self._is_skipped(step, state):
                        logger.info("Skipping step=%s issue=%s", step.value, request.jira_issue_key)
                        continue
                    self.repository.add_step_event(
                        development_id=development_id,
                        event_type="step_started",
                        step=step,
                    )
                    handler(state)
        except Exception as error:  # noqa: BLE001
            return self._fail(request=request, development_id=development_id, step=current, error=error)

        return PipelineResult(ok=True, development_id=development_id, pr_mr_url=state.pr_mr_url)

    def _is_skipped(self, step: PipelineStep, state: _RunState) -> bool:
        return state.skip_request and step in {PipelineStep.PUSH, PipelineStep.OPEN_REQUEST}

    def _resolve(self, state: _RunState) -> None:
        project = self.config_api.get_project(state.request.jira_project_key)
        repository = resolve_repository(project, state.request.repository)
        state.project = project
        state.repository = repository
        branch_name = self.workspaces.branch_for(state.request.jira_issue_key)
        self.repository.update_progress(
            development_id=state.development_id,
            repository_url=redact_url(repository.url),
            branch_name=branch_name,
        )
        logger.info(
            "Resolved repository issue=%s project=%s url=%s base=%s",
            state.request.jira_issue_key,
            project.name,
            redact_url(repository.url),
            repository.base_branch,
        )

    def _clone(self, state: _RunState) -> None:
        repository = _require(state.repository)
        workspace = state.resources.enter_context(
            self.workspaces.acquire(state.request.jira_issue_key),
        )
        state.workspace = workspace
        self.git.clone(url=repository.url, dest=workspace.repo_dir, access_token=repository.access_token)

    def _analyze(self, state: _RunState) -> None:
        workspace = _require(state.workspace)
        state.analysis = self.analyzer.analyze(workspace.repo_dir)

    def _generate(self, state: _RunState) -> None:
        instruction = build_instruction(
            state.request,
            _require(state.project),
            _require(state.analysis),
        )
        state.generation = self.generator.generate(
            issue_key=state.request.jira_issue_key,
            workspace=_require(state.workspace),
            instruction=instruction,
        )

    def _commit(self, state: _RunState) -> None:
        workspace = _require(state.workspace)
        self.git.create_branch(workspace.repo_dir, workspace.branch_name)
        state.committed = self.git.commit_all(
            workspace.repo_dir,
            message=build_commit_message(state.request),
        )
        if not state.committed:
            logger.info("Generation left the tree unchanged issue=%s", state.request.jira_issue_key)
            state.skip_request = self.settings.empty_diff_policy is EmptyDiffPolicy.SKIP_REQUEST

    def _push(self, state: _RunState) -> None:
        workspace = _require(state.workspace)
        self.git.push(
            workspace.repo_dir,
            branch=workspace.branch_name,
            access_token=_require(state.repository).access_token,
        )

    def _open_request(self, state: _RunState) -> None:
        repository = _require(state.repository)
        state.pr_mr_url = self.hosting.open_request(
            repo_url=repository.url,
            branch=_require(state.workspace).branch_name,
            base_branch=repository.base_branch,
            title=build_request_title(state.request.jira_issue_key, state.request.summary),
            body=build_request_body(state.request.jira_issue_key, state.request.description),
            access_token=repository.access_token,
        )

    def _record(self, state: _RunState) -> None:
        generation = _require(state.generation)
        output = generation.output
        details = f"{EMPTY_DIFF_NOTE}\n\n{output}" if state.skip_request else output
        recorded = self.repository.mark_completed(
            development_id=state.development_id,
            pr_mr_url=state.pr_mr_url,
            development_details=details,
        )
        if not recorded:
            logger.warning("Development %s was already terminal", state.development_id)
            return
        logger.info(
            "Development completed issue=%s development_id=%s files_changed=%d "
            "exit_code_reported=%s url=%s",
            state.request.jira_issue_key,
            state.development_id,
            generation.files_changed,
            generation.signalled,
            state.pr_mr_url or "-",
        )

    def _fail(
        self,
        *,
        request: WorkRequest,
        development_id: str | None,
        step: PipelineStep | None,
        error: Exception,
    ) -> PipelineResult:
        failure_class = classify_failure(error)
        message = str(error) or type(error).__name__
        logger.error(
            "Development failed issue=%s development_id=%s step=%s class=%s error=%s",
            request.jira_issue_key,
            development_id or "-",
            step.value if step else "-",
            failure_class.value,
            message,
        )
        if development_id is None:
            return PipelineResult(
                ok=False,
                development_id=None,
                error=f"failed to create development record: {message}",
                failure_class=failure_class,
            )
        if step is not None:
            self.repository.add_step_event(
                development_id=development_id,
                event_type="step_failed",
                step=step,
                details={"error_type": type(error).__name__},
            )
        recorded = self.repository.mark_failed(
            development_id=development_id,
            error_message=message,
            failure_class=failure_class,
            failed_step=step,
        )
        if not recorded:
            logger.warning("Development %s was already terminal", development_id)
        return PipelineResult(
            ok=False,
            development_id=development_id,
            error=message,
            failed_step=step,
            failure_class=failure_class,
        )


def build_commit_message(request: WorkRequest) -> str:
    return f"[{request.jira_issue_key}] {request.summary}\n\n{COMMIT_FOOTER}"


def _require(value: _T | None) -> _T:
    if value is None:
        raise RuntimeError("Pipeline step ran before the step producing its input.")
    return value
