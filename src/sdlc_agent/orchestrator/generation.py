"""Generation step: run the supervised tool and turn its outcome into a result."""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from sdlc_agent.config import GenerationSettings
from sdlc_agent.orchestrator.backend import (
    JobSupervisor,
    SessionError,
    SupervisedOutcome,
    SupervisedResult,
    SupervisorRequest,
)
from sdlc_agent.orchestrator.git import GitClient, GitOperationError
from sdlc_agent.orchestrator.models import GenerationResult
from sdlc_agent.orchestrator.workspace import Workspace

logger = logging.getLogger(__name__)

ERROR_OUTPUT_TAIL_CHARS = 4000
_UNSAFE_SESSION_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


class GenerationError(RuntimeError):
    """Code generation did not complete successfully."""

    def __init__(
        self,
        message: str,
        *,
        outcome: SupervisedOutcome | None,
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.outcome = outcome
        self.output = output


class CodeGenerator:
    """Runs the external generation tool against a workspace clone."""

    def __init__(
        self,
        *,
        supervisor: JobSupervisor,
        git: GitClient,
        settings: GenerationSettings,
        shutdown_requested: Callable[[], bool] | None = None,
    ) -> None:
        self.supervisor = supervisor
        self.git = git
        self.settings = settings
        self.shutdown_requested = shutdown_requested

    def session_name_for(self, issue_key: str) -> str:
        safe_key = _UNSAFE_SESSION_CHARS.sub("_", issue_key)
        return f"{self.settings.session_prefix}-{safe_key}"

    def generate(self, *, issue_key: str, workspace: Workspace, instruction: str) -> GenerationResult:
        request = SupervisorRequest(
            session_name=self.session_name_for(issue_key),
            workdir=workspace.repo_dir,
            artifacts_dir=workspace.root,
            instruction=instruction,
            command_template=self.settings.command_template,
            timeout_seconds=self.settings.timeout_seconds,
            poll_interval_seconds=self.settings.poll_interval_seconds,
            shutdown_requested=self.shutdown_requested,
            graceful_shutdown_seconds=self.settings.shutdown_grace_seconds,
        )
        try:
            result = self.supervisor.run(request)
        except (SessionError, ValueError) as error:
            raise GenerationError(
                f"failed to start code generation: {error}",
                outcome=None,
            ) from error

        if not result.ok:
            raise _to_generation_error(result, timeout_seconds=self.settings.timeout_seconds)

        files_changed = self._count_changed_paths(workspace)
        logger.info(
            "Code generation finished issue=%s outcome=%s files_changed=%d elapsed=%.0fs",
            issue_key,
            result.outcome.value,
            files_changed,
            result.elapsed_seconds,
        )
        return GenerationResult(
            output=result.output,
            files_changed=files_changed,
            signalled=result.outcome is SupervisedOutcome.COMPLETED,
        )

    def _count_changed_paths(self, workspace: Workspace) -> int:
        try:
            return self.git.count_changed_paths(workspace.repo_dir)
        except GitOperationError as error:
            logger.warning("Could not count changed files: %s", error)
            return 0


def _to_generation_error(result: SupervisedResult, *, timeout_seconds: float) -> GenerationError:
    tail = _tail(result.output)
    if result.outcome is SupervisedOutcome.FAILED:
        code = "unknown" if result.exit_code is None else str(result.exit_code)
        message = f"code generation failed with exit code {code}"
    elif result.outcome is SupervisedOutcome.TIMED_OUT:
        message = f"code generation timed out after {timeout_seconds:.0f} seconds"
    elif result.outcome is SupervisedOutcome.CANCELLED:
        message = "code generation cancelled by consumer shutdown"
    else:
        message = "code generation session terminated unexpectedly"
    if tail:
        message = f"{message}: {tail}"
    return GenerationError(message, outcome=result.outcome, output=result.output)


def _tail(output: str) -> str:
    stripped = output.strip()
    if len(stripped) <= ERROR_OUTPUT_TAIL_CHARS:
        return stripped
    return "..." + stripped[-ERROR_OUTPUT_TAIL_CHARS:]
