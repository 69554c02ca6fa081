"""Sentinel-file supervisor for detached code-generation jobs.

The external tool has no completion callback. The job is launched inside a
named detached session whose wrapper redirects combined output to a log file
and, once the tool exits, atomically writes its exit code to a sentinel file.
The supervisor polls for the sentinel, watches the session for crashes and
enforces a hard timeout.
"""

from __future__ import annotations

import logging
import shlex
import time
from pathlib import Path

from sdlc_agent.orchestrator.backend.base import (
    SessionController,
    SupervisedJob,
    SupervisedOutcome,
    SupervisedResult,
    SupervisorRequest,
)

logger = logging.getLogger(__name__)


class JobSupervisor:
    """Launch one detached job and wait for its tagged outcome."""

    def __init__(self, *, sessions: SessionController) -> None:
        self.sessions = sessions

    def run(self, request: SupervisorRequest) -> SupervisedResult:
        job = prepare_job(request)
        command = build_wrapper_command(
            command_template=request.command_template,
            job=job,
            workdir=request.workdir,
            instruction=request.instruction,
        )

        if self.sessions.exists(job.session_name):
            logger.warning("Killing leftover session %s", job.session_name)
            self.sessions.kill(job.session_name)

        logger.info(
            "Starting generation session=%s workdir=%s timeout=%.0fs",
            job.session_name,
            request.workdir,
            request.timeout_seconds,
        )
        self.sessions.start(session_name=job.session_name, command=command, cwd=request.workdir)
        return self._wait(request=request, job=job)

    def _wait(self, *, request: SupervisorRequest, job: SupervisedJob) -> SupervisedResult:
        started = time.monotonic()
        shutdown_deadline: float | None = None

        while True:
            elapsed = time.monotonic() - started
            if job.sentinel_path.exists():
                return _finish_signalled(job=job, elapsed=elapsed)

            if not self.sessions.exists(job.session_name):
                # The wrapper renames the sentinel before the session exits.
                if job.sentinel_path.exists():
                    return _finish_signalled(job=job, elapsed=elapsed)
                return _finish_unsigned(job=job, elapsed=elapsed)

            if elapsed >= request.timeout_seconds:
                logger.error(
                    "Generation session=%s timed out after %.0fs",
                    job.session_name,
                    elapsed,
                )
                self.sessions.kill(job.session_name)
                return SupervisedResult(
                    outcome=SupervisedOutcome.TIMED_OUT,
                    output=_read_text(job.log_path),
                    exit_code=None,
                    elapsed_seconds=elapsed,
                    job=job,
                )

            if (
                request.graceful_shutdown_seconds is not None
                and request.shutdown_requested is not None
                and request.shutdown_requested()
            ):
                now = time.monotonic()
                if shutdown_deadline is None:
                    shutdown_deadline = now + max(0.0, request.graceful_shutdown_seconds)
                if now >= shutdown_deadline:
                    logger.warning("Cancelling session=%s on shutdown", job.session_name)
                    self.sessions.kill(job.session_name)
                    return SupervisedResult(
                        outcome=SupervisedOutcome.CANCELLED,
                        output=_read_text(job.log_path),
                        exit_code=None,
                        elapsed_seconds=now - started,
                        job=job,
                    )

            remaining = request.timeout_seconds - elapsed
            time.sleep(max(0.0, min(request.poll_interval_seconds, remaining)))


def prepare_job(request: SupervisorRequest) -> SupervisedJob:
    """Resolve job paths, drop leftovers of a previous attempt, write the prompt."""

    artifacts_dir = request.artifacts_dir
    artifacts_dir.mkdir(parents=True, exist_ok=True)
    job = SupervisedJob(
        session_name=request.session_name,
        prompt_path=artifacts_dir / f"{request.session_name}.prompt.md",
        log_path=artifacts_dir / f"{request.session_name}.log",
        sentinel_path=artifacts_dir / f"{request.session_name}.exit",
    )
    for leftover in (job.log_path, job.sentinel_path, _sentinel_tmp_path(job)):
        leftover.unlink(missing_ok=True)
    job.prompt_path.write_text(request.instruction, "utf-8")
    return job


def build_wrapper_command(
    *,
    command_template: str,
    job: SupervisedJob,
    workdir: Path,
    instruction: str,
) -> str:
    """Render the tool command and wrap it with log capture and the sentinel write."""

    stripped = command_template.strip()
    if not stripped:
        raise ValueError("Generation command template is empty.")
    try:
        rendered = stripped.format(
            prompt_file=shlex.quote(str(job.prompt_path)),
            prompt=shlex.quote(instruction),
            workdir=shlex.quote(str(workdir)),
        )
    except (KeyError, IndexError) as error:
        raise ValueError(f"Unsupported command template placeholder: {error}") from error

    sentinel_tmp = shlex.quote(str(_sentinel_tmp_path(job)))
    return (
        f"( cd {shlex.quote(str(workdir))} && {rendered} ) "
        f"> {shlex.quote(str(job.log_path))} 2>&1; "
        f"printf '%s\\n' \"$?\" > {sentinel_tmp} && "
        f"mv -f {sentinel_tmp} {shlex.quote(str(job.sentinel_path))}"
    )


def _finish_signalled(*, job: SupervisedJob, elapsed: float) -> SupervisedResult:
    output = _read_text(job.log_path)
    exit_code = _read_exit_code(job.sentinel_path)
    if exit_code == 0:
        _remove_artifacts(job)
        logger.info("Generation session=%s completed in %.0fs", job.session_name, elapsed)
        return SupervisedResult(
            outcome=SupervisedOutcome.COMPLETED,
            output=output,
            exit_code=0,
            elapsed_seconds=elapsed,
            job=job,
        )
    logger.error("Generation session=%s exited with code %s", job.session_name, exit_code)
    return SupervisedResult(
        outcome=SupervisedOutcome.FAILED,
        output=output,
        exit_code=exit_code,
        elapsed_seconds=elapsed,
        job=job,
    )


def _finish_unsigned(*, job: SupervisedJob, elapsed: float) -> SupervisedResult:
    if job.log_path.exists():
        logger.warning(
            "Generation session=%s ended without exit code, using captured log",
            job.session_name,
        )
        return SupervisedResult(
            outcome=SupervisedOutcome.ENDED_UNSIGNED,
            output=_read_text(job.log_path),
            exit_code=None,
            elapsed_seconds=elapsed,
            job=job,
        )
    logger.error("Generation session=%s terminated unexpectedly", job.session_name)
    return SupervisedResult(
        outcome=SupervisedOutcome.CRASHED,
        output="",
        exit_code=None,
        elapsed_seconds=elapsed,
        job=job,
    )


def _read_exit_code(path: Path) -> int | None:
    try:
        return int(path.read_text("utf-8").strip())
    except ValueError:
        return None


def _read_text(path: Path) -> str:
    if not path.exists():
        return ""
    return path.read_text("utf-8", errors="replace")


def _remove_artifacts(job: SupervisedJob) -> None:
    for path in (job.log_path, job.sentinel_path, job.prompt_path):
        path.unlink(missing_ok=True)


def _sentinel_tmp_path(job: SupervisedJob) -> Path:
    return job.sentinel_path.with_name(job.sentinel_path.name + ".tmp")
