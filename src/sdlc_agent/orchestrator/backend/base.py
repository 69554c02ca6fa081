"""Supervisor interface for detached code-generation jobs."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol


class SupervisedOutcome(str, Enum):
    """How a supervised job ended."""

    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    ENDED_UNSIGNED = "ended_unsigned"
    CRASHED = "crashed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class SupervisorRequest:
    """Inputs required to run one generation job."""

    session_name: str
    workdir: Path
    artifacts_dir: Path
    instruction: str
    command_template: str
    timeout_seconds: float
    poll_interval_seconds: float = 2.0
    shutdown_requested: Callable[[], bool] | None = None
    graceful_shutdown_seconds: float | None = None


@dataclass(slots=True)
class SupervisedJob:
    """Filesystem footprint of one detached job."""

    session_name: str
    prompt_path: Path
    log_path: Path
    sentinel_path: Path


@dataclass(slots=True)
class SupervisedResult:
    """Tagged outcome of a supervised job."""

    outcome: SupervisedOutcome
    output: str
    exit_code: int | None
    elapsed_seconds: float
    job: SupervisedJob

    @property
    def ok(self) -> bool:
        return self.outcome in {SupervisedOutcome.COMPLETED, SupervisedOutcome.ENDED_UNSIGNED}


class SessionController(Protocol):
    """Starts, checks and kills named detached sessions."""

    def start(self, *, session_name: str, command: str, cwd: Path) -> None:
        """Launch ``command`` through ``sh -c`` in a detached named session."""

    def exists(self, session_name: str) -> bool:
        """Return whether the named session is still alive."""

    def kill(self, session_name: str) -> None:
        """Terminate the named session; no-op when it is already gone."""
