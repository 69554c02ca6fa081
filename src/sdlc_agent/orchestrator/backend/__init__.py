"""Detached code-generation job supervision."""

from sdlc_agent.orchestrator.backend.base import (
    SessionController,
    SupervisedJob,
    SupervisedOutcome,
    SupervisedResult,
    SupervisorRequest,
)
from sdlc_agent.orchestrator.backend.sessions import (
    DetachedProcessController,
    SessionError,
    TmuxSessionController,
    build_session_controller,
)
from sdlc_agent.orchestrator.backend.supervisor import JobSupervisor

__all__ = [
    "DetachedProcessController",
    "JobSupervisor",
    "SessionController",
    "SessionError",
    "SupervisedJob",
    "SupervisedOutcome",
    "SupervisedResult",
    "SupervisorRequest",
    "TmuxSessionController",
    "build_session_controller",
]
