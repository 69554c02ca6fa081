"""Deterministic mapping of pipeline step errors to failure classes."""

from __future__ import annotations

from sdlc_agent.http.config_api import ConfigApiError, ProjectNotFoundError
from sdlc_agent.http.hosting import PullRequestError
from sdlc_agent.messaging.messages import MessageDecodeError
from sdlc_agent.orchestrator.backend import SupervisedOutcome
from sdlc_agent.orchestrator.generation import GenerationError
from sdlc_agent.orchestrator.git import GitOperationError
from sdlc_agent.orchestrator.models import FailureClass
from sdlc_agent.orchestrator.resolution import RepositoryResolutionError

_TRANSPORT_PATTERNS: tuple[str, ...] = (
    "could not resolve host",
    "connection refused",
    "connection reset",
    "connection timed out",
    "unable to access",
    "network is unreachable",
    "temporary failure",
)


def classify_failure(error: BaseException) -> FailureClass:
    """Return the failure class recorded for ``error``."""

    if isinstance(error, MessageDecodeError):
        return FailureClass.MALFORMED_INPUT
    if isinstance(error, ProjectNotFoundError | RepositoryResolutionError):
        return FailureClass.BUSINESS_RULE
    if isinstance(error, ConfigApiError | PullRequestError):
        return FailureClass.TRANSPORT if error.transport else FailureClass.EXTERNAL_TOOL
    if isinstance(error, GenerationError):
        if error.outcome is SupervisedOutcome.TIMED_OUT:
            return FailureClass.TIMEOUT
        return FailureClass.EXTERNAL_TOOL
    if isinstance(error, GitOperationError):
        if error.timed_out:
            return FailureClass.TIMEOUT
        if _first_match(str(error).lower(), _TRANSPORT_PATTERNS) is not None:
            return FailureClass.TRANSPORT
        return FailureClass.EXTERNAL_TOOL
    if isinstance(error, TimeoutError):
        return FailureClass.TIMEOUT
    if isinstance(error, ConnectionError):
        return FailureClass.TRANSPORT
    return FailureClass.INTERNAL


def _first_match(haystack: str, patterns: tuple[str, ...]) -> str | None:
    for pattern in patterns:
        if pattern in haystack:
            return pattern
    return None
