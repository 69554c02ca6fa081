"""Controllers for development CLI commands."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from pathlib import Path

from sdlc_agent.config import BrokerSettings, Settings
from sdlc_agent.http.config_api import ConfigApiClient
from sdlc_agent.http.hosting import PullRequestClient
from sdlc_agent.messaging.broker import (
    ConnectionFactory,
    connect_with_retry,
    declare_topology,
    pika_connection_factory,
    publish_work_request,
)
from sdlc_agent.messaging.consumer import QueueConsumer
from sdlc_agent.messaging.messages import extract_republish_payload
from sdlc_agent.orchestrator.analyzer import RepositoryAnalyzer
from sdlc_agent.orchestrator.backend import JobSupervisor, build_session_controller
from sdlc_agent.orchestrator.generation import CodeGenerator
from sdlc_agent.orchestrator.git import GitClient
from sdlc_agent.orchestrator.models import DevelopmentStatus
from sdlc_agent.orchestrator.pipeline import DevelopmentPipeline
from sdlc_agent.orchestrator.repository import DevelopmentRepository
from sdlc_agent.orchestrator.workspace import WorkspaceManager


@dataclass(slots=True)
class ConsumeCommand:
    """CLI input for the queue consumer."""

    db_path: Path | None
    max_messages: int | None


@dataclass(slots=True)
class DevelopmentListCommand:
    """CLI input for development listing."""

    db_path: Path | None
    status: str | None
    issue_key: str | None
    limit: int


@dataclass(slots=True)
class DevelopmentShowCommand:
    """CLI input for development inspection."""

    db_path: Path | None
    development_id: str


@dataclass(slots=True)
class AnalyzeCommand:
    path: Path


@dataclass(slots=True)
class RepublishCommand:
    """CLI input for operator re-publish of a work request."""

    path: Path


class DevelopmentCliController:
    """Builds collaborators from settings and renders command output as lines."""

    def __init__(
        self,
        *,
        connection_factory_builder: Callable[[BrokerSettings], ConnectionFactory] = (
            pika_connection_factory
        ),
    ) -> None:
        self.connection_factory_builder = connection_factory_builder

    def consume(self, command: ConsumeCommand) -> list[str]:
        settings = _load_settings(command.db_path)
        stop_event = threading.Event()
        with _repository(settings) as repository, ExitStack() as resources:
            pipeline = build_pipeline(
                settings=settings,
                repository=repository,
                resources=resources,
                shutdown_requested=stop_event.is_set,
            )
            consumer = QueueConsumer(
                settings=settings.broker,
                processor=pipeline,
                connection_factory=self.connection_factory_builder(settings.broker),
                stop_event=stop_event,
            )
            summary = consumer.run(max_messages=command.max_messages)

        return [
            "Consumer summary: "
            f"received={summary.received} succeeded={summary.succeeded} "
            f"failed={summary.failed} rejected={summary.rejected} "
            f"reconnects={summary.reconnects}",
        ]

    def list_developments(self, command: DevelopmentListCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        status_filter = _parse_status(command.status)
        with _repository(settings) as repository:
            developments = repository.list_developments(
                status=status_filter,
                jira_issue_key=command.issue_key,
                limit=command.limit,
            )

        lines = [f"Developments: {len(developments)}"]
        for development in developments:
            lines.append(
                f"  {development.development_id} issue={development.jira_issue_key} "
                f"status={development.status.value} "
                f"created_at={development.created_at.isoformat()} "
                f"url={development.pr_mr_url or '-'}",
            )
        return lines

    def show_development(self, command: DevelopmentShowCommand) -> list[str]:
        settings = Settings.from_env(db_path=command.db_path)
        with _repository(settings) as repository:
            development = repository.get_development(development_id=command.development_id)
            events = repository.list_events(development_id=command.development_id)
        if development is None:
            return [f"Development not found: {command.development_id}"]

        completed_at = (
            development.completed_at.isoformat() if development.completed_at is not None else "-"
        )
        lines = [
            f"Development: {development.development_id}",
            f"Issue: {development.jira_issue_key} (id={development.jira_issue_id or '-'})",
            f"Project: {development.jira_project_key}",
            f"Status: {development.status.value}",
            f"Repository: {development.repository_url or '-'}",
            f"Branch: {development.branch_name or '-'}",
            f"Request URL: {development.pr_mr_url or '-'}",
            f"Failed step: {development.failed_step.value if development.failed_step else '-'}",
            f"Failure class: "
            f"{development.failure_class.value if development.failure_class else '-'}",
            f"Error: {development.error_message or '-'}",
            f"Created: {development.created_at.isoformat()}",
            f"Completed: {completed_at}",
            f"Events: {len(events)}",
        ]
        for event in events:
            lines.append(
                f"  {event.created_at.isoformat()} {event.event_type} "
                f"step={event.step.value if event.step else '-'} "
                f"{event.status_from.value if event.status_from else '-'} -> "
                f"{event.status_to.value if event.status_to else '-'}",
            )
        return lines

    def analyze(self, command: AnalyzeCommand) -> list[str]:
        analysis = RepositoryAnalyzer().analyze(command.path)
        return [json.dumps(analysis.to_dict(), indent=2, ensure_ascii=False)]

    def republish(self, command: RepublishCommand) -> list[str]:
        settings = _load_settings(None)
        try:
            document = json.loads(command.path.read_text("utf-8"))
        except json.JSONDecodeError as error:
            raise ValueError(f"Invalid JSON in {command.path}: {error}") from error
        request = extract_republish_payload(document)

        connection = connect_with_retry(
            self.connection_factory_builder(settings.broker),
            attempts=settings.broker.connect_attempts,
            backoff_seconds=settings.broker.connect_backoff_seconds,
        )
        try:
            channel = connection.channel()
            declare_topology(channel, settings.broker)
            routing_key = publish_work_request(channel, settings.broker, request)
        finally:
            connection.close()
        return [f"Republished {request.jira_issue_key} routing_key={routing_key}"]


def build_pipeline(
    *,
    settings: Settings,
    repository: DevelopmentRepository,
    resources: ExitStack,
    shutdown_requested: Callable[[], bool] | None = None,
) -> DevelopmentPipeline:
    """Wire the production collaborators of the development pipeline.

    HTTP clients are entered on ``resources`` and closed when it unwinds.
    """

    git = GitClient(
        author_name=settings.git.author_name,
        author_email=settings.git.author_email,
        timeout_seconds=settings.git.timeout_seconds,
    )
    supervisor = JobSupervisor(
        sessions=build_session_controller(settings.generation.session_backend),
    )
    config_api = resources.enter_context(
        ConfigApiClient(
            base_url=settings.config_api.base_url,
            timeout_seconds=settings.config_api.timeout_seconds,
        ),
    )
    hosting = resources.enter_context(
        PullRequestClient(
            github_api_url=settings.hosting.github_api_url,
            timeout_seconds=settings.hosting.timeout_seconds,
        ),
    )
    return DevelopmentPipeline(
        repository=repository,
        config_api=config_api,
        git=git,
        analyzer=RepositoryAnalyzer(),
        generator=CodeGenerator(
            supervisor=supervisor,
            git=git,
            settings=settings.generation,
            shutdown_requested=shutdown_requested,
        ),
        hosting=hosting,
        workspaces=WorkspaceManager(
            settings.workspace.root,
            prefix=settings.workspace.prefix,
            branch_prefix=settings.git.branch_prefix,
        ),
        settings=settings.pipeline,
    )


def _load_settings(db_path: Path | None) -> Settings:
    settings = Settings.from_env(db_path=db_path)
    settings.validate()
    return settings


def _parse_status(value: str | None) -> DevelopmentStatus | None:
    if value is None:
        return None
    return DevelopmentStatus(value.strip().lower())


@contextmanager
def _repository(settings: Settings) -> Iterator[DevelopmentRepository]:
    repository = DevelopmentRepository(
        db_path=settings.db_path,
        sqlite_busy_timeout_ms=settings.sqlite_busy_timeout_ms,
    )
    repository.init_schema()
    try:
        yield repository
    finally:
        repository.close()
