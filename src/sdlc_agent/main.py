"""CLI entrypoint for sdlc-agent."""

import logging
from pathlib import Path

import rich_click as click

from sdlc_agent import __version__
from sdlc_agent.messaging.broker import BrokerConnectionError
from sdlc_agent.messaging.messages import MessageDecodeError
from sdlc_agent.orchestrator.analyzer import AnalysisError
from sdlc_agent.orchestrator.controllers import (
    AnalyzeCommand,
    ConsumeCommand,
    DevelopmentCliController,
    DevelopmentListCommand,
    DevelopmentShowCommand,
    RepublishCommand,
)

click.rich_click.USE_MARKDOWN = True
DEVELOPMENT_CONTROLLER = DevelopmentCliController()
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group()
@click.version_option(version=__version__, prog_name="sdlc-agent")
def sdlc_agent() -> None:
    """Automated development agent: queue consumer and operator tools."""


@sdlc_agent.command("consume")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--max-messages",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after handling this many messages (default: run until SIGINT/SIGTERM).",
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default="INFO",
    show_default=True,
    help="Root logger level.",
)
def consume(db_path: Path | None, max_messages: int | None, log_level: str) -> None:
    """Consume development requests from the work queue."""

    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)
    try:
        lines = DEVELOPMENT_CONTROLLER.consume(
            ConsumeCommand(db_path=db_path, max_messages=max_messages),
        )
    except (BrokerConnectionError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@sdlc_agent.group()
def developments() -> None:
    """Inspect development records."""


@developments.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice(["ready", "completed", "failed"], case_sensitive=False),
    default=None,
    help="Filter by status.",
)
@click.option("--issue-key", default=None, help="Filter by issue key, for example PROJ-1.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=1000),
    default=20,
    show_default=True,
    help="Maximum rows to show.",
)
def developments_list(
    db_path: Path | None,
    status: str | None,
    issue_key: str | None,
    limit: int,
) -> None:
    """List recent developments, newest first."""

    _emit_lines(
        DEVELOPMENT_CONTROLLER.list_developments(
            DevelopmentListCommand(
                db_path=db_path,
                status=status,
                issue_key=issue_key,
                limit=limit,
            ),
        ),
    )


@developments.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("development_id")
def developments_show(db_path: Path | None, development_id: str) -> None:
    """Show one development with its event trail."""

    _emit_lines(
        DEVELOPMENT_CONTROLLER.show_development(
            DevelopmentShowCommand(db_path=db_path, development_id=development_id),
        ),
    )


@sdlc_agent.command("analyze")
@click.argument(
    "path",
    type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
)
def analyze(path: Path) -> None:
    """Print the repository analysis of PATH as JSON."""

    try:
        lines = DEVELOPMENT_CONTROLLER.analyze(AnalyzeCommand(path=path))
    except AnalysisError as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


@sdlc_agent.command("republish")
@click.argument(
    "path",
    type=click.Path(exists=True, file_okay=True, dir_okay=False, path_type=Path),
)
def republish(path: Path) -> None:
    """Publish a work request (or an error-queue envelope) back to the work exchange."""

    try:
        lines = DEVELOPMENT_CONTROLLER.republish(RepublishCommand(path=path))
    except (BrokerConnectionError, MessageDecodeError, ValueError) as error:
        raise click.ClickException(str(error)) from error
    _emit_lines(lines)


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    sdlc_agent()
