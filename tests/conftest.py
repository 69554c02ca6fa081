"""Shared test fixtures and collaborator fakes."""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
import threading
import time
from collections.abc import Iterable
from pathlib import Path
from types import SimpleNamespace

import pytest

from sdlc_agent.config import GenerationSettings, PipelineSettings
from sdlc_agent.http.config_api import ProjectNotFoundError
from sdlc_agent.orchestrator.analyzer import RepositoryAnalyzer
from sdlc_agent.orchestrator.backend import JobSupervisor
from sdlc_agent.orchestrator.generation import CodeGenerator
from sdlc_agent.orchestrator.git import GitOperationError
from sdlc_agent.orchestrator.models import (
    PipelineResult,
    ProjectConfig,
    RepositoryConfig,
    WorkRequest,
)
from sdlc_agent.orchestrator.pipeline import DevelopmentPipeline
from sdlc_agent.orchestrator.repository import DevelopmentRepository
from sdlc_agent.orchestrator.workspace import WorkspaceManager

SRC_DIR = Path(__file__).resolve().parents[1] / "src"

ECHO_AGENT_COMMAND_TEMPLATE = (
    f"{sys.executable} -m sdlc_agent.orchestrator.backend.echo_agent --prompt-file {{prompt_file}}"
)


@pytest.fixture()
def echo_agent_env(monkeypatch):
    """Make the package importable for subprocesses started by the supervisor."""

    existing = os.environ.get("PYTHONPATH")
    value = str(SRC_DIR) if not existing else f"{SRC_DIR}{os.pathsep}{existing}"
    monkeypatch.setenv("PYTHONPATH", value)


@pytest.fixture()
def repository(tmp_path):
    repo = DevelopmentRepository(tmp_path / "developments.db")
    repo.init_schema()
    yield repo
    repo.close()


def work_request(**overrides) -> WorkRequest:
    values = {
        "jira_issue_id": "10001",
        "jira_issue_key": "PROJ-1",
        "jira_project_key": "PROJ",
        "summary": "Add health endpoint",
        "description": "Expose GET /health returning ok.",
        "repository": None,
    }
    values.update(overrides)
    return WorkRequest(**values)


def project_config(*urls: str, name: str = "Proj Service") -> ProjectConfig:
    return ProjectConfig(
        project_id="p-1",
        name=name,
        jira_project_key="PROJ",
        scope="Backend services",
        repositories=tuple(
            RepositoryConfig(repository_id=f"r-{index}", url=url, access_token="s3cret-token")
            for index, url in enumerate(urls, start=1)
        ),
    )


class FakeConfigApi:
    def __init__(self, projects: dict[str, ProjectConfig] | None = None) -> None:
        self.projects = projects or {}
        self.calls: list[str] = []

    def get_project(self, jira_project_key: str) -> ProjectConfig:
        self.calls.append(jira_project_key)
        if jira_project_key not in self.projects:
            raise ProjectNotFoundError(
                f"project not found for jira_project_key: {jira_project_key}",
            )
        return self.projects[jira_project_key]


class FakeGit:
    """Records git calls; the clone is a directory with a single source file."""

    def __init__(self, *, commit_result: bool = True, fail_on: str | None = None) -> None:
        self.commit_result = commit_result
        self.fail_on = fail_on
        self.calls: list[tuple[str, object]] = []

    def _record(self, name: str, payload: object) -> None:
        self.calls.append((name, payload))
        if self.fail_on == name:
            raise GitOperationError(f"failed to {name}: simulated")

    def clone(self, *, url: str, dest: Path, access_token: str = "") -> None:
        self._record("clone", url)
        dest.mkdir(parents=True)
        (dest / "main.py").write_text("print('hi')\n", "utf-8")

    def create_branch(self, repo: Path, branch: str) -> None:
        self._record("create_branch", branch)

    def commit_all(self, repo: Path, *, message: str) -> bool:
        self._record("commit_all", message)
        return self.commit_result

    def push(self, repo: Path, *, branch: str, access_token: str = "") -> None:
        self._record("push", branch)

    def count_changed_paths(self, repo: Path) -> int:
        return len([path for path in repo.iterdir() if path.name.startswith("generated_")])

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]


class FakeHosting:
    def __init__(self, *, url: str = "https://github.com/acme/service/pull/7", error=None) -> None:
        self.url = url
        self.error = error
        self.calls: list[dict[str, str]] = []

    def open_request(self, **kwargs: str) -> str:
        self.calls.append(kwargs)
        if self.error is not None:
            raise self.error
        return self.url


class ScriptedSessionController:
    """Session controller that simulates the detached wrapper without processes.

    ``behavior`` is one of ``complete``, ``hang``, ``vanish_with_log``, ``vanish``.
    Artifacts live in the parent of the session working directory.
    """

    def __init__(
        self,
        behavior: str = "complete",
        *,
        output: str = "2 files changed\n",
        exit_code: int = 0,
        files: int = 2,
    ) -> None:
        self.behavior = behavior
        self.output = output
        self.exit_code = exit_code
        self.files = files
        self.started: list[tuple[str, str, Path]] = []
        self.killed: list[str] = []
        self._alive: set[str] = set()

    def start(self, *, session_name: str, command: str, cwd: Path) -> None:
        self.started.append((session_name, command, cwd))
        log_path = cwd.parent / f"{session_name}.log"
        sentinel_path = cwd.parent / f"{session_name}.exit"
        if self.behavior == "complete":
            for index in range(1, self.files + 1):
                (cwd / f"generated_{index}.txt").write_text("change\n", "utf-8")
            log_path.write_text(self.output, "utf-8")
            sentinel_path.write_text(f"{self.exit_code}\n", "utf-8")
        elif self.behavior == "hang":
            self._alive.add(session_name)
        elif self.behavior == "vanish_with_log":
            log_path.write_text(self.output, "utf-8")

    def exists(self, session_name: str) -> bool:
        return session_name in self._alive

    def kill(self, session_name: str) -> None:
        self.killed.append(session_name)
        self._alive.discard(session_name)


class FakeChannel:
    """In-memory stand-in for a pika blocking channel."""

    def __init__(self, deliveries: Iterable[object] = ()) -> None:
        self.deliveries = list(deliveries)
        self.declared_exchanges: list[dict[str, object]] = []
        self.declared_queues: list[dict[str, object]] = []
        self.bindings: list[dict[str, object]] = []
        self.qos: dict[str, object] = {}
        self.published: list[dict[str, object]] = []
        self.acked: list[int] = []
        self.nacked: list[tuple[int, bool]] = []
        self.cancelled = False

    def exchange_declare(self, **kwargs: object) -> None:
        self.declared_exchanges.append(kwargs)

    def queue_declare(self, **kwargs: object) -> None:
        self.declared_queues.append(kwargs)

    def queue_bind(self, **kwargs: object) -> None:
        self.bindings.append(kwargs)

    def basic_qos(self, **kwargs: object) -> None:
        self.qos = kwargs

    def consume(self, queue: str, inactivity_timeout: float | None = None):
        for tag, item in enumerate(self.deliveries, start=1):
            if isinstance(item, Exception):
                raise item
            yield SimpleNamespace(delivery_tag=tag), SimpleNamespace(), item
        while True:
            yield None, None, None

    def basic_publish(self, **kwargs: object) -> None:
        self.published.append(kwargs)

    def basic_ack(self, *, delivery_tag: int) -> None:
        self.acked.append(delivery_tag)

    def basic_nack(self, *, delivery_tag: int, requeue: bool = True) -> None:
        self.nacked.append((delivery_tag, requeue))

    def cancel(self) -> int:
        self.cancelled = True
        return 0


class FakeConnection:
    def __init__(self, channel: FakeChannel) -> None:
        self._channel = channel
        self.is_open = True
        self.pumps = 0
        self.pumped = threading.Event()

    def channel(self) -> FakeChannel:
        return self._channel

    def process_data_events(self, time_limit: float | None = None) -> None:
        self.pumps += 1
        self.pumped.set()
        time.sleep(0.001)

    def close(self) -> None:
        self.is_open = False


class FakeProcessor:
    def __init__(self, results: Iterable[PipelineResult] = ()) -> None:
        self.results = list(results)
        self.requests: list[WorkRequest] = []
        self.recover_calls = 0

    def process(self, request: WorkRequest) -> PipelineResult:
        self.requests.append(request)
        if self.results:
            return self.results.pop(0)
        return PipelineResult(ok=True, development_id="dev-1", pr_mr_url="https://example/pr/1")

    def recover_abandoned(self) -> list[str]:
        self.recover_calls += 1
        return []


def build_test_pipeline(  # noqa: PLR0913
    *,
    repository: DevelopmentRepository,
    workspace_root: Path,
    config_api: FakeConfigApi,
    git,
    hosting,
    sessions,
    command_template: str = "agent --prompt-file {prompt_file}",
    timeout_seconds: float = 5.0,
    poll_interval_seconds: float = 0.05,
    pipeline_settings: PipelineSettings | None = None,
) -> DevelopmentPipeline:
    generation_settings = GenerationSettings(
        command_template=command_template,
        session_backend="process",
        timeout_seconds=timeout_seconds,
        poll_interval_seconds=poll_interval_seconds,
    )
    return DevelopmentPipeline(
        repository=repository,
        config_api=config_api,
        git=git,
        analyzer=RepositoryAnalyzer(),
        generator=CodeGenerator(
            supervisor=JobSupervisor(sessions=sessions),
            git=git,
            settings=generation_settings,
        ),
        hosting=hosting,
        workspaces=WorkspaceManager(workspace_root),
        settings=pipeline_settings or PipelineSettings(),
    )


def init_bare_remote(tmp_path: Path) -> Path:
    """Create a bare repository with one commit on ``main``; return its path."""

    remote = tmp_path / "remote.git"
    seed = tmp_path / "seed"
    _git(["init", "--bare", "--initial-branch=main", str(remote)], cwd=tmp_path)
    _git(["init", "--initial-branch=main", str(seed)], cwd=tmp_path)
    (seed / "go.mod").write_text("module example.com/service\n", "utf-8")
    (seed / "main.go").write_text("package main\n\nfunc main() {}\n", "utf-8")
    (seed / "handlers").mkdir()
    (seed / "handlers" / "health.go").write_text("package handlers\n", "utf-8")
    _git(["add", "-A"], cwd=seed)
    _git(
        ["-c", "user.name=Seed", "-c", "user.email=seed@example.com", "commit", "-m", "init"],
        cwd=seed,
    )
    _git(["push", str(remote), "main:main"], cwd=seed)
    return remote


def _git(args: list[str], *, cwd: Path) -> None:
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)


requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
