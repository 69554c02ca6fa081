"""Blocking git operations against a per-issue clone."""

from __future__ import annotations

import base64
import logging
import os
import subprocess
from pathlib import Path
from urllib.parse import urlsplit, urlunsplit

logger = logging.getLogger(__name__)

REDACTED = "***"
DEFAULT_REMOTE = "origin"
BASIC_AUTH_USER = "git"


class GitOperationError(RuntimeError):
    """A git command failed, timed out, or git is unavailable."""

    def __init__(self, message: str, *, timed_out: bool = False) -> None:
        super().__init__(message)
        self.timed_out = timed_out


class GitClient:
    """Runs git as a subprocess with the agent's commit identity.

    Access tokens travel as a one-off ``http.extraHeader`` so they are never
    written into the clone's ``.git/config``.
    """

    def __init__(
        self,
        *,
        author_name: str,
        author_email: str,
        timeout_seconds: float = 300.0,
        git_binary: str = "git",
    ) -> None:
        self.author_name = author_name
        self.author_email = author_email
        self.timeout_seconds = timeout_seconds
        self.git_binary = git_binary

    def clone(self, *, url: str, dest: Path, access_token: str = "") -> None:
        logger.info("Cloning repository url=%s dest=%s", redact_url(url), dest)
        self._run(
            ["clone", url, str(dest)],
            action="clone repository",
            access_token=access_token,
        )

    def create_branch(self, repo: Path, branch: str) -> None:
        logger.info("Creating branch %s in %s", branch, repo)
        self._run(["checkout", "-b", branch], cwd=repo, action=f"create branch {branch}")

    def commit_all(self, repo: Path, *, message: str) -> bool:
        """Stage everything and commit; return ``False`` when there is nothing to commit."""

        self._run(["add", "-A"], cwd=repo, action="stage changes")
        if not self._status_lines(repo):
            logger.info("No changes to commit in %s", repo)
            return False
        self._run(
            [
                "-c",
                f"user.name={self.author_name}",
                "-c",
                f"user.email={self.author_email}",
                "commit",
                "-m",
                message,
            ],
            cwd=repo,
            action="commit changes",
        )
        logger.info("Committed changes in %s", repo)
        return True

    def push(self, repo: Path, *, branch: str, access_token: str = "") -> None:
        logger.info("Pushing branch %s", branch)
        self._run(
            ["push", DEFAULT_REMOTE, f"refs/heads/{branch}:refs/heads/{branch}"],
            cwd=repo,
            action=f"push branch {branch}",
            access_token=access_token,
        )

    def count_changed_paths(self, repo: Path) -> int:
        """Modified plus untracked paths in the working tree."""

        return len(self._status_lines(repo))

    def _status_lines(self, repo: Path) -> list[str]:
        result = self._run(
            ["status", "--porcelain", "--untracked-files=all"],
            cwd=repo,
            action="read status",
        )
        return [line for line in result.stdout.splitlines() if line.strip()]

    def _run(
        self,
        args: list[str],
        *,
        action: str,
        cwd: Path | None = None,
        access_token: str = "",
    ) -> subprocess.CompletedProcess[str]:
        command = [self.git_binary, *_auth_options(access_token), *args]
        secrets = _secrets_for(access_token)
        try:
            return subprocess.run(  # noqa: S603
                command,
                cwd=cwd,
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                env={**os.environ, "GIT_TERMINAL_PROMPT": "0"},
            )
        except FileNotFoundError as error:
            raise GitOperationError(f"git executable not found: {self.git_binary}") from error
        except subprocess.TimeoutExpired as error:
            raise GitOperationError(
                f"failed to {action}: timed out after {self.timeout_seconds:.0f}s",
                timed_out=True,
            ) from error
        except subprocess.CalledProcessError as error:
            detail = (error.stderr or error.stdout or "").strip()
            raise GitOperationError(
                redact_secrets(f"failed to {action}: {detail}", secrets),
            ) from None


def redact_url(url: str) -> str:
    """Replace an embedded password in ``url`` with ``***``."""

    parts = urlsplit(url)
    if parts.password is None:
        return url
    user = parts.username or ""
    host = parts.hostname or ""
    if parts.port is not None:
        host = f"{host}:{parts.port}"
    return urlunsplit(parts._replace(netloc=f"{user}:{REDACTED}@{host}"))


def redact_secrets(text: str, secrets: list[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, REDACTED)
    return text


def _auth_options(access_token: str) -> list[str]:
    if not access_token:
        return []
    return ["-c", f"http.extraHeader=Authorization: Basic {_basic_credential(access_token)}"]


def _basic_credential(access_token: str) -> str:
    raw = f"{BASIC_AUTH_USER}:{access_token}".encode()
    return base64.b64encode(raw).decode("ascii")


def _secrets_for(access_token: str) -> list[str]:
    if not access_token:
        return []
    return [access_token, _basic_credential(access_token)]
