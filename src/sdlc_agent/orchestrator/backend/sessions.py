"""Named detached session controllers used by the job supervisor."""

from __future__ import annotations

import logging
import os
import shlex
import signal
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


class SessionError(RuntimeError):
    """A detached session could not be started."""


class TmuxSessionController:
    """Runs jobs inside detached tmux sessions."""

    def __init__(self, *, tmux_binary: str = "tmux") -> None:
        self.tmux_binary = tmux_binary

    def start(self, *, session_name: str, command: str, cwd: Path) -> None:
        # tmux hands the command to its default-shell; pin it to sh.
        shell_command = f"/bin/sh -c {shlex.quote(command)}"
        try:
            subprocess.run(  # noqa: S603
                [
                    self.tmux_binary,
                    "new-session",
                    "-d",
                    "-s",
                    session_name,
                    "-c",
                    str(cwd),
                    shell_command,
                ],
                check=True,
                capture_output=True,
                text=True,
            )
        except FileNotFoundError as error:
            raise SessionError(f"tmux not found: {self.tmux_binary}") from error
        except subprocess.CalledProcessError as error:
            raise SessionError(
                f"tmux failed to start session {session_name}: {error.stderr.strip()}",
            ) from error

    def exists(self, session_name: str) -> bool:
        try:
            result = subprocess.run(  # noqa: S603
                [self.tmux_binary, "has-session", "-t", f"={session_name}"],
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            return False
        return result.returncode == 0

    def kill(self, session_name: str) -> None:
        try:
            subprocess.run(  # noqa: S603
                [self.tmux_binary, "kill-session", "-t", f"={session_name}"],
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            return


class DetachedProcessController:
    """Runs jobs as detached process groups, for hosts without tmux."""

    def __init__(self) -> None:
        self._processes: dict[str, subprocess.Popen[bytes]] = {}

    def start(self, *, session_name: str, command: str, cwd: Path) -> None:
        if self.exists(session_name):
            raise SessionError(f"Session already running: {session_name}")
        try:
            process = subprocess.Popen(  # noqa: S603
                ["/bin/sh", "-c", command],
                cwd=cwd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as error:
            raise SessionError(f"Failed to start session {session_name}: {error}") from error
        self._processes[session_name] = process

    def exists(self, session_name: str) -> bool:
        process = self._processes.get(session_name)
        if process is None:
            return False
        return process.poll() is None

    def kill(self, session_name: str) -> None:
        process = self._processes.pop(session_name, None)
        if process is None or process.poll() is not None:
            return
        _terminate_process_group(process)


def build_session_controller(backend: str) -> TmuxSessionController | DetachedProcessController:
    if backend == "tmux":
        return TmuxSessionController()
    if backend == "process":
        return DetachedProcessController()
    raise ValueError(f"Unsupported session backend: {backend}")


def _terminate_process_group(process: subprocess.Popen[bytes]) -> None:
    try:
        os.killpg(process.pid, signal.SIGTERM)
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        logger.warning("Session pid=%d ignored SIGTERM, killing", process.pid)
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except OSError:
            return
        process.wait(timeout=2)
