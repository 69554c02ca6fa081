"""Per-issue workspace directories holding one repository clone."""

from __future__ import annotations

import logging
import re
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


@dataclass(slots=True)
class Workspace:
    """Directory layout of one acquired workspace."""

    root: Path
    repo_dir: Path
    branch_name: str


class WorkspaceManager:
    """Creates deterministic per-issue directories and always removes them."""

    def __init__(self, root_dir: Path, *, prefix: str = "sdlc-", branch_prefix: str = "feature/") -> None:
        self.root_dir = root_dir
        self.prefix = prefix
        self.branch_prefix = branch_prefix

    def path_for(self, issue_key: str) -> Path:
        safe_key = _UNSAFE_NAME_CHARS.sub("_", issue_key).strip("._") or "issue"
        return self.root_dir / f"{self.prefix}{safe_key}"

    def branch_for(self, issue_key: str) -> str:
        return f"{self.branch_prefix}{issue_key}"

    @contextmanager
    def acquire(self, issue_key: str) -> Iterator[Workspace]:
        """Yield a fresh workspace; the directory is removed on exit, error or not."""

        root = self.path_for(issue_key)
        if root.exists():
            logger.warning("Removing stale workspace %s", root)
            self.release(root)
        root.mkdir(parents=True, exist_ok=True)
        try:
            yield Workspace(root=root, repo_dir=root / "repo", branch_name=self.branch_for(issue_key))
        finally:
            self.release(root)

    def release(self, root: Path) -> None:
        if not root.exists():
            return
        try:
            shutil.rmtree(root)
        except OSError as error:
            logger.error("Failed to remove workspace %s: %s", root, error)
            return
        logger.debug("Removed workspace %s", root)
