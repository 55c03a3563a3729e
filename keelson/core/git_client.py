"""Thin git wrapper over a ToolRunner."""

from __future__ import annotations

import logging
from pathlib import Path

from keelson.core.tool_runner import ToolRunner

logger = logging.getLogger(__name__)


class GitClient:
    """The git operations the pipelines need, and nothing more.

    Parameters
    ----------
    runner:
        Tool runner used for every ``git`` invocation.
    workspace:
        Repository working tree.
    """

    def __init__(self, runner: ToolRunner, workspace: Path) -> None:
        self._runner = runner
        self._workspace = Path(workspace)

    def _git(self, *args: str, check: bool = True) -> str:
        result = self._runner.run(["git", *args], cwd=self._workspace, check=check)
        return result.stdout.strip()

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def is_shallow(self) -> bool:
        return self._git("rev-parse", "--is-shallow-repository") == "true"

    def ensure_full_history(self, remote: str = "origin") -> None:
        """Deepen a shallow clone so changelogs see every commit and tag."""
        if self.is_shallow():
            logger.info("Shallow clone detected; fetching full history")
            self._git("fetch", "--unshallow", "--tags", remote)

    def head_sha(self) -> str:
        return self._git("rev-parse", "HEAD")

    # ------------------------------------------------------------------
    # Writing back
    # ------------------------------------------------------------------

    def has_changes(self, path: Path) -> bool:
        """Whether *path* differs from HEAD (modified or untracked)."""
        return bool(self._git("status", "--porcelain", "--", str(path)))

    def commit_file(
        self, path: Path, message: str, *, author_name: str, author_email: str
    ) -> str:
        """Stage and commit exactly *path*; return the new commit sha."""
        self._git("add", "--", str(path))
        self._git(
            "-c", f"user.name={author_name}",
            "-c", f"user.email={author_email}",
            "commit", "-m", message, "--", str(path),
        )
        return self.head_sha()

    def push(self, remote: str, branch: str) -> None:
        self._git("push", remote, f"HEAD:refs/heads/{branch}")
