"""Changelog generation through git-cliff.

Two modes:

continuous
    Regenerate the whole changelog from the beginning of history into
    ``CHANGELOG.md``; the file is then committed to main.
release
    Render only the section for the most recent tag, with the top-level
    header stripped, into ``CHANGES.md``; used as the release body and
    never committed.

Grouping and formatting rules live in the git-cliff config file and are
treated as opaque.
"""

from __future__ import annotations

import logging
from pathlib import Path

from keelson.core.git_client import GitClient
from keelson.core.hasher import sha256_hex
from keelson.core.tool_runner import ToolInvocationError, ToolRunner, output_tail
from keelson.models.config import ChangelogConfig
from keelson.models.results import ChangelogDocument, ChangelogMode

logger = logging.getLogger(__name__)

_MODE_ARGS: dict[ChangelogMode, list[str]] = {
    ChangelogMode.CONTINUOUS: ["--verbose"],
    ChangelogMode.RELEASE: ["--latest", "--strip", "header"],
}


class ChangelogGenerationError(RuntimeError):
    """Raised when git-cliff fails or produces no output."""


class ChangelogGenerator:
    """Runs git-cliff and reads back the document it wrote.

    Parameters
    ----------
    runner:
        Tool runner for git-cliff and git.
    config:
        Changelog section of the pipeline configuration.
    workspace:
        Repository working tree.
    """

    def __init__(self, runner: ToolRunner, config: ChangelogConfig, workspace: Path) -> None:
        self._runner = runner
        self._config = config
        self._workspace = Path(workspace)
        self._git = GitClient(runner, workspace)

    def output_path(self, mode: ChangelogMode) -> Path:
        if mode == ChangelogMode.RELEASE:
            return self._config.release_output_path
        return self._config.output_path

    def build_command(self, mode: ChangelogMode) -> list[str]:
        """The git-cliff argv for *mode*."""
        return [
            *self._config.command,
            "--config", str(self._config.config_path),
            *_MODE_ARGS[mode],
            "--output", str(self.output_path(mode)),
        ]

    def generate(self, mode: ChangelogMode) -> ChangelogDocument:
        """Generate the changelog for *mode* and return its content."""
        try:
            self._git.ensure_full_history(self._config.remote)
        except ToolInvocationError as exc:
            raise ChangelogGenerationError(f"Could not fetch full history: {exc}") from exc

        command = self.build_command(mode)
        try:
            result = self._runner.run(command, cwd=self._workspace, check=False)
        except ToolInvocationError as exc:
            raise ChangelogGenerationError(str(exc)) from exc
        if not result.ok:
            raise ChangelogGenerationError(
                f"git-cliff exited with status {result.returncode}: "
                f"{output_tail(result, 500).strip()}"
            )

        relative = self.output_path(mode)
        path = relative if relative.is_absolute() else self._workspace / relative
        if not path.is_file():
            raise ChangelogGenerationError(f"git-cliff did not write {relative}")

        content = path.read_text(encoding="utf-8")
        logger.info("Generated %s changelog at %s (%d bytes)", mode.value, relative, len(content))
        return ChangelogDocument(
            mode=mode,
            path=relative,
            content=content,
            content_hash=sha256_hex(content.encode("utf-8")),
        )
