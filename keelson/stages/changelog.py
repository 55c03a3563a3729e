"""Changelog stages.

``changelog_generate`` and ``changelog_publish`` belong to the test
pipeline and only run on a direct push to main after the gate passed.
``release_changelog`` renders the latest-tag excerpt for the release body.
"""

from __future__ import annotations

import logging
from typing import Any

from keelson.core.changelog import ChangelogGenerator
from keelson.core.git_client import GitClient
from keelson.core.tool_runner import ToolInvocationError
from keelson.models.config import PipelineConfig
from keelson.models.results import ChangelogDocument, ChangelogMode, ChangelogPublishOutcome
from keelson.stages.base import BaseStage

logger = logging.getLogger(__name__)


class ChangelogPublishError(RuntimeError):
    """Raised when the changelog commit or push fails."""


class ChangelogGenerateStage(BaseStage):
    """Regenerate the full changelog from history."""

    @property
    def stage_id(self) -> str:
        return "changelog_generate"

    @property
    def display_name(self) -> str:
        return "Changelog Generation"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        generator: ChangelogGenerator = run_context["changelog"]
        return {"document": generator.generate(ChangelogMode.CONTINUOUS)}


class ReleaseChangelogStage(BaseStage):
    """Render the changelog section of the latest tag, header stripped."""

    @property
    def stage_id(self) -> str:
        return "release_changelog"

    @property
    def display_name(self) -> str:
        return "Release Changelog"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        generator: ChangelogGenerator = run_context["changelog"]
        return {"document": generator.generate(ChangelogMode.RELEASE)}


class ChangelogPublishStage(BaseStage):
    """Commit the regenerated changelog to main and push it.

    Unchanged content is a no-op: no empty commit is ever created.  In a
    dry run the commit is made locally but not pushed.
    """

    @property
    def stage_id(self) -> str:
        return "changelog_publish"

    @property
    def display_name(self) -> str:
        return "Changelog Publish"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["pipeline_config"]
        git: GitClient = run_context["git"]
        document: ChangelogDocument = run_context["stage_results"]["changelog_generate"]["document"]
        changelog = config.changelog
        dry_run = bool(getattr(run_context.get("settings"), "dry_run", False))

        try:
            if not git.has_changes(document.path):
                logger.info("%s unchanged; nothing to commit", document.path)
                return {"outcome": ChangelogPublishOutcome(committed=False)}

            sha = git.commit_file(
                document.path,
                changelog.commit_message,
                author_name=changelog.bot_name,
                author_email=changelog.bot_email,
            )
            if dry_run:
                logger.info("Dry run: committed %s locally, not pushing", sha[:8])
            else:
                git.push(changelog.remote, config.main_branch)
        except ToolInvocationError as exc:
            raise ChangelogPublishError(f"Publishing {document.path} failed: {exc}") from exc

        logger.info("Committed changelog as %s on %s", sha[:8], config.main_branch)
        return {
            "outcome": ChangelogPublishOutcome(
                committed=True,
                commit_message=changelog.commit_message,
                commit_sha=sha,
                branch=config.main_branch,
            ),
            "pushed": not dry_run,
        }
