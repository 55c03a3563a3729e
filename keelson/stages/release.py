"""Release stages: build the artifact, publish the release."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from keelson.core.hasher import file_sha256
from keelson.core.release_publisher import ReleasePublisher, build_publisher
from keelson.core.tool_runner import ToolInvocationError, ToolRunner
from keelson.models.config import PipelineConfig
from keelson.models.results import BuildArtifact, ChangelogDocument
from keelson.models.trigger import RunTrigger
from keelson.stages.base import BaseStage

logger = logging.getLogger(__name__)


class ReleaseBuildError(RuntimeError):
    """Raised when the release build fails or leaves no artifact behind."""


class ReleaseBuildStage(BaseStage):
    """Build in release mode and locate the single artifact."""

    @property
    def stage_id(self) -> str:
        return "release_build"

    @property
    def display_name(self) -> str:
        return "Release Build"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["pipeline_config"]
        runner: ToolRunner = run_context["runner"]
        workspace = Path(run_context["workspace"])

        try:
            runner.run(config.build.command)
        except ToolInvocationError as exc:
            raise ReleaseBuildError(f"Release build failed: {exc}") from exc

        relative = config.build.artifact_path
        path = relative if relative.is_absolute() else workspace / relative
        if not path.is_file():
            raise ReleaseBuildError(f"Build succeeded but produced no artifact at {relative}")

        artifact = BuildArtifact(path=path, size_bytes=path.stat().st_size, sha256=file_sha256(path))
        logger.info("Built %s (%d bytes, sha256 %s)", relative, artifact.size_bytes, artifact.sha256[:12])
        return {"artifact": artifact}


class ReleasePublishStage(BaseStage):
    """Create the release for the tag with the excerpt and the artifact."""

    @property
    def stage_id(self) -> str:
        return "release_publish"

    @property
    def display_name(self) -> str:
        return "Release Publish"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        trigger: RunTrigger = run_context["trigger"]
        results = run_context["stage_results"]
        artifact: BuildArtifact = results["release_build"]["artifact"]
        document: ChangelogDocument = results["release_changelog"]["document"]

        publisher: ReleasePublisher | None = run_context.get("publisher")
        if publisher is None:
            config: PipelineConfig = run_context["pipeline_config"]
            settings = run_context.get("settings")
            publisher = build_publisher(
                config.release,
                workspace=Path(run_context["workspace"]),
                dry_run=bool(getattr(settings, "dry_run", False)),
            )

        record = publisher.publish(trigger.ref_name, document.content, artifact)
        logger.info("Published release %s via %s backend", record.tag, publisher.name)
        return {"release": record, "backend": publisher.name}
