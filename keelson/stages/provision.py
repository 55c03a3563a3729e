"""Toolchain provisioning.

Runs the configured install commands (stable Rust with clippy and
rustfmt by default) and then checks that every required tool resolves on
``PATH``.  Nothing downstream can run without the toolchain, so every
failure here is fatal.
"""

from __future__ import annotations

import logging
import shutil
from typing import Any, ClassVar

from keelson.core.tool_runner import ToolInvocationError, ToolRunner
from keelson.models.config import PipelineConfig
from keelson.stages.base import BaseStage

logger = logging.getLogger(__name__)


class ProvisioningError(RuntimeError):
    """Raised when the toolchain cannot be installed or a tool is missing."""


class ProvisionStage(BaseStage):
    """Install the toolchain and verify the required tools exist."""

    is_gate: ClassVar[bool] = False

    @property
    def stage_id(self) -> str:
        return "provision"

    @property
    def display_name(self) -> str:
        return "Toolchain Provisioning"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        config: PipelineConfig = run_context["pipeline_config"]
        runner: ToolRunner = run_context["runner"]

        executed: list[str] = []
        for command in config.provision.commands:
            try:
                result = runner.run(command)
            except ToolInvocationError as exc:
                raise ProvisioningError(f"Provisioning step failed: {exc}") from exc
            executed.append(result.display)

        resolved: dict[str, str] = {}
        missing: list[str] = []
        for tool in config.provision.required_tools:
            location = shutil.which(tool)
            if location is None:
                missing.append(tool)
            else:
                resolved[tool] = location
        if missing:
            raise ProvisioningError(f"Required tools not found on PATH: {', '.join(missing)}")

        logger.info("Toolchain ready: %s", ", ".join(sorted(resolved)))
        return {"commands": executed, "tools": resolved}
