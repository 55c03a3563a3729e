"""Pipeline definitions and the per-instance run outcome."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict

from keelson.models.results import ReleaseRecord, VerificationResult
from keelson.models.stages import StageDefinition, StageState
from keelson.models.trigger import RunTrigger


class PipelineKind(str, Enum):
    TEST = "test"
    RELEASE = "release"


class PipelineDefinition(BaseModel):
    """A named DAG of stages."""

    model_config = ConfigDict(frozen=True)

    kind: PipelineKind
    display_name: str
    stages: list[StageDefinition]

    @property
    def stage_ids(self) -> list[str]:
        return [sd.stage_id for sd in self.stages]


TEST_PIPELINE = PipelineDefinition(
    kind=PipelineKind.TEST,
    display_name="Test",
    stages=[
        StageDefinition(
            stage_id="provision",
            display_name="Toolchain Provisioning",
            ordinal=0.0,
        ),
        StageDefinition(
            stage_id="cache_restore",
            display_name="Dependency Cache Restore",
            ordinal=1.0,
            prerequisites=["provision"],
        ),
        StageDefinition(
            stage_id="verify",
            display_name="Verification Gate",
            ordinal=2.0,
            prerequisites=["cache_restore"],
            is_gate=True,
        ),
        StageDefinition(
            stage_id="cache_save",
            display_name="Dependency Cache Save",
            ordinal=3.0,
            prerequisites=["verify"],
        ),
        StageDefinition(
            stage_id="changelog_generate",
            display_name="Changelog Generation",
            ordinal=4.0,
            prerequisites=["verify"],
            condition="push_to_main",
        ),
        StageDefinition(
            stage_id="changelog_publish",
            display_name="Changelog Publish",
            ordinal=5.0,
            prerequisites=["changelog_generate"],
        ),
    ],
)

RELEASE_PIPELINE = PipelineDefinition(
    kind=PipelineKind.RELEASE,
    display_name="Release",
    stages=[
        StageDefinition(
            stage_id="provision",
            display_name="Toolchain Provisioning",
            ordinal=0.0,
        ),
        StageDefinition(
            stage_id="release_build",
            display_name="Release Build",
            ordinal=1.0,
            prerequisites=["provision"],
        ),
        StageDefinition(
            stage_id="release_changelog",
            display_name="Release Changelog",
            ordinal=1.5,
        ),
        StageDefinition(
            stage_id="release_publish",
            display_name="Release Publish",
            ordinal=2.0,
            prerequisites=["release_build", "release_changelog"],
        ),
    ],
)

PIPELINES: dict[PipelineKind, PipelineDefinition] = {
    PipelineKind.TEST: TEST_PIPELINE,
    PipelineKind.RELEASE: RELEASE_PIPELINE,
}


class PipelineRun(BaseModel):
    """Final outcome of one pipeline instance."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    pipeline: PipelineKind
    trigger: RunTrigger
    states: dict[str, StageState]
    stage_results: dict[str, dict[str, Any]] = {}
    errors: dict[str, str] = {}

    @property
    def succeeded(self) -> bool:
        return not self.errors and all(
            state in (StageState.PASSED, StageState.SKIPPED)
            for state in self.states.values()
        )

    @property
    def verification(self) -> VerificationResult | None:
        """The gate result, including the partial one of a failed gate."""
        recorded = self.stage_results.get("verify", {})
        result = recorded.get("verification") or recorded.get("partial_result")
        return result if isinstance(result, VerificationResult) else None

    @property
    def release_record(self) -> ReleaseRecord | None:
        record = self.stage_results.get("release_publish", {}).get("release")
        return record if isinstance(record, ReleaseRecord) else None

    def executed(self, stage_id: str) -> bool:
        """Whether the stage actually ran (passed or failed)."""
        return self.states.get(stage_id) in (StageState.PASSED, StageState.FAILED)
