"""Keelson data models — all Pydantic v2, all frozen (immutable)."""

from keelson.models.config import (
    BuildConfig,
    CacheConfig,
    ChangelogConfig,
    CheckKind,
    CheckSpec,
    ConfigError,
    PipelineConfig,
    ProvisionConfig,
    ReleaseConfig,
    load_pipeline_config,
)
from keelson.models.ledger import LedgerEntry
from keelson.models.pipelines import (
    PIPELINES,
    RELEASE_PIPELINE,
    TEST_PIPELINE,
    PipelineDefinition,
    PipelineKind,
    PipelineRun,
)
from keelson.models.results import (
    BuildArtifact,
    CacheOutcome,
    ChangelogDocument,
    ChangelogMode,
    ChangelogPublishOutcome,
    CheckOutcome,
    CommandResult,
    ReleaseRecord,
    VerificationResult,
)
from keelson.models.stages import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    StageDefinition,
    StageState,
)
from keelson.models.trigger import EventKind, RunTrigger

__all__ = [
    # trigger
    "EventKind",
    "RunTrigger",
    # stages
    "StageState",
    "StageDefinition",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    # pipelines
    "PipelineKind",
    "PipelineDefinition",
    "PipelineRun",
    "PIPELINES",
    "TEST_PIPELINE",
    "RELEASE_PIPELINE",
    # results
    "CommandResult",
    "CheckOutcome",
    "VerificationResult",
    "CacheOutcome",
    "ChangelogMode",
    "ChangelogDocument",
    "ChangelogPublishOutcome",
    "BuildArtifact",
    "ReleaseRecord",
    # ledger
    "LedgerEntry",
    # config
    "CheckKind",
    "CheckSpec",
    "ProvisionConfig",
    "CacheConfig",
    "ChangelogConfig",
    "BuildConfig",
    "ReleaseConfig",
    "PipelineConfig",
    "ConfigError",
    "load_pipeline_config",
]
