"""Keelson pipeline stages — registry mapping stage_id to stage class.

Usage::

    from keelson.stages import STAGE_REGISTRY, get_stage

    stage = get_stage("verify")
    result = stage.run_stage(run_context)
"""

from __future__ import annotations

from keelson.stages.base import BaseStage, StageExecutionError
from keelson.stages.cache import CacheRestoreStage, CacheSaveStage
from keelson.stages.changelog import (
    ChangelogGenerateStage,
    ChangelogPublishError,
    ChangelogPublishStage,
    ReleaseChangelogStage,
)
from keelson.stages.provision import ProvisioningError, ProvisionStage
from keelson.stages.release import ReleaseBuildError, ReleaseBuildStage, ReleasePublishStage
from keelson.stages.verification import GateFailedError, VerificationStage

# ---------------------------------------------------------------------------
# Stage registry: stage_id -> stage class
# ---------------------------------------------------------------------------

STAGE_REGISTRY: dict[str, type[BaseStage]] = {
    "provision": ProvisionStage,
    "cache_restore": CacheRestoreStage,
    "verify": VerificationStage,
    "cache_save": CacheSaveStage,
    "changelog_generate": ChangelogGenerateStage,
    "changelog_publish": ChangelogPublishStage,
    "release_build": ReleaseBuildStage,
    "release_changelog": ReleaseChangelogStage,
    "release_publish": ReleasePublishStage,
}

GATE_STAGE_IDS: frozenset[str] = frozenset(
    sid for sid, cls in STAGE_REGISTRY.items() if cls.is_gate
)


def get_stage(stage_id: str) -> BaseStage:
    """Instantiate and return a stage by its ``stage_id``.

    Raises ``KeyError`` if the stage_id is not registered.
    """
    try:
        cls = STAGE_REGISTRY[stage_id]
    except KeyError:
        raise KeyError(
            f"Unknown stage_id {stage_id!r}. "
            f"Registered stages: {sorted(STAGE_REGISTRY.keys())}"
        ) from None
    return cls()


__all__ = [
    # Base
    "BaseStage",
    "StageExecutionError",
    # Registry
    "STAGE_REGISTRY",
    "GATE_STAGE_IDS",
    "get_stage",
    # Concrete stages
    "ProvisionStage",
    "CacheRestoreStage",
    "CacheSaveStage",
    "VerificationStage",
    "ChangelogGenerateStage",
    "ChangelogPublishStage",
    "ReleaseChangelogStage",
    "ReleaseBuildStage",
    "ReleasePublishStage",
    # Errors
    "ProvisioningError",
    "GateFailedError",
    "ChangelogPublishError",
    "ReleaseBuildError",
]
