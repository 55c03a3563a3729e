"""Stage state machine models — deterministic transitions for pipeline jobs."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict


class StageState(str, Enum):
    """Strict state model for each pipeline stage."""

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    BLOCKED = "blocked"
    SKIPPED = "skipped"


# Valid state transitions, enforced by StageMachine.
# There is no retry edge: a failed run needs a new trigger.
VALID_TRANSITIONS: dict[StageState, set[StageState]] = {
    StageState.NOT_STARTED: {
        StageState.RUNNING,
        StageState.BLOCKED,
        StageState.SKIPPED,
    },
    StageState.RUNNING: {StageState.PASSED, StageState.FAILED},
    StageState.PASSED: set(),
    StageState.FAILED: set(),
    StageState.BLOCKED: set(),
    StageState.SKIPPED: set(),
}

TERMINAL_STATES: frozenset[StageState] = frozenset(
    state for state, targets in VALID_TRANSITIONS.items() if not targets
)


class StageDefinition(BaseModel):
    """Defines a pipeline stage, its prerequisites and its run condition.

    The prerequisite list encodes the DAG: a stage cannot enter RUNNING
    unless every prerequisite is PASSED.  ``condition`` names a trigger
    predicate from ``keelson.core.triggers.CONDITIONS``; when it evaluates
    false the stage and all its dependents are SKIPPED.
    """

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    ordinal: float
    prerequisites: list[str] = []
    condition: str | None = None
    is_gate: bool = False
