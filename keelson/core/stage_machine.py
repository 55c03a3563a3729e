"""Deterministic stage state machine for one pipeline definition.

Enforces:
- Valid state transitions only (VALID_TRANSITIONS table)
- Prerequisites checked before RUNNING
- Cascade blocking on failure, cascade skipping on skip
- Every transition recorded in the Run Ledger
"""

from __future__ import annotations

import threading

from keelson.core.prerequisite_graph import PrerequisiteGraph, PrerequisiteNotMetError
from keelson.core.run_ledger import RunLedger
from keelson.models.ledger import LedgerEntry
from keelson.models.stages import VALID_TRANSITIONS, StageState


class InvalidTransitionError(RuntimeError):
    """Raised when a requested state transition is not valid."""


class StageMachine:
    """Enforces the stage state machine with prerequisite checking.

    Parameters
    ----------
    ledger:
        The Run Ledger to record transitions into.
    graph:
        The prerequisite graph for dependency checking.
    pipeline:
        Pipeline name stamped on every ledger entry.
    """

    def __init__(
        self, ledger: RunLedger, graph: PrerequisiteGraph, *, pipeline: str = ""
    ) -> None:
        self._ledger = ledger
        self._graph = graph
        self._pipeline = pipeline
        self._lock = threading.RLock()
        # In-memory state cache: run_id -> {stage_id -> StageState}
        self._states: dict[str, dict[str, StageState]] = {}

    # ------------------------------------------------------------------
    # State management
    # ------------------------------------------------------------------

    def initialize_run(self, run_id: str) -> dict[str, StageState]:
        """Initialize all stages to NOT_STARTED for a new run."""
        states = {sid: StageState.NOT_STARTED for sid in self._graph.stage_ids}
        with self._lock:
            self._states[run_id] = states
        return dict(states)

    def get_current_state(self, run_id: str, stage_id: str) -> StageState:
        """Return the current state of a stage in a run."""
        with self._lock:
            return self._run_states(run_id).get(stage_id, StageState.NOT_STARTED)

    def get_all_states(self, run_id: str) -> dict[str, StageState]:
        """Return a snapshot of all stage states for a run."""
        with self._lock:
            return dict(self._run_states(run_id))

    def _run_states(self, run_id: str) -> dict[str, StageState]:
        if run_id not in self._states:
            self._rebuild_state(run_id)
        return self._states[run_id]

    def _rebuild_state(self, run_id: str) -> None:
        """Rebuild in-memory state from the ledger."""
        states = {sid: StageState.NOT_STARTED for sid in self._graph.stage_ids}
        for entry in self._ledger.get_run_entries(run_id):
            if "->" in entry.state_transition:
                _, to_state = entry.state_transition.split("->", 1)
                try:
                    states[entry.stage_id] = StageState(to_state)
                except ValueError:
                    continue
        self._states[run_id] = states

    # ------------------------------------------------------------------
    # Transition logic
    # ------------------------------------------------------------------

    def transition(
        self,
        run_id: str,
        stage_id: str,
        target_state: StageState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        detail: str = "",
    ) -> LedgerEntry:
        """Transition a stage to a new state, recording in the ledger.

        Validates:
        1. The transition is allowed by VALID_TRANSITIONS.
        2. If target is RUNNING, prerequisites are met.
        3. FAILED cascades BLOCKED and SKIPPED cascades SKIPPED to
           every transitive dependent.

        Returns the sealed LedgerEntry.
        """
        with self._lock:
            states = self._run_states(run_id)
            current = states.get(stage_id, StageState.NOT_STARTED)

            allowed = VALID_TRANSITIONS.get(current, set())
            if target_state not in allowed:
                raise InvalidTransitionError(
                    f"Cannot transition {stage_id} from {current.value} to {target_state.value}. "
                    f"Allowed: {sorted(s.value for s in allowed)}"
                )

            if target_state == StageState.RUNNING and not self._graph.are_prerequisites_met(
                stage_id, states
            ):
                reasons = self._graph.get_blocking_reasons(stage_id, states)
                raise PrerequisiteNotMetError(
                    f"Cannot start {stage_id}: prerequisites not met. "
                    f"Blocked by: {'; '.join(reasons)}"
                )

            sealed = self._record(
                run_id,
                stage_id,
                current,
                target_state,
                input_hash=input_hash,
                output_hash=output_hash,
                detail=detail,
            )
            states[stage_id] = target_state

            if target_state == StageState.FAILED:
                for blocked_id in self._graph.cascade_block(stage_id, states):
                    self._record(
                        run_id,
                        blocked_id,
                        StageState.NOT_STARTED,
                        StageState.BLOCKED,
                        detail=f"upstream {stage_id} failed",
                    )
            elif target_state == StageState.SKIPPED:
                for skipped_id in self._graph.cascade_skip(stage_id, states):
                    self._record(
                        run_id,
                        skipped_id,
                        StageState.NOT_STARTED,
                        StageState.SKIPPED,
                        detail=f"upstream {stage_id} skipped",
                    )

        return sealed

    def halt_remaining(self, run_id: str, reason: str) -> list[str]:
        """Block every stage still NOT_STARTED (fail-fast).

        Returns the stage_ids that were blocked.
        """
        halted: list[str] = []
        with self._lock:
            states = self._run_states(run_id)
            for stage_id in self._graph.stage_ids:
                if states[stage_id] == StageState.NOT_STARTED:
                    self._record(
                        run_id,
                        stage_id,
                        StageState.NOT_STARTED,
                        StageState.BLOCKED,
                        detail=reason,
                    )
                    states[stage_id] = StageState.BLOCKED
                    halted.append(stage_id)
        return halted

    def _record(
        self,
        run_id: str,
        stage_id: str,
        from_state: StageState,
        to_state: StageState,
        *,
        input_hash: str = "",
        output_hash: str = "",
        detail: str = "",
    ) -> LedgerEntry:
        entry = LedgerEntry(
            run_id=run_id,
            pipeline=self._pipeline,
            stage_id=stage_id,
            state_transition=f"{from_state.value}->{to_state.value}",
            input_hash=input_hash,
            output_hash=output_hash,
            detail=detail,
        )
        return self._ledger.append(entry)

    # ------------------------------------------------------------------
    # Convenience methods
    # ------------------------------------------------------------------

    def ready_stages(self, run_id: str) -> list[str]:
        """Stages that may enter RUNNING now."""
        with self._lock:
            return self._graph.ready_stages(self._run_states(run_id))

    def can_start(self, run_id: str, stage_id: str) -> tuple[bool, list[str]]:
        """Check if a stage can transition to RUNNING.

        Returns (can_start, blocking_reasons).
        """
        with self._lock:
            states = self._run_states(run_id)
            current = states.get(stage_id, StageState.NOT_STARTED)
            if current != StageState.NOT_STARTED:
                return False, [f"Stage is currently {current.value}, not not_started"]

            if not self._graph.are_prerequisites_met(stage_id, states):
                return False, self._graph.get_blocking_reasons(stage_id, states)

        return True, []

    def get_available_transitions(self, run_id: str, stage_id: str) -> set[StageState]:
        """Return the set of valid target states for a stage."""
        return VALID_TRANSITIONS.get(self.get_current_state(run_id, stage_id), set())
