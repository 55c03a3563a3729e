"""Stage prerequisite DAG for one pipeline.

Rules the graph answers for the stage machine:

- a stage may start only when every prerequisite has PASSED;
- a failure BLOCKS everything downstream of it;
- a skip SKIPS everything downstream of it;
- all stages ready at the same moment may run side by side.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterator

from keelson.models.stages import StageDefinition, StageState


class PrerequisiteNotMetError(RuntimeError):
    """Raised when a stage is started before its prerequisites passed."""


class CyclicDependencyError(ValueError):
    """Raised when the stage definitions do not form a DAG."""


class UnknownStageError(ValueError):
    """Raised when a prerequisite names a stage that is not in the graph."""


class PrerequisiteGraph:
    """Immutable view of a pipeline's stages and the edges between them.

    ``stage_ids`` is a topological order; among stages that become
    available together the lower ``ordinal`` comes first, so the order is
    stable across runs.
    """

    def __init__(self, stage_definitions: list[StageDefinition]) -> None:
        self._stages = {sd.stage_id: sd for sd in stage_definitions}
        self._children: dict[str, set[str]] = {sid: set() for sid in self._stages}
        for sd in stage_definitions:
            for parent in sd.prerequisites:
                if parent not in self._stages:
                    raise UnknownStageError(
                        f"Stage {sd.stage_id!r} depends on unknown stage {parent!r}"
                    )
                self._children[parent].add(sd.stage_id)
        self._order = self._sort()

    def _sort(self) -> list[str]:
        """Kahn's algorithm over a heap keyed by ordinal."""
        waiting = {sid: len(set(sd.prerequisites)) for sid, sd in self._stages.items()}
        heap = [(self._stages[sid].ordinal, sid) for sid, n in waiting.items() if n == 0]
        heapq.heapify(heap)

        order: list[str] = []
        while heap:
            _, sid = heapq.heappop(heap)
            order.append(sid)
            for child in self._children[sid]:
                waiting[child] -= 1
                if waiting[child] == 0:
                    heapq.heappush(heap, (self._stages[child].ordinal, child))

        if len(order) < len(self._stages):
            stuck = sorted(sid for sid, n in waiting.items() if n > 0)
            raise CyclicDependencyError(f"Stages {stuck} form a prerequisite cycle")
        return order

    # ------------------------------------------------------------------
    # Structure
    # ------------------------------------------------------------------

    @property
    def stage_ids(self) -> list[str]:
        return list(self._order)

    def get_stage_definition(self, stage_id: str) -> StageDefinition:
        return self._stages[stage_id]

    def get_prerequisites(self, stage_id: str) -> list[str]:
        return list(self._stages[stage_id].prerequisites)

    def _descendants(self, stage_id: str) -> Iterator[str]:
        seen: set[str] = set()
        frontier = [stage_id]
        while frontier:
            for child in sorted(self._children[frontier.pop()]):
                if child not in seen:
                    seen.add(child)
                    frontier.append(child)
                    yield child

    def get_dependents(self, stage_id: str) -> list[str]:
        """Every stage downstream of *stage_id*, in topological order."""
        downstream = set(self._descendants(stage_id))
        return [sid for sid in self._order if sid in downstream]

    # ------------------------------------------------------------------
    # Readiness
    # ------------------------------------------------------------------

    def are_prerequisites_met(self, stage_id: str, states: dict[str, StageState]) -> bool:
        return not self.get_blocking_reasons(stage_id, states)

    def get_blocking_reasons(self, stage_id: str, states: dict[str, StageState]) -> list[str]:
        """One line per prerequisite that has not PASSED."""
        return [
            f"{self._stages[parent].display_name} ({parent}) is "
            f"{states.get(parent, StageState.NOT_STARTED).value}"
            for parent in self._stages[stage_id].prerequisites
            if states.get(parent) != StageState.PASSED
        ]

    def ready_stages(self, states: dict[str, StageState]) -> list[str]:
        """NOT_STARTED stages whose prerequisites all PASSED, in order."""
        return [
            sid
            for sid in self._order
            if states.get(sid, StageState.NOT_STARTED) == StageState.NOT_STARTED
            and self.are_prerequisites_met(sid, states)
        ]

    # ------------------------------------------------------------------
    # Cascades
    # ------------------------------------------------------------------

    def cascade_block(self, failed_stage_id: str, states: dict[str, StageState]) -> list[str]:
        """Mark every NOT_STARTED stage downstream of a failure BLOCKED in *states*."""
        return self._cascade(failed_stage_id, states, StageState.BLOCKED)

    def cascade_skip(self, skipped_stage_id: str, states: dict[str, StageState]) -> list[str]:
        """Mark every NOT_STARTED stage downstream of a skip SKIPPED in *states*."""
        return self._cascade(skipped_stage_id, states, StageState.SKIPPED)

    def _cascade(self, origin: str, states: dict[str, StageState], target: StageState) -> list[str]:
        changed = [
            sid
            for sid in self.get_dependents(origin)
            if states.get(sid, StageState.NOT_STARTED) == StageState.NOT_STARTED
        ]
        for sid in changed:
            states[sid] = target
        return changed
