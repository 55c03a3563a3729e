"""Tests for the PrerequisiteGraph — DAG ordering, readiness and cascades."""

from __future__ import annotations

import pytest

from keelson.core.prerequisite_graph import (
    CyclicDependencyError,
    PrerequisiteGraph,
    UnknownStageError,
)
from keelson.models.pipelines import RELEASE_PIPELINE
from keelson.models.stages import StageDefinition, StageState


def _initial(graph: PrerequisiteGraph) -> dict[str, StageState]:
    return {sid: StageState.NOT_STARTED for sid in graph.stage_ids}


class TestPrerequisiteGraph:
    def test_builds_from_test_pipeline(self, graph: PrerequisiteGraph):
        assert len(graph.stage_ids) == 6

    def test_topological_order(self, graph: PrerequisiteGraph):
        ids = graph.stage_ids
        assert ids.index("provision") < ids.index("cache_restore") < ids.index("verify")
        assert ids.index("verify") < ids.index("changelog_generate") < ids.index("changelog_publish")
        assert ids.index("verify") < ids.index("cache_save")

    def test_only_root_is_ready_initially(self, graph: PrerequisiteGraph):
        assert graph.ready_stages(_initial(graph)) == ["provision"]

    def test_gate_unlocks_both_branches(self, graph: PrerequisiteGraph):
        states = _initial(graph)
        for sid in ("provision", "cache_restore", "verify"):
            states[sid] = StageState.PASSED
        assert graph.ready_stages(states) == ["cache_save", "changelog_generate"]

    def test_release_build_and_changelog_ready_together(self):
        graph = PrerequisiteGraph(RELEASE_PIPELINE.stages)
        states = _initial(graph)
        assert set(graph.ready_stages(states)) == {"provision", "release_changelog"}
        states["provision"] = StageState.PASSED
        assert set(graph.ready_stages(states)) == {"release_build", "release_changelog"}

    def test_publish_needs_build_and_changelog(self):
        graph = PrerequisiteGraph(RELEASE_PIPELINE.stages)
        states = _initial(graph)
        states.update(provision=StageState.PASSED, release_build=StageState.PASSED)
        assert graph.are_prerequisites_met("release_publish", states) is False
        states["release_changelog"] = StageState.PASSED
        assert graph.are_prerequisites_met("release_publish", states) is True

    def test_skipped_prerequisite_does_not_satisfy(self, graph: PrerequisiteGraph):
        states = _initial(graph)
        states["changelog_generate"] = StageState.SKIPPED
        assert graph.are_prerequisites_met("changelog_publish", states) is False

    def test_cascade_block(self, graph: PrerequisiteGraph):
        states = _initial(graph)
        blocked = graph.cascade_block("verify", states)
        assert set(blocked) == {"cache_save", "changelog_generate", "changelog_publish"}
        assert "verify" not in blocked
        assert states["changelog_publish"] == StageState.BLOCKED

    def test_cascade_skip(self, graph: PrerequisiteGraph):
        states = _initial(graph)
        skipped = graph.cascade_skip("changelog_generate", states)
        assert skipped == ["changelog_publish"]
        assert states["cache_save"] == StageState.NOT_STARTED

    def test_cascade_leaves_terminal_states(self, graph: PrerequisiteGraph):
        states = _initial(graph)
        states["cache_save"] = StageState.PASSED
        graph.cascade_block("verify", states)
        assert states["cache_save"] == StageState.PASSED

    def test_cyclic_dependency_rejected(self):
        with pytest.raises(CyclicDependencyError):
            PrerequisiteGraph([
                StageDefinition(stage_id="a", display_name="A", ordinal=0, prerequisites=["b"]),
                StageDefinition(stage_id="b", display_name="B", ordinal=1, prerequisites=["a"]),
            ])

    def test_unknown_prerequisite_rejected(self):
        with pytest.raises(UnknownStageError):
            PrerequisiteGraph([
                StageDefinition(stage_id="a", display_name="A", ordinal=0, prerequisites=["ghost"]),
            ])

    def test_get_dependents_transitive(self, graph: PrerequisiteGraph):
        assert len(graph.get_dependents("provision")) == 5

    def test_get_blocking_reasons(self, graph: PrerequisiteGraph):
        reasons = graph.get_blocking_reasons("verify", _initial(graph))
        assert len(reasons) == 1
        assert "Dependency Cache Restore" in reasons[0]
