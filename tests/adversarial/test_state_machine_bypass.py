"""Adversarial tests — attempts to reach side effects without the gate."""

from __future__ import annotations

from pathlib import Path

import pytest

from keelson.core.prerequisite_graph import PrerequisiteGraph, PrerequisiteNotMetError
from keelson.core.run_ledger import RunLedger
from keelson.core.stage_machine import InvalidTransitionError, StageMachine
from keelson.models.pipelines import RELEASE_PIPELINE, TEST_PIPELINE
from keelson.models.stages import StageState

RUN = "kl-bypass-001"


@pytest.fixture
def test_sm(tmp_path: Path) -> StageMachine:
    sm = StageMachine(RunLedger(tmp_path / "l.db"), PrerequisiteGraph(TEST_PIPELINE.stages), pipeline="test")
    sm.initialize_run(RUN)
    return sm


@pytest.fixture
def release_sm(tmp_path: Path) -> StageMachine:
    sm = StageMachine(
        RunLedger(tmp_path / "r.db"), PrerequisiteGraph(RELEASE_PIPELINE.stages), pipeline="release"
    )
    sm.initialize_run(RUN)
    return sm


def _pass(sm: StageMachine, *stage_ids: str) -> None:
    for stage_id in stage_ids:
        sm.transition(RUN, stage_id, StageState.RUNNING)
        sm.transition(RUN, stage_id, StageState.PASSED)


class TestPrerequisiteBypassAttempts:
    def test_cannot_publish_changelog_without_gate(self, test_sm: StageMachine):
        with pytest.raises(PrerequisiteNotMetError):
            test_sm.transition(RUN, "changelog_publish", StageState.RUNNING)

    def test_cannot_generate_changelog_while_gate_running(self, test_sm: StageMachine):
        _pass(test_sm, "provision", "cache_restore")
        test_sm.transition(RUN, "verify", StageState.RUNNING)
        with pytest.raises(PrerequisiteNotMetError):
            test_sm.transition(RUN, "changelog_generate", StageState.RUNNING)

    def test_cannot_save_cache_after_failed_gate(self, test_sm: StageMachine):
        _pass(test_sm, "provision", "cache_restore")
        test_sm.transition(RUN, "verify", StageState.RUNNING)
        test_sm.transition(RUN, "verify", StageState.FAILED)
        with pytest.raises(InvalidTransitionError):
            test_sm.transition(RUN, "cache_save", StageState.RUNNING)

    def test_cannot_publish_release_with_changelog_only(self, release_sm: StageMachine):
        _pass(release_sm, "release_changelog")
        with pytest.raises(PrerequisiteNotMetError):
            release_sm.transition(RUN, "release_publish", StageState.RUNNING)

    def test_cannot_publish_release_with_build_only(self, release_sm: StageMachine):
        _pass(release_sm, "provision", "release_build")
        with pytest.raises(PrerequisiteNotMetError):
            release_sm.transition(RUN, "release_publish", StageState.RUNNING)


class TestInvalidTransitionAttempts:
    def test_cannot_jump_to_passed(self, test_sm: StageMachine):
        with pytest.raises(InvalidTransitionError):
            test_sm.transition(RUN, "provision", StageState.PASSED)

    def test_no_retry_after_failure(self, test_sm: StageMachine):
        test_sm.transition(RUN, "provision", StageState.RUNNING)
        test_sm.transition(RUN, "provision", StageState.FAILED)
        with pytest.raises(InvalidTransitionError):
            test_sm.transition(RUN, "provision", StageState.RUNNING)

    def test_cannot_unskip(self, test_sm: StageMachine):
        _pass(test_sm, "provision", "cache_restore", "verify")
        test_sm.transition(RUN, "changelog_generate", StageState.SKIPPED)
        with pytest.raises(InvalidTransitionError):
            test_sm.transition(RUN, "changelog_publish", StageState.RUNNING)
