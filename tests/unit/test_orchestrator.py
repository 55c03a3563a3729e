"""Unit tests for the Orchestrator — planning, dispatch, fail-fast, ledger."""

from __future__ import annotations

import threading
from collections.abc import Callable
from pathlib import Path

from conftest import FakeRunner, write_file, write_output_file

from keelson.core.orchestrator import Orchestrator, plan_pipelines
from keelson.models.config import PipelineConfig
from keelson.models.pipelines import TEST_PIPELINE, PipelineKind
from keelson.models.stages import TERMINAL_STATES, StageState
from keelson.models.trigger import EventKind, RunTrigger


class TestPlanPipelines:
    def test_push_to_main_runs_everything(self, push_to_main: RunTrigger):
        planned = plan_pipelines(push_to_main, PipelineConfig())
        assert list(planned) == [PipelineKind.TEST]
        assert all(planned[PipelineKind.TEST].values())

    def test_pull_request_skips_changelog(self, pull_request: RunTrigger):
        will_run = plan_pipelines(pull_request, PipelineConfig())[PipelineKind.TEST]
        assert will_run["verify"] is True
        assert will_run["changelog_generate"] is False
        assert will_run["changelog_publish"] is False

    def test_changelog_commit_skips_changelog(self):
        trigger = RunTrigger(
            event=EventKind.PUSH,
            ref="refs/heads/main",
            sha="abc",
            actor="github-actions[bot]",
            head_commit_message="docs: update changelog",
        )
        will_run = plan_pipelines(trigger, PipelineConfig())[PipelineKind.TEST]
        assert will_run["verify"] is True
        assert will_run["changelog_publish"] is False

    def test_tag_push_plans_release(self, tag_push: RunTrigger):
        planned = plan_pipelines(tag_push, PipelineConfig())
        assert list(planned) == [PipelineKind.RELEASE]

    def test_feature_branch_plans_nothing(self):
        trigger = RunTrigger(event=EventKind.PUSH, ref="refs/heads/feature/x", sha="abc")
        assert plan_pipelines(trigger, PipelineConfig()) == {}


class TestOrchestratorSetup:
    def test_relative_ledger_resolves_against_workspace(
        self, settings, fake_runner: FakeRunner, workspace: Path
    ):
        orch = Orchestrator(PipelineConfig(), settings=settings, runner=fake_runner, workspace=workspace)
        assert orch.ledger.db_path == workspace / ".keelson" / "ledger.db"

    def test_config_loaded_from_workspace(self, settings, fake_runner: FakeRunner, workspace: Path):
        (workspace / "keelson.toml").write_text('main_branch = "trunk"\n')
        orch = Orchestrator(settings=settings, runner=fake_runner, workspace=workspace)
        assert orch.config.main_branch == "trunk"


class TestDispatch:
    def test_no_match_runs_nothing(self, make_orchestrator: Callable[..., Orchestrator], fake_runner: FakeRunner):
        trigger = RunTrigger(event=EventKind.PUSH, ref="refs/heads/feature/x", sha="abc")
        assert make_orchestrator().dispatch(trigger) == []
        assert fake_runner.calls == []

    def test_skip_marker_runs_nothing(self, make_orchestrator: Callable[..., Orchestrator]):
        trigger = RunTrigger(
            event=EventKind.PUSH, ref="refs/heads/main", sha="abc", head_commit_message="chore: x [skip ci]"
        )
        assert make_orchestrator().dispatch(trigger) == []

    def test_pull_request_passes_without_changelog(
        self, make_orchestrator: Callable[..., Orchestrator], pull_request: RunTrigger, fake_runner: FakeRunner
    ):
        (run,) = make_orchestrator().dispatch(pull_request)
        assert run.succeeded is True
        assert run.states["verify"] == StageState.PASSED
        assert run.states["changelog_generate"] == StageState.SKIPPED
        assert run.states["changelog_publish"] == StageState.SKIPPED
        assert fake_runner.invoked("git-cliff") == []

    def test_every_stage_reaches_a_terminal_state(
        self, make_orchestrator: Callable[..., Orchestrator], pull_request: RunTrigger
    ):
        (run,) = make_orchestrator().dispatch(pull_request)
        assert set(run.states) == set(TEST_PIPELINE.stage_ids)
        assert all(state in TERMINAL_STATES for state in run.states.values())

    def test_gate_failure_blocks_downstream(
        self, make_orchestrator: Callable[..., Orchestrator], push_to_main: RunTrigger, fake_runner: FakeRunner
    ):
        fake_runner.on("cargo", "test", returncode=101)
        (run,) = make_orchestrator().dispatch(push_to_main)

        assert run.succeeded is False
        assert run.states["verify"] == StageState.FAILED
        for stage_id in ("cache_save", "changelog_generate", "changelog_publish"):
            assert run.states[stage_id] == StageState.BLOCKED
        assert "test check failed" in run.errors["verify"]
        assert run.verification is not None
        assert run.verification.lint_ok is True
        assert run.verification.tests_ok is False

    def test_provision_failure_halts_everything(
        self, make_orchestrator: Callable[..., Orchestrator], pull_request: RunTrigger, fake_runner: FakeRunner
    ):
        fake_runner.on("rustup", returncode=1)
        (run,) = make_orchestrator().dispatch(pull_request)
        assert run.states["provision"] == StageState.FAILED
        assert fake_runner.invoked("cargo") == []
        assert {run.states[s] for s in TEST_PIPELINE.stage_ids if s != "provision"} == {StageState.BLOCKED}

    def test_runs_are_isolated(
        self, make_orchestrator: Callable[..., Orchestrator], pull_request: RunTrigger, fake_runner: FakeRunner
    ):
        orch = make_orchestrator()
        fake_runner.on("cargo", "fmt", returncode=1)
        (failed,) = orch.dispatch(pull_request)
        fake_runner.on("cargo", "fmt", returncode=0)
        (passed,) = orch.dispatch(pull_request)

        assert failed.run_id != passed.run_id
        assert failed.succeeded is False
        assert passed.succeeded is True

    def test_release_stages_run_alongside(
        self,
        make_orchestrator: Callable[..., Orchestrator],
        tag_push: RunTrigger,
        fake_runner: FakeRunner,
        workspace: Path,
    ):
        both_started = threading.Barrier(2, timeout=5)
        write_notes = write_output_file("### Features\n")
        write_binary = write_file(workspace / "target" / "release" / "pirate_api")

        def _notes(argv, cwd):
            both_started.wait()
            write_notes(argv, cwd)

        def _binary(argv, cwd):
            both_started.wait()
            write_binary(argv, cwd)

        fake_runner.on("git-cliff", effect=_notes)
        fake_runner.on("cargo", "build", effect=_binary)

        (run,) = make_orchestrator().dispatch(tag_push)

        assert run.pipeline == PipelineKind.RELEASE
        assert run.succeeded is True
        assert run.release_record is not None
        assert run.release_record.tag == "v1.2.0"

    def test_in_flight_sibling_finishes_after_failure(
        self,
        make_orchestrator: Callable[..., Orchestrator],
        tag_push: RunTrigger,
        fake_runner: FakeRunner,
    ):
        both_started = threading.Barrier(2, timeout=5)
        write_notes = write_output_file("### Features\n")

        def _notes(argv, cwd):
            both_started.wait()
            write_notes(argv, cwd)

        fake_runner.on("git-cliff", effect=_notes)
        fake_runner.on("cargo", "build", returncode=101, effect=lambda argv, cwd: both_started.wait())

        orch = make_orchestrator()
        (run,) = orch.dispatch(tag_push)

        assert run.states["release_build"] == StageState.FAILED
        assert run.states["release_changelog"] == StageState.PASSED
        assert run.states["release_publish"] == StageState.BLOCKED
        history = orch.ledger.get_stage_history(run.run_id, "release_changelog")
        assert history[-1].state_transition == "running->passed"


class TestLedgerRecording:
    def test_run_is_recorded_and_chained(
        self, make_orchestrator: Callable[..., Orchestrator], pull_request: RunTrigger
    ):
        orch = make_orchestrator()
        (run,) = orch.dispatch(pull_request)

        entries = orch.get_run_entries(run.run_id)
        assert entries
        assert {e.pipeline for e in entries} == {"test"}
        assert orch.verify_chain(run.run_id) is True

    def test_passed_stages_carry_hashes(
        self, make_orchestrator: Callable[..., Orchestrator], pull_request: RunTrigger
    ):
        orch = make_orchestrator()
        (run,) = orch.dispatch(pull_request)
        passed = [
            e for e in orch.get_run_entries(run.run_id) if e.state_transition == "running->passed"
        ]
        assert {e.stage_id for e in passed} == {"provision", "cache_restore", "verify", "cache_save"}
        assert all(e.input_hash and e.output_hash for e in passed)

    def test_skip_reason_recorded(
        self, make_orchestrator: Callable[..., Orchestrator], pull_request: RunTrigger
    ):
        orch = make_orchestrator()
        (run,) = orch.dispatch(pull_request)
        skipped = {
            e.stage_id: e.detail
            for e in orch.get_run_entries(run.run_id)
            if e.state_transition.endswith("->skipped")
        }
        assert skipped["changelog_generate"] == "condition push_to_main not met"
        assert skipped["changelog_publish"] == "upstream changelog_generate skipped"
