"""Shared test fixtures for Keelson."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Any

import pytest

from keelson.config import Settings
from keelson.core.orchestrator import Orchestrator
from keelson.core.prerequisite_graph import PrerequisiteGraph
from keelson.core.run_ledger import RunLedger
from keelson.core.stage_machine import StageMachine
from keelson.core.tool_runner import ToolInvocationError
from keelson.models.config import CacheConfig, PipelineConfig, ReleaseConfig
from keelson.models.pipelines import TEST_PIPELINE
from keelson.models.results import CommandResult
from keelson.models.trigger import EventKind, RunTrigger

Effect = Callable[[list[str], Path | None], None]


class FakeRunner:
    """Scripted ToolRunner: answers commands by prefix and records every call.

    Rules registered later win.  Unmatched commands succeed with no output.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self._rules: list[tuple[tuple[str, ...], dict[str, Any]]] = []

    def on(
        self,
        *prefix: str,
        returncode: int = 0,
        stdout: str = "",
        stderr: str = "",
        effect: Effect | None = None,
    ) -> FakeRunner:
        self._rules.append(
            (prefix, {"returncode": returncode, "stdout": stdout, "stderr": stderr, "effect": effect})
        )
        return self

    def run(
        self,
        command: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Any = None,
        check: bool = True,
    ) -> CommandResult:
        argv = [str(part) for part in command]
        self.calls.append(argv)
        rule: dict[str, Any] = {"returncode": 0, "stdout": "", "stderr": "", "effect": None}
        for prefix, candidate in reversed(self._rules):
            if tuple(argv[: len(prefix)]) == prefix:
                rule = candidate
                break
        if rule["effect"] is not None:
            rule["effect"](argv, cwd)
        result = CommandResult(
            command=argv,
            returncode=rule["returncode"],
            stdout=rule["stdout"],
            stderr=rule["stderr"],
        )
        if check and not result.ok:
            raise ToolInvocationError(f"{result.display} exited with status {result.returncode}", result)
        return result

    def invoked(self, *prefix: str) -> list[list[str]]:
        """Every recorded call starting with *prefix*."""
        return [call for call in self.calls if tuple(call[: len(prefix)]) == prefix]


def write_output_file(content: str) -> Effect:
    """Effect that writes *content* to the path following ``--output``."""

    def _effect(argv: list[str], cwd: Path | None) -> None:
        target = Path(argv[argv.index("--output") + 1])
        if not target.is_absolute() and cwd is not None:
            target = Path(cwd) / target
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")

    return _effect


def write_file(path: Path, data: bytes = b"\x7fELF binary") -> Effect:
    def _effect(argv: list[str], cwd: Path | None) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)

    return _effect


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture
def ledger(tmp_dir: Path) -> RunLedger:
    """Provide a fresh RunLedger backed by a temp SQLite database."""
    return RunLedger(tmp_dir / "test_ledger.db")


@pytest.fixture
def graph() -> PrerequisiteGraph:
    """Provide a PrerequisiteGraph with the test pipeline stages."""
    return PrerequisiteGraph(TEST_PIPELINE.stages)


@pytest.fixture
def stage_machine(ledger: RunLedger, graph: PrerequisiteGraph) -> StageMachine:
    return StageMachine(ledger, graph, pipeline="test")


@pytest.fixture
def run_id() -> str:
    """Provide a deterministic test run ID."""
    return "kl-test-run-001"


# ---------------------------------------------------------------------------
# Workspace, configuration and orchestration
# ---------------------------------------------------------------------------


@pytest.fixture
def workspace(tmp_dir: Path) -> Path:
    """A repository checkout with a Cargo.lock and a git-cliff config."""
    repo = tmp_dir / "repo"
    repo.mkdir()
    (repo / "Cargo.lock").write_text('version = 3\n\n[[package]]\nname = "pirate_api"\n')
    (repo / ".github").mkdir()
    (repo / ".github" / "cliff.toml").write_text("[changelog]\n")
    return repo


@pytest.fixture
def pipeline_config(tmp_dir: Path) -> PipelineConfig:
    """Default pipelines with every side effect kept inside tmp_dir."""
    return PipelineConfig(
        ledger_db_path=tmp_dir / "ledger.db",
        cache=CacheConfig(store_path=tmp_dir / "cache-store", paths=["target"]),
        release=ReleaseConfig(backend="local", local_path=tmp_dir / "releases"),
    )


@pytest.fixture
def settings(workspace: Path) -> Settings:
    return Settings(workspace=workspace, max_parallel_jobs=4, dry_run=False)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def tools_on_path(monkeypatch: pytest.MonkeyPatch) -> None:
    """Every required tool resolves on PATH."""
    monkeypatch.setattr("keelson.stages.provision.shutil.which", lambda tool: f"/usr/bin/{tool}")


@pytest.fixture
def make_orchestrator(
    pipeline_config: PipelineConfig,
    settings: Settings,
    workspace: Path,
    fake_runner: FakeRunner,
    tools_on_path: None,
) -> Callable[..., Orchestrator]:
    def _factory(**overrides: Any) -> Orchestrator:
        kwargs: dict[str, Any] = {
            "settings": settings,
            "runner": fake_runner,
            "workspace": workspace,
        }
        kwargs.update(overrides)
        config = kwargs.pop("config", pipeline_config)
        return Orchestrator(config, **kwargs)

    return _factory


# ---------------------------------------------------------------------------
# Trigger factories
# ---------------------------------------------------------------------------


@pytest.fixture
def push_to_main() -> RunTrigger:
    return RunTrigger(
        event=EventKind.PUSH,
        ref="refs/heads/main",
        sha="a1b2c3d4e5f6",
        actor="octocat",
        head_commit_message="feat: add parrot endpoint",
    )


@pytest.fixture
def pull_request() -> RunTrigger:
    return RunTrigger(
        event=EventKind.PULL_REQUEST,
        ref="refs/pull/7/merge",
        sha="0f9e8d7c6b5a",
        base_ref="main",
        actor="octocat",
    )


@pytest.fixture
def tag_push() -> RunTrigger:
    return RunTrigger(
        event=EventKind.TAG_PUSH,
        ref="refs/tags/v1.2.0",
        sha="1234abcd5678",
        actor="octocat",
    )
