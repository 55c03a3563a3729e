"""Shared option handling for the CLI commands."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console

from keelson.config import Settings
from keelson.core.run_ledger import RunLedger
from keelson.models.config import ConfigError, PipelineConfig, load_pipeline_config
from keelson.models.trigger import BRANCH_PREFIX, TAG_PREFIX, EventKind, RunTrigger

console = Console()

EXIT_FAILED = 1
EXIT_CONFIG = 2


@dataclass
class CliState:
    """Options from the top-level callback, stored on ``ctx.obj``."""

    settings: Settings

    @property
    def workspace(self) -> Path:
        return self.settings.workspace

    def load_config(self) -> PipelineConfig:
        try:
            return load_pipeline_config(self.settings.config_file, workspace=self.workspace)
        except ConfigError as exc:
            console.print(f"[bold red]Configuration error:[/bold red] {exc}")
            raise typer.Exit(code=EXIT_CONFIG) from exc

    def ledger_path(self, override: Path | None = None) -> Path:
        path = override or self.load_config().ledger_db_path
        return path if path.is_absolute() else self.workspace / path

    def open_ledger(self, override: Path | None = None) -> RunLedger:
        path = self.ledger_path(override)
        if not path.exists():
            console.print(f"[bold red]Ledger not found:[/bold red] {path}")
            console.print("[dim]Record a run first with: keelson run[/dim]")
            raise typer.Exit(code=EXIT_FAILED)
        return RunLedger(path)


def get_state(ctx: typer.Context) -> CliState:
    if ctx.obj is None:
        ctx.obj = CliState(settings=Settings())
    return ctx.obj


def build_trigger(
    *,
    from_env: bool,
    event: str | None,
    ref: str | None,
    sha: str,
    base_ref: str | None,
    actor: str,
    message: str,
) -> RunTrigger:
    """Build a RunTrigger from CLI options or the hosting environment.

    A bare branch or tag name is qualified: ``main`` becomes
    ``refs/heads/main``; for ``tag_push`` ``v1.2.0`` becomes
    ``refs/tags/v1.2.0``.
    """
    try:
        if from_env:
            return RunTrigger.from_github_env()
        if not event or not ref:
            raise ValueError("--event and --ref are required unless --from-env is given")
        kind = EventKind(event)
        if not ref.startswith("refs/"):
            ref = f"{TAG_PREFIX if kind == EventKind.TAG_PUSH else BRANCH_PREFIX}{ref}"
        return RunTrigger(
            event=kind,
            ref=ref,
            sha=sha,
            base_ref=base_ref,
            actor=actor,
            head_commit_message=message,
        )
    except ValueError as exc:
        console.print(f"[bold red]Invalid trigger:[/bold red] {exc}")
        raise typer.Exit(code=EXIT_CONFIG) from exc


# Typer option declarations shared by ``run`` and ``plan``.
FromEnvOption = typer.Option(
    False, "--from-env", help="Read the trigger from GITHUB_* environment variables."
)
EventOption = typer.Option(
    None, "--event", "-e", help="push, pull_request or tag_push."
)
RefOption = typer.Option(
    None, "--ref", "-r", help="Git ref or bare branch/tag name."
)
ShaOption = typer.Option("", "--sha", help="Commit sha being built.")
BaseRefOption = typer.Option(
    None, "--base-ref", help="Target branch of a pull request."
)
ActorOption = typer.Option("", "--actor", help="Who triggered the event.")
MessageOption = typer.Option(
    "", "--message", "-m", help="Head commit message."
)
