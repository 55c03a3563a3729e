"""Rich terminal rendering for run snapshots and pipeline outcomes.

Color scheme
------------
- green     : PASSED
- red       : FAILED, BLOCKED
- yellow    : RUNNING
- cyan      : SKIPPED
- dim       : NOT_STARTED
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from keelson.models.stages import StageState

if TYPE_CHECKING:
    from keelson.models.pipelines import PipelineRun
    from keelson.monitor.projection import RunSnapshot


_STATE_STYLES: dict[StageState, str] = {
    StageState.PASSED: "bold green",
    StageState.FAILED: "bold red",
    StageState.RUNNING: "bold yellow",
    StageState.NOT_STARTED: "dim",
    StageState.SKIPPED: "cyan",
    StageState.BLOCKED: "bold red",
}

_STATE_LABELS: dict[StageState, str] = {
    StageState.PASSED: "[green]PASSED[/green]",
    StageState.FAILED: "[bold red]FAILED[/bold red]",
    StageState.RUNNING: "[yellow]RUNNING[/yellow]",
    StageState.NOT_STARTED: "[dim]NOT STARTED[/dim]",
    StageState.SKIPPED: "[cyan]SKIPPED[/cyan]",
    StageState.BLOCKED: "[bold red]BLOCKED[/bold red]",
}


def state_label(state: StageState) -> str:
    return _STATE_LABELS.get(state, state.value)


class RunRenderer:
    """Renders run snapshots and pipeline outcomes as Rich output.

    Parameters
    ----------
    console:
        Rich Console instance.  A new one is created if not provided.
    """

    def __init__(self, console: Console | None = None) -> None:
        self.console = console or Console()

    def render_snapshot(self, snapshot: RunSnapshot) -> Panel:
        """Render a RunSnapshot as a Panel containing the stage table."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("#", style="dim", width=3, justify="right")
        table.add_column("Stage", min_width=24)
        table.add_column("State", min_width=12, justify="center")
        table.add_column("Details", min_width=20)

        for i, stage in enumerate(snapshot.stages):
            style = _STATE_STYLES.get(stage.state, "")
            details: list[str] = []
            if stage.detail:
                colour = "red" if stage.state in (StageState.FAILED, StageState.BLOCKED) else "dim"
                details.append(f"[{colour}]{stage.detail}[/{colour}]")
            if stage.entered_at:
                details.append(f"[dim]{stage.entered_at.strftime('%H:%M:%S')}[/dim]")
            table.add_row(
                str(i),
                f"[{style}]{stage.display_name}[/{style}]",
                state_label(stage.state),
                " | ".join(details) if details else "[dim]-[/dim]",
            )

        chain = "[green]valid[/green]" if snapshot.chain_valid else "[bold red]BROKEN[/bold red]"
        summary = "  |  ".join(
            [
                f"[bold]Run:[/bold] {snapshot.run_id}",
                f"[bold]Pipeline:[/bold] {snapshot.pipeline or '?'}",
                f"[bold]Passed:[/bold] {snapshot.completed_count}/{snapshot.total_stages}",
                f"[bold]Chain:[/bold] {chain}",
            ]
        )
        return Panel(
            Group(table, Text(""), Text.from_markup(summary)),
            title="[bold]Keelson Run Status[/bold]",
            subtitle=f"Last updated: {snapshot.last_updated.strftime('%Y-%m-%d %H:%M:%S UTC')}",
            border_style="blue",
            padding=(1, 2),
        )

    def render_run(self, run: PipelineRun) -> Panel:
        """Summarise a finished PipelineRun: stage states and errors."""
        table = Table(show_header=True, header_style="bold cyan", expand=True)
        table.add_column("Stage", min_width=22)
        table.add_column("State", justify="center")
        table.add_column("Error")
        for stage_id, state in run.states.items():
            table.add_row(stage_id, state_label(state), run.errors.get(stage_id, ""))

        parts: list = [table]
        release = run.release_record
        if release is not None:
            parts.append(Text.from_markup(f"\n[bold]Release:[/bold] {release.tag} {release.url}"))
        verdict = "[green]succeeded[/green]" if run.succeeded else "[bold red]failed[/bold red]"
        return Panel(
            Group(*parts),
            title=f"[bold]{run.pipeline.value} pipeline[/bold] {run.run_id}",
            subtitle=verdict,
            border_style="green" if run.succeeded else "red",
        )

    def print_snapshot(self, snapshot: RunSnapshot) -> None:
        self.console.print(self.render_snapshot(snapshot))

    def print_run(self, run: PipelineRun) -> None:
        self.console.print(self.render_run(run))

    def print_chain_verification(self, run_id: str, valid: bool, reason: str = "") -> None:
        if valid:
            self.console.print(f"[green]Hash chain for run {run_id} is valid.[/green]")
        else:
            self.console.print(f"[bold red]Hash chain for run {run_id} is BROKEN![/bold red]")
            if reason:
                self.console.print(f"[red]{reason}[/red]")
