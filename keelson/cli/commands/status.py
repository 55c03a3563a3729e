"""``keelson status RUN_ID`` and ``keelson runs`` — read the Run Ledger.

Both are read-only projections: they never change the ledger.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.table import Table

from keelson.cli.options import EXIT_FAILED, console, get_state
from keelson.core.run_ledger import LedgerIntegrityError
from keelson.monitor.projection import RunProjection
from keelson.monitor.renderer import RunRenderer

LedgerOption = typer.Option(
    None, "--ledger", "-l", help="Path to the ledger SQLite database."
)


def status_cmd(
    ctx: typer.Context,
    run_id: str = typer.Argument(..., help="The pipeline run ID to show."),
    ledger_db: Path = LedgerOption,
) -> None:
    """Show the recorded stage states of a run."""
    ledger = get_state(ctx).open_ledger(ledger_db)

    if not ledger.get_run_entries(run_id):
        console.print(f"[bold red]Run not found:[/bold red] {run_id}")
        recent = ledger.get_all_run_ids()
        if recent:
            console.print("\n[bold]Recent runs:[/bold]")
            for rid in recent[:10]:
                console.print(f"  [cyan]{rid}[/cyan]")
        raise typer.Exit(code=EXIT_FAILED)

    RunRenderer(console=console).print_snapshot(RunProjection(ledger).snapshot(run_id))


def runs_cmd(
    ctx: typer.Context,
    limit: int = typer.Option(20, "--limit", "-n", help="How many runs to list."),
    ledger_db: Path = LedgerOption,
) -> None:
    """List recorded runs, most recent first."""
    ledger = get_state(ctx).open_ledger(ledger_db)
    projection = RunProjection(ledger)

    run_ids = ledger.get_all_run_ids()[:limit]
    if not run_ids:
        console.print("[dim]No runs recorded.[/dim]")
        return

    table = Table(title="Recorded runs", header_style="bold cyan")
    table.add_column("Run", style="cyan")
    table.add_column("Pipeline")
    table.add_column("Passed", justify="right")
    table.add_column("Result", justify="center")
    table.add_column("Last update")
    for rid in run_ids:
        snapshot = projection.snapshot(rid)
        result = "[green]ok[/green]" if snapshot.succeeded else "[red]failed[/red]"
        table.add_row(
            rid,
            snapshot.pipeline,
            f"{snapshot.completed_count}/{snapshot.total_stages}",
            result,
            snapshot.last_updated.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


def verify_ledger_cmd(
    ctx: typer.Context,
    run_id: str = typer.Argument(..., help="The pipeline run ID to verify."),
    ledger_db: Path = LedgerOption,
) -> None:
    """Verify the hash chain of a run's ledger entries."""
    ledger = get_state(ctx).open_ledger(ledger_db)
    renderer = RunRenderer(console=console)
    try:
        valid = ledger.verify_chain(run_id)
    except LedgerIntegrityError as exc:
        renderer.print_chain_verification(run_id, False, str(exc))
        raise typer.Exit(code=EXIT_FAILED) from exc
    renderer.print_chain_verification(run_id, valid)
