"""``keelson plan`` — show what a trigger would run, without running it."""

from __future__ import annotations

import typer
from rich.table import Table

from keelson.cli.options import (
    ActorOption,
    BaseRefOption,
    EventOption,
    FromEnvOption,
    MessageOption,
    RefOption,
    ShaOption,
    build_trigger,
    console,
    get_state,
)
from keelson.core.orchestrator import plan_pipelines
from keelson.models.pipelines import PIPELINES


def plan_cmd(
    ctx: typer.Context,
    from_env: bool = FromEnvOption,
    event: str = EventOption,
    ref: str = RefOption,
    sha: str = ShaOption,
    base_ref: str = BaseRefOption,
    actor: str = ActorOption,
    message: str = MessageOption,
) -> None:
    """Print the pipelines and stages a trigger would run."""
    state = get_state(ctx)
    trigger = build_trigger(
        from_env=from_env,
        event=event,
        ref=ref,
        sha=sha,
        base_ref=base_ref,
        actor=actor,
        message=message,
    )

    planned = plan_pipelines(trigger, state.load_config())
    if not planned:
        console.print(f"No pipeline matches {trigger.event.value} on {trigger.ref}.")
        return

    for kind, will_run in planned.items():
        definition = PIPELINES[kind]
        table = Table(title=f"{definition.display_name} pipeline", header_style="bold cyan")
        table.add_column("Stage", style="cyan")
        table.add_column("After")
        table.add_column("Runs", justify="center")

        for sd in definition.stages:
            verdict = "[green]yes[/green]" if will_run[sd.stage_id] else "[dim]skipped[/dim]"
            if sd.condition:
                verdict += f" [dim]({sd.condition})[/dim]"
            table.add_row(sd.stage_id, ", ".join(sd.prerequisites) or "-", verdict)
        console.print(table)
