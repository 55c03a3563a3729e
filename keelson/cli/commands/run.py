"""``keelson run`` — execute every pipeline the trigger matches.

Exit status is 0 when every started pipeline succeeded (or none matched),
1 when any pipeline failed, 2 on configuration or trigger errors.
"""

from __future__ import annotations

import typer

from keelson.cli.options import (
    EXIT_FAILED,
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
from keelson.core.orchestrator import Orchestrator
from keelson.monitor.renderer import RunRenderer


def run_cmd(
    ctx: typer.Context,
    from_env: bool = FromEnvOption,
    event: str = EventOption,
    ref: str = RefOption,
    sha: str = ShaOption,
    base_ref: str = BaseRefOption,
    actor: str = ActorOption,
    message: str = MessageOption,
    dry_run: bool = typer.Option(
        False, "--dry-run", help="Publish releases locally and do not push the changelog."
    ),
) -> None:
    """Run the pipelines for a trigger."""
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
    settings = state.settings
    if dry_run and not settings.dry_run:
        settings = settings.model_copy(update={"dry_run": True})

    orchestrator = Orchestrator(state.load_config(), settings=settings, workspace=state.workspace)
    runs = orchestrator.dispatch(trigger)

    if not runs:
        console.print(
            f"[dim]No pipeline matches {trigger.event.value} on {trigger.ref}; nothing to do.[/dim]"
        )
        return

    renderer = RunRenderer(console=console)
    for pipeline_run in runs:
        renderer.print_run(pipeline_run)

    if not all(r.succeeded for r in runs):
        raise typer.Exit(code=EXIT_FAILED)
