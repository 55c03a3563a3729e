"""Main Typer application — registers all CLI commands.

Entry point: ``keelson`` (configured via pyproject.toml scripts).

Commands: run, plan, cache-key, status, runs, verify-ledger.
"""

from __future__ import annotations

from pathlib import Path

import typer

from keelson.cli.commands.cache_key import cache_key_cmd
from keelson.cli.commands.plan import plan_cmd
from keelson.cli.commands.run import run_cmd
from keelson.cli.commands.status import runs_cmd, status_cmd, verify_ledger_cmd
from keelson.cli.options import CliState
from keelson.config import Settings
from keelson.log import configure_logging

app = typer.Typer(
    name="keelson",
    help="Keelson: test and release pipelines for a Rust service.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    workspace: Path = typer.Option(
        None, "--workspace", "-w", help="Repository working tree (default: KEELSON_WORKSPACE or .)."
    ),
    config_file: Path = typer.Option(
        None, "--config", "-c", help="keelson.toml or pyproject.toml to load."
    ),
    log_level: str = typer.Option(
        None, "--log-level", help="DEBUG, INFO, WARNING or ERROR."
    ),
) -> None:
    """Global options, applied on top of KEELSON_* settings."""
    settings = Settings()
    overrides: dict = {}
    if workspace is not None:
        overrides["workspace"] = workspace
    if config_file is not None:
        overrides["config_file"] = config_file
    if log_level is not None:
        overrides["log_level"] = log_level
    if overrides:
        settings = settings.model_copy(update=overrides)

    try:
        configure_logging("DEBUG" if settings.debug else settings.log_level)
    except ValueError as exc:
        raise typer.BadParameter(str(exc), param_hint="--log-level") from exc
    ctx.obj = CliState(settings=settings)


# Register subcommands
app.command(name="run", help="Run the pipelines a trigger matches.")(run_cmd)
app.command(name="plan", help="Show which pipelines and stages a trigger would run.")(plan_cmd)
app.command(name="cache-key", help="Print the dependency Cache Key.")(cache_key_cmd)
app.command(name="status", help="Show the stage states recorded for a run.")(status_cmd)
app.command(name="runs", help="List recorded runs.")(runs_cmd)
app.command(name="verify-ledger", help="Verify a run's ledger hash chain.")(verify_ledger_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
