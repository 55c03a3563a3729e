"""``keelson cache-key`` — print the dependency Cache Key for the workspace."""

from __future__ import annotations

import typer

from keelson.cli.options import console, get_state
from keelson.core.dependency_cache import DependencyCache


def cache_key_cmd(
    ctx: typer.Context,
    os_name: str = typer.Option(
        None, "--os", help="OS class to key for (Linux, macOS, Windows). Defaults to this runner."
    ),
    check: bool = typer.Option(
        False, "--check", help="Also report whether an archive exists for the key."
    ),
) -> None:
    """Print the Cache Key derived from the lockfiles."""
    state = get_state(ctx)
    cache = DependencyCache(state.load_config().cache, state.workspace)
    key = cache.key(os_name=os_name)
    console.print(key, highlight=False)
    if check:
        hit = cache.archive_path(key).exists()
        console.print("[green]cached[/green]" if hit else "[dim]not cached[/dim]")
