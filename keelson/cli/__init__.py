"""Keelson CLI — Typer-based command-line interface.

Provides the ``keelson`` command with subcommands for running and planning
pipelines, inspecting the dependency cache key, and reading the run ledger.

All output uses Rich for formatted terminal display.
"""
