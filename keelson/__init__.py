"""Keelson: CI orchestration for a Rust service.

Two pipelines driven by version-control events:
  - test: provision the toolchain, restore the dependency cache, gate on
    format, lint and tests, and on a push to main regenerate and commit
    the changelog
  - release: on a version tag, build the binary and the changelog excerpt
    in parallel, then publish a release carrying both
Every stage transition is recorded in a hash-chained SQLite run ledger.
"""

__version__ = "0.1.0"
__description__ = "Test and release pipeline orchestration with a hash-chained run ledger"

from keelson.core.orchestrator import Orchestrator
from keelson.monitor.projection import RunProjection
from keelson.cli.app import app as cli

__all__ = ["Orchestrator", "RunProjection", "cli", "__version__"]
