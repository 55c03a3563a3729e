"""Dependency cache stages.

Restore runs before the verification gate; save runs after it passes.
Neither can fail the pipeline: errors are logged by the cache and carried
in the returned ``CacheOutcome``.
"""

from __future__ import annotations

from typing import Any

from keelson.core.dependency_cache import DependencyCache
from keelson.models.results import CacheOutcome
from keelson.stages.base import BaseStage


class CacheRestoreStage(BaseStage):
    """Restore the dependency cache for the current Cache Key."""

    @property
    def stage_id(self) -> str:
        return "cache_restore"

    @property
    def display_name(self) -> str:
        return "Dependency Cache Restore"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        cache: DependencyCache = run_context["cache"]
        if not cache.enabled:
            return {"key": "", "outcome": CacheOutcome(key="")}
        key, error = cache.safe_key()
        if error:
            return {"key": "", "outcome": CacheOutcome(key="", error=error)}
        return {"key": key, "outcome": cache.restore(key)}


class CacheSaveStage(BaseStage):
    """Save the dependency cache after a passing gate, unless it was a hit."""

    @property
    def stage_id(self) -> str:
        return "cache_save"

    @property
    def display_name(self) -> str:
        return "Dependency Cache Save"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        cache: DependencyCache = run_context["cache"]
        if not cache.enabled:
            return {"key": "", "outcome": CacheOutcome(key="")}

        restored = run_context.get("stage_results", {}).get("cache_restore", {})
        previous: CacheOutcome | None = restored.get("outcome")
        key, error = (restored.get("key"), "") if restored.get("key") else cache.safe_key()

        if error:
            outcome = CacheOutcome(key="", error=error)
        elif previous is not None and previous.hit:
            outcome = CacheOutcome(key=key, hit=True, saved=False)
        else:
            outcome = cache.save(key)
        return {"key": key, "outcome": outcome}
