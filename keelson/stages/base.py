"""Abstract base stage with an enforced lifecycle.

Every concrete stage inherits from BaseStage and implements only ``execute()``.
The ``run_stage()`` wrapper is **not overridable**; it fixes the order:

    compute_input_hash -> execute -> compute_output_hash

The orchestrator owns the state machine, so prerequisite checks and ledger
records happen there; a stage only turns its inputs into a result dict.
"""

from __future__ import annotations

import abc
import logging
from typing import Any, ClassVar, final

from pydantic import BaseModel

from keelson.core.hasher import compute_input_hash, compute_output_hash

logger = logging.getLogger(__name__)


class StageExecutionError(RuntimeError):
    """Raised when a stage's execute() method fails.

    The original exception is always chained as ``__cause__``.
    """

    def __init__(
        self,
        stage_id: str,
        message: str,
        *,
        input_hash: str = "",
        partial_result: Any = None,
    ) -> None:
        super().__init__(message)
        self.stage_id = stage_id
        self.input_hash = input_hash
        self.partial_result = partial_result


def to_hashable(value: Any) -> Any:
    """Convert stage results (pydantic models, nested containers) to JSON data."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {str(k): to_hashable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_hashable(v) for v in value]
    return value


class BaseStage(abc.ABC):
    """Abstract base for all Keelson pipeline stages.

    Subclasses **must** implement:
        * ``stage_id``   — unique identifier (e.g. ``"verify"``).
        * ``display_name`` — human-readable name shown in status output.
        * ``execute(run_context)`` — the stage's core logic.

    Subclasses **must not** override ``run_stage()``.

    ``run_context`` is a dict shared by every stage of one pipeline instance:
    ``run_id``, ``trigger``, ``pipeline_config``, ``settings``,
    ``workspace``, the services (``runner``, ``git``, ``cache``,
    ``changelog``, ``publisher``) and ``stage_results`` holding every
    finished stage's result dict.
    """

    is_gate: ClassVar[bool] = False

    @property
    @abc.abstractmethod
    def stage_id(self) -> str:
        ...

    @property
    @abc.abstractmethod
    def display_name(self) -> str:
        ...

    @abc.abstractmethod
    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Execute the stage's core logic and return a structured result."""
        ...

    # ------------------------------------------------------------------
    # Lifecycle (not overridable)
    # ------------------------------------------------------------------

    @final
    def run_stage(self, run_context: dict[str, Any]) -> dict[str, Any]:
        """Execute the full stage lifecycle.  **Do not override.**

        Returns the result dict produced by ``execute()``, augmented with
        ``_input_hash`` and ``_output_hash`` keys.  Any exception from
        ``execute()`` is re-raised as ``StageExecutionError``; the partial
        result a failing stage attaches as ``exc.result`` is preserved on
        the wrapper.
        """
        input_hash = self._compute_input_hash(run_context)
        logger.info("%s [%s] input_hash=%s", self.display_name, self.stage_id, input_hash[:12])

        try:
            result = self.execute(run_context)
        except Exception as exc:
            logger.error("%s [%s] failed: %s", self.display_name, self.stage_id, exc)
            raise StageExecutionError(
                self.stage_id,
                f"Stage {self.stage_id} failed: {exc}",
                input_hash=input_hash,
                partial_result=getattr(exc, "result", None),
            ) from exc

        output_hash = self._compute_output_hash(result)
        logger.info("%s [%s] output_hash=%s", self.display_name, self.stage_id, output_hash[:12])

        result["_input_hash"] = input_hash
        result["_output_hash"] = output_hash
        return result

    @final
    def _compute_input_hash(self, run_context: dict[str, Any]) -> str:
        """SHA-256 of canonical(stage_id + trigger + prior output hashes)."""
        inputs: dict[str, Any] = {
            "run_id": run_context.get("run_id", ""),
            "trigger": to_hashable(run_context.get("trigger")),
            "prior_output_hashes": {
                sid: result.get("_output_hash", "")
                for sid, result in run_context.get("stage_results", {}).items()
            },
        }
        return compute_input_hash(self.stage_id, inputs)

    @final
    def _compute_output_hash(self, result: dict[str, Any]) -> str:
        hashable = {k: to_hashable(v) for k, v in result.items() if not k.startswith("_")}
        return compute_output_hash(self.stage_id, hashable)

    def __repr__(self) -> str:
        gate = " [GATE]" if self.is_gate else ""
        return f"<{type(self).__name__} stage_id={self.stage_id!r}{gate}>"
