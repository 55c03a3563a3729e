"""Verification gate: format, lint, test.

The checks run in that order and each is pass/fail by exit status.  The
gate is strictly fail-fast: the first failing check stops the gate and the
remaining checks are never invoked.  There are no retries.
"""

from __future__ import annotations

import logging
from typing import Any, ClassVar

from keelson.core.tool_runner import ToolInvocationError, ToolRunner, output_tail
from keelson.models.config import CheckKind, PipelineConfig
from keelson.models.results import CheckOutcome, CommandResult, VerificationResult
from keelson.stages.base import BaseStage

logger = logging.getLogger(__name__)

_CHECK_ORDER = (CheckKind.FORMAT, CheckKind.LINT, CheckKind.TEST)
_RESULT_FIELDS = {
    CheckKind.FORMAT: "format_ok",
    CheckKind.LINT: "lint_ok",
    CheckKind.TEST: "tests_ok",
}


class GateFailedError(RuntimeError):
    """Raised when a verification check fails.

    ``result`` is the partial VerificationResult up to and including the
    failing check.
    """

    def __init__(self, message: str, result: VerificationResult) -> None:
        super().__init__(message)
        self.result = result


def run_checks(config: PipelineConfig, runner: ToolRunner) -> VerificationResult:
    """Run the configured checks in gate order, stopping at the first failure.

    A check kind with no configured command counts as passed.
    """
    flags = {field: False for field in _RESULT_FIELDS.values()}
    outcomes: list[CheckOutcome] = []

    for kind in _CHECK_ORDER:
        spec = config.check_for(kind)
        if spec is None:
            flags[_RESULT_FIELDS[kind]] = True
            continue
        try:
            result = runner.run(spec.command, check=False)
        except ToolInvocationError as exc:
            result = exc.result or CommandResult(
                command=list(spec.command), returncode=-1, stderr=str(exc)
            )
        outcome = CheckOutcome(
            kind=kind,
            passed=result.ok,
            returncode=result.returncode,
            duration_seconds=result.duration_seconds,
            output_tail=output_tail(result),
        )
        outcomes.append(outcome)
        flags[_RESULT_FIELDS[kind]] = outcome.passed
        logger.info("%s check %s", kind.value, "passed" if outcome.passed else "FAILED")
        if not outcome.passed:
            break

    return VerificationResult(checks=outcomes, **flags)


class VerificationStage(BaseStage):
    """The mandatory gate in front of every side effect."""

    is_gate: ClassVar[bool] = True

    @property
    def stage_id(self) -> str:
        return "verify"

    @property
    def display_name(self) -> str:
        return "Verification Gate"

    def execute(self, run_context: dict[str, Any]) -> dict[str, Any]:
        verification = run_checks(run_context["pipeline_config"], run_context["runner"])
        failure = verification.first_failure
        if failure is not None:
            raise GateFailedError(
                f"{failure.kind.value} check failed with status {failure.returncode}",
                verification,
            )
        return {"verification": verification}
