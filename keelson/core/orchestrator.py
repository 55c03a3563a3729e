"""Pipeline orchestrator — the central coordinator for Keelson runs.

The Orchestrator turns a RunTrigger into pipeline instances and executes
each one.  It wires together the RunLedger, a StageMachine and
PrerequisiteGraph per instance, and the services the stages use (tool
runner, git, dependency cache, changelog generator, release publisher).

Execution model:

* every pipeline instance is isolated: own run id, own stage machine,
  own run context; a failure never crosses instances;
* stages whose prerequisites have passed are submitted together to a
  thread pool, so independent jobs (release build and release changelog)
  run concurrently;
* a stage whose condition is false for the trigger is SKIPPED, which
  skips its dependents too;
* fail-fast: after the first failure nothing new is started, in-flight
  stages finish, and every stage still NOT_STARTED is BLOCKED.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any

from keelson.config import Settings
from keelson.config import settings as default_settings
from keelson.core.changelog import ChangelogGenerator
from keelson.core.dependency_cache import DependencyCache
from keelson.core.git_client import GitClient
from keelson.core.hasher import compute_output_hash
from keelson.core.prerequisite_graph import PrerequisiteGraph
from keelson.core.release_publisher import ReleasePublisher, ReleasePublishError
from keelson.core.run_ledger import RunLedger
from keelson.core.stage_machine import StageMachine
from keelson.core.tool_runner import SubprocessRunner, ToolRunner
from keelson.core.triggers import evaluate_condition, select_pipelines
from keelson.models.config import PipelineConfig, load_pipeline_config
from keelson.models.ledger import LedgerEntry
from keelson.models.pipelines import PIPELINES, PipelineDefinition, PipelineKind, PipelineRun
from keelson.models.stages import StageState
from keelson.models.trigger import RunTrigger
from keelson.stages import StageExecutionError, get_stage

logger = logging.getLogger(__name__)


def new_run_id() -> str:
    return f"kl-{uuid.uuid4().hex[:12]}"


def plan_pipelines(
    trigger: RunTrigger, config: PipelineConfig
) -> dict[PipelineKind, dict[str, bool]]:
    """Map each pipeline the trigger starts to ``{stage_id: will_run}``.

    A stage runs unless its condition is false or a prerequisite is
    skipped.  Pure: no tool, file or ledger is touched.
    """
    planned: dict[PipelineKind, dict[str, bool]] = {}
    for kind in select_pipelines(trigger, config):
        graph = PrerequisiteGraph(PIPELINES[kind].stages)
        will_run: dict[str, bool] = {}
        for stage_id in graph.stage_ids:
            condition = graph.get_stage_definition(stage_id).condition
            met = condition is None or evaluate_condition(condition, trigger, config)
            will_run[stage_id] = met and all(
                will_run[p] for p in graph.get_prerequisites(stage_id)
            )
        planned[kind] = will_run
    return planned


class Orchestrator:
    """Central pipeline orchestrator.

    Parameters
    ----------
    config:
        Pipeline configuration.  Loaded from the workspace if not provided.
    settings:
        Process settings.  Defaults to the module-level ``settings``.
    runner:
        Tool runner for every external command.  Defaults to a
        ``SubprocessRunner`` rooted at the workspace.
    publisher:
        Release backend.  Built from ``config.release`` on first use if
        not provided.
    workspace:
        Repository working tree.  Defaults to ``settings.workspace``.
    """

    def __init__(
        self,
        config: PipelineConfig | None = None,
        *,
        settings: Settings | None = None,
        runner: ToolRunner | None = None,
        publisher: ReleasePublisher | None = None,
        workspace: Path | None = None,
    ) -> None:
        self.settings = settings or default_settings
        self.workspace = Path(workspace or self.settings.workspace)
        self.config = config or load_pipeline_config(
            self.settings.config_file, workspace=self.workspace
        )

        ledger_path = self.config.ledger_db_path
        if not ledger_path.is_absolute():
            ledger_path = self.workspace / ledger_path
        self.ledger = RunLedger(ledger_path)

        self.runner = runner or SubprocessRunner(
            self.workspace, timeout_seconds=self.settings.command_timeout_seconds
        )
        self.publisher = publisher
        self.git = GitClient(self.runner, self.workspace)
        self.cache = DependencyCache(self.config.cache, self.workspace)
        self.changelog = ChangelogGenerator(self.runner, self.config.changelog, self.workspace)

    # ------------------------------------------------------------------
    # Planning (pure)
    # ------------------------------------------------------------------

    def plan(self, trigger: RunTrigger) -> dict[PipelineKind, dict[str, bool]]:
        """Which pipelines and stages a trigger would run.  Nothing is executed."""
        return plan_pipelines(trigger, self.config)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def dispatch(self, trigger: RunTrigger) -> list[PipelineRun]:
        """Start one instance of every pipeline the trigger matches."""
        kinds = select_pipelines(trigger, self.config)
        if not kinds:
            logger.info("No pipeline matches %s on %s", trigger.event.value, trigger.ref)
        return [self.run_pipeline(PIPELINES[kind], trigger) for kind in kinds]

    def run_pipeline(self, definition: PipelineDefinition, trigger: RunTrigger) -> PipelineRun:
        """Execute one pipeline instance to completion and return its outcome."""
        run_id = new_run_id()
        graph = PrerequisiteGraph(definition.stages)
        machine = StageMachine(self.ledger, graph, pipeline=definition.kind.value)
        machine.initialize_run(run_id)

        stage_results: dict[str, dict[str, Any]] = {}
        errors: dict[str, str] = {}
        run_context: dict[str, Any] = {
            "run_id": run_id,
            "trigger": trigger,
            "pipeline_config": self.config,
            "settings": self.settings,
            "workspace": self.workspace,
            "runner": self.runner,
            "git": self.git,
            "cache": self.cache,
            "changelog": self.changelog,
            "publisher": self.publisher,
            "stage_results": stage_results,
        }

        logger.info(
            "Run %s: %s pipeline for %s %s@%s",
            run_id, definition.kind.value, trigger.event.value, trigger.ref_name, trigger.short_sha,
        )

        halted = False
        with ThreadPoolExecutor(
            max_workers=max(1, self.settings.max_parallel_jobs),
            thread_name_prefix=f"keelson-{definition.kind.value}",
        ) as pool:
            in_flight: dict[Future, str] = {}
            while True:
                if not halted:
                    for stage_id in machine.ready_stages(run_id):
                        if not self._condition_met(graph, stage_id, trigger):
                            machine.transition(
                                run_id, stage_id, StageState.SKIPPED,
                                detail=f"condition {graph.get_stage_definition(stage_id).condition} not met",
                            )
                            logger.info("Run %s: %s skipped", run_id, stage_id)
                            continue
                        machine.transition(run_id, stage_id, StageState.RUNNING)
                        # Each stage sees a snapshot of the results finished so far.
                        stage_context = {**run_context, "stage_results": dict(stage_results)}
                        future = pool.submit(get_stage(stage_id).run_stage, stage_context)
                        in_flight[future] = stage_id

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for future in done:
                    stage_id = in_flight.pop(future)
                    try:
                        result = future.result()
                    except StageExecutionError as exc:
                        self._record_failure(machine, run_id, stage_id, exc, stage_results, errors)
                        if not halted:
                            halted = True
                            blocked = machine.halt_remaining(run_id, f"halted after {stage_id} failed")
                            if blocked:
                                logger.info("Run %s: fail-fast blocked %s", run_id, ", ".join(blocked))
                        continue

                    stage_results[stage_id] = result
                    machine.transition(
                        run_id, stage_id, StageState.PASSED,
                        input_hash=result.get("_input_hash", ""),
                        output_hash=result.get("_output_hash", ""),
                    )

        states = machine.get_all_states(run_id)
        run = PipelineRun(
            run_id=run_id,
            pipeline=definition.kind,
            trigger=trigger,
            states=states,
            stage_results=stage_results,
            errors=errors,
        )
        logger.info(
            "Run %s: %s pipeline %s",
            run_id, definition.kind.value, "succeeded" if run.succeeded else "FAILED",
        )
        return run

    def _condition_met(self, graph: PrerequisiteGraph, stage_id: str, trigger: RunTrigger) -> bool:
        condition = graph.get_stage_definition(stage_id).condition
        return condition is None or evaluate_condition(condition, trigger, self.config)

    @staticmethod
    def _record_failure(
        machine: StageMachine,
        run_id: str,
        stage_id: str,
        exc: StageExecutionError,
        stage_results: dict[str, dict[str, Any]],
        errors: dict[str, str],
    ) -> None:
        cause = exc.__cause__ or exc
        message = str(cause)
        errors[stage_id] = message
        stage_results[stage_id] = {"error": message, "partial_result": exc.partial_result}

        if isinstance(cause, ReleasePublishError) and cause.partial:
            logger.error(
                "Run %s: release left in a partial state at %s; manual cleanup required",
                run_id, cause.url or "the release host",
            )

        machine.transition(
            run_id, stage_id, StageState.FAILED,
            input_hash=exc.input_hash,
            output_hash=compute_output_hash(stage_id, {"error": message}),
            detail=message,
        )

    # ------------------------------------------------------------------
    # Query methods
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run."""
        return self.ledger.get_run_entries(run_id)

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain integrity of a run's ledger."""
        return self.ledger.verify_chain(run_id)
