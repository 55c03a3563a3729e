"""RunProjection — pure read-only view over the RunLedger.

A run's status is a PROJECTION of the Run Ledger.  Every call re-reads the
ledger; the projection never keeps state of its own.
"""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from keelson.core.run_ledger import LedgerIntegrityError, RunLedger
from keelson.models.ledger import LedgerEntry
from keelson.models.pipelines import PIPELINES, PipelineKind
from keelson.models.stages import StageDefinition, StageState


class StageStatus(BaseModel):
    """Point-in-time status of a single stage, derived from ledger entries."""

    model_config = ConfigDict(frozen=True)

    stage_id: str
    display_name: str
    state: StageState = StageState.NOT_STARTED
    entered_at: datetime | None = None
    detail: str = ""
    output_hash: str = ""


class RunSnapshot(BaseModel):
    """A frozen snapshot of one pipeline run, computed fresh on every call."""

    model_config = ConfigDict(frozen=True)

    run_id: str
    pipeline: str = ""
    pipeline_version: str = "0.1.0"
    stages: list[StageStatus] = []
    entry_count: int = 0
    chain_valid: bool = True
    last_updated: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    @property
    def completed_count(self) -> int:
        return sum(1 for s in self.stages if s.state == StageState.PASSED)

    @property
    def total_stages(self) -> int:
        return len(self.stages)

    @property
    def failed_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.FAILED]

    @property
    def blocked_stages(self) -> list[StageStatus]:
        return [s for s in self.stages if s.state == StageState.BLOCKED]

    @property
    def succeeded(self) -> bool:
        return bool(self.stages) and all(
            s.state in (StageState.PASSED, StageState.SKIPPED) for s in self.stages
        )


class RunProjection:
    """Pure read-only projection over the RunLedger.

    Parameters
    ----------
    ledger:
        The RunLedger to project from.
    """

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger

    def snapshot(self, run_id: str) -> RunSnapshot:
        """Produce a point-in-time snapshot of a run.

        Stage names and ordering come from the pipeline definition recorded
        with the run; stages seen only in the ledger are appended.
        """
        entries = self._ledger.get_run_entries(run_id)
        pipeline = entries[0].pipeline if entries else ""
        definitions = self._definitions_for(pipeline)

        replayed = self._replay(entries)
        order = [sd.stage_id for sd in sorted(definitions, key=lambda sd: sd.ordinal)]
        order += [sid for sid in replayed if sid not in order]
        names = {sd.stage_id: sd.display_name for sd in definitions}

        stages = [
            StageStatus(stage_id=sid, display_name=names.get(sid, sid), **replayed.get(sid, {}))
            for sid in order
        ]

        return RunSnapshot(
            run_id=run_id,
            pipeline=pipeline,
            pipeline_version=entries[-1].pipeline_version if entries else "0.1.0",
            stages=stages,
            entry_count=len(entries),
            chain_valid=self._check_chain_valid(run_id),
            last_updated=entries[-1].timestamp_utc if entries else datetime.now(timezone.utc),
        )

    @staticmethod
    def _definitions_for(pipeline: str) -> list[StageDefinition]:
        try:
            return list(PIPELINES[PipelineKind(pipeline)].stages)
        except ValueError:
            return []

    @staticmethod
    def _replay(entries: list[LedgerEntry]) -> dict[str, dict]:
        """Replay ledger entries: stage_id -> latest StageStatus fields."""
        result: dict[str, dict] = {}
        for entry in entries:
            if "->" not in entry.state_transition:
                continue
            _, to_state = entry.state_transition.split("->", 1)
            try:
                state = StageState(to_state)
            except ValueError:
                continue
            result[entry.stage_id] = {
                "state": state,
                "entered_at": entry.timestamp_utc,
                "detail": entry.detail,
                "output_hash": entry.output_hash,
            }
        return result

    def _check_chain_valid(self, run_id: str) -> bool:
        """Check hash chain integrity without raising."""
        try:
            return self._ledger.verify_chain(run_id)
        except LedgerIntegrityError:
            return False
