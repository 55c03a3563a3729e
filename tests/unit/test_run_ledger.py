"""Tests for the RunLedger — append-only, hash-chained, tamper-evident."""

from __future__ import annotations

import threading

from keelson.core.run_ledger import RunLedger
from keelson.models.ledger import LedgerEntry


class TestRunLedger:
    def test_append_sets_entry_hash(self, ledger: RunLedger):
        entry = LedgerEntry(
            run_id="run-1", stage_id="provision",
            state_transition="not_started->running",
        )
        sealed = ledger.append(entry)
        assert sealed.entry_hash != ""
        assert sealed.previous_entry_hash == ""  # first entry

    def test_hash_chain_links(self, ledger: RunLedger):
        e1 = ledger.append(LedgerEntry(
            run_id="run-1", stage_id="provision",
            state_transition="not_started->running",
        ))
        e2 = ledger.append(LedgerEntry(
            run_id="run-1", stage_id="provision",
            state_transition="running->passed",
        ))
        assert e2.previous_entry_hash == e1.entry_hash

    def test_chains_are_per_run(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="run-1", stage_id="verify", state_transition="a->b"))
        first_of_run_2 = ledger.append(
            LedgerEntry(run_id="run-2", stage_id="verify", state_transition="a->b")
        )
        assert first_of_run_2.previous_entry_hash == ""

    def test_verify_chain_valid(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="run-1", stage_id="verify", state_transition="a->b"))
        ledger.append(LedgerEntry(run_id="run-1", stage_id="cache_save", state_transition="a->b"))
        assert ledger.verify_chain("run-1") is True

    def test_verify_chain_empty(self, ledger: RunLedger):
        assert ledger.verify_chain("nonexistent") is True

    def test_round_trip_preserves_fields(self, ledger: RunLedger):
        ledger.append(LedgerEntry(
            run_id="run-1", pipeline="release", stage_id="release_build",
            state_transition="running->failed", detail="cargo exited 101",
            input_hash="in", output_hash="out",
        ))
        (entry,) = ledger.get_run_entries("run-1")
        assert entry.pipeline == "release"
        assert entry.detail == "cargo exited 101"
        assert (entry.input_hash, entry.output_hash) == ("in", "out")

    def test_get_stage_history(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="run-1", stage_id="verify", state_transition="a->b"))
        ledger.append(LedgerEntry(run_id="run-1", stage_id="provision", state_transition="a->b"))
        ledger.append(LedgerEntry(run_id="run-1", stage_id="verify", state_transition="b->c"))
        history = ledger.get_stage_history("run-1", "verify")
        assert [e.state_transition for e in history] == ["a->b", "b->c"]

    def test_get_run_entries(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="run-1", stage_id="verify", state_transition="a->b"))
        ledger.append(LedgerEntry(run_id="run-2", stage_id="verify", state_transition="a->b"))
        assert len(ledger.get_run_entries("run-1")) == 1

    def test_get_all_run_ids_most_recent_first(self, ledger: RunLedger):
        ledger.append(LedgerEntry(run_id="run-1", stage_id="verify", state_transition="a->b"))
        ledger.append(LedgerEntry(run_id="run-2", stage_id="verify", state_transition="a->b"))
        assert ledger.get_all_run_ids() == ["run-2", "run-1"]

    def test_get_pipeline(self, ledger: RunLedger):
        ledger.append(LedgerEntry(
            run_id="run-1", pipeline="test", stage_id="verify", state_transition="a->b",
        ))
        assert ledger.get_pipeline("run-1") == "test"
        assert ledger.get_pipeline("missing") == ""

    def test_concurrent_appends_keep_chain_linear(self, ledger: RunLedger):
        def worker(stage_id: str) -> None:
            for i in range(10):
                ledger.append(LedgerEntry(
                    run_id="run-1", stage_id=stage_id, state_transition=f"{i}->{i + 1}",
                ))

        threads = [threading.Thread(target=worker, args=(sid,)) for sid in ("a", "b", "c")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(ledger.get_run_entries("run-1")) == 30
        assert ledger.verify_chain("run-1") is True
