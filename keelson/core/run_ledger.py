"""Append-only, hash-chained Run Ledger backed by SQLite.

The Run Ledger records every stage transition of every pipeline instance.
``keelson status`` is a projection of it; no pipeline decision ever reads
it, so runs stay isolated from each other.

Each run has its own chain: an entry's ``previous_entry_hash`` is the
``entry_hash`` of the run's preceding entry (empty for the first), and
``entry_hash`` seals every other field.  The table only ever receives
INSERTs; appends are serialised by a lock so parallel stages keep each
chain linear.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from keelson.core.hasher import compute_entry_hash
from keelson.models.ledger import LedgerEntry

# Column order follows the model; ``seq`` is the insertion order.
_FIELDS: tuple[str, ...] = tuple(LedgerEntry.model_fields)

_SCHEMA = f"""
CREATE TABLE IF NOT EXISTS run_ledger (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    {", ".join(f"{name} TEXT NOT NULL" for name in _FIELDS)},
    UNIQUE (entry_id),
    UNIQUE (entry_hash)
);
CREATE INDEX IF NOT EXISTS idx_run_ledger_run ON run_ledger(run_id, seq);
"""

_INSERT = (
    f"INSERT INTO run_ledger ({', '.join(_FIELDS)}) "
    f"VALUES ({', '.join(':' + name for name in _FIELDS)})"
)
_SELECT = f"SELECT {', '.join(_FIELDS)} FROM run_ledger"


class LedgerIntegrityError(RuntimeError):
    """Raised when a run's hash chain does not verify."""


class RunLedger:
    """Append-only, hash-chained Run Ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created, with its parent
        directory, if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        with self._connection() as conn:
            conn.executescript(_SCHEMA)

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            with conn:
                yield conn
        finally:
            conn.close()

    def _select(self, where: str = "", params: tuple = ()) -> list[LedgerEntry]:
        with self._connection() as conn:
            rows = conn.execute(f"{_SELECT} {where}", params).fetchall()
        return [LedgerEntry.model_validate(dict(row)) for row in rows]

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal *entry* onto the end of its run's chain and store it.

        Returns the stored entry with ``previous_entry_hash`` and
        ``entry_hash`` filled in.  There is no update or delete.
        """
        with self._lock, self._connection() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY seq DESC LIMIT 1",
                (entry.run_id,),
            ).fetchone()
            linked = entry.model_copy(
                update={"previous_entry_hash": row["entry_hash"] if row else ""}
            )
            sealed = linked.model_copy(
                update={"entry_hash": compute_entry_hash(linked.model_dump(mode="json"))}
            )
            conn.execute(_INSERT, sealed.model_dump(mode="json"))
        return sealed

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Every entry of a run, oldest first."""
        return self._select("WHERE run_id = ? ORDER BY seq", (run_id,))

    def get_stage_history(self, run_id: str, stage_id: str) -> list[LedgerEntry]:
        return self._select("WHERE run_id = ? AND stage_id = ? ORDER BY seq", (run_id, stage_id))

    def get_all_run_ids(self) -> list[str]:
        """Distinct run ids, the most recently written first."""
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT run_id FROM run_ledger GROUP BY run_id ORDER BY MAX(seq) DESC"
            ).fetchall()
        return [row["run_id"] for row in rows]

    def get_pipeline(self, run_id: str) -> str:
        """The pipeline a run belongs to, or '' for an unknown run."""
        first = self._select("WHERE run_id = ? ORDER BY seq LIMIT 1", (run_id,))
        return first[0].pipeline if first else ""

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Recompute every seal and link of a run's chain.

        Returns True for an intact chain (an unknown run is trivially
        intact); raises ``LedgerIntegrityError`` at the first bad entry.
        """
        expected_link = ""
        for position, entry in enumerate(self.get_run_entries(run_id)):
            if entry.previous_entry_hash != expected_link:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {position} ({entry.entry_id}) of run {run_id}: "
                    f"links to {entry.previous_entry_hash[:12]!r}, "
                    f"expected {expected_link[:12]!r}"
                )
            seal = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != seal:
                raise LedgerIntegrityError(
                    f"Tampered entry {position} ({entry.entry_id}) of run {run_id}: "
                    f"stored seal {entry.entry_hash[:12]!r} does not match contents"
                )
            expected_link = entry.entry_hash
        return True
