"""SQLite build ledger: one hash-chained row per pipeline transition.

Rows are only ever inserted. Each row stores the hash of the previous row
of the same run and a hash over its own fields, so editing, deleting or
reordering history breaks ``verify_chain``. ``slimforge history`` reads
this table and nothing else.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any

from slimforge.core.errors import PipelineError
from slimforge.core.hasher import compute_entry_hash
from slimforge.models.ledger import LedgerEntry

_SCHEMA = """
CREATE TABLE IF NOT EXISTS transitions (
    seq               INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id          TEXT NOT NULL UNIQUE,
    run_id            TEXT NOT NULL,
    phase             TEXT NOT NULL,
    state_transition  TEXT NOT NULL,
    timestamp_utc     TEXT NOT NULL,
    input_hash        TEXT NOT NULL,
    output_hash       TEXT NOT NULL,
    artifacts         TEXT NOT NULL,
    detail            TEXT NOT NULL,
    pipeline_version  TEXT NOT NULL,
    previous_hash     TEXT NOT NULL,
    entry_hash        TEXT NOT NULL UNIQUE
);
CREATE INDEX IF NOT EXISTS transitions_by_run ON transitions(run_id, seq);
"""

# Model field -> column, in insertion order.
_FIELD_COLUMNS: dict[str, str] = {
    "entry_id": "entry_id",
    "run_id": "run_id",
    "phase": "phase",
    "state_transition": "state_transition",
    "timestamp_utc": "timestamp_utc",
    "input_hash": "input_hash",
    "output_hash": "output_hash",
    "artifact_references": "artifacts",
    "detail": "detail",
    "pipeline_version": "pipeline_version",
    "previous_entry_hash": "previous_hash",
    "entry_hash": "entry_hash",
}
_SELECT = "SELECT " + ", ".join(_FIELD_COLUMNS.values()) + " FROM transitions"


class LedgerIntegrityError(PipelineError):
    """Raised when a run's hash chain does not verify."""


class BuildLedger:
    """Append-only record of pipeline state transitions.

    Parameters
    ----------
    db_path:
        SQLite database file; it and its parent directory are created on
        first use.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._session() as conn:
            conn.executescript(_SCHEMA)

    @property
    def db_path(self) -> Path:
        return self._db_path

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(str(self._db_path))) as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            with conn:
                yield conn

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Seal *entry* onto the end of its run's chain and store it."""
        with self._session() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM transitions WHERE run_id = ? "
                "ORDER BY seq DESC LIMIT 1",
                (entry.run_id,),
            ).fetchone()
            linked = entry.model_copy(
                update={"previous_entry_hash": row[0] if row else "", "entry_hash": ""}
            )
            sealed = linked.model_copy(
                update={"entry_hash": compute_entry_hash(linked.model_dump(mode="json"))}
            )
            values = _to_row(sealed)
            conn.execute(
                f"INSERT INTO transitions ({', '.join(_FIELD_COLUMNS.values())}) "
                f"VALUES ({', '.join('?' * len(values))})",
                values,
            )
        return sealed

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def _query(self, where: str, params: tuple[Any, ...]) -> list[LedgerEntry]:
        with self._session() as conn:
            rows = conn.execute(f"{_SELECT} {where}", params).fetchall()
        return [_from_row(row) for row in rows]

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """All transitions of *run_id*, oldest first."""
        return self._query("WHERE run_id = ? ORDER BY seq", (run_id,))

    def get_latest(self, run_id: str) -> LedgerEntry | None:
        """The most recent transition of *run_id*, if any."""
        found = self._query("WHERE run_id = ? ORDER BY seq DESC LIMIT 1", (run_id,))
        return found[0] if found else None

    def get_all_run_ids(self) -> list[str]:
        """Every run id, most recently active first."""
        with self._session() as conn:
            rows = conn.execute(
                "SELECT run_id FROM transitions GROUP BY run_id ORDER BY MAX(seq) DESC"
            ).fetchall()
        return [run_id for (run_id,) in rows]

    def verify_chain(self, run_id: str) -> bool:
        """Check every link and seal of *run_id*.

        Returns True, or raises LedgerIntegrityError at the first bad entry.
        """
        expected_previous = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != expected_previous:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id} of run {run_id}: links to "
                    f"{entry.previous_entry_hash[:12] or '<start>'}, "
                    f"expected {expected_previous[:12] or '<start>'}"
                )
            unsealed = entry.model_copy(update={"entry_hash": ""})
            if compute_entry_hash(unsealed.model_dump(mode="json")) != entry.entry_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id} of run {run_id} "
                    f"({entry.state_transition}): seal does not match its contents"
                )
            expected_previous = entry.entry_hash
        return True


def _to_row(entry: LedgerEntry) -> tuple[Any, ...]:
    data = entry.model_dump(mode="json")
    data["artifact_references"] = json.dumps(data["artifact_references"])
    return tuple(data[field] for field in _FIELD_COLUMNS)


def _from_row(row: tuple[Any, ...]) -> LedgerEntry:
    data = dict(zip(_FIELD_COLUMNS, row))
    data["artifact_references"] = json.loads(data["artifact_references"])
    return LedgerEntry.model_validate(data)
