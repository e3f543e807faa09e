"""Append-only, hash-chained deployment ledger backed by SQLite.

The JSON records under ``deployments/`` say what exists; this ledger says
how it got there. Every stage transition of every run is appended as a
sealed entry whose hash covers the previous entry of the same run.

Design:
- Append-only: only ``append()`` writes; no update, no delete.
- Hash-chained: each entry includes SHA-256 of the previous entry.
- WAL journal mode for concurrent readers.
- entry_hash UNIQUE constraint for tamper detection.
"""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from quikdeploy.core.hasher import canonical_json_bytes, compute_entry_hash, sha256_hex
from quikdeploy.models.ledger import LedgerEntry

# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LEDGER = """
CREATE TABLE IF NOT EXISTS run_ledger (
    id                        INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id                  TEXT NOT NULL UNIQUE,
    run_id                    TEXT NOT NULL,
    stage_id                  TEXT NOT NULL,
    state_transition          TEXT NOT NULL,
    timestamp_utc             TEXT NOT NULL,
    deployer                  TEXT NOT NULL DEFAULT '',
    input_hash                TEXT NOT NULL DEFAULT '',
    output_hash               TEXT NOT NULL DEFAULT '',
    component_addresses_json  TEXT NOT NULL DEFAULT '[]',
    warnings_json             TEXT NOT NULL DEFAULT '[]',
    schema_version            TEXT NOT NULL,
    previous_entry_hash       TEXT NOT NULL DEFAULT '',
    entry_hash                TEXT NOT NULL UNIQUE
);
"""

_CREATE_IDX_RUN = """
CREATE INDEX IF NOT EXISTS idx_run_id ON run_ledger(run_id, id);
"""


class LedgerIntegrityError(RuntimeError):
    """Raised when the hash chain is broken."""


class RunLedger:
    """Append-only, hash-chained deployment ledger.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file. Created if it does not exist.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(_CREATE_LEDGER)
            conn.execute(_CREATE_IDX_RUN)
            conn.commit()

    # ------------------------------------------------------------------
    # Core: append-only write
    # ------------------------------------------------------------------

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """Append an entry to the ledger, computing hash chain links.

        Returns the entry with ``previous_entry_hash`` and ``entry_hash`` set.
        This is the ONLY write method. There is no update or delete.
        """
        previous_hash = self._get_latest_hash(entry.run_id)

        entry_dict = entry.model_dump(mode="json")
        entry_dict["previous_entry_hash"] = previous_hash
        entry_dict["entry_hash"] = ""

        sealed = entry.model_copy(
            update={
                "previous_entry_hash": previous_hash,
                "entry_hash": compute_entry_hash(entry_dict),
            }
        )
        self._insert(sealed)
        return sealed

    def _insert(self, entry: LedgerEntry) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO run_ledger
                    (entry_id, run_id, stage_id, state_transition, timestamp_utc,
                     deployer, input_hash, output_hash, component_addresses_json,
                     warnings_json, schema_version, previous_entry_hash, entry_hash)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.entry_id,
                    entry.run_id,
                    entry.stage_id,
                    entry.state_transition,
                    entry.timestamp_utc.isoformat()
                    if isinstance(entry.timestamp_utc, datetime)
                    else entry.timestamp_utc,
                    entry.deployer,
                    entry.input_hash,
                    entry.output_hash,
                    json.dumps(entry.component_addresses),
                    json.dumps(entry.warnings),
                    entry.schema_version,
                    entry.previous_entry_hash,
                    entry.entry_hash,
                ),
            )
            conn.commit()

    def _get_latest_hash(self, run_id: str) -> str:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT entry_hash FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return row[0] if row else ""

    # ------------------------------------------------------------------
    # Query methods (read-only)
    # ------------------------------------------------------------------

    def get_latest(self, run_id: str) -> LedgerEntry | None:
        """Return the most recent ledger entry for a run, or None."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM run_ledger WHERE run_id = ? ORDER BY id DESC LIMIT 1",
                (run_id,),
            ).fetchone()
        return self._row_to_entry(row) if row else None

    def find_component(self, address: str) -> list[LedgerEntry]:
        """Every entry, across all runs, that recorded *address*.

        The first one names the run and stage that placed the component.
        """
        needle = json.dumps(address.lower())
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM run_ledger WHERE instr(component_addresses_json, ?) > 0 "
                "ORDER BY id ASC",
                (needle,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_run_entries(self, run_id: str) -> list[LedgerEntry]:
        """Return all ledger entries for a run, ordered chronologically."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM run_ledger WHERE run_id = ? ORDER BY id ASC",
                (run_id,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def get_all_run_ids(self) -> list[str]:
        """Return all distinct run_ids, most recently started first."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT run_id FROM run_ledger GROUP BY run_id ORDER BY MIN(id) DESC"
            ).fetchall()
        return [row[0] for row in rows]

    # ------------------------------------------------------------------
    # Chain verification
    # ------------------------------------------------------------------

    def verify_chain(self, run_id: str) -> bool:
        """Verify the hash chain integrity for a run.

        Walks all entries in order, recomputes each entry_hash, and
        verifies that previous_entry_hash links match.

        Returns True if the chain is valid, raises LedgerIntegrityError otherwise.
        """
        prev_hash = ""
        for entry in self.get_run_entries(run_id):
            if entry.previous_entry_hash != prev_hash:
                raise LedgerIntegrityError(
                    f"Chain broken at entry {entry.entry_id}: "
                    f"expected previous_hash={prev_hash!r}, "
                    f"got {entry.previous_entry_hash!r}"
                )

            expected_hash = compute_entry_hash(entry.model_dump(mode="json"))
            if entry.entry_hash != expected_hash:
                raise LedgerIntegrityError(
                    f"Tampered entry {entry.entry_id}: "
                    f"expected hash={expected_hash!r}, "
                    f"got {entry.entry_hash!r}"
                )

            prev_hash = entry.entry_hash

        return True

    def export_anchor(self, run_id: str) -> dict[str, Any]:
        """Export a digest of the current chain for storage outside the system.

        Comparing a previously exported anchor with the live chain (see
        ``verify_against_anchor``) detects retroactive rewrites that keep
        the chain internally consistent.
        """
        entries = self.get_run_entries(run_id)
        anchor_payload: dict[str, Any] = {
            "run_id": run_id,
            "entry_count": len(entries),
            "root_hash": entries[-1].entry_hash if entries else "",
            "first_entry_hash": entries[0].entry_hash if entries else "",
            "timestamp_utc": datetime.now(timezone.utc).isoformat(),
        }
        anchor_payload["anchor_hash"] = sha256_hex(canonical_json_bytes(anchor_payload))
        return anchor_payload

    def verify_against_anchor(self, run_id: str, anchor: dict[str, Any]) -> bool:
        """Verify the current chain against a previously exported anchor.

        Returns ``True`` if the chain still contains the anchored prefix
        unchanged. Raises ``LedgerIntegrityError`` otherwise.
        """
        entries = self.get_run_entries(run_id)
        expected_count = anchor.get("entry_count", 0)
        if len(entries) < expected_count:
            raise LedgerIntegrityError(
                f"Chain for {run_id} has {len(entries)} entries but "
                f"anchor expects at least {expected_count}."
            )
        if expected_count == 0:
            return True

        if entries[0].entry_hash != anchor.get("first_entry_hash", ""):
            raise LedgerIntegrityError(
                f"First entry hash mismatch for {run_id}; "
                f"chain may have been rewritten from the beginning."
            )
        if entries[expected_count - 1].entry_hash != anchor.get("root_hash", ""):
            raise LedgerIntegrityError(
                f"Root hash mismatch at entry {expected_count} for {run_id}; "
                f"chain may have been retroactively modified."
            )

        self.verify_chain(run_id)
        return True

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        (
            _id,
            entry_id,
            run_id,
            stage_id,
            state_transition,
            timestamp_utc,
            deployer,
            input_hash,
            output_hash,
            component_addresses_json,
            warnings_json,
            schema_version,
            previous_entry_hash,
            entry_hash,
        ) = row
        return LedgerEntry(
            entry_id=entry_id,
            run_id=run_id,
            stage_id=stage_id,
            state_transition=state_transition,
            timestamp_utc=timestamp_utc,
            deployer=deployer,
            input_hash=input_hash,
            output_hash=output_hash,
            component_addresses=json.loads(component_addresses_json),
            warnings=json.loads(warnings_json),
            schema_version=schema_version,
            previous_entry_hash=previous_entry_hash,
            entry_hash=entry_hash,
        )
