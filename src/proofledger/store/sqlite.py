"""SQLite-backed record store."""
from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator, List, Mapping, Optional

from ..errors import ConflictError, RecordNotFoundError, StaleRecordError
from ..models import MetricsSummary, ProofRecord, VerifierStatus
from .base import (
    COLUMNS,
    ProofStore,
    check_transition_fields,
    record_from_row,
    record_to_row,
    to_storage_time,
)

SCHEMA = """
CREATE TABLE IF NOT EXISTS proofs (
    id               TEXT PRIMARY KEY,
    chain            TEXT NOT NULL,
    timestamp        TEXT NOT NULL,
    payload          TEXT NOT NULL,
    signature        TEXT NOT NULL,
    received_at      TEXT NOT NULL,
    size_raw         INTEGER NOT NULL,
    size_gzip        INTEGER NOT NULL,
    signature_check  TEXT NOT NULL,
    verifier_status  TEXT NOT NULL DEFAULT 'pending',
    verifier_message TEXT,
    verified_at      TEXT,
    attempts         INTEGER NOT NULL DEFAULT 0,
    next_attempt_at  TEXT
);
CREATE INDEX IF NOT EXISTS idx_proofs_chain ON proofs(chain);
CREATE INDEX IF NOT EXISTS idx_proofs_timestamp ON proofs(timestamp);
CREATE INDEX IF NOT EXISTS idx_proofs_status ON proofs(verifier_status, next_attempt_at);
"""


class SqliteProofStore(ProofStore):
    """One connection per call; ``:memory:`` keeps a single shared connection."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = str(db_path)
        self._lock = threading.Lock()
        self._shared: sqlite3.Connection | None = None
        if self.db_path == ":memory:":
            self._shared = sqlite3.connect(":memory:", check_same_thread=False)
            self._shared.row_factory = sqlite3.Row
        else:
            Path(self.db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if self._shared is not None:
            with self._lock:
                with self._shared:
                    yield self._shared
            return
        conn = sqlite3.connect(self.db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.executescript(SCHEMA)

    def create(self, record: ProofRecord) -> ProofRecord:
        row = record_to_row(record)
        placeholders = ", ".join("?" for _ in COLUMNS)
        try:
            with self._connect() as conn:
                conn.execute(
                    f"INSERT INTO proofs ({', '.join(COLUMNS)}) VALUES ({placeholders})",
                    tuple(row[c] for c in COLUMNS),
                )
        except sqlite3.IntegrityError as exc:
            raise ConflictError(record.id) from exc
        return record

    def get_by_id(self, proof_id: str) -> Optional[ProofRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM proofs WHERE id = ?", (proof_id,)).fetchone()
        return record_from_row(row) if row else None

    def compare_and_set_status(
        self,
        proof_id: str,
        expected_status: VerifierStatus,
        new_status: VerifierStatus,
        fields: Mapping[str, Any] | None = None,
        *,
        expected_attempts: int | None = None,
    ) -> ProofRecord:
        current = self.get_by_id(proof_id)
        if current is None:
            raise RecordNotFoundError(proof_id)
        updates = check_transition_fields(current, fields)
        row = record_to_row(current.evolve(verifier_status=new_status, **updates))

        assignments = ["verifier_status = ?"]
        params: list[Any] = [new_status.value]
        for name in sorted(updates):
            assignments.append(f"{name} = ?")
            params.append(row[name])
        where = "id = ? AND verifier_status = ?"
        params.extend([proof_id, expected_status.value])
        if expected_attempts is not None:
            where += " AND attempts = ?"
            params.append(expected_attempts)

        with self._connect() as conn:
            cursor = conn.execute(f"UPDATE proofs SET {', '.join(assignments)} WHERE {where}", params)
            if cursor.rowcount == 0:
                latest = conn.execute(
                    "SELECT verifier_status, attempts FROM proofs WHERE id = ?", (proof_id,)
                ).fetchone()
                if latest is None:
                    raise RecordNotFoundError(proof_id)
                raise StaleRecordError(proof_id, expected_status.value, latest["verifier_status"])
            updated = conn.execute("SELECT * FROM proofs WHERE id = ?", (proof_id,)).fetchone()
        return record_from_row(updated)

    def list_eligible_for_reconciliation(self, now: datetime, limit: int = 100) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id FROM proofs
                WHERE verifier_status = 'pending'
                   OR (verifier_status = 'submitted'
                       AND (next_attempt_at IS NULL OR next_attempt_at <= ?))
                ORDER BY COALESCE(next_attempt_at, received_at) ASC
                LIMIT ?
                """,
                (to_storage_time(now), limit),
            ).fetchall()
        return [row["id"] for row in rows]

    def aggregate_metrics(self) -> MetricsSummary:
        with self._connect() as conn:
            totals = conn.execute(
                "SELECT COUNT(*) AS n, COALESCE(SUM(size_raw), 0) AS raw, COALESCE(SUM(size_gzip), 0) AS gz FROM proofs"
            ).fetchone()
            by_status = conn.execute(
                "SELECT verifier_status, COUNT(*) AS n FROM proofs GROUP BY verifier_status"
            ).fetchall()
            by_chain = conn.execute("SELECT chain, COUNT(*) AS n FROM proofs GROUP BY chain").fetchall()
        return MetricsSummary(
            total=int(totals["n"]),
            by_status={row["verifier_status"]: int(row["n"]) for row in by_status},
            by_chain={row["chain"]: int(row["n"]) for row in by_chain},
            size_raw_total=int(totals["raw"]),
            size_gzip_total=int(totals["gz"]),
        )

    def list_records(
        self,
        status: VerifierStatus | None = None,
        chain: str | None = None,
        limit: int = 50,
    ) -> List[ProofRecord]:
        query = "SELECT * FROM proofs WHERE 1=1"
        params: list[Any] = []
        if status is not None:
            query += " AND verifier_status = ?"
            params.append(status.value)
        if chain is not None:
            query += " AND chain = ?"
            params.append(chain)
        query += " ORDER BY received_at DESC LIMIT ?"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [record_from_row(row) for row in rows]

    def ping(self) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1").fetchone()
        except sqlite3.Error:
            return False
        return True

    def close(self) -> None:
        if self._shared is not None:
            self._shared.close()
            self._shared = None


__all__ = ["SqliteProofStore"]
