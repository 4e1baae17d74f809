"""Postgres-backed record store with the same interface as SqliteProofStore."""
from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..errors import ConflictError, RecordNotFoundError, StaleRecordError
from ..models import MetricsSummary, ProofRecord, VerifierStatus
from .base import COLUMNS, ProofStore, check_transition_fields, record_from_row

DDL = """
CREATE TABLE IF NOT EXISTS proofs (
    id               TEXT PRIMARY KEY,
    chain            TEXT NOT NULL,
    timestamp        TEXT NOT NULL,
    payload          JSONB NOT NULL,
    signature        TEXT NOT NULL,
    received_at      TIMESTAMPTZ NOT NULL,
    size_raw         BIGINT NOT NULL,
    size_gzip        BIGINT NOT NULL,
    signature_check  TEXT NOT NULL,
    verifier_status  TEXT NOT NULL DEFAULT 'pending',
    verifier_message TEXT,
    verified_at      TIMESTAMPTZ,
    attempts         INTEGER NOT NULL DEFAULT 0,
    next_attempt_at  TIMESTAMPTZ
);
CREATE INDEX IF NOT EXISTS proofs_chain_idx ON proofs(chain);
CREATE INDEX IF NOT EXISTS proofs_timestamp_idx ON proofs(timestamp);
CREATE INDEX IF NOT EXISTS proofs_status_idx ON proofs(verifier_status, next_attempt_at);
"""


def _pg_row(record: ProofRecord) -> dict[str, Any]:
    env = record.envelope
    return {
        "id": env.id,
        "chain": env.chain,
        "timestamp": env.timestamp,
        "payload": Jsonb(env.payload),
        "signature": env.signature,
        "received_at": record.received_at,
        "size_raw": record.size_raw,
        "size_gzip": record.size_gzip,
        "signature_check": record.signature_check.value,
        "verifier_status": record.verifier_status.value,
        "verifier_message": record.verifier_message,
        "verified_at": record.verified_at,
        "attempts": record.attempts,
        "next_attempt_at": record.next_attempt_at,
    }


class PostgresProofStore(ProofStore):
    def __init__(self, dsn: str) -> None:
        if not dsn:
            raise ValueError("PostgresProofStore requires a DSN")
        self.dsn = dsn
        self._ensure_schema()

    def _connect(self):
        return psycopg.connect(self.dsn, autocommit=True, row_factory=dict_row)

    def _ensure_schema(self) -> None:
        with self._connect() as conn:
            conn.execute(DDL)

    def create(self, record: ProofRecord) -> ProofRecord:
        row = _pg_row(record)
        placeholders = ", ".join(f"%({c})s" for c in COLUMNS)
        with self._connect() as conn:
            cursor = conn.execute(
                f"INSERT INTO proofs ({', '.join(COLUMNS)}) VALUES ({placeholders}) "
                "ON CONFLICT (id) DO NOTHING",
                row,
            )
            if cursor.rowcount == 0:
                raise ConflictError(record.id)
        return record

    def get_by_id(self, proof_id: str) -> Optional[ProofRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM proofs WHERE id = %s", (proof_id,)).fetchone()
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

        assignments = ["verifier_status = %(new_status)s"]
        params: dict[str, Any] = {
            "new_status": new_status.value,
            "id": proof_id,
            "expected_status": expected_status.value,
        }
        for name in sorted(updates):
            assignments.append(f"{name} = %({name})s")
            params[name] = updates[name]
        where = "id = %(id)s AND verifier_status = %(expected_status)s"
        if expected_attempts is not None:
            where += " AND attempts = %(expected_attempts)s"
            params["expected_attempts"] = expected_attempts

        with self._connect() as conn:
            row = conn.execute(
                f"UPDATE proofs SET {', '.join(assignments)} WHERE {where} RETURNING *",
                params,
            ).fetchone()
            if row is None:
                latest = conn.execute(
                    "SELECT verifier_status FROM proofs WHERE id = %s", (proof_id,)
                ).fetchone()
                if latest is None:
                    raise RecordNotFoundError(proof_id)
                raise StaleRecordError(proof_id, expected_status.value, latest["verifier_status"])
        return record_from_row(row)

    def list_eligible_for_reconciliation(self, now: datetime, limit: int = 100) -> List[str]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id FROM proofs
                WHERE verifier_status = 'pending'
                   OR (verifier_status = 'submitted'
                       AND (next_attempt_at IS NULL OR next_attempt_at <= %s))
                ORDER BY COALESCE(next_attempt_at, received_at) ASC
                LIMIT %s
                """,
                (now, limit),
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
        query = "SELECT * FROM proofs WHERE TRUE"
        params: list[Any] = []
        if status is not None:
            query += " AND verifier_status = %s"
            params.append(status.value)
        if chain is not None:
            query += " AND chain = %s"
            params.append(chain)
        query += " ORDER BY received_at DESC LIMIT %s"
        params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [record_from_row(row) for row in rows]

    def ping(self) -> bool:
        try:
            with self._connect() as conn:
                conn.execute("SELECT 1").fetchone()
        except psycopg.Error:
            return False
        return True


__all__ = ["PostgresProofStore"]
