"""In-process record store."""
from __future__ import annotations

import threading
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from ..errors import ConflictError, RecordNotFoundError, StaleRecordError
from ..models import MetricsSummary, ProofRecord, VerifierStatus
from .base import ProofStore, check_transition_fields


class MemoryProofStore(ProofStore):
    """Keeps records in a dict; a single lock makes compare-and-set atomic."""

    def __init__(self) -> None:
        self._records: Dict[str, ProofRecord] = {}
        self._lock = threading.Lock()

    def create(self, record: ProofRecord) -> ProofRecord:
        with self._lock:
            if record.id in self._records:
                raise ConflictError(record.id)
            self._records[record.id] = record
        return record

    def get_by_id(self, proof_id: str) -> Optional[ProofRecord]:
        with self._lock:
            return self._records.get(proof_id)

    def compare_and_set_status(
        self,
        proof_id: str,
        expected_status: VerifierStatus,
        new_status: VerifierStatus,
        fields: Mapping[str, Any] | None = None,
        *,
        expected_attempts: int | None = None,
    ) -> ProofRecord:
        with self._lock:
            current = self._records.get(proof_id)
            if current is None:
                raise RecordNotFoundError(proof_id)
            if current.verifier_status is not expected_status:
                raise StaleRecordError(proof_id, expected_status.value, current.verifier_status.value)
            if expected_attempts is not None and current.attempts != expected_attempts:
                raise StaleRecordError(
                    proof_id,
                    f"{expected_status.value}@{expected_attempts}",
                    f"{current.verifier_status.value}@{current.attempts}",
                )
            updates = check_transition_fields(current, fields)
            updated = current.evolve(verifier_status=new_status, **updates)
            self._records[proof_id] = updated
            return updated

    def list_eligible_for_reconciliation(self, now: datetime, limit: int = 100) -> List[str]:
        with self._lock:
            records = list(self._records.values())
        eligible = [
            r for r in records
            if r.verifier_status is VerifierStatus.PENDING
            or (
                r.verifier_status is VerifierStatus.SUBMITTED
                and (r.next_attempt_at is None or r.next_attempt_at <= now)
            )
        ]
        eligible.sort(key=lambda r: r.next_attempt_at or r.received_at)
        return [r.id for r in eligible[:limit]]

    def aggregate_metrics(self) -> MetricsSummary:
        with self._lock:
            records = list(self._records.values())
        return MetricsSummary(
            total=len(records),
            by_status=dict(Counter(r.verifier_status.value for r in records)),
            by_chain=dict(Counter(r.chain for r in records)),
            size_raw_total=sum(r.size_raw for r in records),
            size_gzip_total=sum(r.size_gzip for r in records),
        )

    def list_records(
        self,
        status: VerifierStatus | None = None,
        chain: str | None = None,
        limit: int = 50,
    ) -> List[ProofRecord]:
        with self._lock:
            records = list(self._records.values())
        if status is not None:
            records = [r for r in records if r.verifier_status is status]
        if chain is not None:
            records = [r for r in records if r.chain == chain]
        records.sort(key=lambda r: r.received_at, reverse=True)
        return records[:limit]


__all__ = ["MemoryProofStore"]
