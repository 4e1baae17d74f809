"""Store adapter interface for persisted proof records."""
from __future__ import annotations

import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional

from ..models import (
    MetricsSummary,
    ProofEnvelope,
    ProofRecord,
    SignatureCheck,
    VerifierStatus,
    parse_instant,
)

# Fields a status transition may write. Everything else is write-once.
MUTABLE_FIELDS = frozenset({"verifier_message", "verified_at", "attempts", "next_attempt_at"})

COLUMNS = (
    "id",
    "chain",
    "timestamp",
    "payload",
    "signature",
    "received_at",
    "size_raw",
    "size_gzip",
    "signature_check",
    "verifier_status",
    "verifier_message",
    "verified_at",
    "attempts",
    "next_attempt_at",
)


class ProofStore(ABC):
    """Durable record storage.

    ``compare_and_set_status`` is the only write after ``create`` and must be
    atomic: it applies only if the stored status (and, when given, the stored
    attempts count) still match what the caller read.
    """

    @abstractmethod
    def create(self, record: ProofRecord) -> ProofRecord:
        """Persist a new record. Raises ``ConflictError`` if the id exists."""

    @abstractmethod
    def get_by_id(self, proof_id: str) -> Optional[ProofRecord]:
        """Return the record or ``None``."""

    @abstractmethod
    def compare_and_set_status(
        self,
        proof_id: str,
        expected_status: VerifierStatus,
        new_status: VerifierStatus,
        fields: Mapping[str, Any] | None = None,
        *,
        expected_attempts: int | None = None,
    ) -> ProofRecord:
        """Apply a status change. Raises ``StaleRecordError`` or ``RecordNotFoundError``."""

    @abstractmethod
    def list_eligible_for_reconciliation(self, now: datetime, limit: int = 100) -> List[str]:
        """Ids that are ``pending``, or ``submitted`` with ``next_attempt_at <= now``."""

    @abstractmethod
    def aggregate_metrics(self) -> MetricsSummary:
        ...

    @abstractmethod
    def list_records(
        self,
        status: VerifierStatus | None = None,
        chain: str | None = None,
        limit: int = 50,
    ) -> List[ProofRecord]:
        """Most recently received first."""

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        return None


def check_transition_fields(current: ProofRecord, fields: Mapping[str, Any] | None) -> Dict[str, Any]:
    """Reject writes to write-once fields and decreasing attempt counts."""
    updates = dict(fields or {})
    illegal = set(updates) - MUTABLE_FIELDS
    if illegal:
        raise ValueError(f"fields are write-once: {', '.join(sorted(illegal))}")
    if "attempts" in updates and int(updates["attempts"]) < current.attempts:
        raise ValueError("attempts may not decrease")
    return updates


def to_storage_time(value: datetime | None) -> str | None:
    """Fixed-width UTC ISO string so lexical order matches time order."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _instant(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    return parse_instant(str(value))


def record_to_row(record: ProofRecord) -> Dict[str, Any]:
    env = record.envelope
    return {
        "id": env.id,
        "chain": env.chain,
        "timestamp": env.timestamp,
        "payload": json.dumps(env.payload, sort_keys=True),
        "signature": env.signature,
        "received_at": to_storage_time(record.received_at),
        "size_raw": record.size_raw,
        "size_gzip": record.size_gzip,
        "signature_check": record.signature_check.value,
        "verifier_status": record.verifier_status.value,
        "verifier_message": record.verifier_message,
        "verified_at": to_storage_time(record.verified_at),
        "attempts": record.attempts,
        "next_attempt_at": to_storage_time(record.next_attempt_at),
    }


def record_from_row(row: Mapping[str, Any]) -> ProofRecord:
    payload = row["payload"]
    if isinstance(payload, (str, bytes)):
        payload = json.loads(payload)
    envelope = ProofEnvelope(
        id=row["id"],
        chain=row["chain"],
        timestamp=row["timestamp"],
        payload=payload,
        signature=row["signature"],
    )
    return ProofRecord(
        envelope=envelope,
        received_at=_instant(row["received_at"]),
        size_raw=int(row["size_raw"]),
        size_gzip=int(row["size_gzip"]),
        signature_check=SignatureCheck(row["signature_check"]),
        verifier_status=VerifierStatus(row["verifier_status"]),
        verifier_message=row["verifier_message"],
        verified_at=_instant(row["verified_at"]),
        attempts=int(row["attempts"] or 0),
        next_attempt_at=_instant(row["next_attempt_at"]),
    )


__all__ = [
    "COLUMNS",
    "MUTABLE_FIELDS",
    "ProofStore",
    "check_transition_fields",
    "record_from_row",
    "record_to_row",
    "to_storage_time",
]
