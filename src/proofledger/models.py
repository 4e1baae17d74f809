"""Proof envelope and persisted record types."""
from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

SIGNABLE_FIELDS = ("id", "chain", "timestamp", "payload")

_INSTANT_RE = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt ](\d{2}:\d{2}(?::\d{2})?)(?:[.,](\d+))?(Z|z|[+-]\d{2}:?\d{2})?$"
)


class VerifierStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (VerifierStatus.VERIFIED, VerifierStatus.FAILED)


class SignatureCheck(str, Enum):
    PASSED = "passed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ProofEnvelope:
    """A submitted proof as it arrived, after schema validation."""

    id: str
    chain: str
    timestamp: str
    payload: Dict[str, Any]
    signature: str

    def signable(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in SIGNABLE_FIELDS}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "chain": self.chain,
            "timestamp": self.timestamp,
            "payload": self.payload,
            "signature": self.signature,
        }


@dataclass(frozen=True)
class SizeMetrics:
    raw_bytes: int
    gzip_bytes: int

    @property
    def ratio(self) -> float:
        if self.raw_bytes == 0:
            return 0.0
        return self.gzip_bytes / self.raw_bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sizeRaw": self.raw_bytes,
            "sizeGzip": self.gzip_bytes,
            "compressionRatio": round(self.ratio, 4),
        }


@dataclass(frozen=True)
class ProofRecord:
    """Persisted proof. Only the verifier_* / attempts / next_attempt_at fields change."""

    envelope: ProofEnvelope
    received_at: datetime
    size_raw: int
    size_gzip: int
    signature_check: SignatureCheck = SignatureCheck.PASSED
    verifier_status: VerifierStatus = VerifierStatus.PENDING
    verifier_message: Optional[str] = None
    verified_at: Optional[datetime] = None
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return self.envelope.id

    @property
    def chain(self) -> str:
        return self.envelope.chain

    @classmethod
    def new(
        cls,
        envelope: ProofEnvelope,
        metrics: SizeMetrics,
        *,
        received_at: datetime,
        signature_check: SignatureCheck,
    ) -> "ProofRecord":
        return cls(
            envelope=envelope,
            received_at=received_at,
            size_raw=metrics.raw_bytes,
            size_gzip=metrics.gzip_bytes,
            signature_check=signature_check,
        )

    def evolve(self, **changes: Any) -> "ProofRecord":
        return replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        data = self.envelope.to_dict()
        data.update({
            "receivedAt": _iso(self.received_at),
            "sizeRaw": self.size_raw,
            "sizeGzip": self.size_gzip,
            "signatureCheck": self.signature_check.value,
            "verifierStatus": self.verifier_status.value,
            "verifierMessage": self.verifier_message,
            "verifiedAt": _iso(self.verified_at),
            "attempts": self.attempts,
            "nextAttemptAt": _iso(self.next_attempt_at),
        })
        return data


@dataclass
class MetricsSummary:
    total: int = 0
    by_status: Dict[str, int] = field(default_factory=dict)
    by_chain: Dict[str, int] = field(default_factory=dict)
    size_raw_total: int = 0
    size_gzip_total: int = 0

    def to_dict(self) -> Dict[str, Any]:
        ratio = self.size_gzip_total / self.size_raw_total if self.size_raw_total else 0.0
        return {
            "total": self.total,
            "byStatus": {status.value: self.by_status.get(status.value, 0) for status in VerifierStatus},
            "byChain": dict(sorted(self.by_chain.items())),
            "sizeRawTotal": self.size_raw_total,
            "sizeGzipTotal": self.size_gzip_total,
            "compressionRatio": round(ratio, 4),
        }


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def parse_instant(value: str | None) -> datetime | None:
    """Parse an ISO-8601 date-time; naive values are taken as UTC.

    A time component is required. Fractions of any length are truncated to
    microseconds and offsets may be written ``Z``, ``+HH:MM`` or ``+HHMM``.
    """
    if value is None:
        return None
    match = _INSTANT_RE.match(value.strip())
    if match is None:
        raise ValueError(f"not an ISO-8601 date-time: {value!r}")
    date, clock, fraction, offset = match.groups()
    text = f"{date}T{clock}"
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    if offset and offset not in ("Z", "z"):
        text += offset if ":" in offset else f"{offset[:3]}:{offset[3:]}"
    elif offset:
        text += "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


__all__ = [
    "MetricsSummary",
    "ProofEnvelope",
    "ProofRecord",
    "SIGNABLE_FIELDS",
    "SignatureCheck",
    "SizeMetrics",
    "VerifierStatus",
    "parse_instant",
    "utcnow",
]
