"""Ingestion of a single submitted proof: validate, authenticate, persist, enqueue."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol, Union

from .codec import size_of
from .errors import AuthenticityError, ConflictError, ProofLedgerError, ValidationError
from .models import ProofRecord, SignatureCheck, SizeMetrics, utcnow
from .schema import FieldError, validate
from .signing import SignatureVerifier, VerificationOutcome
from .store import ProofStore

LOGGER = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, proof_id: str) -> None:
        ...


@dataclass(frozen=True)
class Accepted:
    id: str
    metrics: SizeMetrics
    signature_check: SignatureCheck = SignatureCheck.PASSED

    accepted = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": "ACCEPTED",
            "id": self.id,
            "metrics": self.metrics.to_dict(),
            "signatureCheck": self.signature_check.value,
        }


@dataclass(frozen=True)
class Rejected:
    kind: str
    error: ProofLedgerError
    errors: List[FieldError] = field(default_factory=list)

    accepted = False

    @property
    def http_status(self) -> int:
        return self.error.http_status

    def to_dict(self) -> Dict[str, Any]:
        payload = self.error.to_dict()
        payload["status"] = "REJECTED"
        payload["kind"] = self.kind
        return payload


IngestResult = Union[Accepted, Rejected]


class IngestionPipeline:
    def __init__(
        self,
        store: ProofStore,
        verifier: SignatureVerifier,
        *,
        notifier: Optional[Notifier] = None,
        sizer: Callable = size_of,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.verifier = verifier
        self.notifier = notifier
        self.sizer = sizer
        self.clock = clock

    def ingest(self, raw: Any) -> IngestResult:
        result = validate(raw)
        if not result.ok:
            error = ValidationError(list(result.errors))
            LOGGER.info("Rejected envelope: %s", "; ".join(str(e) for e in result.errors))
            return Rejected("validation", error, list(result.errors))
        envelope = result.envelope

        verdict = self.verifier.verify(envelope)
        if verdict.failed:
            LOGGER.info("Rejected proof %s from %s: %s", envelope.id, envelope.chain, verdict.reason)
            return Rejected("authenticity", AuthenticityError(f"signature check failed: {verdict.reason}"))
        check = SignatureCheck.PASSED if verdict.outcome is VerificationOutcome.PASSED else SignatureCheck.SKIPPED

        metrics = self.sizer(envelope)
        record = ProofRecord.new(envelope, metrics, received_at=self.clock(), signature_check=check)
        try:
            self.store.create(record)
        except ConflictError as exc:
            LOGGER.info("Rejected duplicate proof %s", envelope.id)
            return Rejected("conflict", exc)
        LOGGER.info(
            "Accepted proof %s from %s (%d bytes, %d gzip, signature %s)",
            envelope.id,
            envelope.chain,
            metrics.raw_bytes,
            metrics.gzip_bytes,
            check.value,
        )

        if self.notifier is not None:
            self.notifier.notify(envelope.id)
        return Accepted(envelope.id, metrics, check)


__all__ = ["Accepted", "IngestResult", "IngestionPipeline", "Notifier", "Rejected"]
