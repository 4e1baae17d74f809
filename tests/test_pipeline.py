"""Tests for envelope ingestion."""
from __future__ import annotations

from proofledger.codec import size_of
from proofledger.errors import AuthenticityError, ConflictError, ValidationError
from proofledger.models import SignatureCheck, VerifierStatus
from proofledger.pipeline import Accepted, IngestionPipeline, Rejected
from proofledger.signing import SignatureVerifier

from conftest import T0


class RecordingNotifier:
    def __init__(self):
        self.ids = []

    def notify(self, proof_id):
        self.ids.append(proof_id)


def test_valid_signed_envelope_is_accepted(pipeline, store, make_envelope):
    result = pipeline.ingest(make_envelope())

    assert isinstance(result, Accepted)
    assert result.id == "proof-1"
    assert result.signature_check is SignatureCheck.PASSED
    record = store.get_by_id("proof-1")
    assert record.verifier_status is VerifierStatus.PENDING
    assert record.attempts == 0
    assert record.received_at == T0
    assert record.size_raw == result.metrics.raw_bytes > 0
    assert record.size_gzip == result.metrics.gzip_bytes > 0
    assert result.to_dict()["status"] == "ACCEPTED"


def test_metrics_match_canonical_encoding(pipeline, make_envelope):
    result = pipeline.ingest(make_envelope(payload={"blob": "x" * 2000}))
    envelope_size = size_of(pipeline.store.get_by_id("proof-1").envelope)
    assert result.metrics == envelope_size
    assert result.metrics.gzip_bytes < result.metrics.raw_bytes


def test_missing_signature_rejected_as_validation(pipeline, store, make_envelope):
    candidate = make_envelope()
    del candidate["signature"]
    result = pipeline.ingest(candidate)

    assert isinstance(result, Rejected)
    assert result.kind == "validation"
    assert isinstance(result.error, ValidationError)
    assert result.http_status == 400
    assert [e.path for e in result.errors] == ["signature"]
    assert store.get_by_id("proof-1") is None


def test_all_missing_fields_reported(pipeline):
    result = pipeline.ingest({})
    assert [e.path for e in result.errors] == ["id", "chain", "timestamp", "payload", "signature"]
    body = result.to_dict()
    assert body["status"] == "REJECTED"
    assert body["errorCode"] == "E001"
    assert len(body["errors"]) == 5


def test_tampered_envelope_rejected_as_authenticity(pipeline, store, make_envelope):
    candidate = make_envelope()
    candidate["chain"] = "solana"
    result = pipeline.ingest(candidate)

    assert isinstance(result, Rejected)
    assert result.kind == "authenticity"
    assert isinstance(result.error, AuthenticityError)
    assert result.http_status == 403
    assert store.aggregate_metrics().total == 0


def test_duplicate_id_rejected_as_conflict(pipeline, store, make_envelope):
    first = pipeline.ingest(make_envelope())
    second = pipeline.ingest(make_envelope(payload={"root": "0xother"}))

    assert isinstance(first, Accepted)
    assert isinstance(second, Rejected)
    assert second.kind == "conflict"
    assert isinstance(second.error, ConflictError)
    assert second.http_status == 409
    assert store.get_by_id("proof-1").envelope.payload == {"root": "0xabc", "height": 1}


def test_notifier_called_only_on_acceptance(store, verifier, make_envelope):
    notifier = RecordingNotifier()
    pipeline = IngestionPipeline(store, verifier, notifier=notifier)
    pipeline.ingest(make_envelope("a"))
    pipeline.ingest(make_envelope("a"))
    pipeline.ingest({"id": "b"})
    assert notifier.ids == ["a"]


def test_no_key_accepts_and_records_skipped_check(store, make_envelope, caplog):
    pipeline = IngestionPipeline(store, SignatureVerifier(None))
    result = pipeline.ingest(make_envelope(sign=False))

    assert isinstance(result, Accepted)
    assert result.signature_check is SignatureCheck.SKIPPED
    assert store.get_by_id("proof-1").signature_check is SignatureCheck.SKIPPED
    assert "SECURITY" in caplog.text


def test_required_signature_without_key_rejects(store, make_envelope):
    pipeline = IngestionPipeline(store, SignatureVerifier(None, require_signature=True))
    result = pipeline.ingest(make_envelope())
    assert isinstance(result, Rejected)
    assert result.kind == "authenticity"


def test_accepted_envelope_detached_from_caller_input(pipeline, store, make_envelope):
    raw = make_envelope(payload={"x": 1, "nested": {"y": [1, 2]}})
    result = pipeline.ingest(raw)
    assert isinstance(result, Accepted)

    raw["payload"]["x"] = 999
    raw["payload"]["nested"]["y"].append(3)

    record = store.get_by_id("proof-1")
    assert record.envelope.payload == {"x": 1, "nested": {"y": [1, 2]}}
    assert size_of(record.envelope) == result.metrics
