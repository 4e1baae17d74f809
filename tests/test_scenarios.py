"""End-to-end ingestion and reconciliation scenarios on the in-memory store."""
from __future__ import annotations

import threading

import pytest

from conftest import FakeVerifierClient
from proofledger.backoff import base_delay
from proofledger.errors import TransientVerifierError
from proofledger.models import VerifierStatus
from proofledger.pipeline import Accepted, IngestionPipeline, Rejected
from proofledger.reconciler import VerifierReconciler
from proofledger.signing import SignatureVerifier, generate_keypair, public_key_pem
from proofledger.state_machine import VerificationStateMachine


def _transient():
    return TransientVerifierError("verifier unreachable: timed out")


def _drive(reconciler, clock, sweeps):
    """Run sweeps, advancing the clock to each record's next due time in between."""
    for _ in range(sweeps):
        reconciler.run_once()
        record = reconciler.store.get_by_id("p1")
        if record.verifier_status.terminal:
            return record
        clock.now = record.next_attempt_at
    return reconciler.store.get_by_id("p1")


@pytest.fixture
def p1(make_envelope):
    return make_envelope("p1", "starknet")


def test_scenario_valid_envelope_accepted(pipeline, store, p1):
    result = pipeline.ingest(p1)
    assert isinstance(result, Accepted)
    record = store.get_by_id("p1")
    assert record.chain == "starknet"
    assert record.verifier_status is VerifierStatus.PENDING


def test_scenario_wrong_key_rejected(store, clock, p1):
    _, other_public = generate_keypair()
    pipeline = IngestionPipeline(store, SignatureVerifier(public_key_pem(other_public)), clock=clock)
    result = pipeline.ingest(p1)
    assert isinstance(result, Rejected)
    assert result.kind == "authenticity"
    assert store.get_by_id("p1") is None


def test_scenario_three_transient_then_success(pipeline, store, settings, clock, p1):
    pipeline.ingest(p1)
    client = FakeVerifierClient([_transient(), _transient(), _transient(), "verified"])
    reconciler = VerifierReconciler(store, client, settings, clock=clock)

    record = _drive(reconciler, clock, 10)

    assert record.verifier_status is VerifierStatus.VERIFIED
    assert record.attempts == 4
    assert len(client.calls) == 4


def test_scenario_always_transient_exhausts(pipeline, store, settings, clock, p1):
    pipeline.ingest(p1)
    client = FakeVerifierClient([_transient()])
    reconciler = VerifierReconciler(store, client, settings, clock=clock)

    record = _drive(reconciler, clock, 10)

    assert record.verifier_status is VerifierStatus.FAILED
    assert record.attempts == 5
    assert "retry budget exhausted" in record.verifier_message
    assert len(client.calls) == 5


def test_scenario_duplicate_conflict(pipeline, store, p1, make_envelope):
    pipeline.ingest(p1)
    original = store.get_by_id("p1")
    result = pipeline.ingest(make_envelope("p1", "starknet", payload={"other": True}))
    assert isinstance(result, Rejected)
    assert result.kind == "conflict"
    assert store.get_by_id("p1") == original


def test_accepted_never_returns_to_pending(pipeline, store, settings, clock, p1):
    pipeline.ingest(p1)
    reconciler = VerifierReconciler(store, FakeVerifierClient([_transient(), "ok"]), settings, clock=clock)
    seen = []
    for _ in range(3):
        reconciler.run_once()
        seen.append(store.get_by_id("p1").verifier_status)
        clock.advance(60)
    assert VerifierStatus.PENDING not in seen


def test_backoff_non_decreasing_without_jitter(settings):
    delays = [base_delay(n, settings.backoff) for n in range(1, 20)]
    assert delays == sorted(delays)
    assert delays[-1] == settings.backoff_max


@pytest.mark.parametrize("finish", ["mark_verified", "mark_failed"])
def test_concurrent_exit_from_submitted_single_winner(pipeline, store, clock, p1, finish):
    pipeline.ingest(p1)
    machine = VerificationStateMachine(store)
    submitted = machine.dispatch(store.get_by_id("p1"), clock.now)
    results = []
    barrier = threading.Barrier(6)

    def worker(n):
        barrier.wait()
        method = machine.mark_verified if n % 2 else getattr(machine, finish)
        results.append(method(submitted, f"worker {n}", clock.now))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(6)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sum(1 for r in results if r is not None) == 1
    assert store.get_by_id("p1").verifier_status.terminal
