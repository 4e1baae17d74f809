"""Tests for verifier reconciliation: retries, backoff, terminal outcomes and concurrency."""
from __future__ import annotations

import threading
import time
from datetime import timedelta

import pytest

from conftest import FakeVerifierClient
from proofledger.errors import TerminalVerifierError, TransientVerifierError
from proofledger.models import VerifierStatus
from proofledger.pipeline import IngestionPipeline
from proofledger.reconciler import VerifierReconciler
from proofledger.state_machine import VerificationStateMachine


def _unavailable():
    return TransientVerifierError("verifier error (503): unavailable", status_code=503)


@pytest.fixture
def ingest(pipeline, make_envelope):
    def _ingest(proof_id="proof-1"):
        result = pipeline.ingest(make_envelope(proof_id))
        assert result.accepted
        return proof_id

    return _ingest


def make_reconciler(store, settings, clock, script, **overrides):
    client = FakeVerifierClient(script)
    if overrides:
        settings = settings.with_overrides(**overrides)
    return VerifierReconciler(store, client, settings, clock=clock), client


def test_success_on_first_attempt(store, settings, clock, ingest):
    ingest()
    reconciler, client = make_reconciler(store, settings, clock, ["ok"])

    outcomes = reconciler.run_once()

    assert [o.status for o in outcomes] == [VerifierStatus.VERIFIED]
    record = store.get_by_id("proof-1")
    assert record.verifier_status is VerifierStatus.VERIFIED
    assert record.attempts == 1
    assert record.verifier_message == "ok"
    assert record.verified_at == clock.now
    assert record.next_attempt_at is None
    assert client.calls == ["proof-1"]


def test_transient_failures_then_success(store, settings, clock, ingest):
    ingest()
    reconciler, client = make_reconciler(store, settings, clock, [_unavailable(), _unavailable(), "accepted"])

    reconciler.run_once()
    record = store.get_by_id("proof-1")
    assert record.verifier_status is VerifierStatus.SUBMITTED
    assert record.attempts == 1
    assert record.next_attempt_at == clock.now + timedelta(seconds=1)
    assert record.verifier_message.startswith("transient:")

    clock.advance(1)
    reconciler.run_once()
    record = store.get_by_id("proof-1")
    assert record.attempts == 2
    assert record.next_attempt_at == clock.now + timedelta(seconds=2)

    clock.advance(2)
    reconciler.run_once()
    record = store.get_by_id("proof-1")
    assert record.verifier_status is VerifierStatus.VERIFIED
    assert record.attempts == 3
    assert len(client.calls) == 3


def test_retry_budget_exhausted(store, settings, clock, ingest):
    ingest()
    reconciler, client = make_reconciler(store, settings, clock, [_unavailable()])

    for delay in (1, 2, 4, 8):
        reconciler.run_once()
        assert store.get_by_id("proof-1").verifier_status is VerifierStatus.SUBMITTED
        clock.advance(delay)
    outcomes = reconciler.run_once()

    record = store.get_by_id("proof-1")
    assert record.verifier_status is VerifierStatus.FAILED
    assert record.attempts == 5
    assert record.verifier_message.startswith("retry budget exhausted after 5 attempts")
    assert outcomes[0].status is VerifierStatus.FAILED
    assert len(client.calls) == 5

    clock.advance(3600)
    assert reconciler.run_once() == []
    assert len(client.calls) == 5


def test_not_retried_before_backoff_elapses(store, settings, clock, ingest):
    ingest()
    reconciler, client = make_reconciler(store, settings, clock, [_unavailable()])
    reconciler.run_once()
    clock.advance(0.5)
    assert reconciler.run_once() == []
    assert len(client.calls) == 1


def test_terminal_rejection_fails_immediately(store, settings, clock, ingest):
    ingest()
    reconciler, client = make_reconciler(
        store, settings, clock, [TerminalVerifierError("proof does not verify", status_code=400)]
    )

    reconciler.run_once()

    record = store.get_by_id("proof-1")
    assert record.verifier_status is VerifierStatus.FAILED
    assert record.attempts == 1
    assert record.verifier_message == "rejected: proof does not verify"
    clock.advance(3600)
    assert reconciler.run_once() == []


def test_unclassified_error_is_retried(store, settings, clock, ingest):
    ingest()
    reconciler, _ = make_reconciler(store, settings, clock, [RuntimeError("boom"), "fine"])

    reconciler.run_once()
    record = store.get_by_id("proof-1")
    assert record.verifier_status is VerifierStatus.SUBMITTED
    assert "RuntimeError" in record.verifier_message

    clock.advance(1)
    reconciler.run_once()
    assert store.get_by_id("proof-1").verifier_status is VerifierStatus.VERIFIED


def test_single_attempt_budget(store, settings, clock, ingest):
    ingest()
    reconciler, _ = make_reconciler(store, settings, clock, [_unavailable()], max_attempts=1)
    reconciler.run_once()
    record = store.get_by_id("proof-1")
    assert record.verifier_status is VerifierStatus.FAILED
    assert record.attempts == 1


def test_abandoned_attempt_is_retried_after_lease(store, settings, clock, ingest):
    ingest()
    # a dispatcher that crashed after marking the attempt in flight
    VerificationStateMachine(store).dispatch(store.get_by_id("proof-1"), clock.now + timedelta(seconds=10))
    reconciler, client = make_reconciler(store, settings, clock, ["ok"])

    assert reconciler.run_once() == []
    clock.advance(10)
    reconciler.run_once()

    record = store.get_by_id("proof-1")
    assert record.verifier_status is VerifierStatus.VERIFIED
    assert record.attempts == 2
    assert client.calls == ["proof-1"]


def test_abandoned_final_attempt_fails_without_another_call(store, settings, clock, ingest):
    ingest()
    machine = VerificationStateMachine(store)
    # every dispatch crashed before its result was recorded
    for _ in range(settings.max_attempts):
        machine.dispatch(store.get_by_id("proof-1"), clock.now + timedelta(seconds=10))
    reconciler, client = make_reconciler(store, settings, clock, [_unavailable()])

    clock.advance(10)
    (outcome,) = reconciler.run_once()

    record = store.get_by_id("proof-1")
    assert outcome.status is VerifierStatus.FAILED
    assert record.verifier_status is VerifierStatus.FAILED
    assert record.attempts == settings.max_attempts
    assert record.verifier_message.startswith("retry budget exhausted after 5 attempts")
    assert client.calls == []


def test_terminal_record_reconcile_is_logged_not_raised(store, settings, clock, ingest, caplog):
    ingest()
    reconciler, client = make_reconciler(store, settings, clock, ["ok"])
    reconciler.run_once()
    assert reconciler.reconcile("proof-1") is None
    assert "Invariant violation" in caplog.text
    assert len(client.calls) == 1


class BlockingClient(FakeVerifierClient):
    def __init__(self):
        super().__init__(["ok"])
        self.entered = threading.Event()
        self.release = threading.Event()

    def submit(self, envelope):
        self.entered.set()
        assert self.release.wait(5)
        return super().submit(envelope)


class TestConcurrency:
    def test_one_in_flight_attempt_per_id(self, store, settings, clock, ingest):
        ingest()
        client = BlockingClient()
        reconciler = VerifierReconciler(store, client, settings, clock=clock)

        worker = threading.Thread(target=reconciler.reconcile, args=("proof-1",))
        worker.start()
        assert client.entered.wait(5)
        assert reconciler.reconcile("proof-1") is None

        client.release.set()
        worker.join(5)
        assert client.calls == ["proof-1"]
        assert store.get_by_id("proof-1").attempts == 1

    def test_two_reconcilers_do_not_double_dispatch(self, store, settings, clock, ingest):
        ingest()
        client = BlockingClient()
        first = VerifierReconciler(store, client, settings, clock=clock)
        second_client = FakeVerifierClient(["ok"])
        second = VerifierReconciler(store, second_client, settings, clock=clock)

        worker = threading.Thread(target=first.run_once)
        worker.start()
        assert client.entered.wait(5)
        assert second.run_once() == []

        client.release.set()
        worker.join(5)
        assert second_client.calls == []
        record = store.get_by_id("proof-1")
        assert record.verifier_status is VerifierStatus.VERIFIED
        assert record.attempts == 1

    def test_same_snapshot_dispatches_once(self, store, settings, clock, ingest):
        ingest()
        snapshot = store.get_by_id("proof-1")
        machine = VerificationStateMachine(store)
        results = []
        barrier = threading.Barrier(6)

        def dispatch():
            barrier.wait()
            results.append(machine.dispatch(snapshot, clock.now))

        threads = [threading.Thread(target=dispatch) for _ in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert sum(1 for r in results if r is not None) == 1


class TestBackgroundLoop:
    def _wait_for(self, predicate, timeout=5.0):
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(0.01)
        return False

    @pytest.mark.parametrize("workers", [1, 3])
    def test_start_notify_stop(self, store, verifier, settings, make_envelope, workers):
        reconciler = VerifierReconciler(
            store, FakeVerifierClient(["ok"]), settings.with_overrides(reconciler_workers=workers)
        )
        pipeline = IngestionPipeline(store, verifier, notifier=reconciler)
        reconciler.start()
        try:
            assert reconciler.running
            for n in range(4):
                pipeline.ingest(make_envelope(f"p{n}"))
            assert self._wait_for(
                lambda: store.aggregate_metrics().by_status.get("verified", 0) == 4
            )
        finally:
            reconciler.stop()
        assert not reconciler.running

    def test_sweep_errors_do_not_kill_loop(self, store, settings, caplog, monkeypatch):
        reconciler = VerifierReconciler(store, FakeVerifierClient(), settings)
        calls = []

        def flaky(now, limit=100):
            calls.append(now)
            if len(calls) == 1:
                raise OSError("database went away")
            return []

        monkeypatch.setattr(store, "list_eligible_for_reconciliation", flaky)
        reconciler.start()
        try:
            assert self._wait_for(lambda: len(calls) >= 2)
        finally:
            reconciler.stop()
        assert "Reconciliation sweep failed" in caplog.text


def test_attempt_outcome_to_dict(store, settings, clock, ingest):
    ingest()
    reconciler, _ = make_reconciler(store, settings, clock, ["ok"])
    (outcome,) = reconciler.run_once()
    assert outcome.to_dict() == {
        "id": "proof-1",
        "verifierStatus": "verified",
        "attempts": 1,
        "verifierMessage": "ok",
    }
