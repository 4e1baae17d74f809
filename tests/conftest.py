"""Shared fixtures: keys, signed envelopes, stores, a manual clock and scripted verifiers."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List

import pytest

from proofledger.config import Settings
from proofledger.models import ProofEnvelope
from proofledger.pipeline import IngestionPipeline
from proofledger.signing import SignatureVerifier, generate_keypair, public_key_pem, sign_envelope
from proofledger.store import MemoryProofStore
from proofledger.verifier_client import VerifierClient, VerifierReply

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeVerifierClient(VerifierClient):
    """Replays a script of outcomes; the last entry repeats once the script runs out.

    Entries are exceptions (raised) or strings (returned as the acceptance message).
    """

    def __init__(self, script: Iterable[Any] = ("accepted",)) -> None:
        self.script: List[Any] = list(script)
        self.calls: List[str] = []

    def submit(self, envelope: ProofEnvelope) -> VerifierReply:
        self.calls.append(envelope.id)
        step = self.script[min(len(self.calls) - 1, len(self.script) - 1)]
        if isinstance(step, BaseException):
            raise step
        return VerifierReply(step)


@pytest.fixture
def keypair():
    return generate_keypair()


@pytest.fixture
def public_pem(keypair) -> bytes:
    return public_key_pem(keypair[1])


@pytest.fixture
def make_envelope(keypair) -> Callable[..., Dict[str, Any]]:
    """Factory for envelope dicts, signed with the fixture key unless ``sign=False``."""
    private_key = keypair[0]

    def _make(
        proof_id: str = "proof-1",
        chain: str = "ethereum",
        payload: Dict[str, Any] | None = None,
        timestamp: str = "2024-01-01T11:59:00Z",
        sign: bool = True,
    ) -> Dict[str, Any]:
        fields = {
            "id": proof_id,
            "chain": chain,
            "timestamp": timestamp,
            "payload": payload if payload is not None else {"root": "0xabc", "height": 1},
        }
        if sign:
            return sign_envelope(fields, private_key)
        return dict(fields, signature="AAAA")

    return _make


@pytest.fixture
def settings() -> Settings:
    return Settings(
        backoff_jitter="none",
        backoff_base=1.0,
        backoff_multiplier=2.0,
        backoff_max=60.0,
        max_attempts=5,
        reconciler_workers=1,
        poll_interval=0.05,
    )


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store() -> MemoryProofStore:
    return MemoryProofStore()


@pytest.fixture
def verifier(public_pem) -> SignatureVerifier:
    return SignatureVerifier(public_pem)


@pytest.fixture
def pipeline(store, verifier, clock) -> IngestionPipeline:
    return IngestionPipeline(store, verifier, clock=clock)
