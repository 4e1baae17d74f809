"""proofledger - signed proof intake with verifier reconciliation."""
from __future__ import annotations

from .config import Settings
from .errors import (
    AuthenticityError,
    ConflictError,
    InvalidTransitionError,
    ProofLedgerError,
    RecordNotFoundError,
    RetryExhaustedError,
    StaleRecordError,
    TerminalVerifierError,
    TransientVerifierError,
    ValidationError,
)
from .models import ProofEnvelope, ProofRecord, SignatureCheck, SizeMetrics, VerifierStatus
from .pipeline import Accepted, IngestionPipeline, Rejected
from .reconciler import VerifierReconciler
from .signing import SignatureVerifier
from .state_machine import VerificationStateMachine
from .store import ProofStore, open_store

__version__ = "0.1.0"

__all__ = [
    "Accepted",
    "AuthenticityError",
    "ConflictError",
    "IngestionPipeline",
    "InvalidTransitionError",
    "ProofEnvelope",
    "ProofLedgerError",
    "ProofRecord",
    "ProofStore",
    "RecordNotFoundError",
    "Rejected",
    "RetryExhaustedError",
    "Settings",
    "SignatureCheck",
    "SignatureVerifier",
    "SizeMetrics",
    "StaleRecordError",
    "TerminalVerifierError",
    "TransientVerifierError",
    "ValidationError",
    "VerificationStateMachine",
    "VerifierReconciler",
    "VerifierStatus",
    "__version__",
    "open_store",
]
