"""Error taxonomy shared by the ingestion pipeline, stores and reconciler."""
from __future__ import annotations

from typing import Any, Dict


class ProofLedgerError(Exception):
    """Base error carrying a stable error code and the HTTP status it maps to."""

    error_code = "E000"
    http_status = 500

    def __init__(self, message: str, *, extra: Dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.extra = extra or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "status": "ERROR",
            "errorCode": self.error_code,
            "message": self.message,
        }
        payload.update(self.extra)
        return payload


class ValidationError(ProofLedgerError):
    """Structural problem with a submitted envelope. Never retried."""

    error_code = "E001"
    http_status = 400

    def __init__(self, errors: list, message: str = "envelope failed schema validation") -> None:
        super().__init__(message, extra={"errors": [e.to_dict() for e in errors]})
        self.errors = list(errors)


class AuthenticityError(ProofLedgerError):
    """Signature check failed; the envelope is rejected before persistence."""

    error_code = "E020"
    http_status = 403


class ConflictError(ProofLedgerError):
    """A record with the same id already exists."""

    error_code = "E010"
    http_status = 409

    def __init__(self, proof_id: str) -> None:
        super().__init__(f"proof {proof_id!r} already exists", extra={"id": proof_id})
        self.proof_id = proof_id


class RecordNotFoundError(ProofLedgerError):
    error_code = "E011"
    http_status = 404

    def __init__(self, proof_id: str) -> None:
        super().__init__(f"proof {proof_id!r} not found", extra={"id": proof_id})
        self.proof_id = proof_id


class StaleRecordError(ProofLedgerError):
    """Compare-and-set lost: the stored status (or attempts) moved on."""

    error_code = "E012"
    http_status = 409

    def __init__(self, proof_id: str, expected: str, actual: str) -> None:
        super().__init__(
            f"proof {proof_id!r} expected status {expected!r} but found {actual!r}",
            extra={"id": proof_id},
        )
        self.proof_id = proof_id
        self.expected = expected
        self.actual = actual


class InvalidTransitionError(ProofLedgerError):
    error_code = "E013"
    http_status = 409

    def __init__(self, proof_id: str, current: str, target: str) -> None:
        super().__init__(f"proof {proof_id!r}: illegal transition {current} -> {target}")
        self.proof_id = proof_id
        self.current = current
        self.target = target


class VerifierError(ProofLedgerError):
    """Base class for outcomes of a call to the external verifier."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class TransientVerifierError(VerifierError):
    """Network failure, timeout or 5xx. Retried with backoff."""

    error_code = "E070"
    http_status = 502


class TerminalVerifierError(VerifierError):
    """Definitive rejection from the verifier. Applied as ``failed`` at once."""

    error_code = "E071"
    http_status = 422


class RetryExhaustedError(VerifierError):
    error_code = "E072"
    http_status = 504

    def __init__(self, attempts: int, last_error: str | None = None) -> None:
        message = f"retry budget exhausted after {attempts} attempts"
        if last_error:
            message = f"{message}: {last_error}"
        super().__init__(message)
        self.attempts = attempts


__all__ = [
    "AuthenticityError",
    "ConflictError",
    "InvalidTransitionError",
    "ProofLedgerError",
    "RecordNotFoundError",
    "RetryExhaustedError",
    "StaleRecordError",
    "TerminalVerifierError",
    "TransientVerifierError",
    "ValidationError",
    "VerifierError",
]
