"""Verification lifecycle: pending -> submitted -> {verified, failed}.

Every transition is written through the store's compare-and-set, keyed by
proof id and the status the caller last observed. A lost race surfaces as
``None`` from the transition methods rather than an exception; transitions
that the lifecycle does not allow raise ``InvalidTransitionError``.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, FrozenSet, Mapping, Optional

from .errors import InvalidTransitionError, StaleRecordError
from .models import ProofRecord, VerifierStatus
from .store import ProofStore

LOGGER = logging.getLogger(__name__)

P, S, V, F = (
    VerifierStatus.PENDING,
    VerifierStatus.SUBMITTED,
    VerifierStatus.VERIFIED,
    VerifierStatus.FAILED,
)

# submitted -> submitted is the re-dispatch self step (attempts only)
TRANSITIONS: Dict[VerifierStatus, FrozenSet[VerifierStatus]] = {
    P: frozenset({S}),
    S: frozenset({S, V, F}),
    V: frozenset(),
    F: frozenset(),
}


def is_allowed(current: VerifierStatus, target: VerifierStatus) -> bool:
    return target in TRANSITIONS[current]


class VerificationStateMachine:
    def __init__(self, store: ProofStore) -> None:
        self.store = store

    def _apply(
        self,
        record: ProofRecord,
        target: VerifierStatus,
        fields: Mapping[str, Any],
        *,
        expected_attempts: int | None = None,
    ) -> Optional[ProofRecord]:
        if not is_allowed(record.verifier_status, target):
            raise InvalidTransitionError(record.id, record.verifier_status.value, target.value)
        try:
            return self.store.compare_and_set_status(
                record.id,
                record.verifier_status,
                target,
                fields,
                expected_attempts=expected_attempts,
            )
        except StaleRecordError as exc:
            LOGGER.debug("Lost compare-and-set on %s: %s", record.id, exc.message)
            return None

    def dispatch(self, record: ProofRecord, lease_until: datetime) -> Optional[ProofRecord]:
        """Mark an attempt as in flight.

        ``pending`` moves to ``submitted``; an already ``submitted`` record only
        has its attempt count bumped. Guarded on the attempt count read by the
        caller so two dispatchers cannot both win.
        """
        return self._apply(
            record,
            S,
            {"attempts": record.attempts + 1, "next_attempt_at": lease_until},
            expected_attempts=record.attempts,
        )

    def reschedule(self, record: ProofRecord, message: str, next_attempt_at: datetime) -> Optional[ProofRecord]:
        if record.verifier_status is not S:
            raise InvalidTransitionError(record.id, record.verifier_status.value, S.value)
        return self._apply(
            record,
            S,
            {"verifier_message": message, "next_attempt_at": next_attempt_at},
            expected_attempts=record.attempts,
        )

    def mark_verified(self, record: ProofRecord, message: str, now: datetime) -> Optional[ProofRecord]:
        return self._apply(
            record,
            V,
            {"verifier_message": message, "verified_at": now, "next_attempt_at": None},
        )

    def mark_failed(self, record: ProofRecord, message: str, now: datetime) -> Optional[ProofRecord]:
        return self._apply(
            record,
            F,
            {"verifier_message": message, "verified_at": now, "next_attempt_at": None},
        )


__all__ = ["TRANSITIONS", "VerificationStateMachine", "is_allowed"]
