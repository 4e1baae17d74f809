"""Background reconciliation of pending proofs against the external verifier."""
from __future__ import annotations

import logging
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from .backoff import BackoffPolicy, base_delay, next_attempt_at
from .config import Settings
from .errors import (
    InvalidTransitionError,
    ProofLedgerError,
    RetryExhaustedError,
    TerminalVerifierError,
    TransientVerifierError,
)
from .models import ProofRecord, VerifierStatus, utcnow
from .state_machine import VerificationStateMachine
from .store import ProofStore
from .verifier_client import VerifierClient

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AttemptOutcome:
    proof_id: str
    status: VerifierStatus
    attempts: int
    message: Optional[str]

    def to_dict(self) -> dict:
        return {
            "id": self.proof_id,
            "verifierStatus": self.status.value,
            "attempts": self.attempts,
            "verifierMessage": self.message,
        }


class VerifierReconciler:
    """Drives ``pending``/``submitted`` records to ``verified`` or ``failed``.

    ``run_once`` performs one synchronous sweep over the eligible records;
    ``start`` runs sweeps on a daemon thread every ``poll_interval`` seconds or
    sooner when ``notify`` is called. At most one attempt per proof id is in
    flight in this process; across processes the store's compare-and-set on
    the attempt count keeps dispatch single-winner.
    """

    def __init__(
        self,
        store: ProofStore,
        client: VerifierClient,
        settings: Settings,
        *,
        clock: Callable[[], datetime] = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.client = client
        self.state = VerificationStateMachine(store)
        self.policy: BackoffPolicy = settings.backoff
        self.max_attempts = settings.max_attempts
        self.batch_size = settings.reconcile_batch
        self.poll_interval = settings.poll_interval
        self.workers = settings.reconciler_workers
        self.call_timeout = settings.verifier_timeout
        self.clock = clock
        self.rng = rng or random.Random()
        self._in_flight: set[str] = set()
        self._lock = threading.Lock()
        self._wake = threading.Event()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._executor: ThreadPoolExecutor | None = None

    # -- scheduling -----------------------------------------------------

    def notify(self, proof_id: str) -> None:
        """Wake the background loop because ``proof_id`` became eligible."""
        LOGGER.debug("Reconciler notified of %s", proof_id)
        self._wake.set()

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        if self.workers > 1:
            self._executor = ThreadPoolExecutor(
                max_workers=self.workers,
                thread_name_prefix="proofledger-reconcile",
            )
        self._thread = threading.Thread(target=self._loop, name="proofledger-reconciler", daemon=True)
        self._thread.start()
        LOGGER.info("Reconciler started (workers=%d, poll=%.1fs)", self.workers, self.poll_interval)

    def stop(self, timeout: float | None = 10.0) -> None:
        self._stop.set()
        self._wake.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        if self._executor is not None:
            self._executor.shutdown(wait=True, cancel_futures=True)
            self._executor = None
        LOGGER.info("Reconciler stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:  # noqa: BLE001 - store outages must not kill the worker
                LOGGER.exception("Reconciliation sweep failed; retrying in %.1fs", self.poll_interval)
            self._wake.wait(self.poll_interval)
            self._wake.clear()

    def run_once(self, now: datetime | None = None) -> List[AttemptOutcome]:
        now = now or self.clock()
        ids = self.store.list_eligible_for_reconciliation(now, self.batch_size)
        if not ids:
            return []
        if self._executor is not None:
            results = list(self._executor.map(lambda pid: self.reconcile(pid, now), ids))
        else:
            results = [self.reconcile(pid, now) for pid in ids]
        return [r for r in results if r is not None]

    # -- single attempt -------------------------------------------------

    def reconcile(self, proof_id: str, now: datetime | None = None) -> Optional[AttemptOutcome]:
        """Make one verifier attempt for ``proof_id`` if it is due and not already in flight."""
        with self._lock:
            if proof_id in self._in_flight:
                return None
            self._in_flight.add(proof_id)
        try:
            return self._attempt(proof_id, now or self.clock())
        except InvalidTransitionError as exc:
            LOGGER.error("Invariant violation while reconciling %s: %s", proof_id, exc.message)
            return None
        except ProofLedgerError as exc:
            LOGGER.warning("Skipping %s: %s", proof_id, exc.message)
            return None
        finally:
            with self._lock:
                self._in_flight.discard(proof_id)

    def _lease_until(self, now: datetime, attempts: int) -> datetime:
        # long enough to cover the call itself, after which a crashed attempt is retried
        seconds = max(base_delay(attempts, self.policy), self.call_timeout)
        return now + timedelta(seconds=seconds)

    def _attempt(self, proof_id: str, now: datetime) -> Optional[AttemptOutcome]:
        record = self.store.get_by_id(proof_id)
        if record is None:
            return None
        if record.verifier_status.terminal:
            raise InvalidTransitionError(proof_id, record.verifier_status.value, VerifierStatus.SUBMITTED.value)
        if (
            record.verifier_status is VerifierStatus.SUBMITTED
            and record.next_attempt_at is not None
            and record.next_attempt_at > now
        ):
            return None
        if record.attempts >= self.max_attempts:
            # the final attempt was dispatched but its result never recorded
            exhausted = RetryExhaustedError(record.attempts, "last attempt abandoned")
            LOGGER.warning("Proof %s has no attempts left after an abandoned attempt", proof_id)
            return self._finish(self.state.mark_failed(record, exhausted.message, now), record)

        dispatched = self.state.dispatch(record, self._lease_until(now, record.attempts + 1))
        if dispatched is None:
            return None
        LOGGER.debug("Dispatching %s (attempt %d/%d)", proof_id, dispatched.attempts, self.max_attempts)

        try:
            reply = self.client.submit(dispatched.envelope)
        except TerminalVerifierError as exc:
            return self._finish(self.state.mark_failed(dispatched, f"rejected: {exc.message}", self.clock()), dispatched)
        except TransientVerifierError as exc:
            return self._retry_or_fail(dispatched, exc.message)
        except Exception as exc:  # noqa: BLE001 - unknown failures are retried, never fail closed
            LOGGER.warning("Unclassified verifier error for %s: %r", proof_id, exc)
            return self._retry_or_fail(dispatched, f"unclassified error: {type(exc).__name__}: {exc}")
        return self._finish(self.state.mark_verified(dispatched, reply.message, self.clock()), dispatched)

    def _retry_or_fail(self, record: ProofRecord, reason: str) -> Optional[AttemptOutcome]:
        finished = self.clock()
        if record.attempts >= self.max_attempts:
            exhausted = RetryExhaustedError(record.attempts, reason)
            return self._finish(self.state.mark_failed(record, exhausted.message, finished), record)
        due = next_attempt_at(finished, record.attempts, self.policy, self.rng)
        updated = self.state.reschedule(record, f"transient: {reason}", due)
        if updated is not None:
            LOGGER.info(
                "Verifier attempt %d/%d for %s failed transiently; retry at %s",
                record.attempts,
                self.max_attempts,
                record.id,
                due.isoformat(),
            )
        return self._finish(updated, record)

    def _finish(self, updated: Optional[ProofRecord], dispatched: ProofRecord) -> Optional[AttemptOutcome]:
        if updated is None:
            LOGGER.debug("Result for %s dropped; record changed concurrently", dispatched.id)
            return None
        if updated.verifier_status.terminal:
            LOGGER.info(
                "Proof %s %s after %d attempt(s): %s",
                updated.id,
                updated.verifier_status.value,
                updated.attempts,
                updated.verifier_message,
            )
        return AttemptOutcome(updated.id, updated.verifier_status, updated.attempts, updated.verifier_message)


__all__ = ["AttemptOutcome", "VerifierReconciler"]
