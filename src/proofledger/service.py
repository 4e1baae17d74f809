"""Wiring of store, pipeline and reconciler from one ``Settings`` instance."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from .config import Settings
from .pipeline import IngestionPipeline
from .reconciler import VerifierReconciler
from .signing import SignatureVerifier
from .store import ProofStore, open_store
from .verifier_client import HttpVerifierClient, VerifierClient

LOGGER = logging.getLogger(__name__)


@dataclass
class ProofLedgerService:
    settings: Settings
    store: ProofStore
    pipeline: IngestionPipeline
    reconciler: Optional[VerifierReconciler]

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        store: ProofStore | None = None,
        client: VerifierClient | None = None,
    ) -> "ProofLedgerService":
        store = store or open_store(settings.database_url)
        if client is None and settings.verifier_url:
            client = HttpVerifierClient(
                settings.verifier_url,
                token=settings.verifier_token,
                timeout=settings.verifier_timeout,
            )
        reconciler = VerifierReconciler(store, client, settings) if client is not None else None
        if reconciler is None:
            LOGGER.warning("No verifier configured; accepted proofs will stay pending")
        verifier = SignatureVerifier(
            settings.public_key,
            settings.signature_algorithm,
            require_signature=settings.require_signature,
        )
        if not verifier.configured and not settings.require_signature:
            LOGGER.warning("SECURITY: no public key configured; envelope signatures will not be checked")
        pipeline = IngestionPipeline(store, verifier, notifier=reconciler)
        return cls(settings=settings, store=store, pipeline=pipeline, reconciler=reconciler)

    def start(self) -> None:
        if self.reconciler is not None:
            self.reconciler.start()

    def shutdown(self) -> None:
        if self.reconciler is not None:
            self.reconciler.stop()
        self.store.close()


__all__ = ["ProofLedgerService"]
