"""Record store backends and the factory that picks one from a database URL."""
from __future__ import annotations

from .base import MUTABLE_FIELDS, ProofStore
from .memory import MemoryProofStore
from .sqlite import SqliteProofStore


def open_store(database_url: str) -> ProofStore:
    """Open the store named by ``database_url``.

    ``memory://`` keeps records in process, ``sqlite:///path/to.db`` (or
    ``sqlite:///:memory:``) uses SQLite and ``postgresql://...`` uses Postgres.
    """
    url = (database_url or "memory://").strip()
    if url.startswith("memory://"):
        return MemoryProofStore()
    if url.startswith("sqlite://"):
        path = url[len("sqlite://"):]
        if path.startswith("/"):
            path = path[1:]
        if not path:
            raise ValueError("sqlite URL needs a path, e.g. sqlite:///proofs.db")
        return SqliteProofStore(path)
    if url.startswith(("postgres://", "postgresql://")):
        from .postgres import PostgresProofStore

        return PostgresProofStore(url)
    raise ValueError(f"unsupported database URL: {database_url}")


__all__ = ["MUTABLE_FIELDS", "MemoryProofStore", "ProofStore", "SqliteProofStore", "open_store"]
