"""Canonical JSON encoding used for signatures and size accounting."""
from __future__ import annotations

import gzip
import json
from typing import Any

from .models import ProofEnvelope, SizeMetrics


def canonical_json(obj: Any) -> str:
    """Produce canonical JSON encoding (sorted keys, no whitespace)."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def canonical_bytes(obj: Any) -> bytes:
    return canonical_json(obj).encode("utf-8")


def signable_bytes(envelope: ProofEnvelope) -> bytes:
    """Bytes covered by an envelope signature: id, chain, timestamp and payload."""
    return canonical_bytes(envelope.signable())


def size_of(envelope: ProofEnvelope) -> SizeMetrics:
    """Raw and gzip byte counts of the full canonical envelope."""
    raw = canonical_bytes(envelope.to_dict())
    # mtime pinned so the compressed size is reproducible
    packed = gzip.compress(raw, compresslevel=9, mtime=0)
    return SizeMetrics(raw_bytes=len(raw), gzip_bytes=len(packed))


__all__ = ["canonical_bytes", "canonical_json", "signable_bytes", "size_of"]
