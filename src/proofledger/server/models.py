"""Pydantic models for the query side of the HTTP API."""
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from ..models import VerifierStatus


class ProofListQuery(BaseModel):
    status: Optional[VerifierStatus] = None
    chain: Optional[str] = Field(default=None, min_length=1, max_length=128)
    limit: int = Field(default=50, ge=1, le=500)


class IngestResponse(BaseModel):
    status: str
    id: str
    metrics: dict
    signatureCheck: str
    location: str


__all__ = ["IngestResponse", "ProofListQuery"]
