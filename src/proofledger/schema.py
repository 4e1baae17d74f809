"""Structural validation of incoming proof envelopes.

The envelope shape is a fixed, ordered table of field constraints. Every
constraint is evaluated so callers get the complete list of violations in a
deterministic order instead of the first failure only.
"""
from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any, Callable, Optional, Tuple

from .models import ProofEnvelope, parse_instant


@dataclass(frozen=True)
class FieldError:
    path: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "reason": self.reason}

    def __str__(self) -> str:
        return f"{self.path}: {self.reason}"


@dataclass(frozen=True)
class FieldRule:
    """One row of the constraint table: expected JSON kind plus an optional extra check."""

    name: str
    kind: str
    check: Optional[Callable[[Any], Optional[str]]] = None


@dataclass(frozen=True)
class ValidationResult:
    envelope: Optional[ProofEnvelope]
    errors: Tuple[FieldError, ...] = ()

    @property
    def ok(self) -> bool:
        return self.envelope is not None and not self.errors


_KINDS: dict[str, Callable[[Any], bool]] = {
    "string": lambda v: isinstance(v, str),
    "object": lambda v: isinstance(v, dict),
}


def _non_empty(value: str) -> Optional[str]:
    if not value.strip():
        return "must not be empty"
    return None


def _iso_datetime(value: str) -> Optional[str]:
    try:
        parse_instant(value)
    except ValueError:
        return f"not a valid ISO-8601 date-time: {value!r}"
    return None


ENVELOPE_RULES: Tuple[FieldRule, ...] = (
    FieldRule("id", "string", _non_empty),
    FieldRule("chain", "string", _non_empty),
    FieldRule("timestamp", "string", _iso_datetime),
    FieldRule("payload", "object"),
    FieldRule("signature", "string", _non_empty),
)


def _kind_of(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


def validate(candidate: Any, rules: Tuple[FieldRule, ...] = ENVELOPE_RULES) -> ValidationResult:
    """Check ``candidate`` against ``rules``; return a typed envelope or the ordered errors."""
    if not isinstance(candidate, dict):
        return ValidationResult(None, (FieldError("$", f"expected object, got {_kind_of(candidate)}"),))

    errors: list[FieldError] = []
    for rule in rules:
        if rule.name not in candidate:
            errors.append(FieldError(rule.name, "required field missing"))
            continue
        value = candidate[rule.name]
        if not _KINDS[rule.kind](value):
            errors.append(FieldError(rule.name, f"expected {rule.kind}, got {_kind_of(value)}"))
            continue
        if rule.check is not None:
            reason = rule.check(value)
            if reason:
                errors.append(FieldError(rule.name, reason))

    if errors:
        return ValidationResult(None, tuple(errors))
    envelope = ProofEnvelope(
        id=candidate["id"],
        chain=candidate["chain"],
        timestamp=candidate["timestamp"],
        payload=copy.deepcopy(candidate["payload"]),
        signature=candidate["signature"],
    )
    return ValidationResult(envelope)


__all__ = ["ENVELOPE_RULES", "FieldError", "FieldRule", "ValidationResult", "validate"]
