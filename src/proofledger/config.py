"""Immutable runtime settings.

Loaded once at startup from:
  1. Defaults
  2. An optional JSON config file (``PROOFLEDGER_CONFIG`` or ``--config``)
  3. Environment variables

The resulting ``Settings`` is handed to each component's constructor; nothing
below this module reads the environment.
"""
from __future__ import annotations

import json
import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Mapping, Optional

from .backoff import JITTER_MODES, BackoffPolicy

ENV_PREFIX = "PROOFLEDGER_"


@dataclass(frozen=True)
class Settings:
    database_url: str = "memory://"
    public_key: Optional[str] = field(default=None, repr=False)
    signature_algorithm: str = "ed25519"
    require_signature: bool = False
    verifier_url: Optional[str] = None
    verifier_token: Optional[str] = field(default=None, repr=False)
    verifier_timeout: float = 10.0
    max_attempts: int = 5
    backoff_base: float = 1.0
    backoff_multiplier: float = 2.0
    backoff_max: float = 300.0
    backoff_jitter: str = "full"
    poll_interval: float = 2.0
    reconciler_workers: int = 4
    reconcile_batch: int = 100
    api_keys: frozenset = frozenset()
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.backoff_base <= 0 or self.backoff_multiplier < 1 or self.backoff_max < self.backoff_base:
            raise ValueError("backoff requires base > 0, multiplier >= 1 and max >= base")
        if self.backoff_jitter not in JITTER_MODES:
            raise ValueError(f"backoff_jitter must be one of {', '.join(JITTER_MODES)}")
        if self.verifier_timeout <= 0:
            raise ValueError("verifier_timeout must be positive")
        if self.reconciler_workers < 1 or self.reconcile_batch < 1:
            raise ValueError("reconciler_workers and reconcile_batch must be positive")

    @property
    def backoff(self) -> BackoffPolicy:
        return BackoffPolicy(
            base=self.backoff_base,
            multiplier=self.backoff_multiplier,
            max_delay=self.backoff_max,
            jitter=self.backoff_jitter,
        )

    def with_overrides(self, **changes: Any) -> "Settings":
        return replace(self, **changes)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Settings":
        """Build settings from a plain mapping, ignoring unknown keys."""
        known = {f.name: f for f in fields(cls)}
        kwargs: dict[str, Any] = {}
        for key, value in data.items():
            if key not in known or value is None:
                continue
            kwargs[key] = _coerce(key, value, known[key].default)
        return cls(**kwargs)

    @classmethod
    def from_env(cls, config_path: Path | str | None = None, environ: Mapping[str, str] | None = None) -> "Settings":
        env = os.environ if environ is None else environ
        data: dict[str, Any] = {}
        path = config_path or env.get(f"{ENV_PREFIX}CONFIG")
        if path:
            data.update(_read_json(Path(path)))

        for f in fields(cls):
            raw = env.get(ENV_PREFIX + f.name.upper())
            if raw is not None and raw != "":
                data[f.name] = raw

        key_file = env.get(f"{ENV_PREFIX}PUBLIC_KEY_FILE")
        if key_file and not data.get("public_key"):
            data["public_key"] = Path(key_file).expanduser().read_text()

        return cls.from_mapping(data)


def _coerce(name: str, value: Any, default: Any) -> Any:
    if name == "api_keys":
        return ensure_api_keys(value)
    if isinstance(default, bool):
        return _bool(value)
    if isinstance(default, int):
        return _int(value, default)
    if isinstance(default, float):
        return _float(value, default)
    return str(value)


def ensure_api_keys(value: Any) -> frozenset:
    if not value:
        return frozenset()
    if isinstance(value, str):
        return frozenset(part.strip() for part in value.split(",") if part.strip())
    return frozenset(str(item).strip() for item in value if str(item).strip())


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


def _int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _read_json(path: Path) -> dict[str, Any]:
    data = json.loads(path.expanduser().read_text())
    if not isinstance(data, dict):
        raise ValueError(f"config file {path} must contain a JSON object")
    return data


__all__ = ["ENV_PREFIX", "Settings", "ensure_api_keys"]
