"""X-API-Key check applied to the ``/api`` blueprint when keys are configured."""
from __future__ import annotations

import hmac
import logging
from typing import Iterable

from flask import current_app, request

from .errors import APIError

LOGGER = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


def key_matches(provided: str, keys: Iterable[str]) -> bool:
    # every key is compared, no early exit
    matched = False
    for key in keys:
        matched |= hmac.compare_digest(provided.encode("utf-8"), key.encode("utf-8"))
    return matched


def require_api_key() -> None:
    keys: Iterable[str] | None = current_app.config.get("PROOFLEDGER_API_KEYS")
    if not keys:
        return

    provided = request.headers.get(API_KEY_HEADER, "").strip()
    if provided and key_matches(provided, keys):
        return
    LOGGER.warning(
        "SECURITY: rejected %s %s from %s (%s API key)",
        request.method,
        request.path,
        request.remote_addr,
        "invalid" if provided else "missing",
    )
    raise APIError(
        401,
        "missing or invalid API key",
        "E030",
        headers={"WWW-Authenticate": f'ApiKey header="{API_KEY_HEADER}"'},
    )


__all__ = ["API_KEY_HEADER", "key_matches", "require_api_key"]
