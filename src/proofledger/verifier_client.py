"""Client for the external verification authority.

The verifier takes the full envelope as JSON and answers in one of three ways
as far as reconciliation is concerned: accept, reject (definitive) or a
transient failure worth retrying. ``submit`` returns a ``VerifierReply`` for an
acceptance and raises ``TerminalVerifierError`` / ``TransientVerifierError``
otherwise.
"""
from __future__ import annotations

import http.client
import json
import logging
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import TerminalVerifierError, TransientVerifierError
from .models import ProofEnvelope

LOGGER = logging.getLogger(__name__)

# 4xx codes that mean "try again later" rather than "no"
RETRYABLE_CLIENT_CODES = frozenset({408, 425, 429})
REJECT_STATUSES = frozenset({"rejected", "invalid", "failed"})
MAX_MESSAGE_CHARS = 500


@dataclass(frozen=True)
class VerifierReply:
    message: str
    status_code: int = 200


class VerifierResponse(BaseModel):
    """Body of a 2xx verifier answer. Unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore")

    accepted: Optional[bool] = None
    status: Optional[str] = None
    message: Optional[str] = None

    def rejected(self) -> bool:
        if self.accepted is False:
            return True
        return (self.status or "").lower() in REJECT_STATUSES


class VerifierClient(ABC):
    @abstractmethod
    def submit(self, envelope: ProofEnvelope) -> VerifierReply:
        ...


class HttpVerifierClient(VerifierClient):
    def __init__(self, url: str, *, token: str | None = None, timeout: float = 10.0) -> None:
        if not url:
            raise ValueError("verifier URL is required")
        self.url = url
        self.token = token
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def submit(self, envelope: ProofEnvelope) -> VerifierReply:
        body = json.dumps(envelope.to_dict()).encode("utf-8")
        req = urllib.request.Request(self.url, data=body, headers=self._headers(), method="POST")
        LOGGER.debug("Submitting proof %s to verifier %s", envelope.id, self.url)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                status = resp.status
                text = resp.read().decode("utf-8", errors="replace")
        except urllib.error.HTTPError as e:
            error_body = e.read().decode("utf-8", errors="replace") if e.fp else ""
            raise classify_http_error(e.code, error_body) from e
        except urllib.error.URLError as e:
            raise TransientVerifierError(f"verifier unreachable: {e.reason}") from e
        except (TimeoutError, ConnectionError, http.client.HTTPException) as e:
            raise TransientVerifierError(f"verifier call failed: {type(e).__name__}: {e}") from e
        return interpret_success(status, text)


def _message_from_body(text: str) -> str:
    try:
        data: Any = json.loads(text)
    except json.JSONDecodeError:
        return text.strip()[:MAX_MESSAGE_CHARS]
    if isinstance(data, dict):
        for key in ("message", "error", "detail", "reason"):
            if data.get(key):
                return str(data[key])[:MAX_MESSAGE_CHARS]
    return text.strip()[:MAX_MESSAGE_CHARS]


def classify_http_error(status_code: int, body: str) -> TransientVerifierError | TerminalVerifierError:
    message = _message_from_body(body) or f"HTTP {status_code}"
    if status_code >= 500 or status_code in RETRYABLE_CLIENT_CODES:
        return TransientVerifierError(f"verifier error ({status_code}): {message}", status_code=status_code)
    if 400 <= status_code < 500:
        return TerminalVerifierError(message, status_code=status_code)
    return TransientVerifierError(f"unexpected verifier status {status_code}: {message}", status_code=status_code)


def interpret_success(status_code: int, text: str) -> VerifierReply:
    if not 200 <= status_code < 300:
        raise classify_http_error(status_code, text)
    if not text.strip():
        return VerifierReply("accepted", status_code)
    try:
        parsed = VerifierResponse.model_validate_json(text)
    except ValidationError:
        return VerifierReply(text.strip()[:MAX_MESSAGE_CHARS], status_code)
    if parsed.rejected():
        raise TerminalVerifierError(parsed.message or "rejected by verifier", status_code=status_code)
    return VerifierReply(parsed.message or parsed.status or "accepted", status_code)


__all__ = [
    "HttpVerifierClient",
    "VerifierClient",
    "VerifierReply",
    "VerifierResponse",
    "classify_http_error",
    "interpret_success",
]
