"""JSON error responses for the proofledger API.

Domain errors (``ProofLedgerError``) and werkzeug HTTP errors are both
rendered through ``APIError`` so every non-2xx body has the same shape:
``{"status": "ERROR", "errorCode": ..., "message": ...}``.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from flask import jsonify
from werkzeug.exceptions import HTTPException

from ..errors import ProofLedgerError

# codes for failures raised by the HTTP layer itself rather than the domain
HTTP_ERROR_CODES = {
    400: "E001",
    401: "E030",
    404: "E011",
    405: "E031",
}


@dataclass
class APIError(Exception):
    status: int
    message: str
    error_code: str | None = None
    extra: Dict[str, Any] | None = None
    headers: Dict[str, str] | None = None

    @classmethod
    def from_error(cls, err: ProofLedgerError) -> "APIError":
        return cls(err.http_status, err.message, err.error_code, dict(err.extra) or None)

    @classmethod
    def from_http_exception(cls, err: HTTPException) -> "APIError":
        status = err.code or 500
        return cls(status, err.description or err.name, HTTP_ERROR_CODES.get(status, "E000"))

    def to_response(self):
        payload: Dict[str, Any] = {"status": "ERROR", "message": self.message}
        if self.error_code:
            payload["errorCode"] = self.error_code
        if self.extra:
            payload.update(self.extra)
        response = jsonify(payload)
        response.status_code = self.status
        if self.headers:
            response.headers.update(self.headers)
        return response


__all__ = ["APIError", "HTTP_ERROR_CODES"]
