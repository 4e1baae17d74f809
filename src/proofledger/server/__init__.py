"""Flask application factory for the proofledger ingress API."""
from __future__ import annotations

import atexit
from typing import Any

from flask import Flask, jsonify
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from ..config import Settings
from ..errors import ProofLedgerError
from ..service import ProofLedgerService
from .auth import require_api_key
from .errors import APIError
from .routes import api_bp


def create_app(
    settings: Settings | None = None,
    config: dict[str, Any] | None = None,
    *,
    service: ProofLedgerService | None = None,
) -> Flask:
    """Create and configure the Flask application.

    ``settings`` defaults to ``Settings.from_env()``. A prebuilt ``service``
    (store, pipeline, reconciler) may be injected, which tests use to supply
    fake verifier clients.
    """

    app = Flask(__name__)
    if service is None:
        settings = settings or Settings.from_env()
        service = ProofLedgerService.from_settings(settings)
    settings = service.settings

    app.config.setdefault("PROOFLEDGER_API_KEYS", settings.api_keys)
    app.config.setdefault("RECONCILER_AUTOSTART", True)
    if config:
        app.config.update(config)

    app.extensions["proofledger"] = service

    if app.config.get("PROOFLEDGER_API_KEYS"):
        app.before_request_funcs.setdefault("proofledger_api", []).append(require_api_key)

    app.register_blueprint(api_bp, url_prefix="/api")

    if app.config.get("RECONCILER_AUTOSTART") and not app.config.get("TESTING"):
        service.start()
        atexit.register(service.shutdown)

    @app.get("/health")
    def _health() -> tuple[dict[str, str], int]:
        return {"status": "ok"}, 200

    @app.get("/ready")
    def _ready() -> tuple[dict[str, Any], int]:
        reconciler = service.reconciler
        checks = {
            "store": service.store.ping(),
            "verifierConfigured": reconciler is not None,
            "reconcilerRunning": bool(reconciler and reconciler.running),
            "signatureKeyConfigured": service.pipeline.verifier.configured,
        }
        ready = checks["store"]
        return {"status": "ready" if ready else "not_ready", "checks": checks}, 200 if ready else 503

    @app.errorhandler(APIError)
    def _handle_api_error(err: APIError):  # type: ignore[override]
        return err.to_response()

    @app.errorhandler(ProofLedgerError)
    def _handle_domain_error(err: ProofLedgerError):  # type: ignore[override]
        return APIError.from_error(err).to_response()

    @app.errorhandler(HTTPException)
    def _handle_http_error(err: HTTPException):  # type: ignore[override]
        return APIError.from_http_exception(err).to_response()

    @app.errorhandler(ValidationError)
    def _handle_validation(err: ValidationError):  # type: ignore[override]
        return jsonify({
            "status": "ERROR",
            "message": "validation error",
            "details": err.errors(include_url=False, include_context=False),
        }), 422

    return app


__all__ = ["create_app"]
