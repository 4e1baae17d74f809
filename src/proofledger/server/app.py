"""WSGI entry point: ``gunicorn proofledger.server.app:app``.

Settings come from ``PROOFLEDGER_*`` (and ``PROOFLEDGER_CONFIG``); logging is
configured here because no CLI runs first.
"""
from __future__ import annotations

from ..config import Settings
from ..logging_setup import configure_logging
from . import create_app

settings = Settings.from_env()
configure_logging(settings.log_level)
app = create_app(settings)


__all__ = ["app"]
