"""Shared helpers for CLI commands."""
from __future__ import annotations

import json
from typing import Any

import click

from ..config import Settings
from ..service import ProofLedgerService


def settings_from(ctx: click.Context) -> Settings:
    return ctx.obj["settings"]


def persistent_service(ctx: click.Context) -> ProofLedgerService:
    """Build the service, refusing the in-memory store which would not outlive the command."""
    settings = settings_from(ctx)
    if settings.database_url.startswith("memory://"):
        raise click.ClickException(
            "this command needs a persistent store; set PROOFLEDGER_DATABASE_URL "
            "(e.g. sqlite:///proofledger.db)"
        )
    return ProofLedgerService.from_settings(settings)


def read_json_arg(source: Any) -> Any:
    """Load JSON from a click.File handle."""
    try:
        return json.load(source)
    except json.JSONDecodeError as exc:
        raise click.ClickException(f"{getattr(source, 'name', 'input')} is not valid JSON: {exc}")


__all__ = ["persistent_service", "read_json_arg", "settings_from"]
