"""proofledger CLI.

Commands:
    serve      - Run the ingress HTTP API (and the reconciler)
    reconcile  - Drive pending proofs through the external verifier
    keygen     - Generate an Ed25519 signing key pair
    sign       - Sign an envelope JSON file
    ingest     - Ingest an envelope JSON file into the configured store
    status     - Show one proof record
    metrics    - Aggregate counts and sizes
"""
from __future__ import annotations

from pathlib import Path

import click

from ..config import Settings
from ..logging_setup import configure_logging
from .keys_cmd import keygen_command, sign_command
from .records_cmd import ingest_command, metrics_command, status_command
from .serve_cmd import reconcile_command, serve_command


@click.group()
@click.version_option(package_name="proofledger", prog_name="proofledger")
@click.option(
    "--config", "config_path",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="JSON settings file (overrides defaults, overridden by PROOFLEDGER_* env)",
)
@click.option("--log-level", default=None, help="DEBUG, INFO, WARNING or ERROR")
@click.pass_context
def cli(ctx: click.Context, config_path: str | None, log_level: str | None) -> None:
    """proofledger - signed proof intake and verifier reconciliation

    \b
    Quick start:
      proofledger keygen --out keys/
      proofledger sign envelope.json --key keys/signing_key.pem -o signed.json
      PROOFLEDGER_PUBLIC_KEY_FILE=keys/signing_key.pub proofledger serve
    """
    ctx.ensure_object(dict)
    try:
        settings = Settings.from_env(Path(config_path) if config_path else None)
    except (OSError, ValueError) as exc:
        raise click.ClickException(f"invalid configuration: {exc}")
    if log_level:
        settings = settings.with_overrides(log_level=log_level)
    configure_logging(settings.log_level)
    ctx.obj["settings"] = settings


cli.add_command(serve_command, name="serve")
cli.add_command(reconcile_command, name="reconcile")
cli.add_command(keygen_command, name="keygen")
cli.add_command(sign_command, name="sign")
cli.add_command(ingest_command, name="ingest")
cli.add_command(status_command, name="status")
cli.add_command(metrics_command, name="metrics")


def main() -> None:
    cli(obj={})


__all__ = ["cli", "main"]
