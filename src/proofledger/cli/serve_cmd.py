"""proofledger serve / reconcile - long-running processes."""
from __future__ import annotations

import json
import threading

import click

from ..service import ProofLedgerService
from .utils import persistent_service, settings_from


@click.command("serve")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8080, show_default=True, type=int)
@click.option("--no-reconciler", is_flag=True, help="Only accept proofs; run `proofledger reconcile` separately")
@click.pass_context
def serve_command(ctx: click.Context, host: str, port: int, no_reconciler: bool) -> None:
    """Run the ingress HTTP API.

    Uses Flask's built-in server; for production point a WSGI server at
    ``proofledger.server.app:app``.
    """
    from ..server import create_app

    settings = settings_from(ctx)
    service = ProofLedgerService.from_settings(settings)
    app = create_app(settings, {"RECONCILER_AUTOSTART": not no_reconciler}, service=service)
    click.echo(f"proofledger listening on http://{host}:{port} (store: {settings.database_url.split('://')[0]})")
    try:
        app.run(host=host, port=port, use_reloader=False)
    finally:
        service.shutdown()


@click.command("reconcile")
@click.option("--once", is_flag=True, help="Run a single sweep and exit")
@click.pass_context
def reconcile_command(ctx: click.Context, once: bool) -> None:
    """Drive pending and submitted proofs through the external verifier."""
    service = persistent_service(ctx)
    reconciler = service.reconciler
    if reconciler is None:
        service.shutdown()
        raise click.ClickException("no verifier configured; set PROOFLEDGER_VERIFIER_URL")

    if once:
        try:
            outcomes = reconciler.run_once()
        finally:
            service.shutdown()
        for outcome in outcomes:
            click.echo(json.dumps(outcome.to_dict()))
        click.echo(f"reconciled {len(outcomes)} proof(s)", err=True)
        return

    reconciler.start()
    click.echo("reconciler running; Ctrl-C to stop", err=True)
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        pass
    finally:
        service.shutdown()


__all__ = ["reconcile_command", "serve_command"]
