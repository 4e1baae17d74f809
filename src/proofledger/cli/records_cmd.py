"""proofledger ingest / status / metrics - work against the configured store."""
from __future__ import annotations

import json

import click

from ..models import MetricsSummary, ProofRecord, VerifierStatus
from .utils import persistent_service, read_json_arg


@click.command("ingest")
@click.argument("envelope", type=click.File("r"))
@click.pass_context
def ingest_command(ctx: click.Context, envelope) -> None:
    """Ingest ENVELOPE (a JSON file, or - for stdin) as if it were POSTed.

    Prints the ACCEPTED/REJECTED result as JSON; exits 1 on rejection.
    """
    service = persistent_service(ctx)
    try:
        result = service.pipeline.ingest(read_json_arg(envelope))
    finally:
        service.shutdown()
    click.echo(json.dumps(result.to_dict(), indent=2))
    if not result.accepted:
        ctx.exit(1)


@click.command("status")
@click.argument("proof_id")
@click.option("--json", "as_json", is_flag=True, help="Print the full record as JSON")
@click.pass_context
def status_command(ctx: click.Context, proof_id: str, as_json: bool) -> None:
    """Show the verification state of PROOF_ID."""
    service = persistent_service(ctx)
    try:
        record = service.store.get_by_id(proof_id)
    finally:
        service.shutdown()
    if record is None:
        raise click.ClickException(f"proof {proof_id} not found")
    if as_json:
        click.echo(json.dumps(record.to_dict(), indent=2))
        return
    _print_record(record)


def _print_record(record: ProofRecord) -> None:
    click.echo(f"id:              {record.id}")
    click.echo(f"chain:           {record.chain}")
    click.echo(f"status:          {record.verifier_status.value}")
    click.echo(f"attempts:        {record.attempts}")
    click.echo(f"signature:       {record.signature_check.value}")
    click.echo(f"size:            {record.size_raw} bytes ({record.size_gzip} gzip)")
    click.echo(f"received_at:     {record.received_at.isoformat()}")
    if record.verified_at is not None:
        click.echo(f"verified_at:     {record.verified_at.isoformat()}")
    if record.next_attempt_at is not None and not record.verifier_status.terminal:
        click.echo(f"next_attempt_at: {record.next_attempt_at.isoformat()}")
    if record.verifier_message:
        click.echo(f"message:         {record.verifier_message}")


@click.command("metrics")
@click.option("--json", "as_json", is_flag=True, help="Print JSON metrics")
@click.pass_context
def metrics_command(ctx: click.Context, as_json: bool) -> None:
    """Counts by verifier status and chain, plus total stored sizes."""
    service = persistent_service(ctx)
    try:
        summary = service.store.aggregate_metrics()
    finally:
        service.shutdown()
    if as_json:
        click.echo(json.dumps(summary.to_dict(), indent=2))
        return
    _print_summary(summary)


def _print_summary(summary: MetricsSummary) -> None:
    from rich.console import Console
    from rich.table import Table

    console = Console()
    status_table = Table(title=f"Proofs ({summary.total})", show_header=True, header_style="bold")
    status_table.add_column("Status")
    status_table.add_column("Count", justify="right")
    for status in VerifierStatus:
        status_table.add_row(status.value, str(summary.by_status.get(status.value, 0)))
    console.print(status_table)

    if summary.by_chain:
        chain_table = Table(title="By chain", show_header=True, header_style="bold")
        chain_table.add_column("Chain")
        chain_table.add_column("Count", justify="right")
        for chain, count in sorted(summary.by_chain.items()):
            chain_table.add_row(chain, str(count))
        console.print(chain_table)

    ratio = (summary.size_gzip_total / summary.size_raw_total) if summary.size_raw_total else 0.0
    console.print(
        f"Stored: {summary.size_raw_total} bytes raw, {summary.size_gzip_total} bytes gzip "
        f"(ratio {ratio:.2f})"
    )


__all__ = ["ingest_command", "metrics_command", "status_command"]
