"""proofledger keygen / sign - Ed25519 keys for proof envelopes.

Usage:
    proofledger keygen --out keys/
    proofledger sign envelope.json --key keys/signing_key.pem
    proofledger sign envelope.json --key keys/signing_key.pem -o signed.json
"""
from __future__ import annotations

import json
from pathlib import Path

import click

from ..signing import (
    generate_keypair,
    load_private_key,
    private_key_pem,
    public_key_b64,
    public_key_pem,
    sign_envelope,
)
from .utils import read_json_arg


@click.command("keygen")
@click.option("--out", "out_dir", default=".", type=click.Path(file_okay=False),
              show_default=True, help="Directory to write signing_key.pem / signing_key.pub")
@click.option("--force", is_flag=True, help="Overwrite an existing key pair")
def keygen_command(out_dir: str, force: bool) -> None:
    """Generate an Ed25519 key pair for signing envelopes.

    The private key is written as PKCS8 PEM, the public key as
    SubjectPublicKeyInfo PEM. Point PROOFLEDGER_PUBLIC_KEY_FILE at the
    .pub file on the ingesting side.
    """
    key_dir = Path(out_dir)
    key_dir.mkdir(parents=True, exist_ok=True)
    key_path = key_dir / "signing_key.pem"
    pub_path = key_dir / "signing_key.pub"
    if key_path.exists() and not force:
        raise click.ClickException(f"{key_path} already exists (use --force to overwrite)")

    private_key, public_key = generate_keypair()
    key_path.write_bytes(private_key_pem(private_key))
    key_path.chmod(0o600)
    pub_path.write_bytes(public_key_pem(public_key))

    click.echo("Generated key pair:")
    click.echo(f"  Private: {key_path}")
    click.echo(f"  Public:  {pub_path}")
    click.echo(f"  Raw public key (base64): {public_key_b64(public_key)}")


@click.command("sign")
@click.argument("envelope", type=click.File("r"))
@click.option("--key", "-k", "key_path", required=True, type=click.Path(exists=True, dir_okay=False),
              help="Path to Ed25519 private key (PEM)")
@click.option("--output", "-o", default=None, type=click.Path(dir_okay=False),
              help="Write the signed envelope here instead of stdout")
def sign_command(envelope, key_path: str, output: str | None) -> None:
    """Sign ENVELOPE (a JSON file, or - for stdin).

    The signature covers the canonical JSON of id, chain, timestamp and
    payload; any existing signature field is replaced.
    """
    fields = read_json_arg(envelope)
    if not isinstance(fields, dict):
        raise click.ClickException("envelope must be a JSON object")
    try:
        private_key = load_private_key(Path(key_path))
        signed = sign_envelope(fields, private_key)
    except ValueError as exc:
        raise click.ClickException(str(exc))

    text = json.dumps(signed, indent=2) + "\n"
    if output:
        Path(output).write_text(text)
        click.echo(f"Signed: {output}")
    else:
        click.echo(text, nl=False)


__all__ = ["keygen_command", "sign_command"]
