"""Ed25519 authenticity checks for proof envelopes.

The signature covers the canonical JSON of the signable fields (id, chain,
timestamp, payload); see ``codec.signable_bytes``. Public keys may be given as
PEM, base64-wrapped PEM, raw 32-byte keys in hex, or raw keys in base64.
"""
from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from cryptography.exceptions import InvalidSignature, UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from .codec import canonical_bytes, signable_bytes
from .models import SIGNABLE_FIELDS, ProofEnvelope

LOGGER = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("ed25519",)
ED25519_SIGNATURE_BYTES = 64
ED25519_KEY_BYTES = 32

KeyMaterial = Union[str, bytes, Ed25519PublicKey]


class VerificationOutcome(str, Enum):
    PASSED = "passed"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class SignatureVerdict:
    outcome: VerificationOutcome
    reason: str = ""

    @property
    def passed(self) -> bool:
        return self.outcome is VerificationOutcome.PASSED

    @property
    def failed(self) -> bool:
        return self.outcome is VerificationOutcome.FAILED


def load_public_key(material: KeyMaterial) -> Ed25519PublicKey:
    """Parse Ed25519 public key material. Raises ValueError when it is unusable."""
    if isinstance(material, Ed25519PublicKey):
        return material
    raw = material.encode("utf-8") if isinstance(material, str) else bytes(material)
    raw = raw.strip()
    if not raw:
        raise ValueError("empty public key")
    if raw.startswith(b"-----BEGIN"):
        key = serialization.load_pem_public_key(raw)
        if not isinstance(key, Ed25519PublicKey):
            raise ValueError(f"expected an Ed25519 public key, got {type(key).__name__}")
        return key
    if len(raw) == ED25519_KEY_BYTES * 2:
        try:
            return Ed25519PublicKey.from_public_bytes(bytes.fromhex(raw.decode("ascii")))
        except ValueError:
            pass
    try:
        decoded = base64.b64decode(raw, validate=True)
    except binascii.Error as exc:
        raise ValueError("public key is neither PEM, hex nor base64") from exc
    if decoded.startswith(b"-----BEGIN"):
        return load_public_key(decoded)
    if len(decoded) != ED25519_KEY_BYTES:
        raise ValueError(f"raw Ed25519 key must be {ED25519_KEY_BYTES} bytes, got {len(decoded)}")
    return Ed25519PublicKey.from_public_bytes(decoded)


def load_private_key(pem: Union[str, bytes, Path]) -> Ed25519PrivateKey:
    if isinstance(pem, Path):
        pem = pem.read_bytes()
    data = pem.encode("utf-8") if isinstance(pem, str) else pem
    key = serialization.load_pem_private_key(data, password=None)
    if not isinstance(key, Ed25519PrivateKey):
        raise ValueError(f"expected an Ed25519 private key, got {type(key).__name__}")
    return key


def generate_keypair() -> tuple[Ed25519PrivateKey, Ed25519PublicKey]:
    private_key = Ed25519PrivateKey.generate()
    return private_key, private_key.public_key()


def private_key_pem(key: Ed25519PrivateKey) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


def public_key_pem(key: Ed25519PublicKey) -> bytes:
    return key.public_bytes(
        serialization.Encoding.PEM,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def public_key_b64(key: Ed25519PublicKey) -> str:
    raw = key.public_bytes(serialization.Encoding.Raw, serialization.PublicFormat.Raw)
    return base64.b64encode(raw).decode("ascii")


def sign_envelope(fields: Mapping[str, Any], private_key: Ed25519PrivateKey) -> Dict[str, Any]:
    """Return a copy of ``fields`` with ``signature`` set over the signable fields."""
    missing = [name for name in SIGNABLE_FIELDS if name not in fields]
    if missing:
        raise ValueError(f"cannot sign envelope, missing fields: {', '.join(missing)}")
    message = canonical_bytes({name: fields[name] for name in SIGNABLE_FIELDS})
    signed = dict(fields)
    signed["signature"] = base64.b64encode(private_key.sign(message)).decode("ascii")
    return signed


class SignatureVerifier:
    """Checks envelope signatures against one configured public key.

    With no key configured the verifier reports ``SKIPPED`` (permissive
    default) unless ``require_signature`` is set, in which case it reports
    ``FAILED``. A configured key that cannot be parsed makes every check fail.
    """

    def __init__(
        self,
        public_key: Optional[KeyMaterial] = None,
        algorithm: str = "ed25519",
        *,
        require_signature: bool = False,
    ) -> None:
        algorithm = algorithm.lower()
        if algorithm not in SUPPORTED_ALGORITHMS:
            raise ValueError(f"unsupported signature algorithm: {algorithm}")
        self.algorithm = algorithm
        self.require_signature = require_signature
        self._key: Ed25519PublicKey | None = None
        self._key_error: str | None = None
        self.configured = public_key is not None and public_key != ""
        if self.configured:
            try:
                self._key = load_public_key(public_key)  # type: ignore[arg-type]
            except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
                self._key_error = f"invalid public key material: {exc}"
                LOGGER.error("Signature verifier configured with unusable key: %s", exc)

    def verify(self, envelope: ProofEnvelope) -> SignatureVerdict:
        if not self.configured:
            if self.require_signature:
                return SignatureVerdict(VerificationOutcome.FAILED, "no public key configured and signatures are required")
            LOGGER.warning(
                "SECURITY: no public key configured; accepting proof %s from %s without signature check",
                envelope.id,
                envelope.chain,
            )
            return SignatureVerdict(VerificationOutcome.SKIPPED, "no public key configured")
        if self._key is None:
            return SignatureVerdict(VerificationOutcome.FAILED, self._key_error or "public key unavailable")

        try:
            signature = base64.b64decode(envelope.signature, validate=True)
        except (binascii.Error, ValueError):
            return SignatureVerdict(VerificationOutcome.FAILED, "signature is not valid base64")
        if len(signature) != ED25519_SIGNATURE_BYTES:
            return SignatureVerdict(
                VerificationOutcome.FAILED,
                f"signature must be {ED25519_SIGNATURE_BYTES} bytes, got {len(signature)}",
            )
        try:
            self._key.verify(signature, signable_bytes(envelope))
        except InvalidSignature:
            return SignatureVerdict(VerificationOutcome.FAILED, "signature does not match envelope")
        return SignatureVerdict(VerificationOutcome.PASSED)


__all__ = [
    "SUPPORTED_ALGORITHMS",
    "SignatureVerdict",
    "SignatureVerifier",
    "VerificationOutcome",
    "generate_keypair",
    "load_private_key",
    "load_public_key",
    "private_key_pem",
    "public_key_b64",
    "public_key_pem",
    "sign_envelope",
]
