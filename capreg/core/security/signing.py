from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey


def _canonical_json_bytes(obj: Mapping[str, Any]) -> bytes:
    """Canonical JSON serialization for signing.

    Security notes:
    - Uses stable key ordering and separators to avoid signature ambiguity.

    """

    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def generate_signing_key() -> Ed25519PrivateKey:
    """Generate an in-memory Ed25519 key for the proxy identity.

    Security notes:
    - The key is never written to disk; it lives only inside the vault.

    """

    return Ed25519PrivateKey.generate()


def public_key_pem(key: Ed25519PrivateKey | Ed25519PublicKey) -> str:
    """Export the public half of a key as PEM text."""

    pub = key.public_key() if isinstance(key, Ed25519PrivateKey) else key
    return pub.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    ).decode("ascii")


def load_public_key_pem(pem: str | bytes) -> Ed25519PublicKey:
    """Load an Ed25519 public key from PEM."""

    data = pem.encode("ascii") if isinstance(pem, str) else pem
    key = serialization.load_pem_public_key(data)
    if not isinstance(key, Ed25519PublicKey):
        raise TypeError("not an Ed25519 public key")
    return key


def sign_detached_ed25519(key: Ed25519PrivateKey, payload: Mapping[str, Any]) -> str:
    """Create a detached Ed25519 signature over a canonical JSON payload.

    Returns base64 signature.
    """

    return base64.b64encode(key.sign(_canonical_json_bytes(payload))).decode("ascii")


def verify_detached_ed25519(
    public_key: Ed25519PublicKey, payload: Mapping[str, Any], signature_b64: str
) -> bool:
    """Verify a detached Ed25519 signature."""

    try:
        sig = base64.b64decode(signature_b64.encode("ascii"), validate=True)
    except (binascii.Error, ValueError, AttributeError):
        return False

    try:
        public_key.verify(sig, _canonical_json_bytes(payload))
    except InvalidSignature:
        return False
    return True


def signing_metadata(*, signer_id: Optional[str]) -> Mapping[str, Any]:
    """Standard signing metadata."""

    return {
        "algorithm": "Ed25519",
        "signed_at": datetime.now(timezone.utc).isoformat(),
        "signer_id": signer_id,
    }
