from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass

_ADDRESS_RE = re.compile(r"^0x[0-9a-f]{64}$")

# Domain tags keep the derivation families disjoint.
DOMAIN_PROXY = "capreg.proxy"
DOMAIN_NAMESPACE = "capreg.namespace"
DOMAIN_RECORD = "capreg.record"


@dataclass(frozen=True, order=True)
class Address:
    """Deterministic 32-byte address rendered as 0x-prefixed lowercase hex.

    Security invariants
    - Immutable and hashable
    - Only well-formed hex digests are accepted
    """

    value: str

    def __post_init__(self) -> None:
        if not isinstance(self.value, str):
            raise TypeError("Address value must be a string")

        normalized = self.value.strip().lower()
        if not _ADDRESS_RE.match(normalized):
            raise ValueError(f"Malformed address: {self.value!r}")

        object.__setattr__(self, "value", normalized)

    def __str__(self) -> str:
        return self.value


def _canonical(domain: str, root: str, namespace: str, key: str) -> bytes:
    payload = {"domain": domain, "root": root, "namespace": namespace, "key": key}
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode(
        "utf-8"
    )


def address_of(
    root_identity: str, namespace_name: str, derivation_key: str, *, domain: str = DOMAIN_RECORD
) -> Address:
    """Derive a deterministic address from public, stable inputs.

    The inputs are encoded as canonical JSON before hashing, so values that
    contain separators cannot be shifted between fields to force a collision.

    Pure: no storage, no side effects.
    """

    for label, value in (
        ("root_identity", root_identity),
        ("namespace_name", namespace_name),
        ("derivation_key", derivation_key),
    ):
        if not isinstance(value, str):
            raise TypeError(f"{label} must be a string")

    digest = hashlib.sha256(_canonical(domain, root_identity, namespace_name, derivation_key))
    return Address("0x" + digest.hexdigest())


def proxy_address(root_identity: str, app_seed: str) -> Address:
    """Address of the proxy identity under the root identity."""

    return address_of(root_identity, "", app_seed, domain=DOMAIN_PROXY)


def namespace_address(root_identity: str, app_seed: str) -> Address:
    """Address of the namespace, seeded by the fixed application seed."""

    return address_of(root_identity, "", app_seed, domain=DOMAIN_NAMESPACE)


def record_address(proxy: Address, namespace_name: str, owner_id: object) -> Address:
    """Address of the record owned by owner_id.

    The key is the owner's own identifier string, never a chosen name, so
    the one-record-per-owner rule falls out of address collision.
    """

    return address_of(str(proxy), namespace_name, str(owner_id), domain=DOMAIN_RECORD)
