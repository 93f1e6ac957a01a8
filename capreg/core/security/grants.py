from __future__ import annotations

from capreg.core.addressing import Address
from capreg.core.registry.errors import InvalidCapability
from capreg.core.storage.base import StoreTransaction

from .capabilities import CapabilityHandle, CapabilityKind


def install_grant(txn: StoreTransaction, handle: CapabilityHandle) -> None:
    """Record the digest of a freshly minted handle at its target."""

    txn.grant(handle.target, handle.kind.value, handle.digest)


def check_grant(
    txn: StoreTransaction, handle: CapabilityHandle, kind: CapabilityKind, target: Address
) -> None:
    """Fail closed unless handle is the one granted for (target, kind).

    Raises
    - InvalidCapability: wrong kind or target, no grant, or digest mismatch.
    """

    if not isinstance(handle, CapabilityHandle):
        raise InvalidCapability("a CapabilityHandle is required")

    handle.require(kind, target)

    digest = txn.grant_digest(target, kind.value)
    if digest is None:
        raise InvalidCapability(f"no {kind.value} grant at {target}")
    if not handle.matches(digest):
        raise InvalidCapability(f"{kind.value} handle rejected at {target}")
