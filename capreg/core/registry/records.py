from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from capreg.core.addressing import Address
from capreg.core.registry.config import NAME_UPPER_BOUND
from capreg.core.registry.errors import NameTooLong
from capreg.core.security.capabilities import CapabilityHandle, CapabilityKind
from capreg.core.storage.entry import StoredEntry


class CustodyState(str, Enum):
    HELD_BY_PROXY = "held_by_proxy"
    OWNED_BY_PRINCIPAL = "owned_by_principal"


def check_name(name: str) -> None:
    """Validate a display name before any state is touched."""

    if not isinstance(name, str):
        raise TypeError("display name must be a string")
    if len(name) > NAME_UPPER_BOUND:
        raise NameTooLong(len(name), NAME_UPPER_BOUND)


def record_payload(
    *,
    namespace: Address,
    derived_name: str,
    display_name: str,
    mutate: CapabilityHandle,
    destroy: CapabilityHandle,
) -> Dict[str, Any]:
    """Initial payload of a record, held by the proxy identity.

    The record keeps its own mutate and destroy handles. The destroy handle is
    granted and verifiable but no registry operation exercises it.
    """

    return {
        "namespace": namespace.value,
        "derived_name": derived_name,
        "display_name": display_name,
        "custody": CustodyState.HELD_BY_PROXY.value,
        "handles": {
            CapabilityKind.MUTATE.value: mutate.secret.hex(),
            CapabilityKind.DESTROY.value: destroy.secret.hex(),
        },
        "transfer_receipt": None,
    }


def stored_handle(entry: StoredEntry, kind: CapabilityKind) -> CapabilityHandle:
    """Rebuild one of the handles a record carries in its payload."""

    secret_hex = (entry.payload.get("handles") or {}).get(kind.value)
    if not isinstance(secret_hex, str):
        raise KeyError(f"record at {entry.address} carries no {kind.value} handle")
    return CapabilityHandle(kind=kind, target=entry.address, secret=bytes.fromhex(secret_hex))


@dataclass(frozen=True, slots=True)
class RecordView:
    """Read model of a record. Never exposes handles."""

    address: Address
    namespace: Address
    derived_name: str
    display_name: str
    owner: str
    custody: CustodyState
    transfer_receipt: Optional[Dict[str, Any]] = None

    @classmethod
    def from_entry(cls, entry: StoredEntry) -> "RecordView":
        payload = entry.payload
        return cls(
            address=entry.address,
            namespace=Address(str(payload["namespace"])),
            derived_name=str(payload["derived_name"]),
            display_name=str(payload["display_name"]),
            owner=entry.owner,
            custody=CustodyState(payload["custody"]),
            transfer_receipt=payload.get("transfer_receipt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address.value,
            "namespace": self.namespace.value,
            "derived_name": self.derived_name,
            "display_name": self.display_name,
            "owner": self.owner,
            "custody": self.custody.value,
            "transfer_receipt": self.transfer_receipt,
        }
