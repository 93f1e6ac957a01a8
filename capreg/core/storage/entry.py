from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from capreg.core.addressing import Address
from capreg.core.runtime.hashing import stable_sha256

ENTRY_PROXY = "proxy"
ENTRY_NAMESPACE = "namespace"
ENTRY_RECORD = "record"

ENTRY_TYPES = frozenset({ENTRY_PROXY, ENTRY_NAMESPACE, ENTRY_RECORD})


@dataclass(frozen=True)
class StoredEntry:
    """
    Immutable value installed at one address of the keyed store.

    Security invariants
    - Immutable: updates produce a new entry with a recomputed hash
    - Deterministic identity: snapshot_hash is stable for identical content
    - Defensive copying: caller-held dicts cannot mutate stored state

    owner is the effective owner as seen by the storage layer: a principal
    id, or the proxy address while the proxy identity holds the entry.
    """

    address: Address
    entry_type: str
    owner: str
    payload: Dict[str, Any]
    created_at: datetime
    updated_at: datetime
    snapshot_hash: str

    @staticmethod
    def compute_snapshot_hash(
        address: Address,
        entry_type: str,
        owner: str,
        payload: Dict[str, Any],
        created_at: datetime,
        updated_at: datetime,
    ) -> str:
        return stable_sha256(
            {
                "address": address.value,
                "entry_type": entry_type,
                "owner": owner,
                "payload": payload,
                "created_at": created_at.isoformat(),
                "updated_at": updated_at.isoformat(),
            }
        )

    @classmethod
    def create(
        cls,
        address: Address,
        entry_type: str,
        owner: str,
        payload: Dict[str, Any],
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> "StoredEntry":
        if not isinstance(address, Address):
            raise TypeError("address must be an Address")
        if entry_type not in ENTRY_TYPES:
            raise ValueError(f"unknown entry_type: {entry_type!r}")
        if not isinstance(owner, str) or not owner:
            raise ValueError("owner must be a non-empty string")

        created = created_at or datetime.now(timezone.utc)
        updated = updated_at or created
        payload_copy = deepcopy(payload)

        return cls(
            address=address,
            entry_type=entry_type,
            owner=owner,
            payload=payload_copy,
            created_at=created,
            updated_at=updated,
            snapshot_hash=cls.compute_snapshot_hash(
                address, entry_type, owner, payload_copy, created, updated
            ),
        )

    def with_payload(self, payload: Dict[str, Any]) -> "StoredEntry":
        """Return a new entry with the payload replaced and updated_at bumped."""

        return StoredEntry.create(
            address=self.address,
            entry_type=self.entry_type,
            owner=self.owner,
            payload=payload,
            created_at=self.created_at,
            updated_at=datetime.now(timezone.utc),
        )

    def with_owner(self, owner: str, payload: Optional[Dict[str, Any]] = None) -> "StoredEntry":
        return StoredEntry.create(
            address=self.address,
            entry_type=self.entry_type,
            owner=owner,
            payload=self.payload if payload is None else payload,
            created_at=self.created_at,
            updated_at=datetime.now(timezone.utc),
        )
