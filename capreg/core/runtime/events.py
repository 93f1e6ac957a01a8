from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import UTC, datetime
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from .hashing import _json_safe


@dataclass(frozen=True)
class RegistryEvent:
    """Immutable domain event emitted by registry operations.

    Responsibilities
    - Provide stable identity and timestamp
    - Provide deterministic payload export for hashing and storage
    - Carry hash-chain fields that are sealed by EventLog

    Security invariants
    - Immutable after creation
    - Does not self-seal hashes
    - Never carries capability handle secrets

    """

    event_id: UUID = field(default_factory=uuid4, init=False)
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC), init=False)

    previous_event_hash: Optional[str] = field(default=None, init=False)
    event_hash: Optional[str] = field(default=None, init=False)

    @property
    def event_type(self) -> str:
        return self.__class__.__name__

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"event_type": self.event_type}
        for f in fields(self):
            if f.name in {"previous_event_hash", "event_hash"}:
                continue
            payload[f.name] = _json_safe(getattr(self, f.name))
        return payload

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(event_id={self.event_id}, "
            f"event_type={self.event_type}, created_at={self.created_at})"
        )


@dataclass(frozen=True)
class ProxyCreated(RegistryEvent):
    proxy_address: str
    admin_id: str
    public_key_pem: str


@dataclass(frozen=True)
class NamespaceCreated(RegistryEvent):
    namespace_address: str
    name: str
    description: str
    display_uri: str


@dataclass(frozen=True)
class RecordCreated(RegistryEvent):
    """Carries the record's derived name (the owner id) and chosen display name."""

    record_address: str
    derived_name: str
    display_name: str


@dataclass(frozen=True)
class RecordTransferred(RegistryEvent):
    record_address: str
    from_owner: str
    to_owner: str
    receipt: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RecordRenamed(RegistryEvent):
    """Only emitted when rename events are enabled in RegistryConfig."""

    record_address: str
    old_name: str
    new_name: str
