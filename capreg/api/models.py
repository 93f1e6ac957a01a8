from __future__ import annotations

from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional


class ApiError(BaseModel):
    """Standard API error payload."""

    error: str
    error_class: Optional[str] = None
    detail: Optional[str] = None


class CreateRecordIn(BaseModel):
    """Create the caller's record. Length is checked by the registry, not here."""

    name: str


class RenameRecordIn(BaseModel):
    name: str


class RecordOut(BaseModel):
    address: str
    namespace: str
    derived_name: str
    display_name: str
    owner: str
    custody: str
    transfer_receipt: Optional[Dict[str, Any]] = None


class ExistsOut(BaseModel):
    owner_id: str
    exists: bool


class AddressOut(BaseModel):
    owner_id: Optional[str] = None
    address: str


class NamespaceOut(BaseModel):
    address: str
    name: str
    description: str
    display_uri: str
    proxy_address: str
    proxy_public_key_pem: Optional[str] = None


class EventOut(BaseModel):
    event_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    previous_event_hash: Optional[str] = None
    event_hash: Optional[str] = None


class EventsOut(BaseModel):
    chain_ok: bool
    tip: Optional[str] = None
    events: List[EventOut] = Field(default_factory=list)
