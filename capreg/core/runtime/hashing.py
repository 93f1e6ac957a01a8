import json
import hashlib
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from capreg.core.addressing import Address

GENESIS = "GENESIS"


def _json_safe(value: Any) -> Any:
    """
    Convert values into a deterministic, JSON-serializable form.
    """
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Address):
        return value.value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict):
        return {str(k): _json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_safe(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_json_safe(v) for v in value)
    return value


def stable_sha256(payload: dict) -> str:
    safe_payload = _json_safe(payload)
    serialized = json.dumps(safe_payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


def stable_event_hash(event_data: dict, previous_hash: str) -> str:
    """
    Compute deterministic hash for registry events with previous hash linkage.
    """
    return stable_sha256({"event": event_data, "previous_event_hash": previous_hash})
