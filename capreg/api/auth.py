from __future__ import annotations

import hmac
import os
from typing import Dict, Optional

from capreg.core.security.identity import Principal


def _parse_api_keys(raw: str) -> Dict[str, Principal]:
    """Parse CAPREG_API_KEYS into an API key -> Principal mapping.

    Format (semicolon-separated entries):
      <APIKEY>:<PRINCIPAL_ID>;

    Example:
      CAPREG_API_KEYS="k1:alice;k2:bob"

    Security notes:
    - Env var is trusted server configuration.
    - Unknown/invalid entries are ignored (fail-closed by omission).

    """

    out: Dict[str, Principal] = {}
    for entry in (raw or "").split(";"):
        entry = entry.strip()
        if not entry:
            continue
        parts = entry.split(":", 1)
        if len(parts) != 2:
            continue
        key, principal_id = parts[0].strip(), parts[1].strip()
        if not key or not principal_id:
            continue
        out[key] = Principal(principal_id)
    return out


def load_auth_config() -> Dict[str, Principal]:
    """Load API key mapping from environment."""

    return _parse_api_keys(os.environ.get("CAPREG_API_KEYS", ""))


def requires_auth(mapping: Dict[str, Principal]) -> bool:
    """Return True if the API should require authentication.

    Policy:
    - If CAPREG_REQUIRE_AUTH=1, always require.
    - Else, require iff at least one API key is configured.

    """

    if os.environ.get("CAPREG_REQUIRE_AUTH", "").strip() in {"1", "true", "TRUE", "yes", "YES"}:
        return True
    return bool(mapping)


def authenticate(api_key: Optional[str], mapping: Dict[str, Principal]) -> Optional[Principal]:
    """Authenticate an API key.

    Security notes:
    - Uses constant-time comparison to reduce timing side-channels.
    - Returns None on failure.

    """

    if not api_key:
        return None

    found: Optional[Principal] = None
    # Constant-time compare: iterate all keys.
    for k, principal in mapping.items():
        if hmac.compare_digest(k, api_key):
            found = principal
    return found
