from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

NAME_UPPER_BOUND = 40

_TRUE = {"1", "true", "TRUE", "yes", "YES"}


def _env_str(env: Mapping[str, str], name: str, default: str) -> str:
    raw = env.get(name, "").strip()
    return raw or default


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    return raw in _TRUE


@dataclass(frozen=True, slots=True)
class RegistryConfig:
    """Deployment constants for one registry.

    root_identity, app_seed and namespace_name feed address derivation.
    Changing any of them after records exist orphans every record.
    """

    root_identity: str = "capreg"
    app_seed: str = "capreg.registry.v1"
    namespace_name: str = "records"
    namespace_description: str = "One record per principal"
    namespace_uri: str = ""
    emit_rename_events: bool = False

    def __post_init__(self) -> None:
        for name in ("root_identity", "app_seed", "namespace_name"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                raise ValueError(f"{name} must be a non-empty string")

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "RegistryConfig":
        """Read configuration from CAPREG_* environment variables.

        Security notes:
        - Env vars are treated as trusted server configuration.
        """

        env = os.environ if env is None else env
        defaults = cls()
        return cls(
            root_identity=_env_str(env, "CAPREG_ROOT_IDENTITY", defaults.root_identity),
            app_seed=_env_str(env, "CAPREG_APP_SEED", defaults.app_seed),
            namespace_name=_env_str(env, "CAPREG_NAMESPACE_NAME", defaults.namespace_name),
            namespace_description=_env_str(
                env, "CAPREG_NAMESPACE_DESCRIPTION", defaults.namespace_description
            ),
            namespace_uri=_env_str(env, "CAPREG_NAMESPACE_URI", defaults.namespace_uri),
            emit_rename_events=_env_bool(
                env, "CAPREG_EMIT_RENAME_EVENTS", defaults.emit_rename_events
            ),
        )
