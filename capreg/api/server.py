from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import JSONResponse
from starlette.requests import Request

from capreg.api.auth import authenticate, load_auth_config, requires_auth
from capreg.api.middleware import AccessLogMiddleware, RequestIdMiddleware
from capreg.api.models import (
    AddressOut,
    ApiError,
    CreateRecordIn,
    EventOut,
    EventsOut,
    ExistsOut,
    NamespaceOut,
    RecordOut,
    RenameRecordIn,
)
from capreg.core.registry.config import RegistryConfig
from capreg.core.registry.errors import RegistryError
from capreg.core.registry.registry import RecordRegistry
from capreg.core.runtime.event_log import EventLog
from capreg.core.security.identity import Principal
from capreg.core.storage.memory_store import MemoryStore
from capreg.core.storage.sqlite_store import SQLiteRecordStore

log = logging.getLogger("capreg.api")

_STATUS_BY_CLASS = {
    "validation": 400,
    "conflict": 409,
    "availability": 404,
    "capability": 403,
    "fatal": 500,
}


@dataclass(frozen=True, slots=True)
class ServiceConfig:
    """Configuration for the API service.

    Security notes:
    - db_path is optional. Without it the registry lives in memory and is
      lost when the process exits.

    """

    db_path: Optional[Path] = None
    admin_id: str = "admin"


def create_app(
    *, db_path: Optional[str] = None, config: Optional[RegistryConfig] = None
) -> FastAPI:
    """Create the FastAPI app and bootstrap its registry.

    Bootstrap runs exactly once, here. Pointing two apps at one database
    fails with BootstrapError.
    """

    cfg = ServiceConfig(
        db_path=Path(db_path) if db_path else None,
        admin_id=(os.environ.get("CAPREG_ADMIN_ID") or "admin"),
    )
    mapping = load_auth_config()
    must_auth = requires_auth(mapping)

    # Logging: safe defaults (no request bodies), can be configured by host app.
    log.setLevel(os.environ.get("CAPREG_LOG_LEVEL", "INFO").upper())

    store = SQLiteRecordStore(cfg.db_path) if cfg.db_path is not None else MemoryStore()
    events = EventLog()
    registry = RecordRegistry.bootstrap(
        cfg.admin_id,
        store=store,
        config=config or RegistryConfig.from_env(),
        events=events,
    )

    app = FastAPI(title="capreg API", version="0.1")

    app.state.cfg = cfg
    app.state.must_auth = must_auth
    app.state.registry = registry
    app.state.events = events

    # Request correlation + basic access logs.
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(AccessLogMiddleware)

    @app.exception_handler(RegistryError)
    async def registry_error_handler(request: Request, exc: RegistryError) -> JSONResponse:
        status = _STATUS_BY_CLASS.get(exc.error_class, 500)
        request.state.error_class = exc.error_class
        if status >= 500:
            log.error("registry_failure", extra={"error": type(exc).__name__})
        body = ApiError(error=type(exc).__name__, error_class=exc.error_class, detail=str(exc))
        return JSONResponse(status_code=status, content=body.model_dump())

    def get_principal(
        request: Request,
        x_capreg_api_key: Optional[str] = Header(default=None),
        x_capreg_principal: Optional[str] = Header(default=None),
    ) -> Principal:
        """Resolve the calling principal.

        Security notes:
        - With auth required, identity comes only from the API key mapping.
        - Without keys configured (dev mode), X-Capreg-Principal is trusted.

        """

        if must_auth:
            principal = authenticate(x_capreg_api_key, mapping)
        elif x_capreg_principal and x_capreg_principal.strip():
            principal = Principal(x_capreg_principal.strip())
        else:
            principal = None

        if principal is None:
            raise HTTPException(status_code=401, detail="unauthorized")

        # Attach principal for downstream middleware/logging.
        request.state.principal_id = principal.principal_id
        return principal

    @app.get("/health")
    def health() -> Dict[str, Any]:
        return {
            "ok": True,
            "auth_required": must_auth,
            "db": str(cfg.db_path) if cfg.db_path else None,
            "bootstrapped": registry.vault.is_bootstrapped,
        }

    @app.get("/namespace", response_model=NamespaceOut)
    def namespace_endpoint() -> NamespaceOut:
        ns = registry.vault.namespace
        return NamespaceOut(
            address=registry.namespace_address().value,
            name=ns.name,
            description=ns.description,
            display_uri=ns.display_uri,
            proxy_address=ns.proxy.value,
            proxy_public_key_pem=registry.proxy_public_key_pem(),
        )

    @app.post(
        "/records",
        status_code=201,
        response_model=RecordOut,
        responses={400: {"model": ApiError}, 409: {"model": ApiError}},
    )
    def create_record(
        body: CreateRecordIn, principal: Principal = Depends(get_principal)
    ) -> RecordOut:
        registry.create(principal, body.name)
        return RecordOut(**registry.get_record(principal.principal_id).to_dict())

    @app.patch(
        "/records/me",
        response_model=RecordOut,
        responses={400: {"model": ApiError}, 404: {"model": ApiError}},
    )
    def rename_record(
        body: RenameRecordIn, principal: Principal = Depends(get_principal)
    ) -> RecordOut:
        registry.rename(principal, body.name)
        return RecordOut(**registry.get_record(principal.principal_id).to_dict())

    @app.get("/records/{owner_id}", response_model=RecordOut, responses={404: {"model": ApiError}})
    def get_record(owner_id: str) -> RecordOut:
        return RecordOut(**registry.get_record(owner_id).to_dict())

    @app.get("/records/{owner_id}/exists", response_model=ExistsOut)
    def record_exists(owner_id: str) -> ExistsOut:
        return ExistsOut(owner_id=owner_id, exists=registry.has_record(owner_id))

    @app.get("/records/{owner_id}/address", response_model=AddressOut)
    def record_address(owner_id: str) -> AddressOut:
        return AddressOut(owner_id=owner_id, address=registry.record_address(owner_id).value)

    @app.get("/events", response_model=EventsOut)
    def list_events(limit: int = 100, event_type: Optional[str] = None) -> EventsOut:
        limit_i = max(1, min(1000, int(limit)))
        items = events.get_events(event_type)[-limit_i:]
        return EventsOut(
            chain_ok=events.verify_integrity(),
            tip=events.tip,
            events=[
                EventOut(
                    event_type=e.event_type,
                    payload=e.to_payload(),
                    previous_event_hash=e.previous_event_hash,
                    event_hash=e.event_hash,
                )
                for e in items
            ],
        )

    return app
