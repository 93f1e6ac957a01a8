from __future__ import annotations

import logging
import re
import time
from typing import Callable, Optional
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

log = logging.getLogger("capreg.api")

_REQUEST_ID_RE = re.compile(r"[A-Za-z0-9._-]{1,128}")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Correlate one HTTP call with the registry log lines it produces.

    A client-supplied X-Request-ID is reused only when it is a short token of
    [A-Za-z0-9._-]; anything else is replaced so it cannot forge log lines.
    """

    def __init__(self, app, *, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(self, request: Request, call_next: Callable):
        rid = request.headers.get(self._header_name) or ""
        if not _REQUEST_ID_RE.fullmatch(rid):
            rid = uuid4().hex
        request.state.request_id = rid
        response: Response = await call_next(request)
        response.headers[self._header_name] = rid
        return response


def _route_template(request: Request) -> str:
    # "/records/{owner_id}" rather than the concrete owner id.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class AccessLogMiddleware(BaseHTTPMiddleware):
    """One structured line per request.

    Owner ids and display names are user content: the line carries the route
    template and the registry error class, never path parameters or bodies.
    Server errors are logged at WARNING.
    """

    async def dispatch(self, request: Request, call_next: Callable):
        start = time.monotonic()
        response: Optional[Response] = None
        try:
            response = await call_next(request)
            return response
        finally:
            status_code = getattr(response, "status_code", 500)
            log.log(
                logging.WARNING if status_code >= 500 else logging.INFO,
                "api_request",
                extra={
                    "request_id": getattr(request.state, "request_id", None),
                    "principal_id": getattr(request.state, "principal_id", None),
                    "method": request.method,
                    "route": _route_template(request),
                    "status_code": status_code,
                    "error_class": getattr(request.state, "error_class", None),
                    "duration_ms": int((time.monotonic() - start) * 1000),
                },
            )
