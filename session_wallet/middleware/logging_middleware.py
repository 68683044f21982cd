"""
Per-request access log for the wallet API.

Each request gets a short id bound into the structlog context, so the session
and ledger logs it triggers can be correlated with the ``http_request`` line.
Paths are logged as route templates; transfer status lookups would otherwise
put every transaction id into the ``path`` field.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger("session_wallet.http")

# Polled by the UI and load balancers
POLLED_ROUTES = frozenset(
    {"/healthz", "/session", "/session/balances", "/session/transfers/{chain}/{tx_id}"}
)


def route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:12]
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.monotonic()
        response: Response | None = None
        try:
            response = await call_next(request)
            response.headers["x-request-id"] = request_id
            return response
        finally:
            status = response.status_code if response is not None else 500
            route = route_template(request)
            fields = {
                "method": request.method,
                "route": route,
                "status": status,
                "duration_ms": round((time.monotonic() - started) * 1000, 1),
            }
            if status >= 500:
                logger.error("http_request", **fields)
            elif status >= 400:
                logger.warning("http_request", **fields)
            elif route in POLLED_ROUTES:
                logger.debug("http_request", **fields)
            else:
                logger.info("http_request", **fields)
            structlog.contextvars.unbind_contextvars("request_id")
