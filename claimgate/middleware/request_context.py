"""
Request context middleware.

Each portal request gets a request id (taken from X-Request-ID or minted)
and is tagged with the actor of the session it runs under. Both live in
ContextVars so log records and the portal client's outbound calls can pick
them up without threading them through every signature.
"""

import logging
import time
from contextvars import ContextVar
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Paths polled by infrastructure; served without an access log line
QUIET_PATHS = frozenset({"/health", "/metrics"})

_request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_actor_var: ContextVar[str] = ContextVar("actor", default="")


def get_request_id() -> str:
    return _request_id_var.get()


def get_actor() -> str:
    """Actor of the session the current request runs under, or ""."""
    return _actor_var.get()


def _session_actor(request: Request) -> str:
    store = getattr(request.app.state, "session_store", None)
    return store.session.actor if store is not None else ""


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        id_token = _request_id_var.set(request_id)
        actor_token = _actor_var.set(_session_actor(request))

        started = time.perf_counter()
        try:
            response = await call_next(request)
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            if request.url.path not in QUIET_PATHS:
                logger.info(
                    "%s %s -> %s (%.0fms)",
                    request.method, request.url.path, response.status_code, duration_ms,
                    extra={"duration_ms": duration_ms},
                )
        finally:
            _actor_var.reset(actor_token)
            _request_id_var.reset(id_token)

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
