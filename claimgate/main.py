"""
ClaimGate portal shell.

Hosts the route table, runs every dashboard request through the
Authorization Gate, and exposes the session, OTP, claim and registration
actions as JSON endpoints.

Error mapping:
    PortalRedirect                       303 See Other + Location
    SessionLoading                       503 + Retry-After: 1
    IllegalTransition / AlreadyProcessed 409 {"detail", "kind", "informational": true}
    CooldownActive                       429 + Retry-After
    Unauthorized / Forbidden / NotFound  401 / 403 / 404
    NetworkError                         502
    any other ClaimGateError             400
"""

import logging
import traceback
from contextlib import asynccontextmanager
from collections.abc import Callable

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse

from claimgate import __version__
from claimgate.api.admin_users import router as admin_users_router
from claimgate.api.auth import router as auth_router, session_view
from claimgate.api.claims import admin_router, farmer_router, insurer_router, sp_router
from claimgate.api.dashboard import router as dashboard_router
from claimgate.api.deps import PortalRedirect
from claimgate.api.metrics import router as metrics_router
from claimgate.config import settings
from claimgate.errors import (
    ClaimGateError,
    CooldownActive,
    ErrorKind,
    SessionLoading,
)
from claimgate.middleware.logging_config import configure_logging
from claimgate.middleware.metrics import PrometheusMiddleware
from claimgate.middleware.request_context import RequestContextMiddleware
from claimgate.services.audit_service import AuditService
from claimgate.services.claim_workflow import ClaimWorkflow
from claimgate.services.otp_flow import ChallengeFlow
from claimgate.services.portal_client import PortalClient
from claimgate.services.registration_review import RegistrationReview
from claimgate.services.session_store import SessionStore
from claimgate.services.token_storage import TokenStorage, build_token_storage

logger = logging.getLogger("claimgate")

_STATUS_BY_KIND = {
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.NETWORK_ERROR: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_format)
    # Startup: pick up a persisted session
    session = await app.state.session_store.restore()
    logger.info("Startup session: %r", session)
    yield
    # Shutdown
    app.state.challenge_flow.close()
    await app.state.audit.aclose()
    await app.state.client.aclose()
    close = getattr(app.state.token_storage, "aclose", None)
    if close is not None:
        await close()


def create_app(
    *,
    base_url: str | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
    token_storage: TokenStorage | None = None,
    audit: AuditService | None = None,
    clock: Callable[[], float] | None = None,
) -> FastAPI:
    """Build the portal shell with its components on `app.state`."""
    client = PortalClient(base_url, transport=transport)
    storage = token_storage if token_storage is not None else build_token_storage()
    audit = audit if audit is not None else AuditService()
    store = SessionStore(client, storage, audit)
    flow_kwargs = {"clock": clock} if clock is not None else {}

    app = FastAPI(
        title="ClaimGate Portal",
        description="Claim verification workflow behind a session/role authorization gate",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.client = client
    app.state.token_storage = storage
    app.state.audit = audit
    app.state.session_store = store
    app.state.challenge_flow = ChallengeFlow(client, store, audit, **flow_kwargs)
    app.state.claim_workflow = ClaimWorkflow(client, store, audit)
    app.state.registration_review = RegistrationReview(client, store, audit)

    # ── Middleware ───────────────────────────────────────────────────────
    app.add_middleware(RequestContextMiddleware)
    app.add_middleware(PrometheusMiddleware)

    # ── Error mapping ────────────────────────────────────────────────────
    app.add_exception_handler(PortalRedirect, portal_redirect_handler)
    app.add_exception_handler(ClaimGateError, claimgate_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    # ── Routers ──────────────────────────────────────────────────────────
    app.include_router(auth_router)
    app.include_router(dashboard_router)
    app.include_router(farmer_router)
    app.include_router(admin_router)
    app.include_router(sp_router)
    app.include_router(insurer_router)
    app.include_router(admin_users_router)
    app.include_router(metrics_router)

    @app.get("/")
    async def index(request: Request):
        """Public entry point; forbidden callers land here."""
        store = request.app.state.session_store
        return {"app": "claimgate", "session": session_view(store.session)}

    @app.get("/health")
    async def health_check(request: Request):
        return {
            "status": "healthy",
            "environment": settings.environment,
            "session": session_view(request.app.state.session_store.session)["state"],
            "auditPending": request.app.state.audit.pending,
        }

    return app


async def portal_redirect_handler(request: Request, exc: PortalRedirect):
    return RedirectResponse(url=exc.location, status_code=303)


async def claimgate_error_handler(request: Request, exc: ClaimGateError):
    body = {"detail": exc.message, "kind": exc.kind.value}
    if isinstance(exc, SessionLoading):
        return JSONResponse(
            status_code=503, content={**body, "detail": "session loading"},
            headers={"Retry-After": "1"},
        )
    if exc.informational:
        return JSONResponse(status_code=409, content={**body, "informational": True})
    if isinstance(exc, CooldownActive):
        return JSONResponse(
            status_code=429,
            content={**body, "remainingSeconds": exc.remaining_seconds},
            headers={"Retry-After": str(exc.remaining_seconds)},
        )
    return JSONResponse(status_code=_STATUS_BY_KIND.get(exc.kind, 400), content=body)


async def global_exception_handler(request: Request, exc: Exception):
    """Return detailed error info in development mode so 500s are debuggable."""
    tb = traceback.format_exc()
    logger.error(
        "Unhandled %s on %s %s: %s\n%s",
        type(exc).__name__, request.method, request.url.path, exc, tb,
    )
    if settings.environment == "development":
        return JSONResponse(
            status_code=500,
            content={"detail": f"{type(exc).__name__}: {exc}", "traceback": tb.splitlines()[-5:]},
        )
    return JSONResponse(status_code=500, content={"detail": "Internal Server Error"})


app = create_app()
