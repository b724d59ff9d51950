"""
API Dependencies — component lookup and route guards.

Components are constructed once in the app lifespan and live on
`app.state`; endpoints reach them only through these dependencies.

Every dashboard router is guarded by `guard_route`, which runs the request
path through the Authorization Gate:
  ALLOW                       → the current Session is handed to the endpoint
  REDIRECT_UNAUTHENTICATED    → PortalRedirect to the login page
  REDIRECT_FORBIDDEN          → PortalRedirect to the public entry point
  session still loading       → SessionLoading (503, retry shortly)
"""

import logging

from fastapi import Request

from claimgate.auth.context import Session
from claimgate.auth.gate import Decision, decide_path, redirect_target
from claimgate.middleware.metrics import gate_decisions_total
from claimgate.services.audit_service import AuditService
from claimgate.services.claim_workflow import ClaimWorkflow
from claimgate.services.otp_flow import ChallengeFlow
from claimgate.services.registration_review import RegistrationReview
from claimgate.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class PortalRedirect(Exception):
    """Raised by a guard; rendered as 303 See Other."""

    def __init__(self, location: str, decision: Decision):
        self.location = location
        self.decision = decision
        super().__init__(location)


# ── Components ───────────────────────────────────────────────────────────────

def get_session_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_challenge_flow(request: Request) -> ChallengeFlow:
    return request.app.state.challenge_flow


def get_claim_workflow(request: Request) -> ClaimWorkflow:
    return request.app.state.claim_workflow


def get_registration_review(request: Request) -> RegistrationReview:
    return request.app.state.registration_review


def get_audit(request: Request) -> AuditService:
    return request.app.state.audit


# ── Route guard ──────────────────────────────────────────────────────────────

async def guard_route(request: Request) -> Session:
    session = get_session_store(request).session
    decision = decide_path(session, request.url.path)
    gate_decisions_total.labels(decision.value).inc()
    target = redirect_target(decision)
    if target is not None:
        logger.info("Gate %s for %s on %s", decision.value, session.actor, request.url.path)
        raise PortalRedirect(target, decision)
    return session
