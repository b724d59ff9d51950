"""Authentication API — password login, OTP challenge, logout, session view."""

import logging

from fastapi import APIRouter, Depends

from claimgate.api.deps import get_challenge_flow, get_session_store
from claimgate.auth.context import Session
from claimgate.schemas.schemas import Credentials, OtpRequest, OtpVerify
from claimgate.services.otp_flow import ChallengeFlow
from claimgate.services.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["auth"])


def session_view(session: Session) -> dict:
    if session.is_loading:
        state = "loading"
    elif session.is_authenticated:
        state = "authenticated"
    else:
        state = "anonymous"
    principal = session.principal
    return {
        "state": state,
        "fresh": session.fresh,
        "principal": principal.model_dump(by_alias=True, mode="json") if principal else None,
    }


def challenge_view(flow: ChallengeFlow) -> dict:
    return {"state": flow.state.value, "cooldownRemaining": flow.cooldown_remaining}


# ── Password login (admins, service providers, insurers) ─────────────────────

@router.get("/login")
async def login_page(store: SessionStore = Depends(get_session_store)):
    """Landing for unauthenticated callers; reports the current session."""
    return {"methods": ["password", "otp"], "session": session_view(store.session)}


@router.post("/login")
async def login(body: Credentials, store: SessionStore = Depends(get_session_store)):
    session = await store.acquire(body)
    return session_view(session)


# ── OTP login (farmers) ──────────────────────────────────────────────────────

@router.post("/login/otp/request")
async def request_otp(body: OtpRequest, flow: ChallengeFlow = Depends(get_challenge_flow)):
    await flow.request(body.mobile_number)
    return challenge_view(flow)


@router.post("/login/otp/resend")
async def resend_otp(flow: ChallengeFlow = Depends(get_challenge_flow)):
    await flow.resend()
    return challenge_view(flow)


@router.post("/login/otp/verify")
async def verify_otp(body: OtpVerify, flow: ChallengeFlow = Depends(get_challenge_flow)):
    session = await flow.verify(body.otp)
    return session_view(session)


@router.delete("/login/otp")
async def abandon_otp(flow: ChallengeFlow = Depends(get_challenge_flow)):
    """Tear down the challenge screen; stops the countdown."""
    flow.close()
    return challenge_view(flow)


# ── Session ──────────────────────────────────────────────────────────────────

@router.post("/logout")
async def logout(store: SessionStore = Depends(get_session_store)):
    await store.release()
    return session_view(store.session)


@router.get("/session")
async def current_session(store: SessionStore = Depends(get_session_store)):
    return session_view(store.session)


@router.post("/session/refresh")
async def refresh_session(store: SessionStore = Depends(get_session_store)):
    session = await store.refresh()
    return session_view(session)
