"""
Challenge Flow — passcode (OTP) login for farmers.

    IDLE ──request──▶ SENT ──verify──▶ VERIFIED
                      ▲  │
                      └──┘ resend (only once the cooldown reached zero)

- request() validates the mobile number shape locally (10 digits), refuses
  to re-send while a cooldown is running (CooldownActive, no OTP flood),
  and starts a fresh 120-second window on success.
- resend() resets the window whether or not the send succeeds.
- verify() is single use: a consumed or expired challenge must be
  requested again, there is no implicit resend. A rejected code leaves the
  challenge and its cooldown untouched.

The countdown exists as a value (`cooldown_remaining`) computed from the
clock. An optional tick callback drives a once-per-second display; its task
is cancelled on close(), on a new send, on verification and at zero.
"""

import asyncio
import logging
import math
import re
import time
from collections.abc import Callable
from enum import Enum

from claimgate.auth.context import Session
from claimgate.config import settings
from claimgate.errors import (
    ClaimGateError,
    CooldownActive,
    Expired,
    InvalidCode,
    InvalidMobile,
)
from claimgate.middleware.logging_config import mask_mobile
from claimgate.middleware.metrics import otp_events_total
from claimgate.services.audit_service import SUCCESS, AuditService
from claimgate.services.portal_client import PortalClient
from claimgate.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class ChallengeState(str, Enum):
    IDLE = "idle"
    SENT = "sent"
    VERIFIED = "verified"


class ChallengeFlow:
    def __init__(
        self,
        client: PortalClient,
        session_store: SessionStore,
        audit: AuditService,
        *,
        cooldown_seconds: int | None = None,
        validity_seconds: int | None = None,
        clock: Callable[[], float] = time.monotonic,
        on_tick: Callable[[int], None] | None = None,
    ):
        self.client = client
        self.session_store = session_store
        self.audit = audit
        self.cooldown_seconds = cooldown_seconds or settings.otp_cooldown_seconds
        self.validity_seconds = validity_seconds or settings.otp_validity_seconds
        self.clock = clock
        self.on_tick = on_tick

        self.state = ChallengeState.IDLE
        self.mobile_number: str | None = None
        self.sent_at: float | None = None
        self._ticker: asyncio.Task | None = None

        self._mobile_re = re.compile(rf"\d{{{settings.mobile_number_length}}}")
        self._code_re = re.compile(rf"\d{{{settings.otp_code_length}}}")

    # ── Timers ───────────────────────────────────────────────────────────

    @property
    def cooldown_remaining(self) -> int:
        """Whole seconds until resend is allowed (0 when allowed)."""
        if self.sent_at is None:
            return 0
        remaining = self.cooldown_seconds - (self.clock() - self.sent_at)
        return max(0, math.ceil(remaining))

    @property
    def is_expired(self) -> bool:
        return self.sent_at is None or self.clock() - self.sent_at >= self.validity_seconds

    def _restart_window(self) -> None:
        self.sent_at = self.clock()
        self._start_ticker()

    def _start_ticker(self) -> None:
        self._stop_ticker()
        if self.on_tick is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._ticker = loop.create_task(self._tick())

    def _stop_ticker(self) -> None:
        if self._ticker is not None and not self._ticker.done():
            self._ticker.cancel()
        self._ticker = None

    async def _tick(self) -> None:
        while True:
            remaining = self.cooldown_remaining
            self.on_tick(remaining)
            if remaining == 0:
                return
            await asyncio.sleep(1)

    # ── Operations ───────────────────────────────────────────────────────

    async def request(self, mobile_number: str) -> ChallengeState:
        """Send a passcode to `mobile_number` and start the cooldown."""
        mobile = (mobile_number or "").strip()
        try:
            if not self._mobile_re.fullmatch(mobile):
                raise InvalidMobile()
            if self.state is ChallengeState.SENT and self.cooldown_remaining > 0:
                raise CooldownActive(self.cooldown_remaining)
            await self.client.send_otp(mobile)
        except ClaimGateError as exc:
            self._record("request", exc.kind.value, mobile)
            raise

        self.mobile_number = mobile
        self.state = ChallengeState.SENT
        self._restart_window()
        logger.info("OTP sent to %s", mask_mobile(mobile))
        self._record("request", SUCCESS, mobile)
        return self.state

    async def resend(self) -> ChallengeState:
        """Re-send to the same number once the cooldown is over."""
        try:
            if self.state is not ChallengeState.SENT or not self.mobile_number:
                raise InvalidMobile("No passcode request to resend")
            if self.cooldown_remaining > 0:
                raise CooldownActive(self.cooldown_remaining)
        except ClaimGateError as exc:
            self._record("resend", exc.kind.value, self.mobile_number)
            raise

        # the window restarts whatever the outcome of the send
        self._restart_window()
        try:
            await self.client.send_otp(self.mobile_number)
        except ClaimGateError as exc:
            self._record("resend", exc.kind.value, self.mobile_number)
            raise

        logger.info("OTP re-sent to %s", mask_mobile(self.mobile_number))
        self._record("resend", SUCCESS, self.mobile_number)
        return self.state

    async def verify(self, code: str) -> Session:
        """Check the passcode and finalize the session through the SessionStore."""
        code = (code or "").strip()
        mobile = self.mobile_number
        try:
            if self.state is not ChallengeState.SENT or not mobile:
                raise Expired("No active passcode; request a new one")
            if self.is_expired:
                self._reset()
                raise Expired()
            if not self._code_re.fullmatch(code):
                raise InvalidCode(f"Please enter a valid {settings.otp_code_length}-digit OTP")
            # any 400 here is InvalidCode; expiry comes from the local window only
            grant = await self.client.verify_otp(mobile, code)
        except ClaimGateError as exc:
            self._record("verify", exc.kind.value, mobile)
            raise

        # consumed: a second verify must fail even if the session step does
        self.state = ChallengeState.VERIFIED
        self._stop_ticker()
        self._record("verify", SUCCESS, mobile)
        return await self.session_store.acquire_token(grant)

    def close(self) -> None:
        """Abandon the challenge (screen teardown)."""
        self._reset()

    def _reset(self) -> None:
        self._stop_ticker()
        self.state = ChallengeState.IDLE
        self.sent_at = None

    def _record(self, event: str, outcome: str, mobile: str | None) -> None:
        otp_events_total.labels(event=event, outcome=outcome).inc()
        self.audit.emit(
            actor_id=mask_mobile(mobile) or "anonymous",
            actor_role=None,
            action=f"otp.{event}",
            subject_type="otp_challenge",
            subject_id=mask_mobile(mobile) or None,
            outcome=outcome,
        )
