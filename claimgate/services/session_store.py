"""
Session Store — owns the bearer token and the hydrated principal.

Lifecycle:
    acquire / acquire_token   exchange → persist token → hydrate (GET /auth/me)
    restore                   on start: persisted token → hydrate
    refresh                   re-hydrate after a mutation of the principal
    release                   clear token + principal, no network needed

Hydration outcomes:
    ok               authenticated, fresh
    ok, not active   pending or banned account: token discarded, never admitted
    401 / 403        token discarded (the profile fetch is the one place a
                     403 invalidates, a banned account must not stay signed in)
    anything else    acquire: fall back to the exchange's profile if one was
                     given (degraded, fresh=False), else discard and re-raise
                     restore: keep the token with no principal (loading)

A token is held in memory only once it has been persisted; a storage failure
fails the acquire (NetworkError) and leaves the store anonymous.

acquire/restore/refresh run one at a time per store (single-flight lock),
so a slow hydration can never overwrite a fresher one.
"""

import asyncio
import logging

from pydantic import ValidationError
from redis.exceptions import RedisError

from claimgate.auth.context import ANONYMOUS, Session
from claimgate.auth.roles import PrincipalStatus
from claimgate.errors import (
    ClaimGateError,
    ErrorKind,
    Forbidden,
    InvalidCredentials,
    NetworkError,
    Result,
    SessionLoading,
    Unauthorized,
)
from claimgate.middleware.metrics import session_events_total
from claimgate.models.principal import Principal
from claimgate.schemas.schemas import AuthGrant, Credentials
from claimgate.services.audit_service import SUCCESS, AuditService
from claimgate.services.portal_client import PortalClient
from claimgate.services.token_storage import TokenStorage

logger = logging.getLogger(__name__)


class SessionStore:
    def __init__(self, client: PortalClient, storage: TokenStorage, audit: AuditService):
        self.client = client
        self.storage = storage
        self.audit = audit
        self._token: str | None = None
        self._principal: Principal | None = None
        self._fresh = False
        self._lock = asyncio.Lock()
        client.bind_session(self._current_token, self._on_unauthorized)

    # ── Read side ────────────────────────────────────────────────────────

    @property
    def session(self) -> Session:
        if self._token is None:
            return ANONYMOUS
        return Session(token=self._token, principal=self._principal, fresh=self._fresh)

    @property
    def principal(self) -> Principal | None:
        return self._principal if self._token is not None else None

    def require_principal(self) -> Principal:
        """Current principal for an action; loading and anonymous are errors."""
        session = self.session
        if session.is_loading:
            raise SessionLoading()
        if session.principal is None:
            raise Unauthorized()
        return session.principal

    def _current_token(self) -> str | None:
        return self._token

    # ── Lifecycle ────────────────────────────────────────────────────────

    async def acquire(self, credentials: Credentials) -> Session:
        """Log in with email + password and hydrate the principal."""
        async with self._lock:
            try:
                grant = await self.client.login(credentials)
                session = await self._establish(grant)
            except ClaimGateError as exc:
                self._record("acquire", exc.kind.value, actor_id=credentials.email)
                raise
            self._record("acquire", SUCCESS)
            return session

    async def acquire_token(self, grant: AuthGrant) -> Session:
        """Finalize a session from a token issued elsewhere (OTP verification)."""
        async with self._lock:
            try:
                session = await self._establish(grant)
            except ClaimGateError as exc:
                self._record("acquire", exc.kind.value, actor_id="anonymous")
                raise
            self._record("acquire", SUCCESS)
            return session

    async def restore(self) -> Session | None:
        """Re-hydrate a persisted token; None when there is none or it is dead."""
        async with self._lock:
            try:
                token = await self.storage.load()
            except (OSError, RedisError) as exc:
                logger.warning("Could not read persisted token: %s", exc)
                session_events_total.labels(
                    event="restore", outcome=ErrorKind.NETWORK_ERROR.value,
                ).inc()
                return None
            if not token:
                return None
            self._token = token
            self._principal = None
            self._fresh = False

            result = await self._hydrate()
            if result.is_ok:
                if not _is_active(result.value):
                    logger.info("Persisted session for %s is not active", result.value.actor)
                    session_events_total.labels(
                        event="restore", outcome=ErrorKind.INVALID_CREDENTIALS.value,
                    ).inc()
                    await self._clear()
                    return None
                self._set_principal(result.value, fresh=True)
                session_events_total.labels(event="restore", outcome=SUCCESS).inc()
                return self.session

            error = result.error
            session_events_total.labels(event="restore", outcome=error.kind.value).inc()
            if isinstance(error, (Unauthorized, Forbidden)):
                await self._clear()
                return None
            logger.warning("Session restore deferred: %s", error)
            return self.session

    async def refresh(self) -> Session:
        """Re-run hydration against the current token."""
        async with self._lock:
            if self._token is None:
                raise Unauthorized("No active session")

            result = await self._hydrate()
            session_events_total.labels(
                event="refresh",
                outcome=SUCCESS if result.is_ok else result.error.kind.value,
            ).inc()
            if result.is_ok:
                if not _is_active(result.value):
                    await self._clear()
                    raise Unauthorized(_inactive_message(result.value))
                self._set_principal(result.value, fresh=True)
                return self.session

            error = result.error
            if isinstance(error, (Unauthorized, Forbidden)):
                await self._clear()
                raise Unauthorized(error.message, status_code=error.status_code) from error
            # keep what we had, but it may be stale now
            self._fresh = False
            raise error

    async def release(self) -> None:
        """Sign out locally. Always succeeds."""
        principal = self._principal
        await self._clear()
        self._record("release", SUCCESS, principal=principal)

    # ── Internals ────────────────────────────────────────────────────────

    async def _establish(self, grant: AuthGrant) -> Session:
        """Persist the token, then hydrate it. Caller holds the lock."""
        try:
            await self.storage.save(grant.token)
        except (OSError, RedisError) as exc:
            await self._clear()
            raise NetworkError(f"Could not persist session token: {exc}") from exc
        self._token = grant.token
        self._principal = None
        self._fresh = False

        result = await self._hydrate()
        if result.is_ok:
            return await self._admit(result.value, fresh=True)

        error = result.error
        if isinstance(error, (Unauthorized, Forbidden)):
            await self._clear()
            raise InvalidCredentials(error.message, status_code=error.status_code) from error

        fallback = self._fallback_principal(grant)
        if fallback is None:
            await self._clear()
            raise error

        logger.warning("Hydration failed (%s); using login profile for %s", error, fallback.actor)
        return await self._admit(fallback, fresh=False)

    async def _admit(self, principal: Principal, *, fresh: bool) -> Session:
        if not _is_active(principal):
            await self._clear()
            raise InvalidCredentials(_inactive_message(principal))
        self._set_principal(principal, fresh=fresh)
        return self.session

    async def _hydrate(self) -> Result[Principal]:
        try:
            return Result.ok(await self.client.fetch_me())
        except ClaimGateError as exc:
            return Result.err(exc)

    @staticmethod
    def _fallback_principal(grant: AuthGrant) -> Principal | None:
        if not grant.user:
            return None
        try:
            return Principal.model_validate(grant.user)
        except ValidationError as exc:
            logger.warning("Login profile unusable as fallback (%d errors)", exc.error_count())
            return None

    def _set_principal(self, principal: Principal, *, fresh: bool) -> None:
        self._principal = principal
        self._fresh = fresh

    async def _on_unauthorized(self, token: str | None) -> None:
        """Global 401 rule: any authenticated call that gets a 401 ends the session."""
        if token != self._token:
            # a late reply for a token this store already replaced
            return
        if self._token is not None:
            logger.info("401 from portal API; invalidating session for %s", self.session.actor)
            session_events_total.labels(event="invalidate", outcome=SUCCESS).inc()
        await self._clear()

    async def _clear(self) -> None:
        self._token = None
        self._principal = None
        self._fresh = False
        try:
            await self.storage.clear()
        except (OSError, RedisError) as exc:
            # in-memory state is already cleared; the next restore() gets a 401
            logger.warning("Could not clear persisted token: %s", exc)

    def _record(
        self,
        event: str,
        outcome: str,
        *,
        principal: Principal | None = None,
        actor_id: str | None = None,
    ) -> None:
        principal = principal or self._principal
        session_events_total.labels(event=event, outcome=outcome).inc()
        self.audit.emit(
            actor_id=principal.id if principal else (actor_id or "anonymous"),
            actor_role=principal.role.value if principal else None,
            action=f"session.{event}",
            subject_type="session",
            subject_id=principal.id if principal else None,
            outcome=outcome,
            details={"fresh": self._fresh} if event == "acquire" and outcome == SUCCESS else {},
        )


def _is_active(principal: Principal) -> bool:
    # pending and banned accounts never hold a session
    return principal.status is PrincipalStatus.ACTIVE


def _inactive_message(principal: Principal) -> str:
    return f"Account is {principal.status.value.replace('_', ' ')}"
