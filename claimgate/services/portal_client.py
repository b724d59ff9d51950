"""
Portal Client — the one adapter to the portal REST API.

Responsibilities:
- attach the session's bearer token (read through the SessionStore hook,
  never from storage directly)
- propagate the current X-Request-ID
- map HTTP outcomes onto the ClaimGate error taxonomy
- apply the global rule: a 401 on any authenticated call invalidates the
  session before the error reaches the caller

Callers pick the error raised for a 400/422 (`rejected=`) because its
meaning is endpoint-specific: bad credentials on login, a bad passcode on
verify-otp, an illegal transition on a claim action.
"""

import logging
from collections.abc import Awaitable, Callable
import httpx
from pydantic import ValidationError

from claimgate.config import settings
from claimgate.errors import (
    AlreadyProcessed,
    ClaimGateError,
    Forbidden,
    IllegalTransition,
    InvalidCode,
    InvalidCredentials,
    InvalidMobile,
    NetworkError,
    NotFound,
    Unauthorized,
)
from claimgate.middleware.request_context import get_request_id
from claimgate.models.claim import Claim
from claimgate.models.principal import Principal
from claimgate.schemas.schemas import (
    AdminEdit,
    AdminOverride,
    ApprovalDecision,
    AuthGrant,
    ClaimSubmission,
    Credentials,
    ForwardToSp,
    RejectAiReport,
    SpDecision,
)

logger = logging.getLogger(__name__)


def _message_of(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict):
        return str(body.get("message") or body.get("detail") or body)
    return str(body)


def _claim_or_none(response: httpx.Response) -> Claim | None:
    """Parse a claim body (`{...}` or `{claim: {...}}`); None for an empty body."""
    if response.status_code == 204 or not response.content:
        return None
    body = response.json()
    if isinstance(body, dict) and isinstance(body.get("claim"), dict):
        body = body["claim"]
    if not isinstance(body, dict):
        return None
    try:
        return Claim.model_validate(body)
    except ValidationError as exc:
        logger.warning("Claim response did not parse (%d errors); using planned state",
                       exc.error_count())
        return None


class PortalClient:
    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout or settings.http_timeout_seconds,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )
        self.token_getter: Callable[[], str | None] | None = None
        self.on_unauthorized: Callable[[str | None], Awaitable[None]] | None = None

    def bind_session(
        self,
        token_getter: Callable[[], str | None],
        on_unauthorized: Callable[[str | None], Awaitable[None]],
    ) -> None:
        self.token_getter = token_getter
        self.on_unauthorized = on_unauthorized

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict | None = None,
        params: dict | None = None,
        authenticated: bool = True,
        rejected: type[ClaimGateError] = IllegalTransition,
    ) -> httpx.Response:
        headers: dict[str, str] = {}
        request_id = get_request_id()
        if request_id:
            headers["X-Request-ID"] = request_id
        token = None
        if authenticated and self.token_getter is not None:
            token = self.token_getter()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(
                method, path, json=json, params=params, headers=headers,
            )
        except httpx.TimeoutException as exc:
            raise NetworkError(f"{method} {path} timed out") from exc
        except httpx.RequestError as exc:
            raise NetworkError(f"{method} {path} failed: {exc}") from exc

        if response.status_code >= 400:
            await self._raise_for_status(response, token, rejected)
        return response

    async def _raise_for_status(
        self,
        response: httpx.Response,
        token: str | None,
        rejected: type[ClaimGateError],
    ) -> None:
        status = response.status_code
        message = _message_of(response)
        logger.debug("%s %s -> %d: %s", response.request.method,
                     response.request.url.path, status, message)

        if status == 401:
            if token is not None and self.on_unauthorized is not None:
                await self.on_unauthorized(token)
            raise Unauthorized(message, status_code=status)
        if status == 403:
            raise Forbidden(message, status_code=status)
        if status == 404:
            raise NotFound(message, status_code=status)
        if status == 409:
            raise AlreadyProcessed(message, status_code=status)
        if status >= 500:
            raise NetworkError(message, status_code=status)
        raise rejected(message, status_code=status)

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def login(self, credentials: Credentials) -> AuthGrant:
        try:
            response = await self.request(
                "POST", "/auth/login/admin-service-provider",
                json=credentials.to_wire(), authenticated=False,
                rejected=InvalidCredentials,
            )
        except (Unauthorized, Forbidden) as exc:
            # banned / pending approval / wrong password all read as a failed login
            raise InvalidCredentials(exc.message, status_code=exc.status_code) from exc
        return AuthGrant.model_validate(response.json())

    async def send_otp(self, mobile_number: str) -> None:
        try:
            await self.request(
                "POST", "/auth/send-otp",
                json={"mobileNumber": mobile_number}, authenticated=False,
                rejected=InvalidMobile,
            )
        except NotFound as exc:
            raise InvalidMobile(exc.message, status_code=exc.status_code) from exc

    async def verify_otp(self, mobile_number: str, otp: str) -> AuthGrant:
        response = await self.request(
            "POST", "/auth/verify-otp",
            json={"mobileNumber": mobile_number, "otp": otp}, authenticated=False,
            rejected=InvalidCode,
        )
        return AuthGrant.model_validate(response.json())

    async def fetch_me(self) -> Principal:
        response = await self.request("GET", "/auth/me")
        try:
            return Principal.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise NetworkError(f"Malformed profile from /auth/me: {exc}") from exc

    # ------------------------------------------------------------------
    # Claims
    # ------------------------------------------------------------------

    async def get_claim(self, claim_id: str) -> Claim:
        response = await self.request("GET", f"/claims/{claim_id}")
        claim = _claim_or_none(response)
        if claim is None:
            raise NotFound(f"Claim {claim_id} not found")
        return claim

    async def list_ai_ready(self) -> list[Claim]:
        response = await self.request("GET", "/admin/claims/ai-ready")
        body = response.json()
        if isinstance(body, dict):
            body = body.get("claims", [])
        return [Claim.model_validate(item) for item in body]

    async def submit_claim(self, submission: ClaimSubmission) -> Claim | None:
        response = await self.request("POST", "/claims", json=submission.to_wire())
        return _claim_or_none(response)

    async def update_claim(self, claim_id: str, body: AdminEdit | SpDecision) -> Claim | None:
        response = await self.request("PUT", f"/claims/{claim_id}", json=body.to_wire())
        return _claim_or_none(response)

    async def admin_override(self, claim_id: str, body: AdminOverride) -> Claim | None:
        response = await self.request(
            "PUT", f"/claims/{claim_id}/admin-override", json=body.to_wire(),
        )
        return _claim_or_none(response)

    async def forward_to_sp(self, claim_id: str, body: ForwardToSp) -> Claim | None:
        response = await self.request(
            "POST", f"/admin/claims/{claim_id}/forward-to-sp", json=body.to_wire(),
        )
        return _claim_or_none(response)

    async def reject_ai_report(self, claim_id: str, body: RejectAiReport) -> Claim | None:
        response = await self.request(
            "POST", f"/admin/claims/{claim_id}/reject-ai-report", json=body.to_wire(),
        )
        return _claim_or_none(response)

    # ------------------------------------------------------------------
    # Registration review
    # ------------------------------------------------------------------

    async def fetch_user(self, user_id: str) -> Principal:
        response = await self.request("GET", f"/admin/users/{user_id}")
        try:
            return Principal.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise NetworkError(f"Malformed user {user_id} from portal API: {exc}") from exc

    async def approve_user(self, user_id: str, body: ApprovalDecision) -> Principal | None:
        response = await self.request(
            "PUT", f"/admin/users/{user_id}/approve", json=body.to_wire(),
        )
        if response.status_code == 204 or not response.content:
            return None
        data = response.json()
        if isinstance(data, dict) and isinstance(data.get("user"), dict):
            data = data["user"]
        try:
            return Principal.model_validate(data)
        except ValidationError:
            return None
