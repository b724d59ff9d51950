"""
Claim Workflow Service

Runs one claim action end to end:
- current principal from the SessionStore (loading / anonymous are errors)
- actor and reason checks before any network call
- state-machine validation against the claim's current state
- exactly one mutating call to the portal API
- one audit event per attempt, success or failure

Every action method accepts either a Claim the caller already holds or a
claim id (fetched first). Returns the claim as the API reports it, or the
locally planned claim when the API answers with an empty body.
"""

import logging
from collections.abc import Awaitable, Callable

from claimgate.auth.roles import ADMIN_ROLES, Role, effective_roles
from claimgate.errors import (
    AlreadyProcessed,
    ClaimGateError,
    Forbidden,
    IllegalTransition,
    NotFound,
    Result,
)
from claimgate.middleware.metrics import claim_transitions_total
from claimgate.models.claim import POST_REVIEW_STAGES, Claim, ClaimStatus
from claimgate.models.principal import Principal
from claimgate.schemas.schemas import (
    AdminEdit,
    AdminOverride,
    ClaimSubmission,
    ForwardToSp,
    RejectAiReport,
    SpDecision,
)
from claimgate.services.audit_service import SUCCESS, AuditService
from claimgate.services.claim_state_machine import (
    TRANSITIONS,
    ClaimAction,
    Transition,
    check_request,
    legal_actions,
    plan,
)
from claimgate.services.portal_client import PortalClient
from claimgate.services.session_store import SessionStore

logger = logging.getLogger(__name__)

SYSTEM_ACTOR_ID = "ai-pipeline"


class ClaimWorkflow:
    """Validated claim transitions for the signed-in principal."""

    def __init__(self, client: PortalClient, session_store: SessionStore, audit: AuditService):
        self.client = client
        self.session_store = session_store
        self.audit = audit

    # ── Reads ────────────────────────────────────────────────────────────

    async def fetch(self, claim_id: str) -> Claim:
        self.session_store.require_principal()
        return await self.client.get_claim(claim_id)

    async def try_fetch(self, claim_id: str) -> Result[Claim]:
        """Like fetch(), but the caller decides what a failure means."""
        try:
            return Result.ok(await self.fetch(claim_id))
        except ClaimGateError as exc:
            return Result.err(exc)

    async def list_ai_ready(self) -> list[Claim]:
        """Claims waiting for an admin's forward / reject decision."""
        principal = self.session_store.require_principal()
        if not effective_roles(principal.role) & ADMIN_ROLES:
            raise Forbidden("Only admins can review AI reports")
        return await self.client.list_ai_ready()

    async def available_actions(self, claim: Claim | str) -> list[ClaimAction]:
        principal = self.session_store.require_principal()
        claim = await self._resolve(claim)
        return legal_actions(claim, principal)

    # ── Transitions ──────────────────────────────────────────────────────

    async def submit(self, submission: ClaimSubmission) -> Claim:
        principal = self.session_store.require_principal()
        try:
            transition = plan(None, ClaimAction.SUBMIT, principal, farmer_id=principal.id)
            created = await self.client.submit_claim(submission)
        except ClaimGateError as exc:
            self._record_failure(ClaimAction.SUBMIT, principal, None, exc,
                                 {"policy_id": submission.policy_id})
            raise
        claim = created or transition.after
        self._record_success(
            Transition(transition.action, None, claim, transition.severity,
                       {"policy_id": submission.policy_id}),
            principal,
        )
        return claim

    def record_ai_assessment(self, claim: Claim) -> Claim:
        """
        Mark a claim as AI-processed on behalf of the assessment pipeline.

        The pipeline writes to the portal API itself; this validates the
        step against the state machine and audits it under the SYSTEM actor.
        """
        try:
            transition = plan(claim, ClaimAction.AI_PROCESS, Role.SYSTEM)
        except ClaimGateError as exc:
            self._audit(ClaimAction.AI_PROCESS, SYSTEM_ACTOR_ID, Role.SYSTEM.value,
                        claim.id, exc.kind.value)
            raise
        self._audit(ClaimAction.AI_PROCESS, SYSTEM_ACTOR_ID, Role.SYSTEM.value, claim.id,
                    SUCCESS, changes=transition.changes)
        return transition.after

    async def forward_to_sp(self, claim: Claim | str, notes: str | None = None) -> Claim:
        return await self._run(
            ClaimAction.FORWARD_TO_SP, claim,
            lambda claim_id: self.client.forward_to_sp(claim_id, ForwardToSp(admin_notes=notes)),
            notes=notes,
        )

    async def reject_ai_report(
        self, claim: Claim | str, reason: str, notes: str | None = None,
    ) -> Claim:
        return await self._run(
            ClaimAction.REJECT_AI_REPORT, claim,
            lambda claim_id: self.client.reject_ai_report(
                claim_id, RejectAiReport(reason=reason.strip(), admin_notes=notes),
            ),
            reason=reason, notes=notes,
        )

    async def sp_decide(
        self, claim: Claim | str, decision: ClaimStatus | str, resolution: str | None = None,
    ) -> Claim:
        return await self._run(
            ClaimAction.SP_DECIDE, claim,
            lambda claim_id: self.client.update_claim(
                claim_id,
                SpDecision(status=ClaimStatus(decision).value, resolution_details=resolution),
            ),
            status=decision,
        )

    async def admin_override(self, claim: Claim | str, reason: str) -> Claim:
        return await self._run(
            ClaimAction.ADMIN_OVERRIDE, claim,
            lambda claim_id: self.client.admin_override(
                claim_id,
                AdminOverride(admin_override_reason=reason.strip(), status=ClaimStatus.PENDING),
            ),
            reason=reason,
        )

    async def admin_edit(
        self,
        claim: Claim | str,
        status: ClaimStatus | str,
        *,
        reason: str | None = None,
        reassign_to: str | None = None,
    ) -> Claim:
        """Direct status edit. Bypasses the structured flow; audited at high severity."""
        return await self._run(
            ClaimAction.ADMIN_EDIT, claim,
            lambda claim_id: self.client.update_claim(
                claim_id,
                AdminEdit(
                    status=ClaimStatus(status),
                    reassign_to=reassign_to,
                    admin_override_reason=reason,
                ),
            ),
            status=status, reason=reason, assigned_to=reassign_to,
        )

    # ── Internals ────────────────────────────────────────────────────────

    async def _resolve(self, claim: Claim | str) -> Claim:
        if isinstance(claim, Claim):
            return claim
        return await self.client.get_claim(claim)

    async def _run(
        self,
        action: ClaimAction,
        claim: Claim | str,
        call: Callable[[str], Awaitable[Claim | None]],
        **plan_kwargs,
    ) -> Claim:
        principal = self.session_store.require_principal()
        claim_id = claim.id if isinstance(claim, Claim) else claim
        details = {k: v for k, v in plan_kwargs.items() if k in ("reason", "notes") and v}
        try:
            check_request(action, principal, plan_kwargs.get("reason"))
            current = await self._resolve(claim)
            transition = plan(current, action, principal, **plan_kwargs)
            try:
                returned = await call(claim_id)
            except IllegalTransition as exc:
                if action not in (ClaimAction.FORWARD_TO_SP, ClaimAction.REJECT_AI_REPORT):
                    raise
                classified = await self._classify_rejection(claim_id, exc)
                if classified is exc:
                    raise
                raise classified from exc
        except ClaimGateError as exc:
            self._record_failure(action, principal, claim_id, exc, details)
            raise

        result = returned or transition.after
        self._record_success(
            Transition(action, transition.before, result, transition.severity, transition.details),
            principal,
        )
        return result

    async def _classify_rejection(self, claim_id: str, error: IllegalTransition) -> ClaimGateError:
        """A 400 on forward/reject: someone else may have decided first."""
        try:
            latest = await self.client.get_claim(claim_id)
        except NotFound as exc:
            return exc
        except ClaimGateError:
            logger.warning("Could not re-fetch claim %s to classify a rejection", claim_id)
            return error
        if latest.verification_status in POST_REVIEW_STAGES:
            return AlreadyProcessed(
                f"Claim {claim_id} AI review was already decided "
                f"({latest.verification_status.value})",
                status_code=error.status_code,
            )
        return error

    def _record_success(self, transition: Transition, principal: Principal) -> None:
        subject_id = transition.after.id or (transition.before.id if transition.before else None)
        logger.info("%s %s on claim %s", principal.actor, transition.action.value, subject_id)
        self._audit(
            transition.action, principal.id, principal.role.value, subject_id, SUCCESS,
            details={k: v for k, v in transition.details.items() if v is not None},
            changes=transition.changes,
        )

    def _record_failure(
        self,
        action: ClaimAction,
        principal: Principal,
        claim_id: str | None,
        error: ClaimGateError,
        details: dict,
    ) -> None:
        log = logger.info if error.informational else logger.warning
        log("%s %s on claim %s failed: %s", principal.actor, action.value, claim_id, error)
        self._audit(action, principal.id, principal.role.value, claim_id, error.kind.value,
                    details=details)

    def _audit(
        self,
        action: ClaimAction,
        actor_id: str,
        actor_role: str,
        claim_id: str | None,
        outcome: str,
        *,
        details: dict | None = None,
        changes: dict | None = None,
    ) -> None:
        claim_transitions_total.labels(action=action.value, outcome=outcome).inc()
        self.audit.emit(
            actor_id=actor_id,
            actor_role=actor_role,
            action=f"claim.{action.value}",
            subject_type="claim",
            subject_id=claim_id,
            outcome=outcome,
            severity=TRANSITIONS[action].severity,
            details=details,
            changes=changes,
        )
