"""
Registration review: admins approve or reject pending self-registrations.

SERVICE_PROVIDER and INSURER accounts start in pending_approval and cannot
sign in until an admin decides. Only pending_approval → active / rejected
is reviewed here; ban and unban are outside this flow.

A bare user id is resolved through the portal API first, so the same
pending-account and role checks run whatever the caller passes.
"""

import logging

from claimgate.auth.roles import (
    ADMIN_ROLES,
    SELF_REGISTERED_ROLES,
    STATUS_TRANSITIONS,
    PrincipalStatus,
    effective_roles,
)
from claimgate.errors import ClaimGateError, Forbidden, IllegalTransition
from claimgate.models.principal import Principal
from claimgate.schemas.schemas import ApprovalDecision
from claimgate.services.audit_service import SUCCESS, AuditService
from claimgate.services.portal_client import PortalClient
from claimgate.services.session_store import SessionStore

logger = logging.getLogger(__name__)


class RegistrationReview:
    def __init__(self, client: PortalClient, session_store: SessionStore, audit: AuditService):
        self.client = client
        self.session_store = session_store
        self.audit = audit

    async def approve(self, user: Principal | str) -> Principal:
        return await self._decide(user, PrincipalStatus.ACTIVE, None)

    async def reject(self, user: Principal | str, reason: str | None = None) -> Principal:
        return await self._decide(user, PrincipalStatus.REJECTED, reason)

    async def _decide(
        self,
        user: Principal | str,
        target: PrincipalStatus,
        reason: str | None,
    ) -> Principal:
        admin = self.session_store.require_principal()
        user_id = user.id if isinstance(user, Principal) else user
        action = "approve" if target is PrincipalStatus.ACTIVE else "reject"
        try:
            if not effective_roles(admin.role) & ADMIN_ROLES:
                raise Forbidden("Only admins can review registrations")
            if not isinstance(user, Principal):
                user = await self.client.fetch_user(user_id)
            self._check(user, target)
            updated = await self.client.approve_user(
                user_id,
                ApprovalDecision(
                    approved=target is PrincipalStatus.ACTIVE,
                    rejection_reason=reason.strip() if reason and reason.strip() else None,
                ),
            )
        except ClaimGateError as exc:
            self._record(admin, action, user_id, exc.kind.value, reason)
            raise

        logger.info("%s %sd registration %s", admin.actor, action, user_id)
        self._record(admin, action, user_id, SUCCESS, reason)
        if updated is None:
            updated = user.model_copy(update={"status": target})
        return updated

    @staticmethod
    def _check(user: Principal, target: PrincipalStatus) -> None:
        if user.role not in SELF_REGISTERED_ROLES:
            raise IllegalTransition(f"{user.role.value} accounts do not need approval")
        if target not in STATUS_TRANSITIONS[user.status]:
            raise IllegalTransition(
                f"Cannot move account {user.id} from {user.status.value} to {target.value}"
            )

    def _record(
        self, admin: Principal, action: str, user_id: str, outcome: str, reason: str | None,
    ) -> None:
        self.audit.emit(
            actor_id=admin.id,
            actor_role=admin.role.value,
            action=f"registration.{action}",
            subject_type="user",
            subject_id=user_id,
            outcome=outcome,
            details={"reason": reason} if reason else {},
        )
