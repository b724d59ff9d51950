"""
Claim State Machine — the only place claim transitions are defined.

A claim's state is the pair (status, verification_status). Each action has
one rule: who may trigger it, which joint states it applies to, and the
state it produces.

    action            actor                 precondition                          effect
    submit            FARMER                claim does not exist                  (pending, unset)
    ai_process        SYSTEM                (pending|in_review, unset)            (·, AI_Processed_Admin_Review)
    forward_to_sp     ADMIN/SUPER_ADMIN     vs = AI_Processed_Admin_Review        (·, Forwarded_To_SP)
    reject_ai_report  ADMIN/SUPER_ADMIN     vs = AI_Processed_Admin_Review, reason (·, AI_Rejected_Manual_Review)
    sp_decide         assigned SP           status ∈ {pending, in_review}          (approved|rejected, ·)
    admin_override    ADMIN/SUPER_ADMIN     status ∈ {approved, rejected}, reason  (pending, ·)
    admin_edit        ADMIN/SUPER_ADMIN     any                                   (any status, ·)

`plan()` is pure: it either returns the transition (before/after claim) or
raises, and never touches the input claim. Check order:

    actor role / assignment   → Forbidden
    required reason missing   → MissingReason
    review already decided    → AlreadyProcessed
    any other precondition    → IllegalTransition
"""

from dataclasses import dataclass, field
from enum import Enum

from claimgate.auth.roles import ADMIN_ROLES, Role, effective_roles
from claimgate.errors import AlreadyProcessed, Forbidden, IllegalTransition, MissingReason
from claimgate.models.claim import (
    OPEN_STATUSES,
    POST_REVIEW_STAGES,
    TERMINAL_STATUSES,
    Claim,
    ClaimState,
    ClaimStatus,
    VerificationStatus,
)
from claimgate.models.principal import Principal
from claimgate.services.audit_service import AuditSeverity


class ClaimAction(str, Enum):
    SUBMIT = "submit"
    AI_PROCESS = "ai_process"
    FORWARD_TO_SP = "forward_to_sp"
    REJECT_AI_REPORT = "reject_ai_report"
    SP_DECIDE = "sp_decide"
    ADMIN_OVERRIDE = "admin_override"
    ADMIN_EDIT = "admin_edit"


@dataclass(frozen=True)
class TransitionRule:
    actors: frozenset[Role]
    statuses: frozenset[ClaimStatus] | None = None              # None = any
    verification: frozenset[VerificationStatus] | None = None   # None = any
    reason_required: bool = False
    severity: AuditSeverity = AuditSeverity.NOTICE


_AI_REVIEW = frozenset({VerificationStatus.AI_PROCESSED_ADMIN_REVIEW})

TRANSITIONS: dict[ClaimAction, TransitionRule] = {
    ClaimAction.SUBMIT: TransitionRule(actors=frozenset({Role.FARMER})),
    ClaimAction.AI_PROCESS: TransitionRule(
        actors=frozenset({Role.SYSTEM}),
        statuses=OPEN_STATUSES,
        verification=frozenset({VerificationStatus.UNSET}),
    ),
    ClaimAction.FORWARD_TO_SP: TransitionRule(actors=ADMIN_ROLES, verification=_AI_REVIEW),
    ClaimAction.REJECT_AI_REPORT: TransitionRule(
        actors=ADMIN_ROLES, verification=_AI_REVIEW, reason_required=True,
    ),
    ClaimAction.SP_DECIDE: TransitionRule(
        actors=frozenset({Role.SERVICE_PROVIDER}), statuses=OPEN_STATUSES,
    ),
    ClaimAction.ADMIN_OVERRIDE: TransitionRule(
        actors=ADMIN_ROLES, statuses=TERMINAL_STATUSES, reason_required=True,
    ),
    ClaimAction.ADMIN_EDIT: TransitionRule(actors=ADMIN_ROLES, severity=AuditSeverity.HIGH),
}

# Single-use per AI review episode
_REVIEW_ACTIONS = frozenset({ClaimAction.FORWARD_TO_SP, ClaimAction.REJECT_AI_REPORT})

SP_DECISIONS = frozenset({ClaimStatus.APPROVED, ClaimStatus.REJECTED})


@dataclass(frozen=True)
class Transition:
    action: ClaimAction
    before: Claim | None
    after: Claim
    severity: AuditSeverity
    details: dict = field(default_factory=dict)

    @property
    def changes(self) -> dict:
        return {
            "before": self.before.state.as_dict() if self.before else None,
            "after": self.after.state.as_dict(),
        }


def _has_text(value: str | None) -> bool:
    return bool(value and value.strip())


def _check_actor(rule: TransitionRule, action: ClaimAction, actor_role: Role) -> None:
    if not effective_roles(actor_role) & rule.actors:
        allowed = ", ".join(sorted(r.value for r in rule.actors))
        raise Forbidden(f"{action.value} requires one of [{allowed}], not {actor_role.value}")


def _check_state(rule: TransitionRule, action: ClaimAction, claim: Claim) -> None:
    if action in _REVIEW_ACTIONS and claim.verification_status in POST_REVIEW_STAGES:
        raise AlreadyProcessed(
            f"Claim {claim.id} AI review was already decided "
            f"({claim.verification_status.value})"
        )
    if rule.statuses is not None and claim.status not in rule.statuses:
        allowed = sorted(s.value for s in rule.statuses)
        raise IllegalTransition(
            f"Invalid transition: {action.value} on status {claim.status.value}. Allowed: {allowed}"
        )
    if rule.verification is not None and claim.verification_status not in rule.verification:
        allowed = sorted(v.value for v in rule.verification)
        raise IllegalTransition(
            f"Invalid transition: {action.value} on verification status "
            f"{claim.verification_status.value}. Allowed: {allowed}"
        )


def _status_of(value: ClaimStatus | str | None) -> ClaimStatus | None:
    if value is None:
        return None
    try:
        return ClaimStatus(value)
    except ValueError:
        raise IllegalTransition(f"Unknown claim status: {value!r}") from None


def check_request(action: ClaimAction, actor: Principal | Role, reason: str | None = None) -> None:
    """The claim-independent checks (actor role, required reason), run before any fetch."""
    rule = TRANSITIONS[action]
    _check_actor(rule, action, actor if isinstance(actor, Role) else actor.role)
    if rule.reason_required and not _has_text(reason):
        raise MissingReason(f"{action.value} requires a non-empty reason")


def plan(
    claim: Claim | None,
    action: ClaimAction,
    actor: Principal | Role,
    *,
    status: ClaimStatus | str | None = None,
    reason: str | None = None,
    notes: str | None = None,
    assigned_to: str | None = None,
    claim_id: str | None = None,
    farmer_id: str | None = None,
) -> Transition:
    """Validate `action` on `claim` for `actor` and compute the resulting claim."""
    rule = TRANSITIONS[action]
    actor_id = None if isinstance(actor, Role) else actor.id

    check_request(action, actor, reason)

    if action is ClaimAction.SUBMIT:
        if claim is not None:
            raise IllegalTransition(f"Claim {claim.id} already exists")
        new_claim = Claim(
            id=claim_id or "",
            farmer_id=farmer_id or actor_id,
            status=ClaimStatus.PENDING,
            verification_status=VerificationStatus.UNSET,
        )
        return Transition(action, None, new_claim, rule.severity)

    if claim is None:
        raise IllegalTransition(f"{action.value} needs an existing claim")

    if action is ClaimAction.SP_DECIDE and (actor_id is None or claim.assigned_to != actor_id):
        raise Forbidden(f"Claim {claim.id} is not assigned to this service provider")
    _check_state(rule, action, claim)
    current = claim.state
    reason = reason.strip() if reason else None

    if action is ClaimAction.AI_PROCESS:
        after = claim.with_state(
            ClaimState(current.status, VerificationStatus.AI_PROCESSED_ADMIN_REVIEW)
        )
        return Transition(action, claim, after, rule.severity)

    if action is ClaimAction.FORWARD_TO_SP:
        after = claim.with_state(
            ClaimState(current.status, VerificationStatus.FORWARDED_TO_SP),
            admin_notes=notes or claim.admin_notes,
        )
        return Transition(action, claim, after, rule.severity, {"notes": notes})

    if action is ClaimAction.REJECT_AI_REPORT:
        after = claim.with_state(
            ClaimState(current.status, VerificationStatus.AI_REJECTED_MANUAL_REVIEW),
            ai_rejection_reason=reason,
            admin_notes=notes or claim.admin_notes,
        )
        return Transition(action, claim, after, rule.severity, {"reason": reason, "notes": notes})

    if action is ClaimAction.SP_DECIDE:
        decision = _status_of(status)
        if decision not in SP_DECISIONS:
            raise IllegalTransition("A service provider decision must be approved or rejected")
        after = claim.with_state(ClaimState(decision, current.verification_status))
        return Transition(action, claim, after, rule.severity, {"decision": decision.value})

    if action is ClaimAction.ADMIN_OVERRIDE:
        after = claim.with_state(
            ClaimState(ClaimStatus.PENDING, current.verification_status),
            admin_override_reason=reason,
            override_history=(*claim.override_history, reason),
        )
        return Transition(
            action, claim, after, rule.severity,
            {"reason": reason, "overridden_status": current.status.value},
        )

    if action is ClaimAction.ADMIN_EDIT:
        if status is None:
            raise IllegalTransition("admin_edit needs a target status")
        target = _status_of(status)
        changes = {}
        if assigned_to is not None:
            changes["assigned_to"] = assigned_to
        after = claim.with_state(ClaimState(target, current.verification_status), **changes)
        return Transition(
            action, claim, after, rule.severity,
            {"reason": reason, "assigned_to": assigned_to, "previous_status": current.status.value},
        )

    raise IllegalTransition(f"Unknown action {action}")


def legal_actions(claim: Claim, actor: Principal) -> list[ClaimAction]:
    """Actions `actor` could take on `claim` right now (reasons assumed given)."""
    allowed = []
    for action in ClaimAction:
        if action is ClaimAction.SUBMIT:
            continue
        rule = TRANSITIONS[action]
        if not effective_roles(actor.role) & rule.actors:
            continue
        if action is ClaimAction.SP_DECIDE and claim.assigned_to != actor.id:
            continue
        try:
            _check_state(rule, action, claim)
        except (IllegalTransition, AlreadyProcessed):
            continue
        allowed.append(action)
    return allowed
