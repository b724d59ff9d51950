"""
Claims API — claim actions, grouped under the dashboard that performs them.

    /farmer-dashboard/claims                       submit, view
    /admin-dashboard/claims/ai-ready               AI review queue
    /admin-dashboard/claims/{id}/forward-to-sp     AI report accepted
    /admin-dashboard/claims/{id}/reject-ai-report  AI report rejected (reason)
    /admin-dashboard/claims/{id}/admin-override    terminal → pending (reason)
    /admin-dashboard/claims/{id}                   direct edit (high-severity audit)
    /service-provider-dashboard/claims/{id}/decision

Each router is guarded by the route table; the state machine still checks
the actor on every action.
"""

from fastapi import APIRouter, Depends

from claimgate.api.deps import get_claim_workflow, guard_route
from claimgate.models.claim import Claim
from claimgate.schemas.schemas import (
    AdminEdit,
    AdminOverride,
    ClaimSubmission,
    ForwardToSp,
    RejectAiReport,
    SpDecision,
)
from claimgate.services.claim_workflow import ClaimWorkflow

farmer_router = APIRouter(
    prefix="/farmer-dashboard/claims", tags=["claims"], dependencies=[Depends(guard_route)],
)
admin_router = APIRouter(
    prefix="/admin-dashboard/claims", tags=["claims", "admin"],
    dependencies=[Depends(guard_route)],
)
sp_router = APIRouter(
    prefix="/service-provider-dashboard/claims", tags=["claims"],
    dependencies=[Depends(guard_route)],
)
insurer_router = APIRouter(
    prefix="/insurer-dashboard/claims", tags=["claims"], dependencies=[Depends(guard_route)],
)


def claim_view(claim: Claim) -> dict:
    return claim.model_dump(by_alias=True, mode="json")


async def _claim_with_actions(workflow: ClaimWorkflow, claim_id: str) -> dict:
    claim = await workflow.fetch(claim_id)
    actions = await workflow.available_actions(claim)
    return {"claim": claim_view(claim), "actions": [a.value for a in actions]}


# ── Farmer ───────────────────────────────────────────────────────────────────

@farmer_router.post("", status_code=201)
async def submit_claim(
    body: ClaimSubmission, workflow: ClaimWorkflow = Depends(get_claim_workflow),
):
    return claim_view(await workflow.submit(body))


@farmer_router.get("/{claim_id}")
async def farmer_claim(claim_id: str, workflow: ClaimWorkflow = Depends(get_claim_workflow)):
    return await _claim_with_actions(workflow, claim_id)


# ── Admin ────────────────────────────────────────────────────────────────────

@admin_router.get("/ai-ready")
async def ai_ready_claims(workflow: ClaimWorkflow = Depends(get_claim_workflow)):
    """Claims whose AI report awaits an admin decision."""
    return [claim_view(c) for c in await workflow.list_ai_ready()]


@admin_router.get("/{claim_id}")
async def admin_claim(claim_id: str, workflow: ClaimWorkflow = Depends(get_claim_workflow)):
    return await _claim_with_actions(workflow, claim_id)


@admin_router.post("/{claim_id}/forward-to-sp")
async def forward_to_sp(
    claim_id: str,
    body: ForwardToSp | None = None,
    workflow: ClaimWorkflow = Depends(get_claim_workflow),
):
    notes = body.admin_notes if body else None
    return claim_view(await workflow.forward_to_sp(claim_id, notes))


@admin_router.post("/{claim_id}/reject-ai-report")
async def reject_ai_report(
    claim_id: str,
    body: RejectAiReport,
    workflow: ClaimWorkflow = Depends(get_claim_workflow),
):
    return claim_view(await workflow.reject_ai_report(claim_id, body.reason, body.admin_notes))


@admin_router.put("/{claim_id}/admin-override")
async def admin_override(
    claim_id: str,
    body: AdminOverride,
    workflow: ClaimWorkflow = Depends(get_claim_workflow),
):
    return claim_view(await workflow.admin_override(claim_id, body.admin_override_reason))


@admin_router.put("/{claim_id}")
async def admin_edit(
    claim_id: str,
    body: AdminEdit,
    workflow: ClaimWorkflow = Depends(get_claim_workflow),
):
    claim = await workflow.admin_edit(
        claim_id,
        body.status,
        reason=body.admin_override_reason,
        reassign_to=body.reassign_to or body.assigned_to,
    )
    return claim_view(claim)


# ── Service provider ─────────────────────────────────────────────────────────

@sp_router.get("/{claim_id}")
async def sp_claim(claim_id: str, workflow: ClaimWorkflow = Depends(get_claim_workflow)):
    return await _claim_with_actions(workflow, claim_id)


@sp_router.put("/{claim_id}/decision")
async def sp_decision(
    claim_id: str,
    body: SpDecision,
    workflow: ClaimWorkflow = Depends(get_claim_workflow),
):
    return claim_view(await workflow.sp_decide(claim_id, body.status, body.resolution_details))


# ── Insurer (read-only) ──────────────────────────────────────────────────────

@insurer_router.get("/{claim_id}")
async def insurer_claim(claim_id: str, workflow: ClaimWorkflow = Depends(get_claim_workflow)):
    return claim_view(await workflow.fetch(claim_id))
