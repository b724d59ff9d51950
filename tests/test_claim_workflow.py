"""End-to-end claim workflow tests against the stub portal API."""

import pytest

from claimgate.errors import (
    AlreadyProcessed,
    Forbidden,
    IllegalTransition,
    MissingReason,
    NotFound,
    SessionLoading,
    Unauthorized,
)
from claimgate.models.claim import ClaimStatus, VerificationStatus
from claimgate.schemas.schemas import ClaimSubmission
from claimgate.services.audit_service import AuditSeverity
from claimgate.services.claim_state_machine import ClaimAction
from claimgate.services.claim_workflow import ClaimWorkflow
from claimgate.services.portal_client import PortalClient
from claimgate.services.session_store import SessionStore
from claimgate.services.token_storage import MemoryTokenStorage
from conftest import BASE_URL, login_as


@pytest.mark.asyncio
class TestScenarios:
    async def test_submit_ai_review_then_reject(self, backend, store, workflow, audit, audit_sink):
        await login_as(store, "F1")
        submitted = await workflow.submit(ClaimSubmission(policy_id="POL-1", crop="wheat"))
        assert submitted.state.as_dict() == {"status": "pending", "verificationStatus": "unset"}

        processed = workflow.record_ai_assessment(submitted)
        assert processed.verification_status is VerificationStatus.AI_PROCESSED_ADMIN_REVIEW
        backend.mark_ai_processed(submitted.id)

        await store.release()
        await login_as(store, "A1")
        rejected = await workflow.reject_ai_report(submitted.id, "blurry photos")

        assert rejected.verification_status is VerificationStatus.AI_REJECTED_MANUAL_REVIEW
        assert rejected.status is ClaimStatus.PENDING
        await audit.flush()
        [event] = audit_sink.by_action("claim.reject_ai_report")
        assert event.outcome == "success"
        assert event.details["reason"] == "blurry photos"
        assert event.actor_id == "A1"
        assert event.changes == {
            "before": {"status": "pending", "verificationStatus": "AI_Processed_Admin_Review"},
            "after": {"status": "pending", "verificationStatus": "AI_Rejected_Manual_Review"},
        }

    async def test_sp_approves_then_admin_overrides(self, backend, store, workflow, audit, audit_sink):
        backend.add_claim("CLM-9", "F1", verification_status="Forwarded_To_SP", assigned_to="SP1")

        await login_as(store, "SP1")
        approved = await workflow.sp_decide("CLM-9", "approved", "field visit done")
        assert approved.status is ClaimStatus.APPROVED

        await store.release()
        await login_as(store, "A1")
        overridden = await workflow.admin_override("CLM-9", "fraud suspected")

        assert overridden.status is ClaimStatus.PENDING
        assert overridden.admin_override_reason == "fraud suspected"
        assert overridden.verification_status is VerificationStatus.FORWARDED_TO_SP
        await audit.flush()
        assert [e.outcome for e in audit_sink.by_action("claim.sp_decide")] == ["success"]
        [override] = audit_sink.by_action("claim.admin_override")
        assert override.details == {"reason": "fraud suspected", "overridden_status": "approved"}


@pytest.mark.asyncio
class TestForwardTwice:
    async def test_second_forward_is_already_processed(self, backend, store, workflow, audit, audit_sink):
        backend.add_claim("CLM-2", "F1", verification_status="AI_Processed_Admin_Review")
        await login_as(store, "A1")

        first = await workflow.forward_to_sp("CLM-2", notes="ok")
        assert first.verification_status is VerificationStatus.FORWARDED_TO_SP
        with pytest.raises(AlreadyProcessed):
            await workflow.forward_to_sp("CLM-2")

        assert len(backend.calls_to("POST", "/admin/claims/CLM-2/forward-to-sp")) == 1
        await audit.flush()
        outcomes = [e.outcome for e in audit_sink.by_action("claim.forward_to_sp")]
        assert outcomes == ["success", "already_processed"]

    async def test_stale_claim_view_is_classified_after_server_rejects(self, backend, store, workflow):
        backend.add_claim("CLM-3", "F1", verification_status="AI_Processed_Admin_Review")
        await login_as(store, "A1")
        stale = await workflow.fetch("CLM-3")

        # another admin decides first
        backend.claims["CLM-3"]["verificationStatus"] = "AI_Rejected_Manual_Review"

        with pytest.raises(AlreadyProcessed):
            await workflow.forward_to_sp(stale)
        assert len(backend.calls_to("POST", "/admin/claims/CLM-3/forward-to-sp")) == 1

    async def test_server_rejection_without_race_stays_illegal(self, backend, store, workflow):
        backend.add_claim("CLM-4", "F1", verification_status="AI_Processed_Admin_Review")
        await login_as(store, "A1")
        stale = await workflow.fetch("CLM-4")
        backend.claims["CLM-4"]["verificationStatus"] = None

        with pytest.raises(IllegalTransition) as exc_info:
            await workflow.forward_to_sp(stale)
        assert not isinstance(exc_info.value, AlreadyProcessed)


@pytest.mark.asyncio
class TestRejectionsBeforeNetwork:
    @pytest.mark.parametrize("reason", ["", "   "])
    async def test_override_without_reason_makes_no_call(self, backend, store, workflow, reason):
        backend.add_claim("CLM-5", "F1", status="approved")
        await login_as(store, "A1")
        calls_before = len(backend.calls)

        with pytest.raises(MissingReason):
            await workflow.admin_override("CLM-5", reason)
        assert len(backend.calls) == calls_before
        assert backend.claims["CLM-5"]["status"] == "approved"

    async def test_reject_without_reason_makes_no_call(self, backend, store, workflow):
        backend.add_claim("CLM-6", "F1", verification_status="AI_Processed_Admin_Review")
        await login_as(store, "A1")
        calls_before = len(backend.calls)

        with pytest.raises(MissingReason):
            await workflow.reject_ai_report("CLM-6", " ")
        assert len(backend.calls) == calls_before

    async def test_override_on_pending_claim(self, backend, store, workflow):
        backend.add_claim("CLM-7", "F1", status="pending")
        await login_as(store, "A1")
        with pytest.raises(IllegalTransition):
            await workflow.admin_override("CLM-7", "because")
        assert backend.calls_to("PUT", "/claims/CLM-7/admin-override") == []

    async def test_farmer_cannot_forward(self, backend, store, workflow):
        backend.add_claim("CLM-8", "F1", verification_status="AI_Processed_Admin_Review")
        await login_as(store, "F1")
        calls_before = len(backend.calls)
        with pytest.raises(Forbidden):
            await workflow.forward_to_sp("CLM-8")
        assert len(backend.calls) == calls_before

    async def test_unassigned_sp(self, backend, store, workflow):
        backend.add_claim("CLM-10", "F1", assigned_to="SP1")
        backend.add_user("SP3", "SERVICE_PROVIDER")
        await login_as(store, "SP3")
        with pytest.raises(Forbidden):
            await workflow.sp_decide("CLM-10", "rejected")
        assert backend.claims["CLM-10"]["status"] == "pending"

    async def test_anonymous_and_loading_sessions(self, backend, store, storage, workflow):
        with pytest.raises(Unauthorized):
            await workflow.forward_to_sp("CLM-1")

        await storage.save(backend.issue_token("A1"))
        backend.me_status = 500
        await store.restore()
        with pytest.raises(SessionLoading):
            await workflow.forward_to_sp("CLM-1")


@pytest.mark.asyncio
class TestAdminEditAndReads:
    async def test_admin_edit_audited_high(self, backend, store, workflow, audit, audit_sink):
        backend.add_claim("CLM-11", "F1", status="rejected", assigned_to="SP1")
        await login_as(store, "S1")

        edited = await workflow.admin_edit("CLM-11", "in_review", reason="reopen", reassign_to="SP3")
        assert edited.status is ClaimStatus.IN_REVIEW
        assert edited.assigned_to == "SP3"

        await audit.flush()
        [event] = audit_sink.by_action("claim.admin_edit")
        assert event.severity is AuditSeverity.HIGH
        assert event.actor_role == "SUPER_ADMIN"

    async def test_empty_body_returns_planned_claim(self, backend, store, workflow):
        backend.add_claim("CLM-12", "F1", verification_status="AI_Processed_Admin_Review")
        backend.empty_mutation_bodies = True
        await login_as(store, "A1")

        claim = await workflow.forward_to_sp("CLM-12", notes="n")
        assert claim.id == "CLM-12"
        assert claim.verification_status is VerificationStatus.FORWARDED_TO_SP
        assert claim.admin_notes == "n"

    async def test_try_fetch_reports_missing_claim(self, store, workflow):
        await login_as(store, "A1")
        result = await workflow.try_fetch("CLM-404")
        assert not result.is_ok
        assert isinstance(result.error, NotFound)
        with pytest.raises(NotFound):
            result.unwrap()

    async def test_ai_ready_queue(self, backend, store, workflow):
        backend.add_claim("CLM-13", "F1", verification_status="AI_Processed_Admin_Review")
        backend.add_claim("CLM-14", "F1")
        await login_as(store, "A1")
        assert [c.id for c in await workflow.list_ai_ready()] == ["CLM-13"]

    async def test_ai_ready_queue_is_admin_only(self, store, workflow):
        await login_as(store, "I1")
        with pytest.raises(Forbidden):
            await workflow.list_ai_ready()

    async def test_available_actions(self, backend, store, workflow):
        backend.add_claim("CLM-15", "F1", verification_status="AI_Processed_Admin_Review")
        await login_as(store, "A1")
        actions = await workflow.available_actions("CLM-15")
        assert ClaimAction.FORWARD_TO_SP in actions
        assert ClaimAction.ADMIN_OVERRIDE not in actions

    async def test_two_sessions_race_on_one_claim(self, backend, portal_client, audit):
        """Two admins, two stores; whoever is second gets an informational error."""
        backend.add_claim("CLM-16", "F1", verification_status="AI_Processed_Admin_Review")
        other_client = PortalClient(BASE_URL, transport=backend.transport())
        try:
            first = SessionStore(portal_client, MemoryTokenStorage(), audit)
            second = SessionStore(other_client, MemoryTokenStorage(), audit)
            await login_as(first, "A1")
            await login_as(second, "S1")

            wf1 = ClaimWorkflow(portal_client, first, audit)
            wf2 = ClaimWorkflow(other_client, second, audit)
            view = await wf2.fetch("CLM-16")
            await wf1.forward_to_sp("CLM-16")
            with pytest.raises(AlreadyProcessed) as exc_info:
                await wf2.reject_ai_report(view, "too late")
            assert exc_info.value.informational
        finally:
            await other_client.aclose()
