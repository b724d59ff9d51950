"""Tests for the OTP challenge flow: shape checks, cooldown, expiry, single use."""

import asyncio

import pytest

from claimgate.auth.roles import Role
from claimgate.errors import CooldownActive, Expired, InvalidCode, InvalidMobile
from claimgate.services.otp_flow import ChallengeFlow, ChallengeState
from conftest import FARMER_MOBILE


@pytest.fixture
def flow(portal_client, store, audit, clock) -> ChallengeFlow:
    return ChallengeFlow(portal_client, store, audit, clock=clock)


@pytest.mark.asyncio
class TestRequest:
    @pytest.mark.parametrize("mobile", ["", "12345", "98765432101", "98765abc10"])
    async def test_malformed_number_rejected_locally(self, flow, backend, mobile):
        with pytest.raises(InvalidMobile):
            await flow.request(mobile)
        assert backend.calls_to("POST", "/auth/send-otp") == []
        assert flow.state is ChallengeState.IDLE

    async def test_unknown_number(self, flow):
        with pytest.raises(InvalidMobile):
            await flow.request("1112223334")
        assert flow.state is ChallengeState.IDLE

    async def test_request_starts_full_cooldown(self, flow):
        assert await flow.request(FARMER_MOBILE) is ChallengeState.SENT
        assert flow.cooldown_remaining == 120

    async def test_second_request_during_cooldown(self, flow, backend, clock):
        await flow.request(FARMER_MOBILE)
        clock.advance(30)

        with pytest.raises(CooldownActive) as exc_info:
            await flow.request(FARMER_MOBILE)
        assert exc_info.value.remaining_seconds == 90
        assert len(backend.calls_to("POST", "/auth/send-otp")) == 1


@pytest.mark.asyncio
class TestResend:
    async def test_resend_before_any_request(self, flow):
        with pytest.raises(InvalidMobile):
            await flow.resend()

    async def test_resend_during_cooldown(self, flow, clock):
        await flow.request(FARMER_MOBILE)
        clock.advance(119.5)
        with pytest.raises(CooldownActive) as exc_info:
            await flow.resend()
        assert exc_info.value.remaining_seconds == 1

    async def test_resend_resets_cooldown_to_full_window(self, flow, backend, clock):
        await flow.request(FARMER_MOBILE)
        clock.advance(120)
        assert flow.cooldown_remaining == 0

        await flow.resend()
        assert flow.cooldown_remaining == 120
        assert len(backend.calls_to("POST", "/auth/send-otp")) == 2

    async def test_failed_resend_still_resets_cooldown(self, flow, backend, clock):
        await flow.request(FARMER_MOBILE)
        clock.advance(120)
        backend.users["F1"]["mobileNumber"] = None

        with pytest.raises(InvalidMobile):
            await flow.resend()
        assert flow.cooldown_remaining == 120


@pytest.mark.asyncio
class TestVerify:
    async def test_success_finalizes_session(self, flow, store):
        await flow.request(FARMER_MOBILE)
        session = await flow.verify("123456")

        assert flow.state is ChallengeState.VERIFIED
        assert session.is_authenticated
        assert session.principal.role is Role.FARMER
        assert store.principal.id == "F1"

    async def test_challenge_is_single_use(self, flow):
        await flow.request(FARMER_MOBILE)
        await flow.verify("123456")
        with pytest.raises(Expired):
            await flow.verify("123456")

    async def test_wrong_code_keeps_challenge_open(self, flow, backend, clock):
        await flow.request(FARMER_MOBILE)
        clock.advance(10)
        with pytest.raises(InvalidCode):
            await flow.verify("000000")
        assert flow.state is ChallengeState.SENT
        assert flow.cooldown_remaining == 110

        # the cooldown still blocks a new send
        clock.advance(1)
        with pytest.raises(CooldownActive):
            await flow.request(FARMER_MOBILE)
        assert len(backend.calls_to("POST", "/auth/send-otp")) == 1

        session = await flow.verify("123456")
        assert session.is_authenticated

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "12a456"])
    async def test_malformed_code_rejected_locally(self, flow, backend, code):
        await flow.request(FARMER_MOBILE)
        with pytest.raises(InvalidCode):
            await flow.verify(code)
        assert backend.calls_to("POST", "/auth/verify-otp") == []

    async def test_verify_after_window_expires(self, flow, backend, clock):
        await flow.request(FARMER_MOBILE)
        clock.advance(121)

        with pytest.raises(Expired):
            await flow.verify("123456")
        assert backend.calls_to("POST", "/auth/verify-otp") == []
        assert flow.state is ChallengeState.IDLE

        # a fresh request is allowed straight away
        assert await flow.request(FARMER_MOBILE) is ChallengeState.SENT

    async def test_server_rejection_is_an_invalid_code(self, flow, backend):
        await flow.request(FARMER_MOBILE)
        backend.expired_otps.add(FARMER_MOBILE)
        with pytest.raises(InvalidCode) as exc_info:
            await flow.verify("123456")
        assert not isinstance(exc_info.value, Expired)
        assert flow.state is ChallengeState.SENT
        assert flow.cooldown_remaining == 120

    async def test_verify_without_request(self, flow):
        with pytest.raises(Expired):
            await flow.verify("123456")


@pytest.mark.asyncio
class TestCountdownAndAudit:
    async def test_ticker_runs_and_is_cancelled_on_close(self, portal_client, store, audit, clock):
        ticks: list[int] = []
        flow = ChallengeFlow(portal_client, store, audit, clock=clock, on_tick=ticks.append)

        await flow.request(FARMER_MOBILE)
        task = flow._ticker
        await asyncio.sleep(0)
        assert ticks == [120]

        flow.close()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert flow.state is ChallengeState.IDLE

    async def test_events_carry_masked_mobile(self, flow, audit, audit_sink):
        await flow.request(FARMER_MOBILE)
        with pytest.raises(InvalidCode):
            await flow.verify("000000")
        await audit.flush()

        [request_event] = audit_sink.by_action("otp.request")
        [verify_event] = audit_sink.by_action("otp.verify")
        assert request_event.outcome == "success"
        assert verify_event.outcome == "invalid_code"
        for event in (request_event, verify_event):
            assert FARMER_MOBILE not in str(event.to_dict())
            assert event.actor_id.endswith("3210")
