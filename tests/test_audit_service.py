"""Tests for audit emission: hash chain, retrying delivery, sinks."""

import logging
from dataclasses import replace

import pytest

from claimgate.services.audit_service import (
    AuditEvent,
    AuditService,
    AuditSeverity,
    InMemoryAuditSink,
    LoggingAuditSink,
    RedisStreamAuditSink,
    build_sink,
    verify_chain_integrity,
)


class FlakySink(InMemoryAuditSink):
    """Fails the first `failures` writes, then behaves."""

    def __init__(self, failures: int):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    async def write(self, event: AuditEvent) -> None:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("sink unavailable")
        await super().write(event)


class FakeRedis:
    def __init__(self):
        self.streams: dict[str, list[dict]] = {}
        self.closed = False

    async def xadd(self, stream: str, fields: dict) -> str:
        self.streams.setdefault(stream, []).append(fields)
        return f"{len(self.streams[stream])}-0"

    async def aclose(self) -> None:
        self.closed = True


def emit(service: AuditService, action: str, **kwargs) -> AuditEvent:
    return service.emit(
        actor_id="A1", actor_role="ADMIN", action=action,
        subject_type="claim", subject_id="CLM-1", **kwargs,
    )


@pytest.mark.asyncio
class TestChain:
    async def test_events_are_chained(self):
        sink = InMemoryAuditSink()
        service = AuditService(sink, retry_delay=0)
        first = emit(service, "claim.forward_to_sp")
        second = emit(service, "claim.admin_override", details={"reason": "fraud"})

        assert first.previous_hash is None
        assert second.previous_hash == first.current_hash
        assert await service.flush() == 0
        assert verify_chain_integrity(sink.events)["valid"]

    async def test_tampering_is_detected(self):
        sink = InMemoryAuditSink()
        service = AuditService(sink, retry_delay=0)
        emit(service, "claim.forward_to_sp")
        emit(service, "claim.sp_decide")
        await service.flush()

        tampered = [sink.events[0], replace(sink.events[1], outcome="forbidden")]
        result = verify_chain_integrity(tampered)
        assert not result["valid"]
        assert result["first_invalid"] == sink.events[1].event_id

    async def test_empty_chain_is_valid(self):
        assert verify_chain_integrity([]) == {
            "valid": True, "entries_checked": 0, "first_invalid": None,
        }


@pytest.mark.asyncio
class TestDelivery:
    async def test_transient_failure_is_retried(self):
        sink = FlakySink(failures=2)
        service = AuditService(sink, max_attempts=5, retry_delay=0)
        emit(service, "session.acquire")

        assert await service.flush() == 0
        assert sink.attempts == 3
        assert len(sink.events) == 1

    async def test_exhausted_retries_keep_events_queued_in_order(self):
        sink = FlakySink(failures=100)
        service = AuditService(sink, max_attempts=2, retry_delay=0)
        events = [emit(service, f"claim.step{i}") for i in range(3)]

        assert await service.flush() == 3
        assert service.pending == 3

        sink.failures = 0
        assert await service.flush() == 0
        assert [e.event_id for e in sink.events] == [e.event_id for e in events]
        assert verify_chain_integrity(sink.events)["valid"]

    async def test_emit_returns_before_delivery(self):
        sink = FlakySink(failures=100)
        service = AuditService(sink, max_attempts=1, retry_delay=0)
        event = emit(service, "otp.request", severity=AuditSeverity.INFO)
        assert event.outcome == "success"
        assert service.pending == 1
        assert await service.flush() == 1

    async def test_close_logs_undelivered_events(self, caplog):
        sink = FlakySink(failures=100)
        service = AuditService(sink, max_attempts=1, retry_delay=0)
        event = emit(service, "claim.admin_edit", severity=AuditSeverity.HIGH)

        with caplog.at_level(logging.ERROR, logger="claimgate.audit"):
            await service.aclose()
        assert any(event.event_id in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
class TestSinks:
    async def test_logging_sink_raises_level_for_high_severity(self, caplog):
        service = AuditService(LoggingAuditSink(), retry_delay=0)
        emit(service, "claim.admin_edit", severity=AuditSeverity.HIGH)
        emit(service, "claim.forward_to_sp", severity=AuditSeverity.NOTICE)

        with caplog.at_level(logging.INFO, logger="claimgate.audit"):
            await service.flush()
        levels = {r.getMessage().split()[1]: r.levelno for r in caplog.records}
        assert levels["claim.admin_edit"] == logging.WARNING
        assert levels["claim.forward_to_sp"] == logging.INFO
        assert all(hasattr(r, "audit_event") for r in caplog.records)

    async def test_redis_stream_sink(self):
        sink = RedisStreamAuditSink(stream="test:audit")
        fake = FakeRedis()
        sink._redis = fake
        service = AuditService(sink, retry_delay=0)
        event = emit(service, "registration.approve")

        await service.aclose()
        [entry] = fake.streams["test:audit"]
        assert event.event_id in entry["event"]
        assert fake.closed


def test_build_sink():
    assert isinstance(build_sink("memory"), InMemoryAuditSink)
    assert isinstance(build_sink("log"), LoggingAuditSink)
    with pytest.raises(ValueError):
        build_sink("kafka")
