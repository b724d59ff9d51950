"""
Audit Service — ClaimGate

Hash-chained audit trail for every state-changing action:
session acquire/release, OTP request/resend/verify, claim transitions and
registration decisions.

Emission is fire-and-forget for the caller: `emit()` builds and chains the
event, queues it, and returns immediately. A background task drains the
queue into the sink in order. A failing sink is retried with linear backoff;
once the attempt budget is spent the remaining events stay queued for the
next `flush()`. Nothing is dropped.
"""

import asyncio
import hashlib
import json
import logging
from collections import deque
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol
from uuid import uuid4

import redis.asyncio as aioredis

from claimgate.config import settings
from claimgate.middleware.metrics import audit_delivery_failures_total, audit_queue_depth

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("claimgate.audit")

SUCCESS = "success"


class AuditSeverity(str, Enum):
    INFO = "info"          # session, OTP, registration review
    NOTICE = "notice"      # structured claim transitions
    HIGH = "high"          # admin-edit escape hatch


@dataclass(frozen=True)
class AuditEvent:
    event_id: str
    actor_id: str
    actor_role: str | None
    action: str
    subject_type: str
    subject_id: str | None
    timestamp: str
    outcome: str
    severity: AuditSeverity = AuditSeverity.INFO
    details: dict[str, Any] = field(default_factory=dict)
    changes: dict[str, Any] = field(default_factory=dict)
    previous_hash: str | None = None
    current_hash: str = ""

    def content(self) -> dict[str, Any]:
        """The hashed part of the event."""
        return {
            "event_id": self.event_id,
            "actor_id": self.actor_id,
            "actor_role": self.actor_role,
            "action": self.action,
            "subject_type": self.subject_type,
            "subject_id": self.subject_id,
            "timestamp": self.timestamp,
            "outcome": self.outcome,
            "severity": self.severity.value,
            "details": self.details,
            "changes": self.changes,
        }

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["severity"] = self.severity.value
        return data


def calculate_hash(content: dict, previous_hash: str | None) -> str:
    """SHA-256 of entry contents + previous hash."""
    payload = {
        "content": content,
        "previous_hash": previous_hash or "",
    }
    raw = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(raw.encode()).hexdigest()


def verify_chain_integrity(events: list[AuditEvent]) -> dict:
    """Walk a chain in emission order and verify each entry's hash."""
    if not events:
        return {"valid": True, "entries_checked": 0, "first_invalid": None}

    for i, event in enumerate(events):
        expected_prev = events[i - 1].current_hash if i > 0 else None
        if event.previous_hash != expected_prev:
            return {
                "valid": False,
                "entries_checked": i + 1,
                "first_invalid": event.event_id,
                "reason": "previous_hash mismatch",
            }

        expected_hash = calculate_hash(event.content(), event.previous_hash)
        if event.current_hash != expected_hash:
            return {
                "valid": False,
                "entries_checked": i + 1,
                "first_invalid": event.event_id,
                "reason": "current_hash mismatch (data tampered)",
            }

    return {"valid": True, "entries_checked": len(events), "first_invalid": None}


# ── Sinks ────────────────────────────────────────────────────────────────────

class AuditSink(Protocol):
    async def write(self, event: AuditEvent) -> None: ...


class InMemoryAuditSink:
    """Append-only list; used by tests and local development."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def write(self, event: AuditEvent) -> None:
        self.events.append(event)

    def by_action(self, action: str) -> list[AuditEvent]:
        return [e for e in self.events if e.action == action]


class LoggingAuditSink:
    """One structured log line per event on the `claimgate.audit` logger."""

    async def write(self, event: AuditEvent) -> None:
        level = logging.WARNING if event.severity is AuditSeverity.HIGH else logging.INFO
        audit_logger.log(
            level,
            "%s %s on %s/%s: %s",
            event.actor_id, event.action, event.subject_type, event.subject_id, event.outcome,
            extra={"audit_event": event.to_dict()},
        )


class RedisStreamAuditSink:
    """Append each event to a Redis stream (XADD)."""

    def __init__(self, redis_url: str | None = None, stream: str | None = None):
        self.redis_url = redis_url or settings.redis_url
        self.stream = stream or settings.audit_stream
        self._redis: aioredis.Redis | None = None

    async def _get_redis(self) -> aioredis.Redis:
        if self._redis is None:
            self._redis = aioredis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    async def write(self, event: AuditEvent) -> None:
        r = await self._get_redis()
        await r.xadd(self.stream, {"event": json.dumps(event.to_dict(), default=str)})

    async def aclose(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None


def build_sink(kind: str | None = None) -> AuditSink:
    kind = kind or settings.audit_sink
    if kind == "memory":
        return InMemoryAuditSink()
    if kind == "redis":
        return RedisStreamAuditSink()
    if kind == "log":
        return LoggingAuditSink()
    raise ValueError(f"Unknown audit sink: {kind}")


# ── Emitter ──────────────────────────────────────────────────────────────────

class AuditService:
    """Builds, chains and delivers audit events."""

    def __init__(
        self,
        sink: AuditSink | None = None,
        *,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
    ):
        self.sink = sink if sink is not None else build_sink()
        self.max_attempts = max_attempts or settings.audit_max_attempts
        self.retry_delay = (
            retry_delay if retry_delay is not None else settings.audit_retry_delay_seconds
        )
        self._pending: deque[AuditEvent] = deque()
        self._previous_hash: str | None = None
        self._drain_task: asyncio.Task | None = None

    @property
    def pending(self) -> int:
        return len(self._pending)

    def emit(
        self,
        *,
        actor_id: str,
        actor_role: str | None,
        action: str,
        subject_type: str,
        subject_id: str | None,
        outcome: str = SUCCESS,
        severity: AuditSeverity = AuditSeverity.INFO,
        details: dict | None = None,
        changes: dict | None = None,
    ) -> AuditEvent:
        """Queue an event for delivery and return it. Never raises on sink trouble."""
        draft = AuditEvent(
            event_id=str(uuid4()),
            actor_id=actor_id,
            actor_role=actor_role,
            action=action,
            subject_type=subject_type,
            subject_id=subject_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
            outcome=outcome,
            severity=severity,
            details=details or {},
            changes=changes or {},
            previous_hash=self._previous_hash,
        )
        event = replace(draft, current_hash=calculate_hash(draft.content(), self._previous_hash))
        self._previous_hash = event.current_hash

        self._pending.append(event)
        audit_queue_depth.set(len(self._pending))
        self._schedule_drain()
        return event

    def _schedule_drain(self) -> None:
        if self._drain_task is not None and not self._drain_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the event waits for the next flush()
            return
        self._drain_task = loop.create_task(self._drain())

    async def _drain(self) -> None:
        attempts = 0
        while self._pending:
            event = self._pending[0]
            try:
                await self.sink.write(event)
            except Exception as exc:
                attempts += 1
                audit_delivery_failures_total.inc()
                if attempts >= self.max_attempts:
                    logger.error(
                        "Audit sink failed %d times (%s); %d event(s) left queued",
                        attempts, exc, len(self._pending),
                    )
                    return
                logger.warning("Audit sink write failed (attempt %d): %s", attempts, exc)
                await asyncio.sleep(self.retry_delay * attempts)
                continue

            self._pending.popleft()
            audit_queue_depth.set(len(self._pending))
            attempts = 0

    async def flush(self) -> int:
        """Deliver everything queued; returns how many events are still pending."""
        if self._drain_task is not None and not self._drain_task.done():
            await self._drain_task
        if self._pending:
            self._drain_task = asyncio.get_running_loop().create_task(self._drain())
            await self._drain_task
        return len(self._pending)

    async def aclose(self) -> None:
        remaining = await self.flush()
        if remaining:
            logger.error("Shutting down with %d undelivered audit event(s)", remaining)
            # last resort: the events survive in the process log
            for event in self._pending:
                audit_logger.error(
                    "undelivered audit event %s", event.event_id,
                    extra={"audit_event": event.to_dict()},
                )
        close = getattr(self.sink, "aclose", None)
        if close is not None:
            await close()
