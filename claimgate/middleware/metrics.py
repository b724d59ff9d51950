"""
Prometheus metrics.

The middleware records request count and latency for the portal shell,
labelled by the matched route template so claim and user ids never become
label values. The domain counters below are incremented by the session
store, the OTP flow, the gate guard, the claim workflow and the audit
drain.
"""

import time

from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

UNMATCHED_ROUTE = "unmatched"

http_requests_total = Counter(
    "claimgate_http_requests_total",
    "Portal shell requests",
    ["method", "route", "status_code"],
)
http_request_duration_seconds = Histogram(
    "claimgate_http_request_duration_seconds",
    "Portal shell request latency",
    ["method", "route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

session_events_total = Counter(
    "claimgate_session_events_total",
    "Session store operations",
    ["event", "outcome"],
)
otp_events_total = Counter(
    "claimgate_otp_events_total",
    "OTP challenge operations",
    ["event", "outcome"],
)
gate_decisions_total = Counter(
    "claimgate_gate_decisions_total",
    "Authorization gate decisions on guarded routes",
    ["decision"],
)
claim_transitions_total = Counter(
    "claimgate_claim_transitions_total",
    "Claim actions",
    ["action", "outcome"],
)
audit_delivery_failures_total = Counter(
    "claimgate_audit_delivery_failures_total",
    "Failed audit sink writes",
)
audit_queue_depth = Gauge(
    "claimgate_audit_queue_depth",
    "Audit events waiting for delivery",
)


def route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", UNMATCHED_ROUTE)


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - started

        route = route_template(request)
        http_requests_total.labels(request.method, route, response.status_code).inc()
        http_request_duration_seconds.labels(request.method, route).observe(elapsed)
        return response
