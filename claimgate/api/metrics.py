"""
Prometheus metrics endpoint.

GET /metrics in text exposition format: HTTP traffic of the portal shell
plus the session, OTP, claim-transition and audit-delivery counters.
"""

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["metrics"])


@router.get("/metrics")
async def prometheus_metrics():
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
