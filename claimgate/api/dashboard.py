"""Dashboard entry points, one per role subtree of the route table."""

from fastapi import APIRouter, Depends

from claimgate.api.auth import session_view
from claimgate.api.deps import guard_route
from claimgate.auth.context import Session
from claimgate.auth.routes import ROUTE_TABLE

router = APIRouter(tags=["dashboard"])


def _dashboard(name: str, session: Session) -> dict:
    return {"dashboard": name, "session": session_view(session)}


@router.get("/farmer-dashboard")
async def farmer_dashboard(session: Session = Depends(guard_route)):
    return _dashboard("farmer", session)


@router.get("/admin-dashboard")
async def admin_dashboard(session: Session = Depends(guard_route)):
    return _dashboard("admin", session)


@router.get("/service-provider-dashboard")
async def service_provider_dashboard(session: Session = Depends(guard_route)):
    return _dashboard("service-provider", session)


@router.get("/insurer-dashboard")
async def insurer_dashboard(session: Session = Depends(guard_route)):
    return _dashboard("insurer", session)


@router.get("/routes")
async def route_table():
    """The portal's route table, for clients that render navigation."""
    return [
        {"prefix": rule.prefix, "requiredRoles": sorted(r.value for r in rule.required_roles)}
        for rule in ROUTE_TABLE
    ]
