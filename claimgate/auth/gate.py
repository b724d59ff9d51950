"""
Authorization Gate — the single decision function for every protected
navigation and action.

    decide(session, required_roles) → ALLOW | REDIRECT_UNAUTHENTICATED | REDIRECT_FORBIDDEN

1. A loading session is a precondition violation (SessionLoading): render a
   loading state and ask again once hydration settles.
2. No principal → REDIRECT_UNAUTHENTICATED.
3. Effective roles = the principal's role plus what it inherits.
4. Any overlap with the required set → ALLOW, otherwise REDIRECT_FORBIDDEN.

Forbidden-but-authenticated users are sent to the public entry point, not
to an error page.
"""

from collections.abc import Iterable
from enum import Enum

from claimgate.auth.context import Session
from claimgate.auth.roles import Role
from claimgate.auth.routes import required_roles_for
from claimgate.config import settings
from claimgate.errors import SessionLoading


class Decision(str, Enum):
    ALLOW = "allow"
    REDIRECT_UNAUTHENTICATED = "redirect_unauthenticated"
    REDIRECT_FORBIDDEN = "redirect_forbidden"


def decide(session: Session, required_roles: Iterable[Role]) -> Decision:
    if session.is_loading:
        raise SessionLoading()
    if session.principal is None:
        return Decision.REDIRECT_UNAUTHENTICATED
    if session.roles & frozenset(required_roles):
        return Decision.ALLOW
    return Decision.REDIRECT_FORBIDDEN


def decide_path(session: Session, path: str) -> Decision:
    """Decide for a portal path using the route table; public paths always pass."""
    required = required_roles_for(path)
    if required is None:
        return Decision.ALLOW
    return decide(session, required)


def redirect_target(decision: Decision) -> str | None:
    """Where a denied caller is sent, or None when allowed."""
    if decision is Decision.REDIRECT_UNAUTHENTICATED:
        return settings.login_path
    if decision is Decision.REDIRECT_FORBIDDEN:
        return settings.public_path
    return None
