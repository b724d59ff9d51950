from claimgate.auth.roles import Role, PrincipalStatus, ROLE_INHERITANCE, effective_roles
from claimgate.auth.routes import ROUTE_TABLE, RouteRule, required_roles_for

__all__ = [
    "Role", "PrincipalStatus", "ROLE_INHERITANCE", "effective_roles",
    "ROUTE_TABLE", "RouteRule", "required_roles_for",
]
