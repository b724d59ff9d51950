"""
Route table — which role set guards each protected subtree of the portal.

Each entry is a path prefix. A path not covered by any prefix is public.
This is the canonical definition of "which doors need which badge";
screens never test roles themselves, they go through the gate with the
requirement looked up here.
"""

from dataclasses import dataclass

from claimgate.auth.roles import Role


@dataclass(frozen=True)
class RouteRule:
    prefix: str
    required_roles: frozenset[Role]

    def matches(self, path: str) -> bool:
        return path == self.prefix or path.startswith(self.prefix + "/")


ROUTE_TABLE: tuple[RouteRule, ...] = (
    RouteRule("/farmer-dashboard", frozenset({Role.FARMER})),
    RouteRule("/admin-dashboard", frozenset({Role.ADMIN})),        # SUPER_ADMIN inherits
    RouteRule("/service-provider-dashboard", frozenset({Role.SERVICE_PROVIDER})),
    RouteRule("/insurer-dashboard", frozenset({Role.INSURER})),
)


def required_roles_for(path: str) -> frozenset[Role] | None:
    """Role set guarding `path`, or None when the path is public."""
    normalized = "/" + path.strip("/")
    for rule in ROUTE_TABLE:
        if rule.matches(normalized):
            return rule.required_roles
    return None
