"""
Session — the "who is signed in, and how sure are we" snapshot.

A Session carries:
- token: the bearer token issued by the portal API (None = anonymous)
- principal: the hydrated profile for that token
- fresh: False when the principal came from a fallback profile or a
  failed re-hydration, i.e. role/name may be stale

A token without a principal is *loading*: not anonymous, not
authenticated. Route guards must wait rather than decide.
"""

from __future__ import annotations

from dataclasses import dataclass

from claimgate.auth.roles import Role, effective_roles
from claimgate.models.principal import Principal


@dataclass(frozen=True)
class Session:
    token: str | None = None
    principal: Principal | None = None
    fresh: bool = False

    @property
    def is_loading(self) -> bool:
        return self.token is not None and self.principal is None

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None and self.principal is not None

    @property
    def roles(self) -> frozenset[Role]:
        if self.principal is None:
            return frozenset()
        return effective_roles(self.principal.role)

    @property
    def actor(self) -> str:
        """Identity string for audit logging."""
        return self.principal.actor if self.principal else "anonymous"

    def __repr__(self) -> str:
        # never print the token
        state = "loading" if self.is_loading else (
            "authenticated" if self.is_authenticated else "anonymous"
        )
        return f"Session({state}, actor={self.actor!r}, fresh={self.fresh})"


ANONYMOUS = Session()
