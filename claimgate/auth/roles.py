"""
Role definitions and role inheritance.

Every principal holds exactly one primary role. Inheritance is one-directional:

    SUPER_ADMIN ⊇ ADMIN

so a super-admin is admitted wherever an admin is, never the reverse.

There is also a SYSTEM role for automated producers (the AI assessment
pipeline). It is never assigned to a principal and no route admits it.
"""

from enum import Enum


class Role(str, Enum):
    FARMER = "FARMER"
    SERVICE_PROVIDER = "SERVICE_PROVIDER"
    INSURER = "INSURER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"
    SYSTEM = "SYSTEM"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().upper().replace("-", "_").replace(" ", "_")
            for member in cls:
                if member.value == normalized:
                    return member
        return None


class PrincipalStatus(str, Enum):
    ACTIVE = "active"
    BANNED = "banned"
    PENDING_APPROVAL = "pending_approval"
    REJECTED = "rejected"

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            normalized = value.strip().lower().replace("-", "_").replace(" ", "_")
            if normalized in ("pending", "under_review"):
                return cls.PENDING_APPROVAL
            for member in cls:
                if member.value == normalized:
                    return member
        return None


# ── Inheritance: role → roles it additionally acts as ──
ROLE_INHERITANCE: dict[Role, frozenset[Role]] = {
    Role.SUPER_ADMIN: frozenset({Role.ADMIN}),
}

ADMIN_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.SUPER_ADMIN})

# Roles whose self-registration waits for an admin decision
SELF_REGISTERED_ROLES: frozenset[Role] = frozenset({Role.SERVICE_PROVIDER, Role.INSURER})


def effective_roles(role: Role) -> frozenset[Role]:
    """The role itself plus every role it inherits."""
    return frozenset({role}) | ROLE_INHERITANCE.get(role, frozenset())


# ── Principal status transitions (admin-only) ──
STATUS_TRANSITIONS: dict[PrincipalStatus, set[PrincipalStatus]] = {
    PrincipalStatus.PENDING_APPROVAL: {PrincipalStatus.ACTIVE, PrincipalStatus.REJECTED},
    PrincipalStatus.ACTIVE: {PrincipalStatus.BANNED},
    PrincipalStatus.BANNED: {PrincipalStatus.ACTIVE},
    PrincipalStatus.REJECTED: set(),  # terminal
}
