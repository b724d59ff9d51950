"""Tests for the authorization gate, role inheritance and the route table."""

import pytest

from claimgate.auth.context import ANONYMOUS, Session
from claimgate.auth.gate import Decision, decide, decide_path, redirect_target
from claimgate.auth.roles import Role, effective_roles
from claimgate.auth.routes import required_roles_for
from claimgate.errors import SessionLoading
from claimgate.models.principal import Principal


def session_for(role: Role, user_id: str = "u1") -> Session:
    return Session(token="tok", principal=Principal(id=user_id, role=role), fresh=True)


# ── Role inheritance ─────────────────────────────────────────────────────────

class TestEffectiveRoles:
    def test_super_admin_acts_as_admin(self):
        assert effective_roles(Role.SUPER_ADMIN) == {Role.SUPER_ADMIN, Role.ADMIN}

    def test_admin_does_not_act_as_super_admin(self):
        assert effective_roles(Role.ADMIN) == {Role.ADMIN}

    @pytest.mark.parametrize("role", [Role.FARMER, Role.SERVICE_PROVIDER, Role.INSURER])
    def test_other_roles_inherit_nothing(self, role):
        assert effective_roles(role) == {role}


# ── decide() ─────────────────────────────────────────────────────────────────

class TestDecide:
    @pytest.mark.parametrize("role", [r for r in Role if r is not Role.SYSTEM])
    def test_admin_requirement_admits_exactly_admins(self, role):
        expected = Decision.ALLOW if role in (Role.ADMIN, Role.SUPER_ADMIN) else Decision.REDIRECT_FORBIDDEN
        assert decide(session_for(role), {Role.ADMIN}) is expected

    @pytest.mark.parametrize("required", [set(), {Role.FARMER}, {Role.ADMIN, Role.INSURER}])
    def test_anonymous_is_sent_to_login(self, required):
        assert decide(ANONYMOUS, required) is Decision.REDIRECT_UNAUTHENTICATED

    def test_loading_session_cannot_be_decided(self):
        loading = Session(token="tok")
        assert loading.is_loading
        with pytest.raises(SessionLoading):
            decide(loading, {Role.FARMER})

    def test_empty_requirement_forbids_everyone_signed_in(self):
        assert decide(session_for(Role.SUPER_ADMIN), set()) is Decision.REDIRECT_FORBIDDEN

    def test_stale_principal_still_decides(self):
        stale = Session(token="tok", principal=Principal(id="f", role=Role.FARMER), fresh=False)
        assert decide(stale, {Role.FARMER}) is Decision.ALLOW


# ── Route table ──────────────────────────────────────────────────────────────

class TestRouteTable:
    def test_prefixes(self):
        assert required_roles_for("/farmer-dashboard") == {Role.FARMER}
        assert required_roles_for("/admin-dashboard/claims/CLM-1") == {Role.ADMIN}
        assert required_roles_for("/service-provider-dashboard/") == {Role.SERVICE_PROVIDER}
        assert required_roles_for("/insurer-dashboard/claims/x") == {Role.INSURER}

    def test_prefix_must_match_a_whole_segment(self):
        assert required_roles_for("/admin-dashboardx") is None

    def test_unlisted_paths_are_public(self):
        assert required_roles_for("/") is None
        assert required_roles_for("/login") is None
        assert decide_path(ANONYMOUS, "/login") is Decision.ALLOW

    def test_super_admin_reaches_admin_subtree(self):
        assert decide_path(session_for(Role.SUPER_ADMIN), "/admin-dashboard/users") is Decision.ALLOW

    def test_farmer_is_kept_out_of_admin_subtree(self):
        assert decide_path(session_for(Role.FARMER), "/admin-dashboard") is Decision.REDIRECT_FORBIDDEN

    def test_redirect_targets(self):
        assert redirect_target(Decision.REDIRECT_UNAUTHENTICATED) == "/login"
        assert redirect_target(Decision.REDIRECT_FORBIDDEN) == "/"
        assert redirect_target(Decision.ALLOW) is None


class TestSession:
    def test_repr_never_shows_token(self):
        session = Session(token="super-secret-token", principal=Principal(id="a", role=Role.ADMIN))
        assert "super-secret-token" not in repr(session)
        assert "ADMIN:a" in repr(session)

    def test_principal_parses_wire_profile(self):
        principal = Principal.model_validate(
            {"_id": 42, "role": "service_provider", "isApproved": False, "mobileNumber": "1"}
        )
        assert principal.id == "42"
        assert principal.role is Role.SERVICE_PROVIDER
        assert principal.status.value == "pending_approval"
        assert principal.mobile_number == "1"
