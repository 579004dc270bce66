"""
Tests for role hierarchy resolution.
"""

import itertools

import pytest

from authz.rbac.hierarchy import highest_role, is_admin, is_super_admin, sort_roles
from authz.rbac.models import AuthorizationContext, Role


def _role(name: str, level: int) -> Role:
    return Role(id=name, name=name, display_name=name.title(), hierarchy_level=level)


class TestHighestRole:
    """Tests for highest-role selection."""

    @pytest.mark.parametrize(
        "order", list(itertools.permutations([1, 2, 4]))
    )
    def test_lowest_level_wins_regardless_of_order(self, order):
        roles = [_role(f"role_{level}", level) for level in order]
        assert highest_role(roles).hierarchy_level == 1

    def test_empty_is_none(self):
        assert highest_role([]) is None

    def test_ties_break_on_id(self):
        roles = [_role("zeta", 2), _role("alpha", 2)]
        assert highest_role(roles).name == "alpha"

    def test_sort_roles(self):
        roles = [_role("user", 4), _role("super_admin", 1), _role("admin", 2)]
        assert [r.name for r in sort_roles(roles)] == ["super_admin", "admin", "user"]

    def test_invalid_level_rejected(self):
        with pytest.raises(ValueError):
            _role("broken", 0)


class TestAdminDetection:
    """Admin bypass is decided by role name across every active role."""

    def test_primary_admin_role(self):
        assert is_admin(AuthorizationContext(user_id="u", user_role="admin")) is True

    def test_admin_held_as_secondary_role(self):
        context = AuthorizationContext(
            user_id="u", user_role="moderator", roles=frozenset({"moderator", "admin"})
        )
        assert is_admin(context) is True

    def test_plain_user_is_not_admin(self):
        context = AuthorizationContext(user_id="u", user_role="user", roles=frozenset({"user"}))
        assert is_admin(context) is False
        assert is_super_admin(context) is False

    def test_super_admin(self):
        context = AuthorizationContext(user_id="u", user_role="super_admin")
        assert is_admin(context) is True
        assert is_super_admin(context) is True

    def test_level_alone_does_not_make_admin(self):
        """A custom level-1 role is not an admin role."""
        context = AuthorizationContext(user_id="u", user_role="ops_lead")
        assert is_admin(context) is False
