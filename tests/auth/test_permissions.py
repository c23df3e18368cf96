"""Tests for auth permissions."""

import pytest

from src.auth.permissions import (
    ROLE_HIERARCHY,
    UserRole,
    get_role_level,
    has_permission,
    is_admin,
    parse_role,
)
from src.auth.schemas import Identity


class TestUserRole:
    """Tests for UserRole enum."""

    def test_role_values(self) -> None:
        """Roles should have correct string values."""
        assert UserRole.USER.value == "user"
        assert UserRole.ADMIN.value == "admin"

    def test_role_hierarchy(self) -> None:
        """Roles should have correct hierarchy levels."""
        assert ROLE_HIERARCHY[UserRole.USER] == 0
        assert ROLE_HIERARCHY[UserRole.ADMIN] == 1

    def test_all_roles_have_levels(self) -> None:
        """All UserRole members should have defined levels."""
        for role in UserRole:
            assert role in ROLE_HIERARCHY


class TestParseRole:
    """Tests for parse_role function."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            (UserRole.ADMIN, UserRole.ADMIN),
            ("admin", UserRole.ADMIN),
            (" ADMIN ", UserRole.ADMIN),
            ("user", UserRole.USER),
            ("superadmin", UserRole.USER),
            ("", UserRole.USER),
            (None, UserRole.USER),
        ],
    )
    def test_parse(self, raw, expected: UserRole) -> None:
        """Unknown or missing roles should fall back to USER."""
        assert parse_role(raw) is expected


class TestGetRoleLevel:
    """Tests for get_role_level function."""

    @pytest.mark.parametrize(
        "role,expected_level",
        [
            (UserRole.USER, 0),
            (UserRole.ADMIN, 1),
            ("user", 0),
            ("admin", 1),
        ],
    )
    def test_levels(self, role, expected_level: int) -> None:
        """Should return correct level for enum and string roles."""
        assert get_role_level(role) == expected_level

    def test_invalid_role_returns_zero(self) -> None:
        """Invalid roles should return level 0."""
        assert get_role_level("invalid") == 0
        assert get_role_level("moderator") == 0


class TestHasPermission:
    """Tests for has_permission function."""

    def test_admin_has_all_permissions(self) -> None:
        """Admin should have access to all role levels."""
        assert has_permission(UserRole.ADMIN, UserRole.USER) is True
        assert has_permission(UserRole.ADMIN, UserRole.ADMIN) is True

    def test_user_permissions(self) -> None:
        """User should only have base access."""
        assert has_permission(UserRole.USER, UserRole.USER) is True
        assert has_permission(UserRole.USER, UserRole.ADMIN) is False

    def test_string_roles(self) -> None:
        """Should work with string role values."""
        assert has_permission("admin", "user") is True
        assert has_permission("user", "admin") is False


class TestIsAdmin:
    """Tests for is_admin and Identity.is_admin."""

    def test_is_admin(self) -> None:
        assert is_admin(UserRole.ADMIN) is True
        assert is_admin("admin") is True
        assert is_admin("user") is False
        assert is_admin("nonsense") is False

    def test_identity_is_admin(self) -> None:
        """Identity should expose its admin flag."""
        assert Identity(user_id="u1", role=UserRole.ADMIN).is_admin is True
        assert Identity(user_id="u1").is_admin is False
