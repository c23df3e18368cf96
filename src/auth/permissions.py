"""Role-based access control for the forum.

Hierarchical permission system:
- ADMIN (level 1): may edit or delete any topic or comment, repair counters
- USER (level 0): may edit or delete only what they authored
"""

from enum import Enum


class UserRole(str, Enum):
    """User roles with hierarchical levels.

    Higher level = more permissions.
    """

    USER = "user"  # Level 0: Registered forum member
    ADMIN = "admin"  # Level 1: Forum administrator


# Role hierarchy mapping (role -> permission level)
ROLE_HIERARCHY: dict[UserRole, int] = {
    UserRole.USER: 0,
    UserRole.ADMIN: 1,
}


def parse_role(role: UserRole | str | None) -> UserRole:
    """Parse a role value, falling back to USER for unknown input."""
    if isinstance(role, UserRole):
        return role
    try:
        return UserRole((role or "").strip().lower())
    except ValueError:
        return UserRole.USER


def get_role_level(role: UserRole | str) -> int:
    """Get the permission level for a role.

    Args:
        role: UserRole enum or string representation

    Returns:
        Permission level, defaults to 0 for unknown roles
    """
    return ROLE_HIERARCHY.get(parse_role(role), 0)


def has_permission(user_role: UserRole | str, required_role: UserRole | str) -> bool:
    """Check if user has at least the required permission level.

    Examples:
        >>> has_permission(UserRole.ADMIN, UserRole.USER)
        True
        >>> has_permission("user", "admin")
        False
    """
    return get_role_level(user_role) >= get_role_level(required_role)


def is_admin(role: UserRole | str) -> bool:
    """Check if role is ADMIN."""
    return parse_role(role) is UserRole.ADMIN
