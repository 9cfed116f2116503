# Overview: Role to permission lookups.

from .roles import DEFAULT_ROLE_PERMISSIONS, Role


def get_role_permissions(role) -> set[str]:
    """Permission codes held by a role (empty for unknown roles)."""
    try:
        return set(DEFAULT_ROLE_PERMISSIONS.get(Role.parse(role), set()))
    except ValueError:
        return set()


def role_has_permission(role, code: str) -> bool:
    return code in get_role_permissions(role)
