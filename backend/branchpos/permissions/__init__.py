# Overview: Fixed roles and the permissions they carry.

from .definitions import PERMISSIONS
from .roles import Role, DEFAULT_ROLE_PERMISSIONS, MANAGER_ASSIGNABLE_ROLES
from .helpers import get_role_permissions, role_has_permission

__all__ = [
    "PERMISSIONS",
    "Role",
    "DEFAULT_ROLE_PERMISSIONS",
    "MANAGER_ASSIGNABLE_ROLES",
    "get_role_permissions",
    "role_has_permission",
]
