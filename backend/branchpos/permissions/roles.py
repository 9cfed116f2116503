# Overview: The fixed staff role set and the permissions each role carries.

import enum

from .definitions import PERMISSIONS


class Role(str, enum.Enum):
    """Staff roles. The set is fixed; businesses cannot define their own."""
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    ACCOUNTANT = "ACCOUNTANT"
    CASHIER = "CASHIER"
    STAFF = "STAFF"

    @classmethod
    def parse(cls, value) -> "Role":
        """Accept a Role or a case-insensitive role name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().upper())
            except ValueError:
                pass
        raise ValueError(f"Unknown role: {value!r}")


DEFAULT_ROLE_PERMISSIONS = {
    # Owner gets everything
    Role.OWNER: set(PERMISSIONS),
    Role.MANAGER: {
        "VIEW_INVENTORY",
        "MANAGE_PRODUCTS",
        "RECEIVE_STOCK",
        "PROCESS_SALE",
        "VIEW_SALES",
        "VIEW_REPORTS",
        "VIEW_COGS",
        "VIEW_STAFF",
        "MANAGE_STAFF",
        "VIEW_BRANCHES",
        "MANAGE_BRANCHES",
    },
    # Read-only across the whole business
    Role.ACCOUNTANT: {
        "VIEW_INVENTORY",
        "VIEW_SALES",
        "VIEW_REPORTS",
        "VIEW_COGS",
        "VIEW_STAFF",
        "VIEW_BRANCHES",
    },
    Role.CASHIER: {
        "VIEW_INVENTORY",
        "PROCESS_SALE",
        "VIEW_SALES",
        "VIEW_REPORTS",
    },
    Role.STAFF: {
        "VIEW_INVENTORY",
        "PROCESS_SALE",
        "VIEW_SALES",
        "VIEW_REPORTS",
    },
}

# Roles a manager may hand out when creating or reassigning staff
MANAGER_ASSIGNABLE_ROLES = frozenset({Role.CASHIER, Role.STAFF})
