"""
Role and action definitions.

WHY: Authorization used to be an ad-hoc role comparison inside every
handler. All checks now go through `allows(role, action)`, which knows
nothing about HTTP and can be called from routes, CLI or services alike.

DESIGN PRINCIPLES:
- Three tiers: ADMIN > MANAGER > CASHIER
- Each action declares the minimum tier that may perform it
- A higher tier inherits everything a lower tier may do
- Unknown roles and unknown actions are denied
"""

# =============================================================================
# ROLES
# =============================================================================

class Role:
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    CASHIER = "CASHIER"


ROLE_RANK = {
    Role.CASHIER: 1,
    Role.MANAGER: 2,
    Role.ADMIN: 3,
}

ALL_ROLES = tuple(ROLE_RANK)


# =============================================================================
# ACTIONS
# =============================================================================

# Each action is defined as: code -> minimum role
ACTION_MIN_ROLE = {
    # Catalog
    "VIEW_PRODUCTS": Role.CASHIER,
    "MANAGE_PRODUCTS": Role.MANAGER,
    "DELETE_PRODUCT": Role.ADMIN,
    "VIEW_CATEGORIES": Role.CASHIER,
    "MANAGE_CATEGORIES": Role.MANAGER,
    "DELETE_CATEGORY": Role.ADMIN,

    # Customers
    "VIEW_CUSTOMERS": Role.CASHIER,
    "MANAGE_CUSTOMERS": Role.CASHIER,
    "DELETE_CUSTOMER": Role.ADMIN,

    # Invoicing
    "VIEW_INVOICES": Role.CASHIER,
    "CREATE_INVOICE": Role.CASHIER,
    "UPDATE_INVOICE": Role.ADMIN,
    "VOID_INVOICE": Role.ADMIN,

    # Returns
    "VIEW_RETURNS": Role.CASHIER,
    "CREATE_RETURN": Role.MANAGER,
    "COMPLETE_RETURN": Role.MANAGER,

    # Reporting
    "VIEW_REPORTS": Role.MANAGER,

    # System
    "VIEW_SETTINGS": Role.CASHIER,
    "MANAGE_SETTINGS": Role.ADMIN,
    "VIEW_ACTIVITY_LOG": Role.ADMIN,
}


def normalize_role(role: str | None) -> str | None:
    if role is None:
        return None
    value = str(role).strip().upper()
    return value if value in ROLE_RANK else None


def role_at_least(role: str | None, minimum: str) -> bool:
    role = normalize_role(role)
    if role is None:
        return False
    return ROLE_RANK[role] >= ROLE_RANK[minimum]


def allows(role: str | None, action: str) -> bool:
    """Single policy decision: may `role` perform `action`?"""
    minimum = ACTION_MIN_ROLE.get(action)
    if minimum is None:
        return False
    return role_at_least(role, minimum)


def actions_for_role(role: str | None) -> list[str]:
    return sorted(code for code in ACTION_MIN_ROLE if allows(role, code))
