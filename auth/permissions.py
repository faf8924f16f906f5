"""
auth/permissions.py -- Roles, permissions, and the role -> permission matrix.

The matrix below IS the authorization contract. It is declared once,
cumulatively, so the strict superset chain

    order_viewer < business_processing < website_admin

holds by construction rather than by keeping three lists in sync. Route code
never compares role strings; it asks allows(role, permission).

allows() is total and pure: any (role, permission) pair has an answer, and
anything it does not recognise -- an unknown role, a misspelt permission
string -- is denied.

Layer rule: no imports from api/, audit/, or catalog/.
"""

from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    ORDER_VIEWER = "order_viewer"
    BUSINESS_PROCESSING = "business_processing"
    WEBSITE_ADMIN = "website_admin"
    # Carried by customer session tokens only; never stored in admin_users.
    CUSTOMER = "customer"


ADMIN_ROLES: frozenset[Role] = frozenset({Role.ORDER_VIEWER, Role.BUSINESS_PROCESSING, Role.WEBSITE_ADMIN})


class Permission(str, Enum):
    # Orders
    VIEW_OWN_ORDERS = "view_own_orders"
    VIEW_ALL_ORDERS = "view_all_orders"
    UPDATE_ORDER_STATUS = "update_order_status"

    # Products
    VIEW_PRODUCTS = "view_products"
    CREATE_PRODUCTS = "create_products"
    EDIT_PRODUCTS = "edit_products"
    DELETE_PRODUCTS = "delete_products"

    # Media
    VIEW_MEDIA = "view_media"
    UPLOAD_MEDIA = "upload_media"
    DELETE_MEDIA = "delete_media"

    # Settings
    VIEW_SETTINGS = "view_settings"
    EDIT_SETTINGS = "edit_settings"

    # Users
    VIEW_USERS = "view_users"
    MANAGE_USERS = "manage_users"

    # Audit
    VIEW_AUDIT_LOGS = "view_audit_logs"

    # Discounts and gift cards
    MANAGE_DISCOUNTS = "manage_discounts"
    VIEW_GIFT_CARDS = "view_gift_cards"
    MANAGE_GIFT_CARDS = "manage_gift_cards"


# ---------------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------------

_ORDER_VIEWER = frozenset(
    {
        Permission.VIEW_ALL_ORDERS,
        Permission.VIEW_PRODUCTS,
        Permission.VIEW_GIFT_CARDS,
    }
)

_BUSINESS_PROCESSING = _ORDER_VIEWER | {
    Permission.UPDATE_ORDER_STATUS,
    Permission.CREATE_PRODUCTS,
    Permission.EDIT_PRODUCTS,
    Permission.DELETE_PRODUCTS,
    Permission.VIEW_MEDIA,
    Permission.UPLOAD_MEDIA,
    Permission.DELETE_MEDIA,
}

_WEBSITE_ADMIN = _BUSINESS_PROCESSING | {
    Permission.VIEW_SETTINGS,
    Permission.EDIT_SETTINGS,
    Permission.VIEW_USERS,
    Permission.MANAGE_USERS,
    Permission.VIEW_AUDIT_LOGS,
    Permission.MANAGE_DISCOUNTS,
    Permission.MANAGE_GIFT_CARDS,
}

ROLE_PERMISSIONS: dict[Role, frozenset[Permission]] = {
    Role.ORDER_VIEWER: _ORDER_VIEWER,
    Role.BUSINESS_PROCESSING: _BUSINESS_PROCESSING,
    Role.WEBSITE_ADMIN: _WEBSITE_ADMIN,
    Role.CUSTOMER: frozenset({Permission.VIEW_OWN_ORDERS}),
}


def _coerce(enum_cls, value):
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def allows(role: Role | str | None, permission: Permission | str | None) -> bool:
    """Return True iff the role grants the permission. Unknown inputs deny."""
    resolved_role = _coerce(Role, role)
    resolved_permission = _coerce(Permission, permission)
    if resolved_role is None or resolved_permission is None:
        return False
    return resolved_permission in ROLE_PERMISSIONS[resolved_role]


def is_admin_role(role: Role | str | None) -> bool:
    return _coerce(Role, role) in ADMIN_ROLES


def required_permission_name(permission: Permission | str) -> str:
    """Upper-case vocabulary name used in audit details ("CREATE_PRODUCTS")."""
    resolved = _coerce(Permission, permission)
    return resolved.name if resolved is not None else str(permission).upper()
