"""
audit/models.py -- Audit entry, request context, and query shapes.

Pattern: Data class. AuditEntry is write-once from the caller's point of
view: audit/store.py builds it from a row and nothing ever mutates or
re-persists it.

Layer rule: no imports from api/, auth/, or catalog/.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

ALERT_PREFIX = "security_alert_"


class AuditAction(str, Enum):
    """Fixed action vocabulary. Stored values are lower-case."""

    # Authentication
    LOGIN_SUCCESS = "login_success"
    LOGIN_FAILED = "login_failed"
    MFA_SETUP = "mfa_setup"
    MFA_BACKUP_CODES_REGENERATED = "mfa_backup_codes_regenerated"
    MFA_BACKUP_CODE_USED = "mfa_backup_code_used"

    # Admin user management
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    USER_ROLE_CHANGED = "user_role_changed"
    USER_DEACTIVATED = "user_deactivated"
    PASSWORD_CHANGED = "password_changed"

    # Gate
    ACCESS_DENIED = "access_denied"
    TOKEN_TYPE_MISMATCH = "token_type_mismatch"

    # Products and sizes
    PRODUCT_CREATED = "product_created"
    PRODUCT_UPDATED = "product_updated"
    PRODUCT_DELETED = "product_deleted"
    SIZE_CREATED = "size_created"
    SIZE_UPDATED = "size_updated"
    SIZE_DELETED = "size_deleted"

    # Settings
    SETTINGS_UPDATED = "settings_updated"
    SETTINGS_RESET = "settings_reset"

    # Orders and gift cards
    ORDER_CREATED = "order_created"
    ORDER_STATUS_UPDATED = "order_status_updated"
    GIFT_CARD_CHECK_FAILED = "gift_card_check_failed"

    # Browser reports
    CSP_VIOLATION = "csp_violation"

    # Alerts raised by audit/anomaly.py
    SECURITY_ALERT_BRUTE_FORCE_LOGIN = "security_alert_brute_force_login"
    SECURITY_ALERT_GIFT_CARD_ENUMERATION = "security_alert_gift_card_enumeration"
    SECURITY_ALERT_PRICE_MANIPULATION = "security_alert_price_manipulation"


@dataclass(frozen=True)
class RequestContext:
    """Network metadata captured for every audit entry."""

    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], client_host: str | None = None) -> "RequestContext":
        """First hop of X-Forwarded-For, then X-Real-IP, then the socket peer."""
        ip: str | None = None
        forwarded = headers.get("x-forwarded-for")
        if forwarded:
            ip = forwarded.split(",")[0].strip() or None
        if not ip:
            ip = (headers.get("x-real-ip") or "").strip() or None
        if not ip:
            ip = client_host
        return cls(ip_address=ip, user_agent=headers.get("user-agent"))


@dataclass(frozen=True)
class Actor:
    """Who did it. Both fields are snapshots taken at write time."""

    id: int | None = None
    email: str | None = None


@dataclass
class AuditEntry:
    id: int
    created_at: str
    action: str
    user_id: int | None = None
    user_email: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    details: dict[str, Any] = field(default_factory=dict)
    ip_address: str | None = None
    user_agent: str | None = None

    @property
    def is_alert(self) -> bool:
        return self.action.startswith(ALERT_PREFIX)

    @property
    def severity(self) -> str | None:
        if not self.is_alert:
            return None
        return self.details.get("severity")


@dataclass(frozen=True)
class AuditFilters:
    """All fields optional; unset fields do not filter. Time bounds are inclusive."""

    action: str | None = None
    user_id: int | None = None
    user_email: str | None = None  # case-insensitive substring
    resource_type: str | None = None
    resource_id: str | None = None
    created_from: datetime | None = None
    created_to: datetime | None = None


@dataclass(frozen=True)
class AuditPage:
    entries: list[AuditEntry]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0
