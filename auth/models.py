"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these own the shape.

Layer rule: no imports from api/, audit/, or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Principal:
    """An administrative identity.

    email is always stored lowercased and is unique. password_hash is an
    argon2id hash for every password set by this code base; older bcrypt
    hashes are accepted and upgraded on the next successful login.

    mfa_secret is present iff an enrollment was started. mfa_enabled flips to
    True only after the first code is verified, so (secret set, not enabled)
    is the "pending enrollment" state. mfa_backup_salt keys the HMAC used for
    the backup-code hashes in the mfa_backup_codes table.
    """

    email: str
    role: str  # "order_viewer", "business_processing", "website_admin"
    id: int | None = None
    name: str | None = None
    password_hash: str | None = None
    mfa_enabled: bool = False
    mfa_secret: str | None = None
    mfa_backup_salt: str | None = None
    is_active: bool = True
    created_at: str | None = None
    last_login: str | None = None

    @property
    def mfa_pending(self) -> bool:
        return bool(self.mfa_secret) and not self.mfa_enabled


@dataclass(frozen=True)
class TokenClaims:
    """Principal snapshot carried inside a verified session token.

    Built only by auth.tokens after signature, expiry and issued-at checks
    pass, so holding one means the token was valid at verification time.
    """

    principal_id: int
    email: str
    role: str
    token_type: str  # "admin" or "customer"
    issued_at: datetime
    expires_at: datetime
