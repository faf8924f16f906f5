"""
auth/store.py -- SQLAlchemy Core persistence layer for admin principals.

Pattern: Repository + Data Mapper (same as audit/store.py and catalog/store.py).
PrincipalStore is the repository; _row_to_principal is the mapper. Route and
dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Emails are lowercased on the way in, so the UNIQUE index on email is a
  case-insensitive uniqueness guarantee.

  Backup codes live in their own table, one row per code, each stored as an
  HMAC (never plaintext). Consumption is a conditional UPDATE
  ("... WHERE consumed_at IS NULL") and succeeds only when it changed exactly
  one row. That is the compare-and-set that makes a code single-use even when
  two verifications race: the loser's UPDATE matches nothing.

Lifecycle: one PrincipalStore is created at startup (api/main.py lifespan) and
shared by every request until shutdown calls close().

Layer rule: no imports from api/, audit/, or catalog/.
"""

from __future__ import annotations

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Principal
from core.db import create_store_engine, to_iso, utc_now
from core.errors import Conflict

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_principals = Table(
    "admin_users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # always lowercase
    Column("name", String(255)),
    Column("password_hash", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="business_processing"),
    Column("mfa_enabled", Boolean, nullable=False, server_default="0"),
    Column("mfa_secret", String(64)),  # base32; present iff enrollment started
    Column("mfa_backup_salt", String(64)),
    Column("is_active", Boolean, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
    Column("last_login", String(32)),
)

_backup_codes = Table(
    "mfa_backup_codes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("principal_id", Integer, ForeignKey("admin_users.id"), nullable=False),
    Column("code_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("created_at", String(32), nullable=False),
    Column("consumed_at", String(32)),  # NULL = still usable
    Index("ix_mfa_backup_codes_lookup", "principal_id", "code_hash"),
)


_MUTABLE_FIELDS = frozenset({"email", "name", "role", "is_active"})


def _now_iso() -> str:
    return to_iso(utc_now())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PrincipalStore:
    """Repository for Principal entities and their MFA backup codes.

    Usage:
        store = PrincipalStore("sqlite:///storefront.db")
        pid = store.create_principal(Principal(email="a@b.c", role="website_admin", password_hash=h))
        principal = store.get_by_email("A@B.C")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Principal queries
    # ------------------------------------------------------------------

    def has_principals(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_principals)).scalar()
        return (result or 0) > 0

    def create_principal(self, principal: Principal) -> int:
        """Insert a new principal and return its id.

        Raises Conflict if the (lowercased) email is already taken.
        """
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _principals.insert().values(
                        email=principal.email.strip().lower(),
                        name=principal.name,
                        password_hash=principal.password_hash,
                        role=principal.role,
                        mfa_enabled=False,
                        is_active=principal.is_active,
                        created_at=_now_iso(),
                    )
                )
        except IntegrityError as exc:
            raise Conflict("A principal with this email already exists.") from exc
        return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> Principal | None:
        """Look up a principal by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_principals.select().where(_principals.c.email == email.strip().lower())).fetchone()
        return _row_to_principal(row) if row is not None else None

    def get_by_id(self, principal_id: int) -> Principal | None:
        with self.engine.connect() as conn:
            row = conn.execute(_principals.select().where(_principals.c.id == principal_id)).fetchone()
        return _row_to_principal(row) if row is not None else None

    def update_password_hash(self, principal_id: int, password_hash: str) -> None:
        """Replace the stored hash (password change or legacy-hash upgrade)."""
        with self.engine.begin() as conn:
            conn.execute(
                _principals.update()
                .where(_principals.c.id == principal_id)
                .values(password_hash=password_hash, updated_at=_now_iso())
            )

    def update_last_login(self, principal_id: int) -> None:
        with self.engine.begin() as conn:
            conn.execute(_principals.update().where(_principals.c.id == principal_id).values(last_login=_now_iso()))

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def list_principals(self) -> list[Principal]:
        """Every principal, newest first. Deactivated ones included."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _principals.select().order_by(_principals.c.created_at.desc(), _principals.c.id.desc())
            ).fetchall()
        return [_row_to_principal(r) for r in rows]

    def update_principal(self, principal_id: int, **fields) -> bool:
        """Update mutable profile fields on an existing principal.

        Accepted fields: email, name, role, is_active. Passwords go through
        update_password_hash(). Principals are never deleted; deactivation is
        is_active=False, which the request gate treats like a missing principal.

        Returns True if a row was updated, False if principal_id was not found.
        Raises Conflict if a new email is already taken.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Not updatable: {', '.join(sorted(unknown))}")
        if "email" in fields:
            fields["email"] = fields["email"].strip().lower()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _principals.update()
                    .where(_principals.c.id == principal_id)
                    .values(**fields, updated_at=_now_iso())
                )
        except IntegrityError as exc:
            raise Conflict("A principal with this email already exists.") from exc
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # MFA
    # ------------------------------------------------------------------

    def set_pending_mfa_secret(self, principal_id: int, secret: str) -> bool:
        """Store a not-yet-verified TOTP secret.

        Conditional on MFA not being enabled: a second enrollment overwrites a
        pending secret but can never replace a verified one. Returns False when
        nothing was written (principal missing or already enrolled).
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _principals.update()
                .where((_principals.c.id == principal_id) & (_principals.c.mfa_enabled.is_(False)))
                .values(mfa_secret=secret, updated_at=_now_iso())
            )
        return result.rowcount == 1

    def enable_mfa(self, principal_id: int, secret: str, salt: str, code_hashes: list[str]) -> bool:
        """Mark the pending secret verified and store the first backup-code set.

        One transaction. The UPDATE is conditional on the secret still being
        the one that was verified and MFA still being off, so two concurrent
        verifications cannot both enable it. Returns False if it lost that race.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _principals.update()
                .where(
                    (_principals.c.id == principal_id)
                    & (_principals.c.mfa_secret == secret)
                    & (_principals.c.mfa_enabled.is_(False))
                )
                .values(mfa_enabled=True, mfa_backup_salt=salt, updated_at=_now_iso())
            )
            if result.rowcount != 1:
                return False
            _write_backup_codes(conn, principal_id, code_hashes)
        return True

    def replace_backup_codes(self, principal_id: int, salt: str, code_hashes: list[str]) -> None:
        """Swap in a new backup-code set. Every previous code stops working."""
        with self.engine.begin() as conn:
            conn.execute(
                _principals.update()
                .where(_principals.c.id == principal_id)
                .values(mfa_backup_salt=salt, updated_at=_now_iso())
            )
            conn.execute(_backup_codes.delete().where(_backup_codes.c.principal_id == principal_id))
            _write_backup_codes(conn, principal_id, code_hashes)

    def consume_backup_code(self, principal_id: int, code_hash: str) -> bool:
        """Atomically mark one unconsumed matching code as used.

        Returns True iff this call consumed it. A replay, an unknown code, and
        a race lost to a concurrent request all return False.
        """
        with self.engine.begin() as conn:
            match = conn.execute(
                select(_backup_codes.c.id)
                .where(
                    (_backup_codes.c.principal_id == principal_id)
                    & (_backup_codes.c.code_hash == code_hash)
                    & (_backup_codes.c.consumed_at.is_(None))
                )
                .limit(1)
            ).fetchone()
            if match is None:
                return False
            result = conn.execute(
                _backup_codes.update()
                .where((_backup_codes.c.id == match.id) & (_backup_codes.c.consumed_at.is_(None)))
                .values(consumed_at=_now_iso())
            )
        return result.rowcount == 1

    def count_remaining_backup_codes(self, principal_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_backup_codes)
                .where((_backup_codes.c.principal_id == principal_id) & (_backup_codes.c.consumed_at.is_(None)))
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


def _write_backup_codes(conn, principal_id: int, code_hashes: list[str]) -> None:
    if not code_hashes:
        return
    created_at = _now_iso()
    conn.execute(
        _backup_codes.insert(),
        [{"principal_id": principal_id, "code_hash": h, "created_at": created_at} for h in code_hashes],
    )


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_principal(row) -> Principal:
    return Principal(
        id=row.id,
        email=row.email,
        name=row.name,
        password_hash=row.password_hash,
        role=row.role,
        mfa_enabled=bool(row.mfa_enabled),
        mfa_secret=row.mfa_secret,
        mfa_backup_salt=row.mfa_backup_salt,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        last_login=row.last_login,
    )
