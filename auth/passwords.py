"""
auth/passwords.py -- Password hashing and timing-equalized authentication.

New hashes use argon2id (argon2-cffi). Argon2 is memory-hard, so GPU and
ASIC cracking rigs gain far less over a single CPU than they do against
bcrypt, and every hash carries its own random salt.

Stored bcrypt hashes ("$2a$", "$2b$", "$2y$") from the previous scheme still
verify through the bcrypt library. verify_password() reports them as needing
a rehash and the login route rewrites them as argon2id on the next successful
login, so the legacy format drains out of the table without a migration.

Layer rule: no imports from api/, audit/, or catalog/.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import bcrypt
from argon2 import PasswordHasher
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

if TYPE_CHECKING:
    from auth.models import Principal
    from auth.store import PrincipalStore

logger = logging.getLogger("storefront.auth")

_hasher = PasswordHasher()

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")

# Floor for passwords set by an operator or an admin (CLI and user management).
MIN_PASSWORD_LENGTH = 12


def hash_password(plain: str) -> str:
    """Return an argon2id hash of the given plaintext password."""
    return _hasher.hash(plain)


def verify_password(plain: str, hashed: str) -> tuple[bool, bool]:
    """Check a password against a stored hash.

    Returns (valid, needs_rehash). needs_rehash is True when the hash is a
    legacy bcrypt hash or an argon2 hash made with weaker parameters than
    the current defaults.
    """
    if hashed.startswith(_BCRYPT_PREFIXES):
        try:
            valid = bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except ValueError:
            return False, False
        return valid, valid
    try:
        _hasher.verify(hashed, plain)
    except VerifyMismatchError:
        return False, False
    except (VerificationError, InvalidHashError):
        logger.warning("Unreadable password hash encountered during verification")
        return False, False
    return True, _hasher.check_needs_rehash(hashed)


# Timing equalization dummy hash [C1].
# Computed once at module load. Always verify against it when the email is
# unknown so response time does not reveal which emails exist.
_DUMMY_HASH: str = hash_password("storefront_timing_dummy")


def authenticate_principal(store: PrincipalStore, email: str, password: str) -> tuple[Principal | None, bool]:
    """Authenticate an email/password pair with timing equalization.

    Returns (principal, needs_rehash). principal is None on any failure:
    unknown email, wrong password, or deactivated account. Callers must not
    tell these apart in the response.
    """
    principal = store.get_by_email(email)
    if principal is None or not principal.password_hash:
        # Equalize timing -- do NOT return early before hashing [C1]
        verify_password(password, _DUMMY_HASH)
        return None, False
    valid, needs_rehash = verify_password(password, principal.password_hash)
    if not valid or not principal.is_active:
        return None, False
    return principal, needs_rehash
