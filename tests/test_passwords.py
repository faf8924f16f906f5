"""
tests/test_passwords.py -- Password hashing and login authentication.

Covers:
  - argon2id round trip and rejection of the wrong password
  - Legacy bcrypt hashes verify and are flagged for rehash
  - authenticate_principal: unknown email, wrong password, inactive account
"""

from __future__ import annotations

import bcrypt

from auth.models import Principal
from auth.passwords import authenticate_principal, hash_password, verify_password


class TestVerifyPassword:
    def test_argon2_round_trip(self) -> None:
        hashed = hash_password("s3cret-passphrase")
        assert hashed.startswith("$argon2id$")
        assert verify_password("s3cret-passphrase", hashed) == (True, False)

    def test_wrong_password(self) -> None:
        hashed = hash_password("s3cret-passphrase")
        assert verify_password("nope", hashed) == (False, False)

    def test_legacy_bcrypt_hash_needs_rehash(self) -> None:
        legacy = bcrypt.hashpw(b"old-password", bcrypt.gensalt(rounds=4)).decode()
        assert verify_password("old-password", legacy) == (True, True)
        assert verify_password("wrong", legacy) == (False, False)

    def test_garbage_hash_never_verifies(self) -> None:
        assert verify_password("anything", "not-a-hash") == (False, False)


class TestAuthenticatePrincipal:
    def test_success(self, stores) -> None:
        principals, _audit, _catalog = stores
        principals.create_principal(
            Principal(email="ops@example.com", role="website_admin", password_hash=hash_password("pw-1234567890"))
        )
        principal, needs_rehash = authenticate_principal(principals, "ops@example.com", "pw-1234567890")
        assert principal is not None
        assert principal.email == "ops@example.com"
        assert needs_rehash is False

    def test_unknown_email(self, stores) -> None:
        principals, _audit, _catalog = stores
        assert authenticate_principal(principals, "ghost@example.com", "whatever") == (None, False)

    def test_wrong_password(self, stores) -> None:
        principals, _audit, _catalog = stores
        principals.create_principal(
            Principal(email="ops@example.com", role="website_admin", password_hash=hash_password("right"))
        )
        assert authenticate_principal(principals, "ops@example.com", "wrong") == (None, False)

    def test_inactive_principal(self, stores) -> None:
        principals, _audit, _catalog = stores
        principals.create_principal(
            Principal(
                email="gone@example.com",
                role="website_admin",
                password_hash=hash_password("right"),
                is_active=False,
            )
        )
        assert authenticate_principal(principals, "gone@example.com", "right") == (None, False)
