"""
tests/test_mfa.py -- Second-factor engine against a real PrincipalStore.

Covers:
  - Enrollment: pending secret, restart overwrites it, refused once enabled
  - Verification: wrong code, no pending enrollment, backup codes returned once
  - Challenge: TOTP within one step either side, rejected two steps away
  - Backup codes: single use, normalized input, counted down
  - Regeneration: requires TOTP, invalidates every previous code
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pyotp
import pytest

from auth.mfa import (
    AlreadyEnrolledError,
    InvalidCodeError,
    SecondFactorEngine,
    hash_backup_code,
    normalize_code,
)
from core.errors import InvalidInput

# Aligned to a 30-second step boundary.
T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine(stores) -> SecondFactorEngine:
    principals, _audit, _catalog = stores
    return SecondFactorEngine(principals, issuer="Test Shop", backup_code_count=5)


@pytest.fixture
def principal(new_principal):
    return new_principal("mfa@example.com")


def _enable(engine: SecondFactorEngine, principal) -> tuple[str, list[str]]:
    enrollment = engine.enroll(principal)
    codes = engine.verify_enrollment(principal, pyotp.TOTP(enrollment.secret).at(T0), now=T0)
    return enrollment.secret, codes


class TestEnrollment:
    def test_enroll_returns_secret_uri_and_qr(self, engine, principal) -> None:
        enrollment = engine.enroll(principal)
        assert len(enrollment.secret) >= 16
        assert enrollment.provisioning_uri.startswith("otpauth://totp/")
        assert "Test%20Shop" in enrollment.provisioning_uri
        assert enrollment.qr_code.startswith("data:image/svg+xml;base64,")

        stored = engine.store.get_by_id(principal.id)
        assert stored.mfa_pending is True
        assert stored.mfa_enabled is False

    def test_second_enroll_overwrites_pending_secret(self, engine, principal) -> None:
        first = engine.enroll(principal)
        second = engine.enroll(principal)
        assert first.secret != second.secret
        assert engine.store.get_by_id(principal.id).mfa_secret == second.secret

        # The first secret can no longer complete enrollment.
        with pytest.raises(InvalidCodeError):
            engine.verify_enrollment(principal, pyotp.TOTP(first.secret).at(T0), now=T0)

    def test_verify_without_pending_enrollment(self, engine, principal) -> None:
        with pytest.raises(InvalidInput):
            engine.verify_enrollment(principal, "123456", now=T0)

    def test_verify_with_wrong_code(self, engine, principal) -> None:
        enrollment = engine.enroll(principal)
        good = pyotp.TOTP(enrollment.secret).at(T0)
        bad = "000000" if good != "000000" else "111111"
        with pytest.raises(InvalidCodeError):
            engine.verify_enrollment(principal, bad, now=T0)
        assert engine.store.get_by_id(principal.id).mfa_enabled is False

    def test_verify_enables_and_returns_backup_codes(self, engine, principal) -> None:
        _secret, codes = _enable(engine, principal)
        assert len(codes) == 5
        assert len(set(codes)) == 5
        assert all(len(c) == 8 for c in codes)
        stored = engine.store.get_by_id(principal.id)
        assert stored.mfa_enabled is True
        assert engine.remaining_backup_codes(stored) == 5

    def test_enroll_refused_once_enabled(self, engine, principal) -> None:
        secret, _codes = _enable(engine, principal)
        with pytest.raises(AlreadyEnrolledError):
            engine.enroll(principal)
        # The verified secret is untouched.
        assert engine.store.get_by_id(principal.id).mfa_secret == secret

    def test_verify_refused_once_enabled(self, engine, principal) -> None:
        secret, _codes = _enable(engine, principal)
        with pytest.raises(AlreadyEnrolledError):
            engine.verify_enrollment(principal, pyotp.TOTP(secret).at(T0), now=T0)


class TestChallenge:
    @pytest.mark.parametrize("offset", [-30, 0, 30])
    def test_totp_accepted_within_one_step(self, engine, principal, offset) -> None:
        secret, _codes = _enable(engine, principal)
        code = pyotp.TOTP(secret).at(T0 + timedelta(seconds=offset))
        result = engine.challenge(principal, code, now=T0)
        assert result.ok is True
        assert result.method == "totp"

    @pytest.mark.parametrize("offset", [-90, 90])
    def test_totp_rejected_outside_window(self, engine, principal, offset) -> None:
        secret, _codes = _enable(engine, principal)
        totp = pyotp.TOTP(secret)
        code = totp.at(T0 + timedelta(seconds=offset))
        if any(code == totp.at(T0 + timedelta(seconds=s)) for s in (-30, 0, 30)):
            pytest.skip("one-in-a-million code collision inside the window")
        assert engine.challenge(principal, code, now=T0).ok is False

    def test_backup_code_is_single_use(self, engine, principal) -> None:
        _secret, codes = _enable(engine, principal)
        first = engine.challenge(principal, codes[0], now=T0)
        assert first.ok is True
        assert first.method == "backup_code"
        assert first.remaining_backup_codes == 4

        replay = engine.challenge(principal, codes[0], now=T0)
        assert replay.ok is False

    def test_backup_code_normalized(self, engine, principal) -> None:
        _secret, codes = _enable(engine, principal)
        messy = f" {codes[1][:4].lower()}-{codes[1][4:].lower()} "
        assert engine.challenge(principal, messy, now=T0).ok is True

    @pytest.mark.parametrize("code", [None, "", "   ", "ZZZZZZZZ", "12"])
    def test_garbage_never_raises(self, engine, principal, code) -> None:
        _enable(engine, principal)
        assert engine.challenge(principal, code, now=T0).ok is False

    def test_challenge_without_enrollment_fails(self, engine, principal) -> None:
        assert engine.challenge(principal, "123456", now=T0).ok is False


class TestRegenerate:
    def test_regenerate_invalidates_previous_codes(self, engine, principal) -> None:
        secret, old_codes = _enable(engine, principal)
        new_codes = engine.regenerate_backup_codes(principal, pyotp.TOTP(secret).at(T0), now=T0)
        assert len(new_codes) == 5
        assert set(new_codes).isdisjoint(old_codes)

        assert engine.challenge(principal, old_codes[0], now=T0).ok is False
        assert engine.challenge(principal, new_codes[0], now=T0).ok is True
        assert engine.remaining_backup_codes(principal) == 4

    def test_regenerate_refuses_backup_code(self, engine, principal) -> None:
        _secret, codes = _enable(engine, principal)
        with pytest.raises(InvalidCodeError):
            engine.regenerate_backup_codes(principal, codes[0], now=T0)

    def test_regenerate_requires_enabled_mfa(self, engine, principal) -> None:
        with pytest.raises(InvalidInput):
            engine.regenerate_backup_codes(principal, "123456", now=T0)


class TestHelpers:
    def test_normalize_code(self) -> None:
        assert normalize_code(" ab12-cd34 ") == "AB12CD34"
        assert normalize_code(None) == ""

    def test_backup_hash_depends_on_salt(self) -> None:
        assert hash_backup_code("salt-a", "AB12CD34") != hash_backup_code("salt-b", "AB12CD34")
        assert hash_backup_code("salt-a", "ab12-cd34") == hash_backup_code("salt-a", "AB12CD34")
