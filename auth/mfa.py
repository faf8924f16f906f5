"""
auth/mfa.py -- Second factor: TOTP enrollment, challenge, and backup codes.

Flow (three steps, all behind an admin session token):
  1. enroll()            -- fresh base32 secret stored as PENDING; the secret,
                            otpauth:// URI and an SVG QR code are returned once.
  2. verify_enrollment() -- first correct TOTP code flips the principal to
                            enabled and returns the plaintext backup codes.
                            This is the only time they are ever visible.
  3. challenge()         -- every later login supplies a TOTP code or one
                            unused backup code.

Security:
  TOTP: pyotp, 6 digits, 30 second step, valid_window=1 (previous, current
        and next step accepted). Same-step replay is left to the login rate
        limiter.

  Backup codes: 8 upper-case hex characters from secrets.token_hex. Stored as
        HMAC-SHA256 keyed with a per-principal random salt, one row per code.
        Regeneration rotates the salt, so old hashes are useless even if the
        rows survived. Consumption goes through PrincipalStore's conditional
        UPDATE, which is the only thing standing between a code and reuse.

  Failure shape: challenge() reports ok=False for every kind of failure. It
        never says whether a TOTP or a backup code was tried, or why it failed.

Layer rule: no imports from api/, audit/, or catalog/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from base64 import b64encode
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO

import pyotp
import qrcode
import qrcode.image.svg

from auth.models import Principal
from auth.store import PrincipalStore
from core.errors import Conflict, InvalidInput, NotFound

logger = logging.getLogger("storefront.auth.mfa")

TOTP_DIGITS = 6
TOTP_INTERVAL = 30
TOTP_VALID_WINDOW = 1

BACKUP_CODE_BYTES = 4  # 8 hex characters


class AlreadyEnrolledError(Conflict):
    code = "already_enrolled"
    default_message = "Two-factor authentication is already enabled."


class InvalidCodeError(InvalidInput):
    code = "invalid_code"
    default_message = "Invalid code."


@dataclass(frozen=True)
class Enrollment:
    secret: str
    provisioning_uri: str
    qr_code: str  # data:image/svg+xml;base64,...


@dataclass(frozen=True)
class ChallengeResult:
    ok: bool
    method: str | None = None  # "totp" or "backup_code" when ok
    remaining_backup_codes: int | None = None


def normalize_code(code: str | None) -> str:
    """Strip whitespace and dashes and upper-case. Users paste codes in many shapes."""
    if not code:
        return ""
    return "".join(ch for ch in code if ch not in " -\t").upper()


def hash_backup_code(salt: str, code: str) -> str:
    return hmac.new(salt.encode("utf-8"), normalize_code(code).encode("utf-8"), hashlib.sha256).hexdigest()


def generate_backup_codes(count: int) -> list[str]:
    return [secrets.token_hex(BACKUP_CODE_BYTES).upper() for _ in range(count)]


def render_qr_svg(uri: str) -> str:
    """Render an otpauth:// URI as a base64 SVG data URI (no Pillow needed)."""
    qr = qrcode.QRCode(
        version=None,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=4,
    )
    qr.add_data(uri)
    qr.make(fit=True)
    img = qr.make_image(image_factory=qrcode.image.svg.SvgImage)
    buffer = BytesIO()
    img.save(buffer)
    return "data:image/svg+xml;base64," + b64encode(buffer.getvalue()).decode("ascii")


class SecondFactorEngine:
    """TOTP + backup-code second factor over a PrincipalStore.

    Usage:
        mfa = SecondFactorEngine(store, issuer="Storefront Admin")
        enrollment = mfa.enroll(principal)
        codes = mfa.verify_enrollment(principal, "123456")
        result = mfa.challenge(principal, "123456")
    """

    def __init__(self, store: PrincipalStore, issuer: str = "Storefront Admin", backup_code_count: int = 10) -> None:
        self.store = store
        self.issuer = issuer
        self.backup_code_count = backup_code_count

    def _totp(self, secret: str) -> pyotp.TOTP:
        return pyotp.TOTP(secret, digits=TOTP_DIGITS, interval=TOTP_INTERVAL)

    def _reload(self, principal: Principal) -> Principal:
        current = self.store.get_by_id(principal.id) if principal.id is not None else None
        if current is None:
            raise NotFound("Principal not found.")
        return current

    def _totp_matches(self, secret: str | None, code: str, now: datetime | None) -> bool:
        if not secret or len(code) != TOTP_DIGITS or not code.isdigit():
            return False
        return self._totp(secret).verify(code, for_time=now, valid_window=TOTP_VALID_WINDOW)

    def _new_backup_set(self) -> tuple[list[str], str, list[str]]:
        codes = generate_backup_codes(self.backup_code_count)
        salt = secrets.token_hex(16)
        return codes, salt, [hash_backup_code(salt, c) for c in codes]

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    def enroll(self, principal: Principal) -> Enrollment:
        """Start (or restart) enrollment with a fresh pending secret.

        Raises AlreadyEnrolledError once a secret has been verified.
        """
        current = self._reload(principal)
        if current.mfa_enabled:
            raise AlreadyEnrolledError()
        secret = pyotp.random_base32()
        if not self.store.set_pending_mfa_secret(current.id, secret):
            # Verified by a concurrent request between the read and the write.
            raise AlreadyEnrolledError()
        uri = self._totp(secret).provisioning_uri(name=current.email, issuer_name=self.issuer)
        logger.info("MFA enrollment started for principal %s", current.id)
        return Enrollment(secret=secret, provisioning_uri=uri, qr_code=render_qr_svg(uri))

    def verify_enrollment(self, principal: Principal, code: str, now: datetime | None = None) -> list[str]:
        """Confirm the pending secret with a first code and return backup codes.

        The returned list is the only copy of the plaintext codes.
        """
        current = self._reload(principal)
        if current.mfa_enabled:
            raise AlreadyEnrolledError()
        if not current.mfa_pending:
            raise InvalidInput("No pending two-factor enrollment. Start enrollment first.")
        if not self._totp_matches(current.mfa_secret, normalize_code(code), now):
            raise InvalidCodeError()
        codes, salt, hashes = self._new_backup_set()
        if not self.store.enable_mfa(current.id, current.mfa_secret, salt, hashes):
            raise AlreadyEnrolledError()
        logger.info("MFA enabled for principal %s", current.id)
        return codes

    # ------------------------------------------------------------------
    # Login challenge
    # ------------------------------------------------------------------

    def challenge(self, principal: Principal, code: str | None, now: datetime | None = None) -> ChallengeResult:
        """Accept a TOTP code or an unconsumed backup code. Never raises for bad input."""
        current = self._reload(principal)
        if not current.mfa_enabled or not current.mfa_secret:
            return ChallengeResult(ok=False)
        normalized = normalize_code(code)
        if not normalized:
            return ChallengeResult(ok=False)

        if self._totp_matches(current.mfa_secret, normalized, now):
            return ChallengeResult(ok=True, method="totp")

        if current.mfa_backup_salt and self.store.consume_backup_code(
            current.id, hash_backup_code(current.mfa_backup_salt, normalized)
        ):
            remaining = self.store.count_remaining_backup_codes(current.id)
            logger.info("Backup code consumed for principal %s (%d left)", current.id, remaining)
            return ChallengeResult(ok=True, method="backup_code", remaining_backup_codes=remaining)

        return ChallengeResult(ok=False)

    # ------------------------------------------------------------------
    # Backup code regeneration
    # ------------------------------------------------------------------

    def regenerate_backup_codes(self, principal: Principal, code: str, now: datetime | None = None) -> list[str]:
        """Replace the whole backup-code set. Requires a current TOTP code.

        A backup code is not accepted here: losing the authenticator and
        holding one leaked code must not be enough to mint ten more.
        """
        current = self._reload(principal)
        if not current.mfa_enabled:
            raise InvalidInput("Two-factor authentication is not enabled.")
        if not self._totp_matches(current.mfa_secret, normalize_code(code), now):
            raise InvalidCodeError()
        codes, salt, hashes = self._new_backup_set()
        self.store.replace_backup_codes(current.id, salt, hashes)
        logger.info("Backup codes regenerated for principal %s", current.id)
        return codes

    def remaining_backup_codes(self, principal: Principal) -> int:
        return self.store.count_remaining_backup_codes(principal.id)
