"""
auth/tokens.py -- Session token issue and verification.

Security design decisions:
  JWT: python-jose with HS256, signed with Settings.jwt_secret. Tokens carry
       principal id, email, role, a token-type discriminant ("admin" or
       "customer"), iat and exp. Verification returns None on any failure --
       the route layer turns that into a 401 and never says why.

  Token type: admin and customer tokens share a signing key, so the "type"
       claim is checked on EVERY verification. A customer token presented to
       an admin endpoint is rejected exactly like a forged one.

  Clock: expiry has zero tolerance -- at or after exp the token is dead.
       python-jose's own exp check is disabled and done here instead, because
       jose accepts a token during the whole second it expires in. Issued-at
       may be in the future by at most token_iat_leeway_seconds (clock drift
       between workers); anything later is rejected.

  Purity: verification never touches the database.

Layer rule: no imports from api/, audit/, or catalog/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import TokenClaims
from core.config import get_settings
from core.errors import InvalidInput, Misconfigured

logger = logging.getLogger("storefront.auth")

_ALGORITHM = "HS256"

TOKEN_TYPE_ADMIN = "admin"
TOKEN_TYPE_CUSTOMER = "customer"
TOKEN_TYPES = frozenset({TOKEN_TYPE_ADMIN, TOKEN_TYPE_CUSTOMER})

_REQUIRED_CLAIMS = ("uid", "email", "role", "type", "iat", "exp")


def is_signing_secret_configured() -> bool:
    return get_settings().secret_configured


def _now(now: datetime | None) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Issue
# ---------------------------------------------------------------------------


def issue_session_token(
    principal_id: int,
    email: str,
    role: str,
    token_type: str,
    expire_seconds: int = 0,
    now: datetime | None = None,
) -> str:
    """Encode a signed session token for a principal.

    Args:
        principal_id:   Numeric id of the admin principal or customer.
        email:          Login email, also stored as the JWT subject.
        role:           Role name ("website_admin", ..., or "customer").
        token_type:     "admin" or "customer".
        expire_seconds: Lifetime in seconds. 0 uses Settings.token_expire_seconds.
        now:            Issue instant; defaults to the current UTC time.

    Raises Misconfigured when no signing secret is configured.
    """
    settings = get_settings()
    if not settings.secret_configured:
        raise Misconfigured()
    if token_type not in TOKEN_TYPES:
        raise InvalidInput(f"Unknown token type {token_type!r}.")
    issued_at = _now(now)
    duration = expire_seconds if expire_seconds > 0 else settings.token_expire_seconds
    payload = {
        "sub": email,
        "uid": principal_id,
        "email": email,
        "role": role,
        "type": token_type,
        "iat": int(issued_at.timestamp()),
        "exp": int((issued_at + timedelta(seconds=duration)).timestamp()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=_ALGORITHM)


# ---------------------------------------------------------------------------
# Verify
# ---------------------------------------------------------------------------


def decode_session_token(token: str, now: datetime | None = None) -> TokenClaims | None:
    """Decode and verify a token of either type. Returns None on any failure.

    Most callers want verify_session_token(), which also enforces the type.
    The request gate uses this directly to tell a well-signed customer token
    (worth auditing) from garbage (not worth auditing).
    """
    settings = get_settings()
    if not settings.secret_configured or not token:
        return None
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[_ALGORITHM],
            options={"verify_exp": False, "verify_aud": False},
        )
    except JWTError:
        return None

    if any(claim not in payload for claim in _REQUIRED_CLAIMS):
        return None
    if payload["type"] not in TOKEN_TYPES:
        return None
    try:
        issued_at = datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc)
        expires_at = datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        principal_id = int(payload["uid"])
    except (TypeError, ValueError, OverflowError):
        return None

    current = _now(now)
    if current >= expires_at:
        return None
    if issued_at > current + timedelta(seconds=settings.token_iat_leeway_seconds):
        logger.warning("Rejected token issued in the future (uid=%s)", principal_id)
        return None

    return TokenClaims(
        principal_id=principal_id,
        email=str(payload["email"]),
        role=str(payload["role"]),
        token_type=payload["type"],
        issued_at=issued_at,
        expires_at=expires_at,
    )


def bearer_token(authorization_header: str | None) -> str | None:
    """Extract the token from an "Authorization: Bearer <token>" header value."""
    if not authorization_header or not authorization_header.startswith("Bearer "):
        return None
    token = authorization_header[7:].strip()
    return token or None


def verify_session_token(
    authorization_header: str | None,
    expected_type: str = TOKEN_TYPE_ADMIN,
    now: datetime | None = None,
) -> TokenClaims | None:
    """Verify a bearer header and return the principal snapshot, or None.

    None covers: missing header, non-Bearer scheme, malformed token, bad
    signature, expiry, future-dated iat, and a type other than expected_type.
    """
    token = bearer_token(authorization_header)
    if token is None:
        return None
    claims = decode_session_token(token, now=now)
    if claims is None or claims.token_type != expected_type:
        return None
    return claims
