"""
api/routes/v1/auth.py -- Admin login and identity endpoints.

Routes:
  POST /api/v1/admin/auth/login   -- email + password (+ second factor); returns an admin token
  GET  /api/v1/admin/auth/me      -- current principal and its permissions (requires auth)

Security:
  [H2] POST /login is rate-limited per IP (Settings.login_rate_limit).
  [C1] authenticate_principal() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on every login response.
  Unknown email, wrong password and wrong second-factor code all produce the
  same 401 "bad_credentials" body. The only other 401 is "mfa_required", sent
  when the password was right but an enrolled principal sent no code.
  Every bad_credentials answer is recorded as login_failed and then handed
  to the brute-force detector; the detector's count includes that entry.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, LoginResponse, MeResponse
from audit.anomaly import AnomalyDetector
from audit.models import Actor, AuditAction, RequestContext
from audit.store import AuditStore
from auth.dependencies import actor_of, get_current_admin, request_context, require_configured
from auth.mfa import SecondFactorEngine
from auth.models import Principal
from auth.passwords import authenticate_principal, hash_password
from auth.permissions import ROLE_PERMISSIONS, Role, is_admin_role
from auth.store import PrincipalStore
from auth.tokens import TOKEN_TYPE_ADMIN, issue_session_token
from core.config import get_settings

# Auth policy:
# - POST /api/v1/admin/auth/login:  public (config probe + rate limit)
# - GET  /api/v1/admin/auth/me:     requires an admin token (get_current_admin)
router = APIRouter()


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content={"error": {"code": code, "message": message}})
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _login_failed(request: Request, email: str, ctx: RequestContext, reason: str) -> JSONResponse:
    """Record the failure, run the brute-force check, answer the generic 401."""
    audit_store: AuditStore = request.app.state.audit_store
    detector: AnomalyDetector = request.app.state.anomaly_detector
    entry = audit_store.record(
        AuditAction.LOGIN_FAILED,
        actor=Actor(email=email),
        resource_type="admin_user",
        details={"email": email, "reason": reason},
        context=ctx,
    )
    detector.check_brute_force_login(ctx.ip_address, email, trigger_persisted=entry is not None)
    return _error(401, "bad_credentials", "Invalid credentials.")


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(get_settings().login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/admin/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest, _: None = Depends(require_configured)) -> JSONResponse:
    """Authenticate an admin principal and issue an admin-typed session token.

    Uses authenticate_principal() which includes timing equalization [C1].
    """
    principal_store: PrincipalStore = request.app.state.principal_store
    audit_store: AuditStore = request.app.state.audit_store
    mfa: SecondFactorEngine = request.app.state.mfa
    ctx = request_context(request)
    email = body.email.strip().lower()

    principal, needs_rehash = authenticate_principal(principal_store, email, body.password)
    if principal is None or not is_admin_role(principal.role):
        return _login_failed(request, email, ctx, reason="bad_credentials")

    method = "password"
    if principal.mfa_enabled:
        if not body.code:
            return _error(401, "mfa_required", "Two-factor authentication code required.")
        result = mfa.challenge(principal, body.code)
        if not result.ok:
            return _login_failed(request, email, ctx, reason="invalid_mfa_code")
        method = result.method
        if result.method == "backup_code":
            audit_store.record(
                AuditAction.MFA_BACKUP_CODE_USED,
                actor=actor_of(principal),
                resource_type="admin_user",
                resource_id=principal.id,
                details={"remaining": result.remaining_backup_codes},
                context=ctx,
            )

    if needs_rehash:
        principal_store.update_password_hash(principal.id, hash_password(body.password))
    principal_store.update_last_login(principal.id)

    settings = get_settings()
    token = issue_session_token(principal.id, principal.email, principal.role, TOKEN_TYPE_ADMIN)
    audit_store.record(
        AuditAction.LOGIN_SUCCESS,
        actor=actor_of(principal),
        resource_type="admin_user",
        resource_id=principal.id,
        details={"role": principal.role, "method": method},
        context=ctx,
    )

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=settings.token_expire_seconds,
            email=principal.email,
            name=principal.name,
            role=principal.role,
            mfa_enabled=principal.mfa_enabled,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/admin/auth/me", response_model=MeResponse)
def me(principal: Principal = Depends(get_current_admin)) -> MeResponse:
    """Return identity information and the effective permission set."""
    permissions = sorted(p.name for p in ROLE_PERMISSIONS.get(Role(principal.role), frozenset()))
    return MeResponse(
        id=principal.id,
        email=principal.email,
        name=principal.name,
        role=principal.role,
        mfa_enabled=principal.mfa_enabled,
        permissions=permissions,
    )
