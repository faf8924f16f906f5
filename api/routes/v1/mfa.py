"""
api/routes/v1/mfa.py -- Two-factor enrollment and backup-code management.

Routes (all require an admin token):
  GET  /api/v1/admin/mfa/status        -- enabled / pending / backup codes left
  POST /api/v1/admin/mfa/enroll        -- start enrollment; secret + QR shown once
  POST /api/v1/admin/mfa/verify        -- confirm with first code; backup codes shown once
  POST /api/v1/admin/mfa/backup-codes  -- replace the backup-code set (needs a TOTP code)

Responses that carry secrets or codes are sent with Cache-Control: no-store.
Errors (already enrolled, no pending enrollment, wrong code) are raised as
core.errors exceptions and rendered by the handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import BackupCodesResponse, MfaCodeRequest, MfaEnrollResponse, MfaStatusResponse
from audit.models import AuditAction
from audit.store import AuditStore
from auth.dependencies import actor_of, get_current_admin, request_context
from auth.mfa import SecondFactorEngine
from auth.models import Principal

router = APIRouter()


@router.get("/admin/mfa/status", response_model=MfaStatusResponse)
def mfa_status(request: Request, principal: Principal = Depends(get_current_admin)) -> MfaStatusResponse:
    mfa: SecondFactorEngine = request.app.state.mfa
    return MfaStatusResponse(
        enabled=principal.mfa_enabled,
        pending=principal.mfa_pending,
        remaining_backup_codes=mfa.remaining_backup_codes(principal) if principal.mfa_enabled else 0,
    )


@router.post("/admin/mfa/enroll", response_model=MfaEnrollResponse)
def enroll(request: Request, response: Response, principal: Principal = Depends(get_current_admin)) -> MfaEnrollResponse:
    """Generate a new pending secret. Calling again before verifying replaces it."""
    mfa: SecondFactorEngine = request.app.state.mfa
    enrollment = mfa.enroll(principal)
    response.headers["Cache-Control"] = "no-store"
    return MfaEnrollResponse(
        secret=enrollment.secret,
        provisioning_uri=enrollment.provisioning_uri,
        qr_code=enrollment.qr_code,
    )


@router.post("/admin/mfa/verify", response_model=BackupCodesResponse)
def verify(
    request: Request,
    response: Response,
    body: MfaCodeRequest,
    principal: Principal = Depends(get_current_admin),
) -> BackupCodesResponse:
    """Confirm the pending secret and enable MFA."""
    mfa: SecondFactorEngine = request.app.state.mfa
    audit_store: AuditStore = request.app.state.audit_store
    codes = mfa.verify_enrollment(principal, body.code)
    audit_store.record(
        AuditAction.MFA_SETUP,
        actor=actor_of(principal),
        resource_type="admin_user",
        resource_id=principal.id,
        details={"backup_codes_issued": len(codes)},
        context=request_context(request),
    )
    response.headers["Cache-Control"] = "no-store"
    return BackupCodesResponse(backup_codes=codes)


@router.post("/admin/mfa/backup-codes", response_model=BackupCodesResponse)
def regenerate_backup_codes(
    request: Request,
    response: Response,
    body: MfaCodeRequest,
    principal: Principal = Depends(get_current_admin),
) -> BackupCodesResponse:
    """Invalidate every existing backup code and issue a fresh set."""
    mfa: SecondFactorEngine = request.app.state.mfa
    audit_store: AuditStore = request.app.state.audit_store
    codes = mfa.regenerate_backup_codes(principal, body.code)
    audit_store.record(
        AuditAction.MFA_BACKUP_CODES_REGENERATED,
        actor=actor_of(principal),
        resource_type="admin_user",
        resource_id=principal.id,
        details={"backup_codes_issued": len(codes)},
        context=request_context(request),
    )
    response.headers["Cache-Control"] = "no-store"
    return BackupCodesResponse(backup_codes=codes)
