"""
auth/dependencies.py -- FastAPI Depends() helpers that form the request gate.

Every admin route runs, in this order:
  1. CORS                -- CORSMiddleware in api/main.py, before any route.
  2. require_configured  -- no signing secret -> 500 "Server configuration
                            error." Nothing downstream is touched.
  3. get_current_admin   -- Authorization: Bearer <admin token> -> Principal,
                            else 401. The principal must still exist and be
                            active.
  4. require_permission  -- Permission Resolver; deny -> 403, audited as
                            access_denied with the missing permission name.
  5-7. the route body      -- validate, perform the effect, record the audit
                            entry, then run the relevant anomaly check.

What is audited at the gate:
  - Denials (403), always.
  - A correctly signed customer token presented to an admin route
    (token_type_mismatch). That token proves a real customer session is
    probing the admin surface.
  - Missing, malformed, forged or expired tokens are NOT audited. Anyone can
    send those at line rate, and an audit row per request would hand an
    attacker a write amplifier against the audit table.

Layer rule: may import from core/ and audit/ (the gate writes to the audit
log). No imports from api/ or catalog/. FastAPI imports are allowed because
this module is part of the dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import Depends, Request

from audit.models import Actor, AuditAction, RequestContext
from auth.models import Principal
from auth.permissions import Permission, allows, required_permission_name
from auth.tokens import (
    TOKEN_TYPE_ADMIN,
    bearer_token,
    decode_session_token,
    is_signing_secret_configured,
    verify_session_token,
)
from core.errors import Misconfigured, Unauthenticated, Unauthorized

logger = logging.getLogger("storefront.auth")


def request_context(request: Request) -> RequestContext:
    """Network metadata for audit entries (forwarded-for first hop, then socket peer)."""
    return RequestContext.from_headers(request.headers, request.client.host if request.client else None)


def actor_of(principal: Principal) -> Actor:
    return Actor(id=principal.id, email=principal.email)


def require_configured() -> None:
    """Configuration probe. Raises Misconfigured when no signing secret is set."""
    if not is_signing_secret_configured():
        logger.error("Rejecting request: JWT_SECRET is not configured")
        raise Misconfigured()


def get_current_admin(request: Request, _: None = Depends(require_configured)) -> Principal:
    """Require a valid admin session token. Raises Unauthenticated (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/admin/auth/me")
        def route(principal: Principal = Depends(get_current_admin)): ...
    """
    header = request.headers.get("Authorization")
    claims = verify_session_token(header, expected_type=TOKEN_TYPE_ADMIN)
    if claims is None:
        _audit_cross_type_token(request, header)
        raise Unauthenticated()

    principal = request.app.state.principal_store.get_by_id(claims.principal_id)
    if principal is None or not principal.is_active:
        raise Unauthenticated()
    request.state.principal = principal
    return principal


def _audit_cross_type_token(request: Request, header: str | None) -> None:
    token = bearer_token(header)
    if token is None:
        return
    claims = decode_session_token(token)
    if claims is None or claims.token_type == TOKEN_TYPE_ADMIN:
        return
    logger.warning("Customer token presented to %s %s (uid=%s)", request.method, request.url.path, claims.principal_id)
    request.app.state.audit_store.record(
        AuditAction.TOKEN_TYPE_MISMATCH,
        actor=Actor(id=claims.principal_id, email=claims.email),
        resource_type="admin_api",
        details={
            "presented_type": claims.token_type,
            "expected_type": TOKEN_TYPE_ADMIN,
            "method": request.method,
            "path": request.url.path,
        },
        context=request_context(request),
    )


def require_permission(permission: Permission) -> Callable[..., Principal]:
    """Build a dependency that requires the given permission.

    Use as a FastAPI dependency:
        @router.post("/admin/products")
        def route(principal: Principal = Depends(require_permission(Permission.CREATE_PRODUCTS))): ...
    """

    def dependency(request: Request, principal: Principal = Depends(get_current_admin)) -> Principal:
        if allows(principal.role, permission):
            return principal
        request.app.state.audit_store.record(
            AuditAction.ACCESS_DENIED,
            actor=actor_of(principal),
            resource_type="admin_api",
            details={
                "required": required_permission_name(permission),
                "role": principal.role,
                "method": request.method,
                "path": request.url.path,
            },
            context=request_context(request),
        )
        raise Unauthorized()

    return dependency
