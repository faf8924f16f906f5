"""
api/routes/v1/users.py -- Admin user management.

Routes:
  GET    /api/v1/admin/users        -- list principals (VIEW_USERS)
  POST   /api/v1/admin/users        -- create a principal (MANAGE_USERS) -> 201
  PATCH  /api/v1/admin/users/{id}   -- email, name, role, active flag, password (MANAGE_USERS)
  DELETE /api/v1/admin/users/{id}   -- deactivate (MANAGE_USERS) -> 204

Principals are never deleted. Deactivation sets is_active=False and the
gate then rejects that principal's tokens on the next request.

Guards:
  [M4] An admin cannot change their own role or deactivate themselves.
  [M4] Only website_admin holds MANAGE_USERS, so with those two refusals
       the last active website_admin can never be removed over HTTP.

Audit: each kind of change gets its own entry (user_role_changed,
user_deactivated, password_changed); anything else changed is recorded as
user_updated with the field names. Password hashes never reach the log.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import UserCreate, UserResponse, UserUpdate
from audit.models import AuditAction
from audit.store import AuditStore
from auth.dependencies import actor_of, request_context, require_permission
from auth.models import Principal
from auth.passwords import hash_password
from auth.permissions import Permission
from auth.store import PrincipalStore
from core.errors import Internal, InvalidInput, NotFound

router = APIRouter()


def _get_target(store: PrincipalStore, user_id: int) -> Principal:
    target = store.get_by_id(user_id)
    if target is None:
        raise NotFound("User not found.")
    return target


@router.get("/admin/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    principal: Principal = Depends(require_permission(Permission.VIEW_USERS)),
) -> list[UserResponse]:
    store: PrincipalStore = request.app.state.principal_store
    return [UserResponse.from_principal(p) for p in store.list_principals()]


@router.post("/admin/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    principal: Principal = Depends(require_permission(Permission.MANAGE_USERS)),
) -> UserResponse:
    """Create an active principal. MFA starts off; the new user enrolls after first login."""
    store: PrincipalStore = request.app.state.principal_store
    audit_store: AuditStore = request.app.state.audit_store

    user_id = store.create_principal(
        Principal(
            email=body.email,
            name=body.name,
            role=body.role.value,
            password_hash=hash_password(body.password),
        )
    )
    created = store.get_by_id(user_id)
    if created is None:
        raise Internal("User not found after write.")

    audit_store.record(
        AuditAction.USER_CREATED,
        actor=actor_of(principal),
        resource_type="user",
        resource_id=created.id,
        details={"email": created.email, "role": created.role},
        context=request_context(request),
    )
    return UserResponse.from_principal(created)


@router.patch("/admin/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdate,
    principal: Principal = Depends(require_permission(Permission.MANAGE_USERS)),
) -> UserResponse:
    store: PrincipalStore = request.app.state.principal_store
    audit_store: AuditStore = request.app.state.audit_store

    target = _get_target(store, user_id)
    updates = body.model_dump(exclude_unset=True, exclude_none=True)
    password = updates.pop("password", None)
    if "role" in updates:
        updates["role"] = body.role.value
    if "email" in updates:
        updates["email"] = updates["email"].lower()
    if not updates and password is None:
        raise InvalidInput("No fields to update.")

    role_changed = "role" in updates and updates["role"] != target.role
    deactivating = updates.get("is_active") is False and target.is_active

    # [M4]
    if target.id == principal.id:
        if role_changed:
            raise InvalidInput("You cannot change your own role.")
        if deactivating:
            raise InvalidInput("You cannot deactivate your own account.")

    if updates:
        store.update_principal(user_id, **updates)
    if password is not None:
        store.update_password_hash(user_id, hash_password(password))
    updated = store.get_by_id(user_id)
    if updated is None:
        raise Internal("User not found after write.")

    actor = actor_of(principal)
    ctx = request_context(request)
    if role_changed:
        audit_store.record(
            AuditAction.USER_ROLE_CHANGED,
            actor=actor,
            resource_type="user",
            resource_id=user_id,
            details={"email": updated.email, "oldRole": target.role, "newRole": updated.role},
            context=ctx,
        )
    if deactivating:
        audit_store.record(
            AuditAction.USER_DEACTIVATED,
            actor=actor,
            resource_type="user",
            resource_id=user_id,
            details={"email": updated.email},
            context=ctx,
        )
    if password is not None:
        audit_store.record(
            AuditAction.PASSWORD_CHANGED,
            actor=actor,
            resource_type="user",
            resource_id=user_id,
            details={"changedBy": principal.email, "targetEmail": updated.email},
            context=ctx,
        )
    other_fields = sorted(
        name
        for name, value in updates.items()
        if name not in ("role", "is_active") and getattr(target, name) != value
    )
    if updates.get("is_active") is True and not target.is_active:
        other_fields.append("is_active")
    if other_fields:
        audit_store.record(
            AuditAction.USER_UPDATED,
            actor=actor,
            resource_type="user",
            resource_id=user_id,
            details={"updatedFields": other_fields},
            context=ctx,
        )
    return UserResponse.from_principal(updated)


@router.delete("/admin/users/{user_id}", status_code=204)
def deactivate_user(
    request: Request,
    user_id: int,
    principal: Principal = Depends(require_permission(Permission.MANAGE_USERS)),
) -> Response:
    """Soft delete: the principal stays, is_active becomes False."""
    store: PrincipalStore = request.app.state.principal_store
    audit_store: AuditStore = request.app.state.audit_store

    target = _get_target(store, user_id)
    if target.id == principal.id:
        raise InvalidInput("You cannot deactivate your own account.")
    if not target.is_active:
        return Response(status_code=204)

    store.update_principal(user_id, is_active=False)
    audit_store.record(
        AuditAction.USER_DEACTIVATED,
        actor=actor_of(principal),
        resource_type="user",
        resource_id=user_id,
        details={"email": target.email},
        context=request_context(request),
    )
    return Response(status_code=204)
