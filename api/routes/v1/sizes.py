"""
api/routes/v1/sizes.py -- Admin size vocabulary (S, M, L, 10cm, ...).

Routes:
  GET    /api/v1/admin/sizes        -- list (VIEW_PRODUCTS)
  POST   /api/v1/admin/sizes        -- create (EDIT_PRODUCTS) -> 201
  PUT    /api/v1/admin/sizes/{id}   -- rename / reorder (EDIT_PRODUCTS)
  DELETE /api/v1/admin/sizes/{id}   -- hard delete (EDIT_PRODUCTS) -> 204

Names are unique case-insensitively (the store raises Conflict).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.models import SizeResponse, SizeWrite
from audit.models import AuditAction
from audit.store import AuditStore
from auth.dependencies import actor_of, request_context, require_permission
from auth.models import Principal
from auth.permissions import Permission
from catalog.models import Size
from catalog.store import CatalogStore
from core.errors import NotFound

router = APIRouter()


@router.get("/admin/sizes", response_model=list[SizeResponse])
def list_sizes(
    request: Request,
    principal: Principal = Depends(require_permission(Permission.VIEW_PRODUCTS)),
) -> list[SizeResponse]:
    catalog: CatalogStore = request.app.state.catalog
    return [SizeResponse.from_size(s) for s in catalog.list_sizes()]


@router.post("/admin/sizes", response_model=SizeResponse, status_code=201)
def create_size(
    request: Request,
    body: SizeWrite,
    principal: Principal = Depends(require_permission(Permission.EDIT_PRODUCTS)),
) -> SizeResponse:
    catalog: CatalogStore = request.app.state.catalog
    audit_store: AuditStore = request.app.state.audit_store

    size_id = catalog.create_size(Size(name=body.name, short_code=body.short_code, display_order=body.display_order))
    audit_store.record(
        AuditAction.SIZE_CREATED,
        actor=actor_of(principal),
        resource_type="size",
        resource_id=size_id,
        details={"size_name": body.name},
        context=request_context(request),
    )
    return SizeResponse.from_size(catalog.get_size(size_id))


@router.put("/admin/sizes/{size_id}", response_model=SizeResponse)
def update_size(
    request: Request,
    size_id: int,
    body: SizeWrite,
    principal: Principal = Depends(require_permission(Permission.EDIT_PRODUCTS)),
) -> SizeResponse:
    catalog: CatalogStore = request.app.state.catalog
    audit_store: AuditStore = request.app.state.audit_store

    existing = catalog.get_size(size_id)
    if existing is None or not catalog.update_size(size_id, body.name, body.short_code, body.display_order):
        raise NotFound("Size not found.")
    audit_store.record(
        AuditAction.SIZE_UPDATED,
        actor=actor_of(principal),
        resource_type="size",
        resource_id=size_id,
        details={"old_name": existing.name, "new_name": body.name},
        context=request_context(request),
    )
    return SizeResponse.from_size(catalog.get_size(size_id))


@router.delete("/admin/sizes/{size_id}", status_code=204)
def delete_size(
    request: Request,
    size_id: int,
    principal: Principal = Depends(require_permission(Permission.EDIT_PRODUCTS)),
) -> Response:
    catalog: CatalogStore = request.app.state.catalog
    audit_store: AuditStore = request.app.state.audit_store

    existing = catalog.get_size(size_id)
    if existing is None or not catalog.delete_size(size_id):
        raise NotFound("Size not found.")
    audit_store.record(
        AuditAction.SIZE_DELETED,
        actor=actor_of(principal),
        resource_type="size",
        resource_id=size_id,
        details={"size_name": existing.name},
        context=request_context(request),
    )
    return Response(status_code=204)
