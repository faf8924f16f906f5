"""
api/routes/v1/settings.py -- Website settings (branding, contact, shipping).

Routes:
  GET    /api/v1/admin/settings  -- current settings (VIEW_SETTINGS)
  PUT    /api/v1/admin/settings  -- partial update (EDIT_SETTINGS)
  DELETE /api/v1/admin/settings  -- reset to defaults (EDIT_SETTINGS)

Keys are camelCase on the wire and snake_case in storage. The mapping is
declared once, by the CamelModel schemas in api/models.py; nothing here
converts key spellings by hand.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import SettingsWriteResponse, WebsiteSettings, WebsiteSettingsUpdate
from audit.models import AuditAction
from audit.store import AuditStore
from auth.dependencies import actor_of, request_context, require_permission
from auth.models import Principal
from auth.permissions import Permission
from catalog.store import CatalogStore
from core.errors import InvalidInput

router = APIRouter()


@router.get("/admin/settings", response_model=WebsiteSettings)
def get_website_settings(
    request: Request,
    principal: Principal = Depends(require_permission(Permission.VIEW_SETTINGS)),
) -> WebsiteSettings:
    catalog: CatalogStore = request.app.state.catalog
    return WebsiteSettings(**catalog.get_settings())


@router.put("/admin/settings", response_model=SettingsWriteResponse)
def update_website_settings(
    request: Request,
    body: WebsiteSettingsUpdate,
    principal: Principal = Depends(require_permission(Permission.EDIT_SETTINGS)),
) -> SettingsWriteResponse:
    catalog: CatalogStore = request.app.state.catalog
    audit_store: AuditStore = request.app.state.audit_store

    updates = body.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise InvalidInput("No fields to update.")
    merged = catalog.update_settings(updates)

    audit_store.record(
        AuditAction.SETTINGS_UPDATED,
        actor=actor_of(principal),
        resource_type="settings",
        details={"updatedFields": sorted(body.model_dump(by_alias=True, exclude_unset=True, exclude_none=True))},
        context=request_context(request),
    )
    return SettingsWriteResponse(settings=WebsiteSettings(**merged))


@router.delete("/admin/settings", response_model=SettingsWriteResponse)
def reset_website_settings(
    request: Request,
    principal: Principal = Depends(require_permission(Permission.EDIT_SETTINGS)),
) -> SettingsWriteResponse:
    catalog: CatalogStore = request.app.state.catalog
    audit_store: AuditStore = request.app.state.audit_store

    defaults = catalog.reset_settings()
    audit_store.record(
        AuditAction.SETTINGS_RESET,
        actor=actor_of(principal),
        resource_type="settings",
        context=request_context(request),
    )
    return SettingsWriteResponse(settings=WebsiteSettings(**defaults))
