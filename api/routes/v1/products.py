"""
api/routes/v1/products.py -- Admin product management.

Routes:
  GET    /api/v1/admin/products        -- list (VIEW_PRODUCTS)
  GET    /api/v1/admin/products/{id}   -- detail (VIEW_PRODUCTS)
  POST   /api/v1/admin/products        -- create (CREATE_PRODUCTS) -> 201
  PUT    /api/v1/admin/products/{id}   -- partial update (EDIT_PRODUCTS)
  DELETE /api/v1/admin/products/{id}   -- soft delete (DELETE_PRODUCTS) -> 204

Every write is audited AFTER the store call returns. A failed audit write
is logged by the store and does not change the response: the product exists
whether or not its audit entry does.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from api.models import ProductCreate, ProductResponse, ProductUpdate
from audit.models import AuditAction
from audit.store import AuditStore
from auth.dependencies import actor_of, request_context, require_permission
from auth.models import Principal
from auth.permissions import Permission
from catalog.models import Product
from catalog.store import CatalogStore, generate_slug
from core.errors import InvalidInput, Internal, NotFound

router = APIRouter()


@router.get("/admin/products", response_model=list[ProductResponse])
def list_products(
    request: Request,
    include_inactive: bool = Query(default=False),
    principal: Principal = Depends(require_permission(Permission.VIEW_PRODUCTS)),
) -> list[ProductResponse]:
    catalog: CatalogStore = request.app.state.catalog
    return [ProductResponse.from_product(p) for p in catalog.list_products(include_inactive=include_inactive)]


@router.get("/admin/products/{product_id}", response_model=ProductResponse)
def get_product(
    request: Request,
    product_id: int,
    principal: Principal = Depends(require_permission(Permission.VIEW_PRODUCTS)),
) -> ProductResponse:
    catalog: CatalogStore = request.app.state.catalog
    product = catalog.get_product(product_id)
    if product is None:
        raise NotFound("Product not found.")
    return ProductResponse.from_product(product)


@router.post("/admin/products", response_model=ProductResponse, status_code=201)
def create_product(
    request: Request,
    body: ProductCreate,
    principal: Principal = Depends(require_permission(Permission.CREATE_PRODUCTS)),
) -> ProductResponse:
    catalog: CatalogStore = request.app.state.catalog
    audit_store: AuditStore = request.app.state.audit_store

    slug = body.slug or generate_slug(body.title)
    if not slug:
        raise InvalidInput("Title must contain at least one letter or digit.")
    product_id = catalog.create_product(
        Product(
            title=body.title,
            slug=slug,
            price_gbp=body.price_gbp,
            description=body.description,
            category=body.category,
            tags=body.tags,
            images=body.images,
            stock=body.stock,
            is_active=body.is_active,
        )
    )
    created = catalog.get_product(product_id)
    if created is None:
        raise Internal("Product not found after write.")

    audit_store.record(
        AuditAction.PRODUCT_CREATED,
        actor=actor_of(principal),
        resource_type="product",
        resource_id=created.id,
        details={"title": created.title, "slug": created.slug, "price": created.price_gbp},
        context=request_context(request),
    )
    return ProductResponse.from_product(created)


@router.put("/admin/products/{product_id}", response_model=ProductResponse)
def update_product(
    request: Request,
    product_id: int,
    body: ProductUpdate,
    principal: Principal = Depends(require_permission(Permission.EDIT_PRODUCTS)),
) -> ProductResponse:
    catalog: CatalogStore = request.app.state.catalog
    audit_store: AuditStore = request.app.state.audit_store

    updates = body.model_dump(exclude_unset=True, exclude_none=True)
    if not updates:
        raise InvalidInput("No fields to update.")
    if not catalog.update_product(product_id, **updates):
        raise NotFound("Product not found.")

    audit_store.record(
        AuditAction.PRODUCT_UPDATED,
        actor=actor_of(principal),
        resource_type="product",
        resource_id=product_id,
        details={"updatedFields": sorted(updates)},
        context=request_context(request),
    )
    return ProductResponse.from_product(catalog.get_product(product_id))


@router.delete("/admin/products/{product_id}", status_code=204)
def delete_product(
    request: Request,
    product_id: int,
    principal: Principal = Depends(require_permission(Permission.DELETE_PRODUCTS)),
) -> Response:
    """Soft delete: the row stays, is_active becomes False."""
    catalog: CatalogStore = request.app.state.catalog
    audit_store: AuditStore = request.app.state.audit_store

    product = catalog.get_product(product_id)
    if product is None or not catalog.soft_delete_product(product_id):
        raise NotFound("Product not found.")

    audit_store.record(
        AuditAction.PRODUCT_DELETED,
        actor=actor_of(principal),
        resource_type="product",
        resource_id=product_id,
        details={"title": product.title, "slug": product.slug},
        context=request_context(request),
    )
    return Response(status_code=204)
