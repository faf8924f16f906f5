"""
api/routes/v1/orders.py -- Order sink (public) and order administration.

Routes:
  POST  /api/v1/orders                     -- checkout creates an order (public, rate-limited)
  GET   /api/v1/admin/orders               -- list (VIEW_ALL_ORDERS)
  PATCH /api/v1/admin/orders/{id}/status   -- change status (UPDATE_ORDER_STATUS)

Price integrity:
  The client submits the total it is about to pay. The server recomputes the
  expected total from catalog prices and the shipping rule in website
  settings. A difference of a penny or more is not rejected (the payment
  may already be in flight) but is written into the order notes with the
  AMOUNT MISMATCH marker, and the price-manipulation detector runs after the
  order is stored so its count includes this order.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.limiter import ORDER_CREATE_LIMIT, limiter
from api.models import OrderCreate, OrderCreatedResponse, OrderResponse, OrderStatusEnum, OrderStatusUpdate
from audit.anomaly import AnomalyDetector
from audit.models import Actor, AuditAction
from audit.store import AuditStore
from auth.dependencies import actor_of, request_context, require_permission
from auth.models import Principal
from auth.permissions import Permission
from catalog.models import AMOUNT_MISMATCH_MARKER, Order
from catalog.store import CatalogStore, generate_order_number
from core.errors import InvalidInput, NotFound

logger = logging.getLogger("storefront.api")

router = APIRouter()


# ---------------------------------------------------------------------------
# Public order sink
# ---------------------------------------------------------------------------


@limiter.limit(ORDER_CREATE_LIMIT)
@router.post("/orders", response_model=OrderCreatedResponse, status_code=201)
def create_order(request: Request, body: OrderCreate) -> OrderCreatedResponse:
    catalog: CatalogStore = request.app.state.catalog
    audit_store: AuditStore = request.app.state.audit_store
    detector: AnomalyDetector = request.app.state.anomaly_detector
    ctx = request_context(request)

    products = catalog.get_products([item.product_id for item in body.items])
    missing = sorted({item.product_id for item in body.items} - products.keys())
    if missing:
        raise InvalidInput(f"Unknown or unavailable product(s): {', '.join(str(m) for m in missing)}.")

    items = []
    subtotal = 0.0
    for item in body.items:
        product = products[item.product_id]
        line_total = round(product.price_gbp * item.quantity, 2)
        subtotal += line_total
        items.append(
            {
                "product_id": product.id,
                "title": product.title,
                "unit_price": product.price_gbp,
                "quantity": item.quantity,
                "line_total": line_total,
            }
        )
    subtotal = round(subtotal, 2)
    site = catalog.get_settings()
    shipping = 0.0 if subtotal >= float(site["free_shipping_threshold"]) else float(site["shipping_cost"])
    expected = round(subtotal + shipping, 2)
    mismatch = round(body.total * 100) != round(expected * 100)

    notes: Optional[str] = None
    if mismatch:
        notes = f"{AMOUNT_MISMATCH_MARKER}: expected {expected:.2f}, received {body.total:.2f}"
        logger.warning("Amount mismatch on checkout from %s: %s", ctx.ip_address, notes)

    order_number = generate_order_number()
    order_id = catalog.create_order(
        Order(
            order_number=order_number,
            customer_email=body.customer_email.lower(),
            customer_name=body.customer_name,
            items=items,
            subtotal=subtotal,
            shipping=shipping,
            total=body.total,
            notes=notes,
        )
    )

    audit_store.record(
        AuditAction.ORDER_CREATED,
        actor=Actor(email=body.customer_email.lower()),
        resource_type="order",
        resource_id=order_id,
        details={
            "orderNumber": order_number,
            "total": body.total,
            "expectedTotal": expected,
            "amountMismatch": mismatch,
        },
        context=ctx,
    )
    if mismatch:
        # The order row is this detector's trigger and it is already stored.
        detector.check_price_manipulation(
            order_number, expected, body.total, body.customer_email.lower(), ip=ctx.ip_address
        )

    return OrderCreatedResponse(order_number=order_number, status="pending", total=body.total)


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------


@router.get("/admin/orders", response_model=list[OrderResponse])
def list_orders(
    request: Request,
    status: Optional[OrderStatusEnum] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    principal: Principal = Depends(require_permission(Permission.VIEW_ALL_ORDERS)),
) -> list[OrderResponse]:
    catalog: CatalogStore = request.app.state.catalog
    orders = catalog.list_orders(
        status=status.value if status else None,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return [OrderResponse.from_order(o) for o in orders]


@router.patch("/admin/orders/{order_id}/status", response_model=OrderResponse)
def update_order_status(
    request: Request,
    order_id: int,
    body: OrderStatusUpdate,
    principal: Principal = Depends(require_permission(Permission.UPDATE_ORDER_STATUS)),
) -> OrderResponse:
    catalog: CatalogStore = request.app.state.catalog
    audit_store: AuditStore = request.app.state.audit_store

    previous = catalog.update_order_status(order_id, body.status.value)
    if previous is None:
        raise NotFound("Order not found.")
    order = catalog.get_order(order_id)

    audit_store.record(
        AuditAction.ORDER_STATUS_UPDATED,
        actor=actor_of(principal),
        resource_type="order",
        resource_id=order_id,
        details={"orderNumber": order.order_number, "from": previous, "to": body.status.value},
        context=request_context(request),
    )
    return OrderResponse.from_order(order)
