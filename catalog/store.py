"""
catalog/store.py -- SQLAlchemy Core persistence for storefront collaborator data.

Pattern: Repository + Data Mapper (same as auth/store.py and audit/store.py).
CatalogStore is the repository for products, sizes, website settings, gift
cards and orders; the _row_to_* functions are the mappers.

Security: all queries use bound parameters. No f-strings in SQL.

Rules kept here rather than in routes:
  - Product slugs are unique. A duplicate raises core.errors.Conflict.
  - Products are never deleted, only deactivated (is_active = 0).
  - Size names are unique case-insensitively.
  - Website settings are a key/value table keyed by the snake_case field
    name. Reads merge stored values over DEFAULT_SETTINGS; a reset deletes
    every row so the defaults show through again.
  - count_amount_mismatches() is the counter the price-manipulation
    detector is built over.

Layer rule: no imports from api/, auth/, or audit/.
"""

from __future__ import annotations

import json
import logging
import re
import secrets
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import Column, Float, Index, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from catalog.models import AMOUNT_MISMATCH_MARKER, GiftCard, Order, Product, Size
from core.db import create_store_engine, to_iso, utc_now
from core.errors import Conflict

logger = logging.getLogger("storefront.catalog")

DEFAULT_SETTINGS: dict[str, Any] = {
    "company_name": "Storefront",
    "tagline": "",
    "logo_url": "",
    "favicon_url": "",
    "primary_color": "#71c7e1",
    "secondary_color": "#A8E0A2",
    "contact_email": "",
    "contact_phone": "",
    "business_address": "",
    "instagram_url": "",
    "facebook_url": "",
    "twitter_url": "",
    "default_title_suffix": "",
    "default_description": "",
    "og_image_url": "",
    "free_shipping_threshold": 20.0,
    "shipping_cost": 2.99,
    "currency": "GBP",
    "max_quantity": 10,
    "footer_tagline": "",
    "copyright_text": "",
    "footer_note": "",
}

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_products = Table(
    "products",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("title", String(255), nullable=False),
    Column("slug", String(255), nullable=False, unique=True),
    Column("description", Text),
    Column("price_gbp", Float, nullable=False),
    Column("category", String(100), nullable=False, server_default="uncategorized"),
    Column("tags", Text),  # JSON array serialized as text
    Column("images", Text),  # JSON array, like tags
    Column("stock", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),  # boolean stored as 0/1
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)

_sizes = Table(
    "sizes",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("short_code", String(20)),
    Column("display_order", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
)

_website_settings = Table(
    "website_settings",
    _metadata,
    Column("key", String(100), primary_key=True),
    Column("value", Text),  # JSON scalar serialized as text
    Column("updated_at", String(32), nullable=False),
)

_gift_cards = Table(
    "gift_cards",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("code", String(20), nullable=False, unique=True),
    Column("initial_balance", Float, nullable=False),
    Column("current_balance", Float, nullable=False),
    Column("currency", String(3), nullable=False, server_default="GBP"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
)

_orders = Table(
    "orders",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_number", String(40), nullable=False, unique=True),
    Column("customer_email", String(255), nullable=False),
    Column("customer_name", String(255), nullable=False),
    Column("items", Text, nullable=False),  # JSON array
    Column("subtotal", Float, nullable=False),
    Column("shipping", Float, nullable=False),
    Column("total", Float, nullable=False),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("notes", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32)),
    Index("ix_orders_created_at", "created_at"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return to_iso(utc_now())


def generate_slug(title: str) -> str:
    """Lowercase, runs of non-alphanumerics to '-', no leading/trailing dashes."""
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


def generate_order_number() -> str:
    return f"ORD-{utc_now():%Y%m%d}-{secrets.token_hex(4).upper()}"


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CatalogStore:
    """Repository for products, sizes, settings, gift cards and orders.

    Usage:
        catalog = CatalogStore("sqlite:///storefront.db")
        pid = catalog.create_product(Product(title="Spinner", slug="spinner", price_gbp=4.5))
        catalog.soft_delete_product(pid)
        catalog.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_store_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Products
    # ------------------------------------------------------------------

    def create_product(self, product: Product) -> int:
        """Insert a product and return its id. Raises Conflict on a duplicate slug."""
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _products.insert().values(
                        title=product.title,
                        slug=product.slug,
                        description=product.description,
                        price_gbp=product.price_gbp,
                        category=product.category,
                        tags=json.dumps(product.tags),
                        images=json.dumps(product.images),
                        stock=product.stock,
                        is_active=int(product.is_active),
                        created_at=now,
                        updated_at=now,
                    )
                )
        except IntegrityError as exc:
            raise Conflict("Product with this slug already exists.") from exc
        return result.inserted_primary_key[0]

    def get_product(self, product_id: int) -> Optional[Product]:
        with self.engine.connect() as conn:
            row = conn.execute(_products.select().where(_products.c.id == product_id)).fetchone()
        return _row_to_product(row) if row else None

    def get_products(self, product_ids: list[int]) -> dict[int, Product]:
        """Active products by id. Missing or inactive ids are simply absent."""
        if not product_ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(
                _products.select().where(_products.c.id.in_(product_ids)).where(_products.c.is_active == 1)
            ).fetchall()
        return {r.id: _row_to_product(r) for r in rows}

    def list_products(self, include_inactive: bool = False) -> list[Product]:
        stmt = _products.select().order_by(_products.c.created_at.desc(), _products.c.id.desc())
        if not include_inactive:
            stmt = stmt.where(_products.c.is_active == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_product(r) for r in rows]

    def update_product(self, product_id: int, **fields) -> bool:
        """Update the given columns. Returns False if the product does not exist."""
        values = dict(fields)
        for key in ("tags", "images"):
            if key in values:
                values[key] = json.dumps(values[key])
        if "is_active" in values:
            values["is_active"] = int(bool(values["is_active"]))
        values["updated_at"] = _now_iso()
        try:
            with self.engine.begin() as conn:
                result = conn.execute(_products.update().where(_products.c.id == product_id).values(**values))
        except IntegrityError as exc:
            raise Conflict("Product with this slug already exists.") from exc
        return result.rowcount > 0

    def soft_delete_product(self, product_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _products.update()
                .where(_products.c.id == product_id)
                .values(is_active=0, updated_at=_now_iso())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Sizes
    # ------------------------------------------------------------------

    def list_sizes(self) -> list[Size]:
        with self.engine.connect() as conn:
            rows = conn.execute(_sizes.select().order_by(_sizes.c.display_order, _sizes.c.name)).fetchall()
        return [_row_to_size(r) for r in rows]

    def get_size(self, size_id: int) -> Optional[Size]:
        with self.engine.connect() as conn:
            row = conn.execute(_sizes.select().where(_sizes.c.id == size_id)).fetchone()
        return _row_to_size(row) if row else None

    def _size_name_taken(self, conn, name: str, exclude_id: Optional[int] = None) -> bool:
        stmt = select(_sizes.c.id).where(func.lower(_sizes.c.name) == name.lower())
        if exclude_id is not None:
            stmt = stmt.where(_sizes.c.id != exclude_id)
        return conn.execute(stmt).first() is not None

    def create_size(self, size: Size) -> int:
        """Insert a size. Raises Conflict if the name exists (any case)."""
        name = size.name.strip()
        with self.engine.begin() as conn:
            if self._size_name_taken(conn, name):
                raise Conflict("A size with this name already exists.")
            result = conn.execute(
                _sizes.insert().values(
                    name=name,
                    short_code=size.short_code,
                    display_order=size.display_order,
                    created_at=_now_iso(),
                )
            )
        return result.inserted_primary_key[0]

    def update_size(self, size_id: int, name: str, short_code: Optional[str], display_order: int) -> bool:
        name = name.strip()
        with self.engine.begin() as conn:
            if self._size_name_taken(conn, name, exclude_id=size_id):
                raise Conflict("A size with this name already exists.")
            result = conn.execute(
                _sizes.update()
                .where(_sizes.c.id == size_id)
                .values(name=name, short_code=short_code, display_order=display_order, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def delete_size(self, size_id: int) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_sizes.delete().where(_sizes.c.id == size_id))
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Website settings
    # ------------------------------------------------------------------

    def get_settings(self) -> dict[str, Any]:
        with self.engine.connect() as conn:
            rows = conn.execute(_website_settings.select()).fetchall()
        stored = {r.key: json.loads(r.value) for r in rows if r.key in DEFAULT_SETTINGS}
        return {**DEFAULT_SETTINGS, **stored}

    def update_settings(self, values: dict[str, Any]) -> dict[str, Any]:
        """Upsert the known keys in values and return the merged settings."""
        known = {k: v for k, v in values.items() if k in DEFAULT_SETTINGS}
        now = _now_iso()
        with self.engine.begin() as conn:
            for key, value in known.items():
                payload = json.dumps(value)
                result = conn.execute(
                    _website_settings.update()
                    .where(_website_settings.c.key == key)
                    .values(value=payload, updated_at=now)
                )
                if result.rowcount == 0:
                    conn.execute(_website_settings.insert().values(key=key, value=payload, updated_at=now))
        return self.get_settings()

    def reset_settings(self) -> dict[str, Any]:
        with self.engine.begin() as conn:
            conn.execute(_website_settings.delete())
        logger.info("Website settings reset to defaults")
        return dict(DEFAULT_SETTINGS)

    # ------------------------------------------------------------------
    # Gift cards
    # ------------------------------------------------------------------

    def create_gift_card(self, card: GiftCard) -> int:
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    _gift_cards.insert().values(
                        code=card.code.upper(),
                        initial_balance=card.initial_balance,
                        current_balance=card.current_balance,
                        currency=card.currency,
                        status=card.status,
                        expires_at=card.expires_at,
                        created_at=_now_iso(),
                    )
                )
        except IntegrityError as exc:
            raise Conflict("A gift card with this code already exists.") from exc
        return result.inserted_primary_key[0]

    def get_gift_card_by_code(self, code: str) -> Optional[GiftCard]:
        with self.engine.connect() as conn:
            row = conn.execute(_gift_cards.select().where(_gift_cards.c.code == code.upper())).fetchone()
        return _row_to_gift_card(row) if row else None

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def create_order(self, order: Order) -> int:
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _orders.insert().values(
                    order_number=order.order_number,
                    customer_email=order.customer_email,
                    customer_name=order.customer_name,
                    items=json.dumps(order.items),
                    subtotal=order.subtotal,
                    shipping=order.shipping,
                    total=order.total,
                    status=order.status,
                    notes=order.notes,
                    created_at=now,
                    updated_at=now,
                )
            )
        return result.inserted_primary_key[0]

    def get_order(self, order_id: int) -> Optional[Order]:
        with self.engine.connect() as conn:
            row = conn.execute(_orders.select().where(_orders.c.id == order_id)).fetchone()
        return _row_to_order(row) if row else None

    def list_orders(self, status: Optional[str] = None, limit: int = 50, offset: int = 0) -> list[Order]:
        stmt = _orders.select().order_by(_orders.c.created_at.desc(), _orders.c.id.desc())
        if status:
            stmt = stmt.where(_orders.c.status == status)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt.limit(limit).offset(offset)).fetchall()
        return [_row_to_order(r) for r in rows]

    def update_order_status(self, order_id: int, status: str) -> Optional[str]:
        """Set a new status. Returns the previous status, or None if no such order."""
        with self.engine.begin() as conn:
            current = conn.execute(select(_orders.c.status).where(_orders.c.id == order_id)).fetchone()
            if current is None:
                return None
            conn.execute(
                _orders.update().where(_orders.c.id == order_id).values(status=status, updated_at=_now_iso())
            )
        return current.status

    def count_amount_mismatches(self, since: datetime) -> int:
        """Orders created at or after since whose notes carry the mismatch marker."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_orders)
                .where(func.upper(_orders.c.notes).contains(AMOUNT_MISMATCH_MARKER, autoescape=True))
                .where(_orders.c.created_at >= to_iso(since))
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_product(row) -> Product:
    return Product(
        id=row.id,
        title=row.title,
        slug=row.slug,
        description=row.description or "",
        price_gbp=row.price_gbp,
        category=row.category,
        tags=json.loads(row.tags) if row.tags else [],
        images=json.loads(row.images) if row.images else [],
        stock=row.stock,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_size(row) -> Size:
    return Size(
        id=row.id,
        name=row.name,
        short_code=row.short_code,
        display_order=row.display_order,
        created_at=row.created_at,
    )


def _row_to_gift_card(row) -> GiftCard:
    return GiftCard(
        id=row.id,
        code=row.code,
        initial_balance=row.initial_balance,
        current_balance=row.current_balance,
        currency=row.currency,
        status=row.status,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _row_to_order(row) -> Order:
    return Order(
        id=row.id,
        order_number=row.order_number,
        customer_email=row.customer_email,
        customer_name=row.customer_name,
        items=json.loads(row.items) if row.items else [],
        subtotal=row.subtotal,
        shipping=row.shipping,
        total=row.total,
        status=row.status,
        notes=row.notes,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
