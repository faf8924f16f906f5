"""
catalog/models.py -- Domain dataclasses for storefront collaborator data.

Pure data containers. Persistence and the few rules these tables have
(slug uniqueness, soft delete, the amount-mismatch marker) live in
catalog/store.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

ORDER_STATUSES = ("pending", "paid", "processing", "shipped", "delivered", "cancelled", "refunded")

# Written into orders.notes when the amount a customer submitted does not
# match the catalog price. The price-manipulation detector counts it.
AMOUNT_MISMATCH_MARKER = "AMOUNT MISMATCH"


@dataclass
class Product:
    """A catalog product. Deletion is soft: is_active flips to False.

    id is None before the record is written to the database.
    """

    title: str
    slug: str
    price_gbp: float
    id: Optional[int] = None
    description: str = ""
    category: str = "uncategorized"
    tags: list[str] = field(default_factory=list)
    images: list[str] = field(default_factory=list)
    stock: int = 0
    is_active: bool = True
    created_at: str = ""
    updated_at: Optional[str] = None


@dataclass
class Size:
    name: str
    id: Optional[int] = None
    short_code: Optional[str] = None
    display_order: int = 0
    created_at: str = ""


@dataclass
class GiftCard:
    code: str  # GC-XXXX-XXXX-XXXX
    initial_balance: float
    current_balance: float
    id: Optional[int] = None
    currency: str = "GBP"
    status: str = "active"  # "pending" | "active" | "depleted" | "expired"
    expires_at: Optional[str] = None
    created_at: str = ""


@dataclass
class Order:
    order_number: str
    customer_email: str
    customer_name: str
    items: list[dict[str, Any]]
    subtotal: float
    shipping: float
    total: float
    id: Optional[int] = None
    status: str = "pending"
    notes: Optional[str] = None
    created_at: str = ""
    updated_at: Optional[str] = None

    @property
    def amount_mismatch(self) -> bool:
        return bool(self.notes) and AMOUNT_MISMATCH_MARKER in self.notes.upper()
