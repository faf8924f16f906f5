"""
tests/test_catalog_store.py -- CatalogStore persistence rules.

Covers slug uniqueness, soft delete, case-insensitive size names, settings
merge/reset, order status transitions, and the amount-mismatch counter that
the price-manipulation detector reads.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from catalog.models import GiftCard, Order, Product, Size
from catalog.store import DEFAULT_SETTINGS, CatalogStore, generate_order_number, generate_slug
from core.db import utc_now
from core.errors import Conflict


@pytest.fixture
def catalog(db_url):
    store = CatalogStore(db_url)
    yield store
    store.close()


def _order(notes: str | None = None) -> Order:
    return Order(
        order_number=generate_order_number(),
        customer_email="shopper@example.com",
        customer_name="Shopper",
        items=[{"product_id": 1, "quantity": 1}],
        subtotal=5.0,
        shipping=2.99,
        total=7.99,
        notes=notes,
    )


class TestProducts:
    def test_duplicate_slug_conflicts(self, catalog: CatalogStore) -> None:
        catalog.create_product(Product(title="Spinner", slug="spinner", price_gbp=4.5))
        with pytest.raises(Conflict):
            catalog.create_product(Product(title="Spinner 2", slug="spinner", price_gbp=5.0))

    def test_update_into_taken_slug_conflicts(self, catalog: CatalogStore) -> None:
        catalog.create_product(Product(title="A", slug="a", price_gbp=1.0))
        b = catalog.create_product(Product(title="B", slug="b", price_gbp=1.0))
        with pytest.raises(Conflict):
            catalog.update_product(b, slug="a")

    def test_soft_delete_hides_but_keeps_row(self, catalog: CatalogStore) -> None:
        pid = catalog.create_product(Product(title="Cube", slug="cube", price_gbp=3.0, tags=["fidget"]))
        assert catalog.soft_delete_product(pid) is True
        assert catalog.list_products() == []
        assert catalog.get_products([pid]) == {}
        kept = catalog.get_product(pid)
        assert kept is not None
        assert kept.is_active is False
        assert kept.tags == ["fidget"]

    def test_update_missing_product(self, catalog: CatalogStore) -> None:
        assert catalog.update_product(999, title="Ghost") is False

    def test_generate_slug(self) -> None:
        assert generate_slug("  Mega Fidget -- Spinner!! ") == "mega-fidget-spinner"


class TestSizes:
    def test_name_unique_case_insensitively(self, catalog: CatalogStore) -> None:
        catalog.create_size(Size(name="Large", short_code="L"))
        with pytest.raises(Conflict):
            catalog.create_size(Size(name="large"))

    def test_rename_onto_itself_is_allowed(self, catalog: CatalogStore) -> None:
        sid = catalog.create_size(Size(name="Medium", short_code="M"))
        assert catalog.update_size(sid, "MEDIUM", "M", 2) is True
        assert catalog.get_size(sid).name == "MEDIUM"

    def test_list_orders_by_display_order(self, catalog: CatalogStore) -> None:
        catalog.create_size(Size(name="Large", display_order=3))
        catalog.create_size(Size(name="Small", display_order=1))
        assert [s.name for s in catalog.list_sizes()] == ["Small", "Large"]


class TestSettings:
    def test_defaults_then_merge_then_reset(self, catalog: CatalogStore) -> None:
        assert catalog.get_settings() == DEFAULT_SETTINGS
        merged = catalog.update_settings({"company_name": "Fidget Co", "shipping_cost": 3.5, "bogus": 1})
        assert merged["company_name"] == "Fidget Co"
        assert merged["shipping_cost"] == 3.5
        assert "bogus" not in merged

        catalog.update_settings({"company_name": "Fidget Ltd"})
        assert catalog.get_settings()["company_name"] == "Fidget Ltd"

        assert catalog.reset_settings() == DEFAULT_SETTINGS
        assert catalog.get_settings() == DEFAULT_SETTINGS


class TestGiftCardsAndOrders:
    def test_gift_card_lookup_is_case_insensitive(self, catalog: CatalogStore) -> None:
        catalog.create_gift_card(GiftCard(code="GC-ABCD-EFGH-JKLM", initial_balance=25, current_balance=10))
        card = catalog.get_gift_card_by_code("gc-abcd-efgh-jklm")
        assert card is not None
        assert card.current_balance == 10

    def test_duplicate_gift_card_conflicts(self, catalog: CatalogStore) -> None:
        catalog.create_gift_card(GiftCard(code="GC-ABCD-EFGH-JKLM", initial_balance=25, current_balance=25))
        with pytest.raises(Conflict):
            catalog.create_gift_card(GiftCard(code="GC-ABCD-EFGH-JKLM", initial_balance=5, current_balance=5))

    def test_update_status_returns_previous(self, catalog: CatalogStore) -> None:
        oid = catalog.create_order(_order())
        assert catalog.update_order_status(oid, "processing") == "pending"
        assert catalog.get_order(oid).status == "processing"
        assert catalog.update_order_status(9999, "shipped") is None

    def test_count_amount_mismatches(self, catalog: CatalogStore) -> None:
        catalog.create_order(_order())
        catalog.create_order(_order("AMOUNT MISMATCH: expected 12.99, received 0.99"))
        catalog.create_order(_order("amount mismatch: expected 5.00, received 1.00"))
        since = utc_now() - timedelta(hours=24)
        assert catalog.count_amount_mismatches(since) == 2
        assert catalog.count_amount_mismatches(utc_now() + timedelta(minutes=1)) == 0
