"""
tests/test_api_admin.py -- Admin catalog, settings, order, audit and user routes.

Each write route is checked for its effect on the store AND for the audit
entry it leaves behind. Audit query tests seed entries on two different
days through the store's clock and read them back over HTTP.
"""

from __future__ import annotations

from datetime import datetime, timezone

from catalog.models import Order
from catalog.store import generate_order_number

PRODUCTS = "/api/v1/admin/products"
SIZES = "/api/v1/admin/sizes"
SETTINGS = "/api/v1/admin/settings"
AUDIT = "/api/v1/admin/audit"


class TestProducts:
    def test_create_generates_slug_and_audits(self, harness) -> None:
        admin = harness.admin("business_processing")
        resp = harness.client.post(
            PRODUCTS, json={"title": "Mega Fidget Spinner", "price_gbp": 4.5}, headers=harness.headers(admin)
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["slug"] == "mega-fidget-spinner"
        assert body["is_active"] is True

        created = harness.entries("product_created")
        assert len(created) == 1
        assert created[0].resource_id == str(body["id"])
        assert created[0].user_email == admin.email
        assert created[0].details["slug"] == "mega-fidget-spinner"

    def test_duplicate_slug_is_409(self, harness) -> None:
        headers = harness.headers(harness.admin())
        harness.client.post(PRODUCTS, json={"title": "Cube", "price_gbp": 3}, headers=headers)
        resp = harness.client.post(PRODUCTS, json={"title": "Cube", "price_gbp": 4}, headers=headers)
        assert resp.status_code == 409
        assert len(harness.entries("product_created")) == 1

    def test_update_records_changed_fields(self, harness) -> None:
        headers = harness.headers(harness.admin())
        pid = harness.client.post(PRODUCTS, json={"title": "Cube", "price_gbp": 3}, headers=headers).json()["id"]

        resp = harness.client.put(f"{PRODUCTS}/{pid}", json={"price_gbp": 3.5, "stock": 12}, headers=headers)
        assert resp.status_code == 200, resp.text
        assert resp.json()["price_gbp"] == 3.5
        assert resp.json()["stock"] == 12
        assert harness.entries("product_updated")[0].details["updatedFields"] == ["price_gbp", "stock"]

    def test_update_with_no_fields_is_400(self, harness) -> None:
        headers = harness.headers(harness.admin())
        pid = harness.client.post(PRODUCTS, json={"title": "Cube", "price_gbp": 3}, headers=headers).json()["id"]
        resp = harness.client.put(f"{PRODUCTS}/{pid}", json={}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_input"

    def test_delete_is_soft(self, harness) -> None:
        headers = harness.headers(harness.admin())
        pid = harness.client.post(PRODUCTS, json={"title": "Cube", "price_gbp": 3}, headers=headers).json()["id"]

        assert harness.client.delete(f"{PRODUCTS}/{pid}", headers=headers).status_code == 204
        assert harness.client.get(PRODUCTS, headers=headers).json() == []
        hidden = harness.client.get(PRODUCTS, params={"include_inactive": "true"}, headers=headers).json()
        assert [p["id"] for p in hidden] == [pid]
        assert hidden[0]["is_active"] is False
        assert harness.entries("product_deleted")[0].details["title"] == "Cube"

    def test_missing_product_is_404(self, harness) -> None:
        headers = harness.headers(harness.admin())
        assert harness.client.get(f"{PRODUCTS}/999", headers=headers).status_code == 404
        assert harness.client.delete(f"{PRODUCTS}/999", headers=headers).status_code == 404
        assert harness.entries("product_deleted") == []


class TestSizes:
    def test_create_list_delete(self, harness) -> None:
        headers = harness.headers(harness.admin("business_processing"))
        small = harness.client.post(SIZES, json={"name": "Small", "short_code": "S", "display_order": 1}, headers=headers)
        large = harness.client.post(SIZES, json={"name": "Large", "short_code": "L", "display_order": 3}, headers=headers)
        assert small.status_code == large.status_code == 201

        listed = harness.client.get(SIZES, headers=headers).json()
        assert [s["name"] for s in listed] == ["Small", "Large"]

        assert harness.client.delete(f"{SIZES}/{small.json()['id']}", headers=headers).status_code == 204
        assert [s["name"] for s in harness.client.get(SIZES, headers=headers).json()] == ["Large"]
        assert harness.entries("size_created")[0].details["size_name"] == "Large"
        assert harness.entries("size_deleted")[0].details["size_name"] == "Small"

    def test_name_conflict_ignores_case(self, harness) -> None:
        headers = harness.headers(harness.admin())
        harness.client.post(SIZES, json={"name": "Medium"}, headers=headers)
        resp = harness.client.post(SIZES, json={"name": "MEDIUM"}, headers=headers)
        assert resp.status_code == 409

    def test_viewer_cannot_create(self, harness) -> None:
        resp = harness.client.post(SIZES, json={"name": "XL"}, headers=harness.headers(harness.admin("order_viewer")))
        assert resp.status_code == 403
        assert harness.entries("access_denied")[0].details["required"] == "EDIT_PRODUCTS"


class TestSettings:
    def test_get_is_camel_case(self, harness) -> None:
        resp = harness.client.get(SETTINGS, headers=harness.headers(harness.admin()))
        assert resp.status_code == 200
        data = resp.json()
        assert data["companyName"] == "Storefront"
        assert data["freeShippingThreshold"] == 20.0
        assert "company_name" not in data

    def test_update_merges_and_audits(self, harness) -> None:
        headers = harness.headers(harness.admin())
        resp = harness.client.put(SETTINGS, json={"companyName": "Fidget Co", "shippingCost": 3.5}, headers=headers)
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["success"] is True
        assert body["settings"]["companyName"] == "Fidget Co"
        assert body["settings"]["shippingCost"] == 3.5
        assert body["settings"]["currency"] == "GBP"

        assert harness.catalog.get_settings()["company_name"] == "Fidget Co"
        assert harness.entries("settings_updated")[0].details["updatedFields"] == ["companyName", "shippingCost"]

    def test_invalid_colour_is_422(self, harness) -> None:
        resp = harness.client.put(SETTINGS, json={"primaryColor": "blue"}, headers=harness.headers(harness.admin()))
        assert resp.status_code == 422
        assert harness.entries("settings_updated") == []

    def test_reset(self, harness) -> None:
        headers = harness.headers(harness.admin())
        harness.client.put(SETTINGS, json={"companyName": "Fidget Co"}, headers=headers)
        resp = harness.client.delete(SETTINGS, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["settings"]["companyName"] == "Storefront"
        assert len(harness.entries("settings_reset")) == 1

    def test_business_processing_cannot_read_settings(self, harness) -> None:
        resp = harness.client.get(SETTINGS, headers=harness.headers(harness.admin("business_processing")))
        assert resp.status_code == 403


class TestOrders:
    def _seed(self, harness) -> int:
        return harness.catalog.create_order(
            Order(
                order_number=generate_order_number(),
                customer_email="shopper@example.com",
                customer_name="Shopper",
                items=[{"product_id": 1, "quantity": 2}],
                subtotal=9.0,
                shipping=2.99,
                total=11.99,
            )
        )

    def test_list_and_update_status(self, harness) -> None:
        oid = self._seed(harness)
        headers = harness.headers(harness.admin("business_processing"))

        listed = harness.client.get("/api/v1/admin/orders", headers=headers).json()
        assert [o["id"] for o in listed] == [oid]

        resp = harness.client.patch(f"/api/v1/admin/orders/{oid}/status", json={"status": "shipped"}, headers=headers)
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "shipped"

        entry = harness.entries("order_status_updated")[0]
        assert entry.details["from"] == "pending"
        assert entry.details["to"] == "shipped"
        assert entry.details["orderNumber"] == listed[0]["order_number"]

    def test_filter_by_status(self, harness) -> None:
        self._seed(harness)
        headers = harness.headers(harness.admin("order_viewer"))
        assert harness.client.get("/api/v1/admin/orders", params={"status": "shipped"}, headers=headers).json() == []

    def test_unknown_status_is_422(self, harness) -> None:
        oid = self._seed(harness)
        resp = harness.client.patch(
            f"/api/v1/admin/orders/{oid}/status", json={"status": "teleported"}, headers=harness.headers(harness.admin())
        )
        assert resp.status_code == 422

    def test_missing_order_is_404(self, harness) -> None:
        resp = harness.client.patch(
            "/api/v1/admin/orders/999/status", json={"status": "paid"}, headers=harness.headers(harness.admin())
        )
        assert resp.status_code == 404
        assert harness.entries("order_status_updated") == []

    def test_viewer_cannot_change_status(self, harness) -> None:
        oid = self._seed(harness)
        resp = harness.client.patch(
            f"/api/v1/admin/orders/{oid}/status",
            json={"status": "paid"},
            headers=harness.headers(harness.admin("order_viewer")),
        )
        assert resp.status_code == 403
        assert harness.catalog.get_order(oid).status == "pending"


class TestAuditQuery:
    def _seed_two_days(self, harness, clock) -> None:
        harness.audit.clock = clock
        clock.now = datetime(2026, 2, 10, 8, 0, tzinfo=timezone.utc)
        harness.audit.record("product_created", details={"n": 1})
        clock.advance(hours=9)
        harness.audit.record("product_updated", details={"n": 2})
        clock.now = datetime(2026, 2, 11, 10, 0, tzinfo=timezone.utc)
        harness.audit.record("product_deleted", details={"n": 3})

    def test_single_day_range(self, harness, clock) -> None:
        self._seed_two_days(harness, clock)
        resp = harness.client.get(
            AUDIT, params={"from": "2026-02-10", "to": "2026-02-10", "limit": 10}, headers=harness.headers(harness.admin())
        )
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert [e["details"]["n"] for e in body["logs"]] == [2, 1]
        assert body["pagination"]["total"] == 2
        assert body["pagination"]["totalPages"] == 1
        assert body["pagination"]["limit"] == 10

    def test_filter_by_action(self, harness, clock) -> None:
        self._seed_two_days(harness, clock)
        resp = harness.client.get(AUDIT, params={"action": "product_deleted"}, headers=harness.headers(harness.admin()))
        assert [e["action"] for e in resp.json()["logs"]] == ["product_deleted"]

    def test_limit_is_clamped(self, harness) -> None:
        resp = harness.client.get(AUDIT, params={"limit": 5000}, headers=harness.headers(harness.admin()))
        assert resp.status_code == 200
        assert resp.json()["pagination"]["limit"] == 100

    def test_bad_date_is_400(self, harness) -> None:
        resp = harness.client.get(AUDIT, params={"from": "last tuesday"}, headers=harness.headers(harness.admin()))
        assert resp.status_code == 400

    def test_requires_audit_permission(self, harness) -> None:
        resp = harness.client.get(AUDIT, headers=harness.headers(harness.admin("business_processing")))
        assert resp.status_code == 403
        assert harness.entries("access_denied")[0].details["required"] == "VIEW_AUDIT_LOGS"


class TestUsers:
    USERS = "/api/v1/admin/users"
    NEW_USER = {"email": "New.Staff@Example.com", "password": "a-long-enough-pass", "name": "New Staff"}

    def test_create_and_list(self, harness) -> None:
        admin = harness.admin()
        headers = harness.headers(admin)
        resp = harness.client.post(self.USERS, json=self.NEW_USER, headers=headers)
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["email"] == "new.staff@example.com"
        assert body["role"] == "business_processing"
        assert body["is_active"] is True
        assert "password_hash" not in body

        created = harness.entries("user_created")
        assert len(created) == 1
        assert created[0].details == {"email": "new.staff@example.com", "role": "business_processing"}
        assert created[0].user_id == admin.id

        listed = harness.client.get(self.USERS, headers=headers).json()
        assert {u["email"] for u in listed} == {admin.email, "new.staff@example.com"}

    def test_duplicate_email_is_409(self, harness) -> None:
        headers = harness.headers(harness.admin())
        harness.client.post(self.USERS, json=self.NEW_USER, headers=headers)
        resp = harness.client.post(self.USERS, json={**self.NEW_USER, "email": "NEW.STAFF@example.com"}, headers=headers)
        assert resp.status_code == 409
        assert len(harness.entries("user_created")) == 1

    def test_short_password_is_422(self, harness) -> None:
        resp = harness.client.post(
            self.USERS, json={**self.NEW_USER, "password": "short"}, headers=harness.headers(harness.admin())
        )
        assert resp.status_code == 422
        assert harness.entries("user_created") == []

    def test_role_change_is_audited(self, harness) -> None:
        admin = harness.admin()
        staff = harness.admin("order_viewer")
        resp = harness.client.patch(
            f"{self.USERS}/{staff.id}", json={"role": "business_processing"}, headers=harness.headers(admin)
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["role"] == "business_processing"
        assert harness.principals.get_by_id(staff.id).role == "business_processing"

        changed = harness.entries("user_role_changed")
        assert len(changed) == 1
        assert changed[0].details["oldRole"] == "order_viewer"
        assert changed[0].details["newRole"] == "business_processing"
        assert changed[0].resource_id == str(staff.id)
        assert harness.entries("user_updated") == []

    def test_cannot_change_own_role(self, harness) -> None:
        admin = harness.admin()
        resp = harness.client.patch(
            f"{self.USERS}/{admin.id}", json={"role": "order_viewer"}, headers=harness.headers(admin)
        )
        assert resp.status_code == 400
        assert harness.principals.get_by_id(admin.id).role == "website_admin"
        assert harness.entries("user_role_changed") == []

    def test_cannot_deactivate_self(self, harness) -> None:
        admin = harness.admin()
        headers = harness.headers(admin)
        resp = harness.client.patch(f"{self.USERS}/{admin.id}", json={"is_active": False}, headers=headers)
        assert resp.status_code == 400
        assert harness.client.delete(f"{self.USERS}/{admin.id}", headers=headers).status_code == 400
        assert harness.principals.get_by_id(admin.id).is_active is True

    def test_own_name_can_change(self, harness) -> None:
        admin = harness.admin()
        resp = harness.client.patch(f"{self.USERS}/{admin.id}", json={"name": "Renamed"}, headers=harness.headers(admin))
        assert resp.status_code == 200
        assert harness.entries("user_updated")[0].details["updatedFields"] == ["name"]

    def test_password_reset(self, harness) -> None:
        admin = harness.admin()
        staff = harness.admin("business_processing")
        resp = harness.client.patch(
            f"{self.USERS}/{staff.id}", json={"password": "brand-new-password"}, headers=harness.headers(admin)
        )
        assert resp.status_code == 200, resp.text

        changed = harness.entries("password_changed")
        assert len(changed) == 1
        assert changed[0].details == {"changedBy": admin.email, "targetEmail": staff.email}
        assert "brand-new-password" not in str(changed[0].details)

        login = "/api/v1/admin/auth/login"
        fresh = harness.client.post(login, json={"email": staff.email, "password": "brand-new-password"})
        assert fresh.status_code == 200
        stale = harness.client.post(login, json={"email": staff.email, "password": harness.password})
        assert stale.status_code == 401

    def test_deactivated_user_token_stops_working(self, harness) -> None:
        admin = harness.admin()
        staff = harness.admin("business_processing")
        staff_headers = harness.headers(staff)
        assert harness.client.get(PRODUCTS, headers=staff_headers).status_code == 200

        resp = harness.client.patch(f"{self.USERS}/{staff.id}", json={"is_active": False}, headers=harness.headers(admin))
        assert resp.status_code == 200
        assert resp.json()["is_active"] is False
        assert harness.entries("user_deactivated")[0].details == {"email": staff.email}
        assert harness.client.get(PRODUCTS, headers=staff_headers).status_code == 401

    def test_delete_deactivates(self, harness) -> None:
        admin = harness.admin()
        staff = harness.admin("order_viewer")
        resp = harness.client.delete(f"{self.USERS}/{staff.id}", headers=harness.headers(admin))
        assert resp.status_code == 204
        kept = harness.principals.get_by_id(staff.id)
        assert kept is not None
        assert kept.is_active is False
        assert len(harness.entries("user_deactivated")) == 1

    def test_empty_update_is_400(self, harness) -> None:
        admin = harness.admin()
        staff = harness.admin("order_viewer")
        resp = harness.client.patch(f"{self.USERS}/{staff.id}", json={}, headers=harness.headers(admin))
        assert resp.status_code == 400

    def test_missing_user_is_404(self, harness) -> None:
        resp = harness.client.patch(f"{self.USERS}/9999", json={"name": "x"}, headers=harness.headers(harness.admin()))
        assert resp.status_code == 404

    def test_business_processing_cannot_list(self, harness) -> None:
        resp = harness.client.get(self.USERS, headers=harness.headers(harness.admin("business_processing")))
        assert resp.status_code == 403
        assert harness.entries("access_denied")[0].details["required"] == "VIEW_USERS"

    def test_order_viewer_cannot_create(self, harness) -> None:
        resp = harness.client.post(self.USERS, json=self.NEW_USER, headers=harness.headers(harness.admin("order_viewer")))
        assert resp.status_code == 403
        assert harness.entries("access_denied")[0].details["required"] == "MANAGE_USERS"
        assert harness.principals.get_by_email(self.NEW_USER["email"]) is None
