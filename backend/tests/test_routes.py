"""
HTTP surface tests for the catalog, customer, invoice, return and settings routes.

Verifies request validation, status codes and the JSON error envelope:
{"error": "...", "details": ...}
"""

import pytest

from retail_billing.extensions import db
from retail_billing.models import LoyaltyHistory, StockHistory

from conftest import reload


# =============================================================================
# PRODUCTS
# =============================================================================


class TestProducts:
    def test_create_records_initial_stock(self, client, manager_headers, store_settings):
        resp = client.post(
            "/api/products",
            json={"name": "Espresso beans", "price_cents": 1899, "stock": 24, "sku": "ESP-1"},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        product = resp.get_json()["product"]
        # Store default tax applies when none is given
        assert product["tax_rate_bps"] == 800
        assert product["stock"] == 24

        entry = db.session.query(StockHistory).filter_by(product_id=product["id"]).one()
        assert entry.type == "purchase"
        assert entry.quantity_delta == 24

    def test_create_requires_name_and_price(self, client, manager_headers):
        resp = client.post("/api/products", json={"name": "No price"}, headers=manager_headers)
        assert resp.status_code == 400
        assert "price_cents" in resp.get_json()["error"]

    def test_rejects_unknown_field(self, client, manager_headers):
        resp = client.post(
            "/api/products",
            json={"name": "X", "price_cents": 1, "colour": "red"},
            headers=manager_headers,
        )
        assert resp.status_code == 400

    def test_rejects_negative_price(self, client, manager_headers):
        resp = client.post("/api/products", json={"name": "X", "price_cents": -1}, headers=manager_headers)
        assert resp.status_code == 400

    def test_duplicate_sku_conflicts(self, client, manager_headers, make_product):
        make_product(sku="DUP-1")
        resp = client.post(
            "/api/products",
            json={"name": "Copy", "price_cents": 100, "sku": "DUP-1"},
            headers=manager_headers,
        )
        assert resp.status_code == 409

    def test_stock_edit_goes_through_ledger(self, client, manager_headers, make_product):
        product = make_product(stock=10)
        resp = client.put(
            f"/api/products/{product.id}",
            json={"stock": 7, "stock_note": "Breakage"},
            headers=manager_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["product"]["stock"] == 7

        resp = client.get(f"/api/products/{product.id}/stock-history?type=adjustment", headers=manager_headers)
        history = resp.get_json()["history"]
        assert len(history) == 1
        assert history[0]["quantity_delta"] == -3
        assert history[0]["note"] == "Breakage"

    def test_stock_history_unknown_product(self, client, manager_headers):
        resp = client.get("/api/products/999/stock-history", headers=manager_headers)
        assert resp.status_code == 404

    def test_search_and_low_stock(self, client, cashier_headers, make_product):
        make_product(name="Green Tea", stock=1, min_stock=5)
        make_product(name="Black Coffee", stock=50)

        resp = client.get("/api/products?search=tea", headers=cashier_headers)
        assert [p["name"] for p in resp.get_json()["items"]] == ["Green Tea"]

        resp = client.get("/api/products?low_stock=true", headers=cashier_headers)
        assert [p["name"] for p in resp.get_json()["items"]] == ["Green Tea"]

    def test_pagination(self, client, cashier_headers, make_product):
        for _ in range(3):
            make_product()
        resp = client.get("/api/products?page=2&per_page=2", headers=cashier_headers)
        body = resp.get_json()
        assert body["count"] == 1
        assert body["pagination"]["total"] == 3
        assert body["pagination"]["has_prev"] is True

    def test_bulk_update_reports_each_entry(self, client, manager_headers, make_product):
        product = make_product(price_cents=500)
        resp = client.patch(
            "/api/products/bulk",
            json={"products": [
                {"id": product.id, "price_cents": 650},
                {"id": 9999, "price_cents": 1},
                {"price_cents": 1},
            ]},
            headers=manager_headers,
        )
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["succeeded"] == 1
        assert body["failed"] == 2
        assert reload(product).price_cents == 650

    def test_delete_unused_product(self, client, admin_headers, make_product):
        product = make_product(stock=4)
        resp = client.delete(f"/api/products/{product.id}", headers=admin_headers)
        assert resp.status_code == 200
        assert client.get(f"/api/products/{product.id}", headers=admin_headers).status_code == 404

    def test_delete_invoiced_product_rejected(self, client, admin_headers, cashier_headers, make_product):
        product = make_product()
        client.post(
            "/api/invoices",
            json={"items": [{"product_id": product.id, "quantity": 1}]},
            headers=cashier_headers,
        )
        resp = client.delete(f"/api/products/{product.id}", headers=admin_headers)
        assert resp.status_code == 400
        assert "suggestion" in resp.get_json()["details"]


# =============================================================================
# CATEGORIES
# =============================================================================


class TestCategories:
    def test_create_and_duplicate_name(self, client, manager_headers):
        resp = client.post("/api/categories", json={"name": "Snacks"}, headers=manager_headers)
        assert resp.status_code == 201

        resp = client.post("/api/categories", json={"name": "snacks"}, headers=manager_headers)
        assert resp.status_code == 409

    def test_delete_with_products_needs_force(self, client, admin_headers, category, make_product):
        product = make_product(category=category)

        resp = client.delete(f"/api/categories/{category.id}", headers=admin_headers)
        assert resp.status_code == 400
        assert resp.get_json()["details"]["product_count"] == 1

        resp = client.delete(f"/api/categories/{category.id}?force=true", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json() == {"deleted": True, "uncategorized_products": 1}
        assert reload(product).category_id is None

    def test_list_counts_products(self, client, cashier_headers, category, make_product):
        make_product(category=category)
        make_product(category=category)
        resp = client.get("/api/categories", headers=cashier_headers)
        assert resp.get_json()["categories"][0]["product_count"] == 2


# =============================================================================
# CUSTOMERS
# =============================================================================


class TestCustomers:
    def test_create_and_fetch(self, client, cashier_headers):
        resp = client.post(
            "/api/customers",
            json={"name": "Grace", "email": "grace@example.test", "phone": "555-0100"},
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        customer_id = resp.get_json()["customer"]["id"]

        resp = client.get(f"/api/customers/{customer_id}", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["customer"]["name"] == "Grace"

    def test_duplicate_email_conflicts(self, client, cashier_headers, make_customer):
        existing = make_customer()
        resp = client.post(
            "/api/customers",
            json={"name": "Again", "email": existing.email},
            headers=cashier_headers,
        )
        assert resp.status_code == 409

    def test_loyalty_edit_writes_adjustment(self, client, manager_headers, make_customer):
        customer = make_customer()
        resp = client.put(
            f"/api/customers/{customer.id}",
            json={"loyalty_points": 40, "points_note": "Goodwill"},
            headers=manager_headers,
        )
        assert resp.status_code == 200
        assert resp.get_json()["customer"]["loyalty_points"] == 40

        entry = db.session.query(LoyaltyHistory).filter_by(customer_id=customer.id).one()
        assert entry.type == "ADJUST"
        assert entry.points == 40

    def test_negative_points_rejected(self, client, manager_headers, make_customer):
        customer = make_customer()
        resp = client.put(
            f"/api/customers/{customer.id}",
            json={"loyalty_points": -5},
            headers=manager_headers,
        )
        assert resp.status_code == 400

    def test_delete_customer_with_invoices_rejected(
        self, client, admin_headers, cashier_headers, make_customer, make_product
    ):
        customer = make_customer()
        product = make_product()
        client.post(
            "/api/invoices",
            json={"customer_id": customer.id, "items": [{"product_id": product.id, "quantity": 1}]},
            headers=cashier_headers,
        )
        resp = client.delete(f"/api/customers/{customer.id}", headers=admin_headers)
        assert resp.status_code == 400


# =============================================================================
# INVOICES & RETURNS
# =============================================================================


class TestInvoiceRoutes:
    def test_create_returns_items(self, client, cashier_headers, make_product):
        product = make_product(price_cents=10000, tax_rate_bps=1000)
        resp = client.post(
            "/api/invoices",
            json={"items": [{"product_id": product.id, "quantity": 2}], "payment_method": "cash"},
            headers=cashier_headers,
        )
        assert resp.status_code == 201
        invoice = resp.get_json()["invoice"]
        assert invoice["total_cents"] == 22000
        assert len(invoice["items"]) == 1

    def test_insufficient_stock_is_400_with_details(self, client, cashier_headers, make_product):
        product = make_product(stock=1)
        resp = client.post(
            "/api/invoices",
            json={"items": [{"product_id": product.id, "quantity": 5}]},
            headers=cashier_headers,
        )
        assert resp.status_code == 400
        assert resp.get_json()["details"]["items"][0]["in_stock"] == 1

    def test_unknown_product_is_404(self, client, cashier_headers, db_session):
        resp = client.post(
            "/api/invoices",
            json={"items": [{"product_id": 12345, "quantity": 1}]},
            headers=cashier_headers,
        )
        assert resp.status_code == 404

    def test_empty_items_is_400(self, client, cashier_headers):
        resp = client.post("/api/invoices", json={"items": []}, headers=cashier_headers)
        assert resp.status_code == 400

    def test_update_rejects_amount_fields(self, client, admin_headers, cashier_headers, make_product):
        product = make_product()
        created = client.post(
            "/api/invoices",
            json={"items": [{"product_id": product.id, "quantity": 1}], "status": "DRAFT"},
            headers=cashier_headers,
        ).get_json()["invoice"]

        resp = client.put(f"/api/invoices/{created['id']}", json={"total_cents": 1}, headers=admin_headers)
        assert resp.status_code == 400

        resp = client.put(f"/api/invoices/{created['id']}", json={"status": "PAID"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["invoice"]["status"] == "PAID"

    def test_void_twice(self, client, admin_headers, cashier_headers, make_product):
        product = make_product()
        created = client.post(
            "/api/invoices",
            json={"items": [{"product_id": product.id, "quantity": 1}]},
            headers=cashier_headers,
        ).get_json()["invoice"]

        assert client.delete(f"/api/invoices/{created['id']}", headers=admin_headers).status_code == 200
        resp = client.delete(f"/api/invoices/{created['id']}", headers=admin_headers)
        assert resp.status_code == 400

    def test_return_flow(self, client, manager_headers, cashier_headers, make_product):
        product = make_product(stock=5)
        invoice = client.post(
            "/api/invoices",
            json={"items": [{"product_id": product.id, "quantity": 2}]},
            headers=cashier_headers,
        ).get_json()["invoice"]

        resp = client.post(
            "/api/returns",
            json={
                "invoice_id": invoice["id"],
                "status": "PENDING",
                "items": [{"product_id": product.id, "quantity": 2, "reason": "Wrong size"}],
            },
            headers=manager_headers,
        )
        assert resp.status_code == 201
        ret = resp.get_json()["return"]
        assert ret["status"] == "PENDING"

        resp = client.get(f"/api/invoices/{invoice['id']}/returnable", headers=cashier_headers)
        assert resp.get_json()["items"][0]["returnable_quantity"] == 0

        resp = client.post(f"/api/returns/{ret['id']}/complete", headers=manager_headers)
        assert resp.status_code == 200

        resp = client.get(f"/api/invoices/{invoice['id']}", headers=cashier_headers)
        detail = resp.get_json()["invoice"]
        assert detail["status"] == "REFUNDED"
        assert len(detail["returns"]) == 1

        resp = client.post(f"/api/returns/{ret['id']}/complete", headers=manager_headers)
        assert resp.status_code == 409

    @pytest.mark.parametrize("target,url", [
        ("retail_billing.services.invoice_service.get_invoice_detail", "/api/invoices/1"),
        ("retail_billing.services.return_service.get_returnable_items", "/api/invoices/1/returnable"),
        ("retail_billing.services.return_service.list_returns", "/api/returns"),
        ("retail_billing.services.return_service.get_return", "/api/returns/1"),
    ])
    def test_unexpected_failure_is_json_500(self, client, manager_headers, monkeypatch, caplog, target, url):
        def explode(*args, **kwargs):
            raise RuntimeError("database went away")

        monkeypatch.setattr(target, explode)
        resp = client.get(url, headers=manager_headers)

        assert resp.status_code == 500
        assert resp.get_json() == {"error": "Internal server error"}
        assert any(r.levelname == "ERROR" and r.exc_info for r in caplog.records)


# =============================================================================
# SETTINGS & ACTIVITY
# =============================================================================


class TestSettings:
    def test_read_defaults_without_row(self, client, cashier_headers):
        resp = client.get("/api/settings", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["settings"]["currency"] == "USD"

    def test_update(self, client, admin_headers):
        resp = client.put(
            "/api/settings",
            json={"store_name": "Corner Shop", "default_tax_rate_bps": 1500},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        settings = resp.get_json()["settings"]
        assert settings["store_name"] == "Corner Shop"
        assert settings["default_tax_rate_bps"] == 1500

    def test_rejects_bad_tax_rate(self, client, admin_headers):
        resp = client.put("/api/settings", json={"default_tax_rate_bps": 10_001}, headers=admin_headers)
        assert resp.status_code == 400


class TestActivity:
    def test_actions_are_logged(self, client, admin_headers, manager_headers):
        client.post("/api/categories", json={"name": "Dairy"}, headers=manager_headers)

        resp = client.get("/api/activity?action=CREATE_CATEGORY", headers=admin_headers)
        assert resp.status_code == 200
        entries = resp.get_json()["items"]
        assert len(entries) == 1
        assert entries[0]["entity_type"] == "category"
