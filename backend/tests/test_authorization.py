"""
Authorization tests.

Verifies:
- Requests without a resolvable identity return 401
- The gateway shared secret is enforced when configured
- Cashiers are denied manager/admin operations (403)
- Managers and admins inherit everything below them
"""

import pytest

from retail_billing.extensions import db
from retail_billing.permissions import ACTION_MIN_ROLE, ALL_ROLES, actions_for_role, allows

from conftest import auth_headers


# =============================================================================
# UNAUTHENTICATED ACCESS - 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without an identity."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("GET", "/api/categories"),
            ("GET", "/api/customers"),
            ("GET", "/api/invoices"),
            ("POST", "/api/invoices"),
            ("DELETE", "/api/invoices/1"),
            ("GET", "/api/returns"),
            ("POST", "/api/returns"),
            ("GET", "/api/reports/sales"),
            ("GET", "/api/reports/dashboard"),
            ("GET", "/api/settings"),
            ("GET", "/api/activity"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
        assert resp.get_json() == {"error": "Authentication required"}

    def test_non_numeric_identity(self, client, db_session):
        resp = client.get("/api/products", headers={"X-User-Id": "admin"})
        assert resp.status_code == 401

    def test_unknown_user(self, client, db_session):
        resp = client.get("/api/products", headers={"X-User-Id": "424242"})
        assert resp.status_code == 401

    def test_inactive_user(self, client, cashier):
        cashier.is_active = False
        db.session.commit()

        resp = client.get("/api/products", headers=auth_headers(cashier))
        assert resp.status_code == 401

    def test_health_is_public(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "ok"


class TestGatewaySecret:
    def test_secret_required_when_configured(self, app, client, admin, monkeypatch):
        monkeypatch.setitem(app.config, "AUTH_GATEWAY_SECRET", "s3cret")

        resp = client.get("/api/products", headers=auth_headers(admin))
        assert resp.status_code == 401

        resp = client.get(
            "/api/products",
            headers={**auth_headers(admin), "X-Auth-Gateway-Secret": "wrong"},
        )
        assert resp.status_code == 401

        resp = client.get(
            "/api/products",
            headers={**auth_headers(admin), "X-Auth-Gateway-Secret": "s3cret"},
        )
        assert resp.status_code == 200


# =============================================================================
# CASHIER DENIED HIGH-RISK OPERATIONS - 403
# =============================================================================


class TestCashierDeniedHighRisk:
    """Cashier role cannot perform privileged operations."""

    def test_cannot_void_invoice(self, client, cashier_headers):
        resp = client.delete("/api/invoices/1", headers=cashier_headers)
        assert resp.status_code == 403
        body = resp.get_json()
        assert body["error"] == "Permission denied"
        assert body["required_permission"] == "VOID_INVOICE"

    def test_cannot_update_invoice(self, client, cashier_headers):
        resp = client.put("/api/invoices/1", json={"status": "PAID"}, headers=cashier_headers)
        assert resp.status_code == 403

    def test_cannot_view_reports(self, client, cashier_headers):
        for path in ("/api/reports/sales", "/api/reports/inventory", "/api/reports/customers", "/api/reports/dashboard"):
            resp = client.get(path, headers=cashier_headers)
            assert resp.status_code == 403, path

    def test_cannot_create_return(self, client, cashier_headers):
        resp = client.post("/api/returns", json={"invoice_id": 1, "items": []}, headers=cashier_headers)
        assert resp.status_code == 403

    def test_cannot_manage_products(self, client, cashier_headers):
        resp = client.post("/api/products", json={"name": "X", "price_cents": 100}, headers=cashier_headers)
        assert resp.status_code == 403

    def test_cannot_change_settings(self, client, cashier_headers):
        resp = client.put("/api/settings", json={"store_name": "Mine"}, headers=cashier_headers)
        assert resp.status_code == 403

    def test_cannot_read_activity_log(self, client, cashier_headers):
        resp = client.get("/api/activity", headers=cashier_headers)
        assert resp.status_code == 403

    def test_denial_is_logged(self, client, cashier_headers, caplog):
        with caplog.at_level("WARNING"):
            client.get("/api/reports/sales", headers=cashier_headers)
        assert any("Permission denied" in r.getMessage() for r in caplog.records)


class TestCashierAllowed:
    def test_can_sell(self, client, cashier_headers, make_product):
        product = make_product(stock=3)
        resp = client.post(
            "/api/invoices",
            json={"items": [{"product_id": product.id, "quantity": 1}]},
            headers=cashier_headers,
        )
        assert resp.status_code == 201

    def test_can_browse(self, client, cashier_headers):
        for path in ("/api/products", "/api/categories", "/api/customers", "/api/invoices", "/api/returns"):
            resp = client.get(path, headers=cashier_headers)
            assert resp.status_code == 200, path


# =============================================================================
# PRIVILEGED ROLES
# =============================================================================


class TestManagerAccess:
    def test_can_view_reports(self, client, manager_headers):
        resp = client.get("/api/reports/sales?type=sales", headers=manager_headers)
        assert resp.status_code == 200

    def test_cannot_void(self, client, manager_headers):
        resp = client.delete("/api/invoices/1", headers=manager_headers)
        assert resp.status_code == 403

    def test_cannot_delete_product(self, client, manager_headers, make_product):
        product = make_product()
        resp = client.delete(f"/api/products/{product.id}", headers=manager_headers)
        assert resp.status_code == 403


class TestAdminAccess:
    def test_can_void(self, client, admin_headers, cashier, make_product):
        from retail_billing.services.invoice_service import create_invoice

        product = make_product()
        invoice = create_invoice(user_id=cashier.id, items=[{"product_id": product.id, "quantity": 1}])

        resp = client.delete(f"/api/invoices/{invoice.id}", json={"reason": "Test"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["invoice"]["status"] == "VOIDED"

    def test_can_read_activity_log(self, client, admin_headers):
        resp = client.get("/api/activity", headers=admin_headers)
        assert resp.status_code == 200


# =============================================================================
# POLICY TABLE
# =============================================================================


class TestPolicy:
    def test_hierarchy_is_monotonic(self):
        cashier = set(actions_for_role("CASHIER"))
        manager = set(actions_for_role("MANAGER"))
        admin = set(actions_for_role("ADMIN"))
        assert cashier < manager < admin
        assert admin == set(ACTION_MIN_ROLE)

    @pytest.mark.parametrize("role", ALL_ROLES)
    def test_unknown_action_denied(self, role):
        assert allows(role, "LAUNCH_ROCKETS") is False

    @pytest.mark.parametrize("role", [None, "", "OWNER"])
    def test_unknown_role_denied(self, role):
        assert allows(role, "VIEW_PRODUCTS") is False

    def test_role_is_case_insensitive(self):
        assert allows("manager", "VIEW_REPORTS") is True
