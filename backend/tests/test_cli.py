"""
CLI command tests: user management and ledger reconciliation.
"""

from retail_billing.extensions import db
from retail_billing.models import ActivityLog, User
from retail_billing.services.inventory_service import get_ledger_quantity

from conftest import reload


class TestLedgerCommands:
    def test_reconcile_stock_clean(self, app, make_product):
        make_product(stock=5)
        result = app.test_cli_runner().invoke(args=["ledger", "reconcile-stock"])
        assert result.exit_code == 0
        assert "PASS stock: no drift" in result.output

    def test_reconcile_stock_reports_and_fixes_drift(self, app, make_product):
        product = make_product(stock=5)
        # Simulate a write that bypassed the ledger
        product.stock = 8
        db.session.commit()

        runner = app.test_cli_runner()
        result = runner.invoke(args=["ledger", "reconcile-stock"])
        assert result.exit_code == 0
        assert f"DRIFT #{product.id}" in result.output
        assert "difference=3" in result.output
        assert reload(product).stock == 8

        result = runner.invoke(args=["ledger", "reconcile-stock", "--fix"])
        assert result.exit_code == 0
        assert "FIXED 1 stock" in result.output
        assert reload(product).stock == 5 == get_ledger_quantity(product.id)

    def test_reconcile_loyalty_fixes_drift(self, app, make_customer):
        # Balance set without a ledger entry
        customer = make_customer(loyalty_points=12)

        runner = app.test_cli_runner()
        result = runner.invoke(args=["ledger", "reconcile-loyalty"])
        assert f"DRIFT #{customer.id}" in result.output
        assert "WARN 1 loyalty" in result.output

        result = runner.invoke(args=["ledger", "reconcile-loyalty", "--fix"])
        assert "FIXED 1 loyalty" in result.output
        assert reload(customer).loyalty_points == 0


class TestUserCommands:
    def test_create_and_set_role(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            "users", "create", "--name", "Ada", "--email", "Ada@Store.Test", "--role", "cashier",
        ])
        assert result.exit_code == 0, result.output
        user = db.session.query(User).filter_by(email="ada@store.test").one()
        assert user.role == "CASHIER"

        result = runner.invoke(args=["users", "set-role", "ada@store.test", "MANAGER"])
        assert result.exit_code == 0
        assert "CASHIER -> MANAGER" in result.output
        assert reload(user).role == "MANAGER"

        actions = {a.action for a in db.session.query(ActivityLog).filter_by(entity_type="user")}
        assert actions == {"CREATE_USER", "UPDATE_USER_ROLE"}

    def test_create_rejects_unknown_role(self, app, db_session):
        result = app.test_cli_runner().invoke(args=[
            "users", "create", "--name", "Bob", "--email", "bob@store.test", "--role", "OWNER",
        ])
        assert result.exit_code != 0
        assert db.session.query(User).count() == 0

    def test_deactivate(self, app, cashier):
        result = app.test_cli_runner().invoke(args=["users", "deactivate", cashier.email])
        assert result.exit_code == 0
        assert reload(cashier).is_active is False

    def test_unknown_user(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["users", "deactivate", "ghost@store.test"])
        assert result.exit_code != 0
        assert "User not found" in result.output


def test_system_init_creates_settings(app, db_session):
    result = app.test_cli_runner().invoke(args=["system", "init"])
    assert result.exit_code == 0
    assert "PASS Initialization complete" in result.output
