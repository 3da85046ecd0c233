"""
Invoice workflow tests.

Verifies:
- Totals are computed server-side with half-up tax rounding
- Stock drops by exactly the invoiced quantity, with matching ledger rows
- Insufficient stock fails the whole invoice and reports every short line
- Loyalty accrual and exact reversal on void
- Void restores stock, blocks a second void and invoices with returns
- Forward-only status updates
"""

import re

import pytest

from retail_billing.errors import (
    AlreadyVoidedError,
    ConflictError,
    HasReturnsError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from retail_billing.extensions import db
from retail_billing.models import ActivityLog, Invoice, LoyaltyHistory, StockHistory
from retail_billing.services import invoice_service
from retail_billing.services.inventory_service import get_ledger_quantity
from retail_billing.services.return_service import create_return

from conftest import reload


# =============================================================================
# PURE CALCULATIONS
# =============================================================================


class TestComputeLine:
    def test_tax_rounds_half_up(self):
        # 125 * 10% = 12.5 -> 13
        line = invoice_service.compute_line(quantity=1, unit_price_cents=125, tax_rate_bps=1000)
        assert line["tax_cents"] == 13

    def test_tax_is_charged_after_discount(self):
        line = invoice_service.compute_line(
            quantity=2, unit_price_cents=1000, tax_rate_bps=1000, discount_cents=500
        )
        assert line["line_total_cents"] == 2000
        assert line["tax_cents"] == 150

    def test_discount_above_line_total_rejected(self):
        with pytest.raises(ValidationError):
            invoice_service.compute_line(quantity=1, unit_price_cents=100, tax_rate_bps=0, discount_cents=101)

    def test_totals(self):
        lines = [
            invoice_service.compute_line(quantity=2, unit_price_cents=10000, tax_rate_bps=1000),
            invoice_service.compute_line(quantity=1, unit_price_cents=5000, tax_rate_bps=1000, discount_cents=1000),
        ]
        totals = invoice_service.compute_totals(lines)
        assert totals == {
            "subtotal_cents": 25000,
            "tax_cents": 2400,
            "discount_cents": 1000,
            "total_cents": 26400,
        }


class TestParseLines:
    @pytest.mark.parametrize("items", [None, [], "x", [{"product_id": 1}], [{"product_id": 1, "quantity": 0}]])
    def test_rejects_malformed_items(self, items):
        with pytest.raises(ValidationError):
            invoice_service.parse_lines(items)

    def test_rejects_fractional_quantity(self):
        with pytest.raises(ValidationError):
            invoice_service.parse_lines([{"product_id": 1, "quantity": 1.5}])


def test_invoice_number_format():
    number = invoice_service.generate_invoice_number()
    assert re.fullmatch(r"INV-\d{8}-\d{4}", number)
    assert 1000 <= int(number[-4:]) <= 9999


# =============================================================================
# CREATE
# =============================================================================


class TestCreateInvoice:
    def test_worked_example(self, cashier, make_product, make_customer):
        """[{100.00 x 2}, {50.00 x 1}] at 10% -> 250.00 / 25.00 / 275.00 and 27 points."""
        a = make_product(price_cents=10000, tax_rate_bps=1000, stock=10)
        b = make_product(price_cents=5000, tax_rate_bps=1000, stock=10)
        customer = make_customer()

        invoice = invoice_service.create_invoice(
            user_id=cashier.id,
            customer_id=customer.id,
            items=[{"product_id": a.id, "quantity": 2}, {"product_id": b.id, "quantity": 1}],
            payment_method="cash",
        )

        assert invoice.subtotal_cents == 25000
        assert invoice.tax_cents == 2500
        assert invoice.discount_cents == 0
        assert invoice.total_cents == 27500
        assert invoice.status == "PAID"

        customer = reload(customer)
        assert customer.loyalty_points == 27
        assert customer.total_purchases_cents == 27500

    def test_totals_identity_and_stock_decrement(self, cashier, make_product):
        a = make_product(price_cents=1999, tax_rate_bps=825, stock=7)
        b = make_product(price_cents=349, tax_rate_bps=0, stock=3)

        invoice = invoice_service.create_invoice(
            user_id=cashier.id,
            items=[
                {"product_id": a.id, "quantity": 3, "discount_cents": 200},
                {"product_id": b.id, "quantity": 3},
            ],
        )

        items = invoice.items
        assert sum(i.line_total_cents for i in items) + invoice.tax_cents - invoice.discount_cents == invoice.total_cents
        assert reload(a).stock == 4
        assert reload(b).stock == 0
        assert get_ledger_quantity(a.id) == 4
        assert get_ledger_quantity(b.id) == 0

        sales = db.session.query(StockHistory).filter_by(invoice_id=invoice.id, type="sale").all()
        assert sorted(s.quantity_delta for s in sales) == [-3, -3]

    def test_line_overrides_are_frozen_on_the_item(self, cashier, make_product):
        product = make_product(price_cents=1000, tax_rate_bps=1000)
        invoice = invoice_service.create_invoice(
            user_id=cashier.id,
            items=[{"product_id": product.id, "quantity": 1, "unit_price_cents": 800, "tax_rate_bps": 0}],
        )
        item = invoice.items[0]
        assert item.unit_price_cents == 800
        assert item.tax_rate_bps == 0
        assert invoice.total_cents == 800

    def test_insufficient_stock_reports_every_short_line(self, cashier, make_product):
        a = make_product(stock=1)
        b = make_product(stock=0)
        c = make_product(stock=5)

        with pytest.raises(InsufficientStockError) as exc:
            invoice_service.create_invoice(
                user_id=cashier.id,
                items=[
                    {"product_id": a.id, "quantity": 2},
                    {"product_id": b.id, "quantity": 1},
                    {"product_id": c.id, "quantity": 1},
                ],
            )

        short = {row["product_id"]: row for row in exc.value.details["items"]}
        assert set(short) == {a.id, b.id}
        assert short[a.id]["requested_quantity"] == 2
        assert short[a.id]["in_stock"] == 1

        # Nothing was written
        assert db.session.query(Invoice).count() == 0
        assert reload(c).stock == 5

    def test_repeated_product_lines_are_checked_together(self, cashier, make_product):
        product = make_product(stock=3)
        with pytest.raises(InsufficientStockError):
            invoice_service.create_invoice(
                user_id=cashier.id,
                items=[{"product_id": product.id, "quantity": 2}, {"product_id": product.id, "quantity": 2}],
            )

    def test_unknown_product(self, cashier):
        with pytest.raises(NotFoundError):
            invoice_service.create_invoice(user_id=cashier.id, items=[{"product_id": 9999, "quantity": 1}])

    def test_unknown_customer(self, cashier, make_product):
        product = make_product()
        with pytest.raises(NotFoundError):
            invoice_service.create_invoice(
                user_id=cashier.id, customer_id=9999, items=[{"product_id": product.id, "quantity": 1}]
            )

    def test_invalid_status(self, cashier, make_product):
        product = make_product()
        with pytest.raises(ValidationError):
            invoice_service.create_invoice(
                user_id=cashier.id, status="VOIDED", items=[{"product_id": product.id, "quantity": 1}]
            )

    def test_activity_logged(self, cashier, make_product):
        product = make_product()
        invoice = invoice_service.create_invoice(user_id=cashier.id, items=[{"product_id": product.id, "quantity": 1}])
        entry = db.session.query(ActivityLog).filter_by(action="CREATE_INVOICE").one()
        assert entry.entity_id == invoice.id
        assert entry.user_id == cashier.id

    def test_number_redrawn_when_taken(self, cashier, make_product, monkeypatch):
        product = make_product(stock=5)
        first = invoice_service.create_invoice(user_id=cashier.id, items=[{"product_id": product.id, "quantity": 1}])

        taken = first.invoice_number
        draws = iter([taken, taken, "INV-20260101-5555"])
        monkeypatch.setattr(invoice_service, "generate_invoice_number", lambda now=None: next(draws))

        second = invoice_service.create_invoice(user_id=cashier.id, items=[{"product_id": product.id, "quantity": 1}])
        assert second.invoice_number == "INV-20260101-5555"

    def test_number_exhaustion_is_a_conflict(self, app, cashier, make_product, monkeypatch):
        product = make_product(stock=5)
        first = invoice_service.create_invoice(user_id=cashier.id, items=[{"product_id": product.id, "quantity": 1}])

        monkeypatch.setitem(app.config, "INVOICE_NUMBER_ATTEMPTS", 3)
        monkeypatch.setattr(invoice_service, "generate_invoice_number", lambda now=None: first.invoice_number)

        with pytest.raises(ConflictError):
            invoice_service.create_invoice(user_id=cashier.id, items=[{"product_id": product.id, "quantity": 1}])
        assert reload(product).stock == 4


# =============================================================================
# VOID
# =============================================================================


class TestVoidInvoice:
    def test_void_restores_stock_and_reverses_points(self, admin, cashier, make_product, make_customer):
        product = make_product(price_cents=10000, tax_rate_bps=1000, stock=5)
        customer = make_customer()
        invoice = invoice_service.create_invoice(
            user_id=cashier.id, customer_id=customer.id, items=[{"product_id": product.id, "quantity": 3}]
        )
        assert reload(customer).loyalty_points == 33

        voided = invoice_service.void_invoice(invoice.id, admin.id, reason="Wrong items")

        assert voided.status == "VOIDED"
        assert voided.voided_by_user_id == admin.id
        assert voided.voided_at is not None
        assert reload(product).stock == 5
        assert get_ledger_quantity(product.id) == 5

        customer = reload(customer)
        assert customer.loyalty_points == 0
        assert customer.total_purchases_cents == 0

        reversal = db.session.query(LoyaltyHistory).filter_by(invoice_id=invoice.id, type="REVERSE").one()
        assert reversal.points == -33

        restock = db.session.query(StockHistory).filter_by(invoice_id=invoice.id, type="adjustment").one()
        assert restock.quantity_delta == 3

    def test_second_void_rejected(self, admin, cashier, make_product):
        product = make_product()
        invoice = invoice_service.create_invoice(user_id=cashier.id, items=[{"product_id": product.id, "quantity": 1}])
        invoice_service.void_invoice(invoice.id, admin.id)

        with pytest.raises(AlreadyVoidedError):
            invoice_service.void_invoice(invoice.id, admin.id)
        assert reload(product).stock == 10

    def test_void_blocked_by_returns(self, admin, manager, cashier, make_product):
        product = make_product()
        invoice = invoice_service.create_invoice(user_id=cashier.id, items=[{"product_id": product.id, "quantity": 2}])
        create_return(
            invoice_id=invoice.id,
            user_id=manager.id,
            items=[{"product_id": product.id, "quantity": 1}],
            status="PENDING",
        )

        with pytest.raises(HasReturnsError):
            invoice_service.void_invoice(invoice.id, admin.id)

    def test_void_unknown_invoice(self, admin):
        with pytest.raises(NotFoundError):
            invoice_service.void_invoice(4242, admin.id)

    def test_reversal_capped_at_balance(self, admin, cashier, make_product, make_customer):
        from retail_billing.services.loyalty_service import adjust_points

        product = make_product(price_cents=10000, tax_rate_bps=0)
        customer = make_customer()
        invoice = invoice_service.create_invoice(
            user_id=cashier.id, customer_id=customer.id, items=[{"product_id": product.id, "quantity": 2}]
        )
        # 20 points earned, 15 spent
        adjust_points(customer_id=customer.id, new_balance=5, user_id=admin.id)
        db.session.commit()

        invoice_service.void_invoice(invoice.id, admin.id)
        assert reload(customer).loyalty_points == 0


# =============================================================================
# UPDATE
# =============================================================================


class TestUpdateInvoice:
    def _invoice(self, cashier, make_product, status):
        product = make_product()
        return invoice_service.create_invoice(
            user_id=cashier.id, status=status, items=[{"product_id": product.id, "quantity": 1}]
        )

    def test_draft_to_paid(self, admin, cashier, make_product):
        invoice = self._invoice(cashier, make_product, "DRAFT")
        updated = invoice_service.update_invoice(invoice.id, admin.id, status="PAID")
        assert updated.status == "PAID"

    def test_partially_paid_to_paid(self, admin, cashier, make_product):
        invoice = self._invoice(cashier, make_product, "PARTIALLY_PAID")
        assert invoice_service.update_invoice(invoice.id, admin.id, status="paid").status == "PAID"

    @pytest.mark.parametrize("target", ["DRAFT", "VOIDED", "REFUNDED", "PARTIALLY_PAID"])
    def test_paid_cannot_move(self, admin, cashier, make_product, target):
        invoice = self._invoice(cashier, make_product, "PAID")
        with pytest.raises(ValidationError):
            invoice_service.update_invoice(invoice.id, admin.id, status=target)

    def test_payment_fields_and_note(self, admin, cashier, make_product):
        invoice = self._invoice(cashier, make_product, "PAID")
        updated = invoice_service.update_invoice(
            invoice.id,
            admin.id,
            payment_method="card",
            payment_reference="AUTH-991",
            note=None,
            fields={"payment_method", "payment_reference", "note"},
        )
        assert updated.payment_method == "card"
        assert updated.payment_reference == "AUTH-991"
        assert updated.note is None
        # Amounts untouched
        assert updated.total_cents == invoice.total_cents


class TestListInvoices:
    def test_filters(self, cashier, make_product, make_customer):
        product = make_product(stock=20)
        customer = make_customer()
        mine = invoice_service.create_invoice(
            user_id=cashier.id, customer_id=customer.id, items=[{"product_id": product.id, "quantity": 1}]
        )
        invoice_service.create_invoice(user_id=cashier.id, status="DRAFT", items=[{"product_id": product.id, "quantity": 1}])

        by_customer = invoice_service.list_invoices(customer_id=customer.id)
        assert [i["id"] for i in by_customer["items"]] == [mine.id]

        drafts = invoice_service.list_invoices(status="draft")
        assert drafts["count"] == 1

        paged = invoice_service.list_invoices(page=1, per_page=1)
        assert paged["pagination"]["total"] == 2
        assert paged["pagination"]["has_next"] is True

    def test_bad_date(self):
        with pytest.raises(ValidationError):
            invoice_service.list_invoices(start="yesterday-ish")
