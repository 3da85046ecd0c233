"""
Invoice Service - invoice creation, void and status updates

WHY: An invoice is the single document that moves stock out, credits the
customer's purchase history and accrues loyalty points. All of that must
happen together or not at all.

DESIGN PRINCIPLES:
- Totals are computed server-side; client-submitted totals are ignored
- Lines are frozen at creation (price, tax rate, discount)
- Stock is decremented with a conditional UPDATE, never read-modify-write
- Each workflow is one DB transaction; any exception rolls back every write

LIFECYCLE:
1. Create (DRAFT | PAID | PARTIALLY_PAID): stock, loyalty and activity effects
2. Forward status updates (DRAFT -> PAID/PARTIALLY_PAID, PARTIALLY_PAID -> PAID)
3. Void (-> VOIDED): restores stock, reverses loyalty; blocked once returns exist
"""

from __future__ import annotations

import random
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    AlreadyVoidedError,
    ConflictError,
    HasReturnsError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ..models import Customer, Invoice, InvoiceItem, Product, ReturnOrder
from ..time_utils import date_stamp, parse_iso_datetime, utcnow
from ..validation import MAX_TAX_RATE_BPS, optional_int, require_int
from .activity_service import log_activity
from .concurrency import begin_write, lock_for_update, run_with_retry
from .inventory_service import MOVEMENT_ADJUSTMENT, decrement_stock, increment_stock
from .loyalty_service import accrue_for_invoice, reverse_for_invoice
from .pagination import paginate


# =============================================================================
# INVOICE STATUS CONSTANTS
# =============================================================================

INVOICE_STATUS_DRAFT = "DRAFT"
INVOICE_STATUS_PAID = "PAID"
INVOICE_STATUS_PARTIALLY_PAID = "PARTIALLY_PAID"
INVOICE_STATUS_VOIDED = "VOIDED"
INVOICE_STATUS_REFUNDED = "REFUNDED"

CREATABLE_STATUSES = (INVOICE_STATUS_DRAFT, INVOICE_STATUS_PAID, INVOICE_STATUS_PARTIALLY_PAID)

# Allowed manual status changes (PUT); VOIDED and REFUNDED are set by workflows only
FORWARD_TRANSITIONS = {
    INVOICE_STATUS_DRAFT: {INVOICE_STATUS_PAID, INVOICE_STATUS_PARTIALLY_PAID},
    INVOICE_STATUS_PARTIALLY_PAID: {INVOICE_STATUS_PAID},
}

INVOICE_NUMBER_PREFIX = "INV"


# =============================================================================
# LINE PARSING & TOTALS
# =============================================================================

@dataclass(frozen=True)
class LineInput:
    product_id: int
    quantity: int
    unit_price_cents: int | None = None
    tax_rate_bps: int | None = None
    discount_cents: int = 0


def round_half_up_div(numerator: int, denominator: int) -> int:
    """Integer division rounded half-up (numerator >= 0)."""
    return (numerator + denominator // 2) // denominator


def compute_line(*, quantity: int, unit_price_cents: int, tax_rate_bps: int, discount_cents: int = 0) -> dict:
    """
    line_total = qty * unit_price
    tax        = round_half_up((line_total - discount) * bps / 10000)
    """
    line_total = quantity * unit_price_cents
    if discount_cents > line_total:
        raise ValidationError(
            "Line discount cannot exceed the line subtotal",
            details={"discount_cents": discount_cents, "line_total_cents": line_total},
        )
    tax = round_half_up_div((line_total - discount_cents) * tax_rate_bps, 10_000)
    return {
        "quantity": quantity,
        "unit_price_cents": unit_price_cents,
        "tax_rate_bps": tax_rate_bps,
        "discount_cents": discount_cents,
        "tax_cents": tax,
        "line_total_cents": line_total,
    }


def compute_totals(lines: list[dict]) -> dict:
    subtotal = sum(l["line_total_cents"] for l in lines)
    tax = sum(l["tax_cents"] for l in lines)
    discount = sum(l["discount_cents"] for l in lines)
    return {
        "subtotal_cents": subtotal,
        "tax_cents": tax,
        "discount_cents": discount,
        "total_cents": subtotal + tax - discount,
    }


def parse_lines(raw_items) -> list[LineInput]:
    """Validate the request's item list shape. Product existence is checked later."""
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Invoice must have at least one item")

    lines = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        prefix = f"items[{index}]"
        lines.append(LineInput(
            product_id=require_int(raw.get("product_id"), f"{prefix}.product_id", minimum=1),
            quantity=require_int(raw.get("quantity"), f"{prefix}.quantity", minimum=1),
            unit_price_cents=optional_int(raw.get("unit_price_cents"), f"{prefix}.unit_price_cents", minimum=0),
            tax_rate_bps=optional_int(
                raw.get("tax_rate_bps"), f"{prefix}.tax_rate_bps", minimum=0, maximum=MAX_TAX_RATE_BPS
            ),
            discount_cents=optional_int(raw.get("discount_cents"), f"{prefix}.discount_cents", minimum=0) or 0,
        ))
    return lines


def _validate_on_hand(lines: list[LineInput], products: dict[int, Product]) -> None:
    product_totals: dict[int, int] = {}
    for line in lines:
        product_totals[line.product_id] = product_totals.get(line.product_id, 0) + line.quantity

    insufficient = []
    for product_id, qty in product_totals.items():
        in_stock = products[product_id].stock
        if in_stock < qty:
            insufficient.append({
                "product_id": product_id,
                "requested_quantity": qty,
                "in_stock": in_stock,
            })

    if insufficient:
        raise InsufficientStockError(
            "Insufficient stock for one or more items",
            details={"items": insufficient},
        )


# =============================================================================
# INVOICE NUMBERS
# =============================================================================

def generate_invoice_number(now=None) -> str:
    """INV-YYYYMMDD-XXXX with XXXX random in 1000-9999."""
    return f"{INVOICE_NUMBER_PREFIX}-{date_stamp(now)}-{random.randint(1000, 9999)}"


def _draw_unused_number(attempts: int) -> str:
    for _ in range(attempts):
        candidate = generate_invoice_number()
        taken = db.session.query(Invoice.id).filter(Invoice.invoice_number == candidate).first()
        if taken is None:
            return candidate
        current_app.logger.warning("Invoice number collision: %s", candidate)
    raise ConflictError("Could not allocate a unique invoice number")


# =============================================================================
# INVOICE CREATION
# =============================================================================

def create_invoice(
    *,
    user_id: int,
    items,
    customer_id: int | None = None,
    payment_method: str | None = None,
    payment_reference: str | None = None,
    note: str | None = None,
    status: str | None = None,
) -> Invoice:
    """
    Create an invoice and apply its stock, customer and loyalty effects.

    Raises:
        ValidationError: malformed items, bad status, discount > line subtotal
        InsufficientStockError: any product short (details.items lists all)
        NotFoundError: unknown product or customer
        ConflictError: no unique invoice number after INVOICE_NUMBER_ATTEMPTS
    """
    status = (status or INVOICE_STATUS_PAID).upper()
    if status not in CREATABLE_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {', '.join(CREATABLE_STATUSES)}")

    lines = parse_lines(items)
    attempts = max(int(current_app.config.get("INVOICE_NUMBER_ATTEMPTS", 10)), 1)

    def _op():
        begin_write()

        customer = None
        if customer_id is not None:
            customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id).populate_existing()).first()
            if customer is None:
                raise NotFoundError(f"Customer {customer_id} not found")

        product_ids = sorted({line.product_id for line in lines})
        products = {
            p.id: p
            for p in lock_for_update(
                db.session.query(Product)
                .filter(Product.id.in_(product_ids))
                .order_by(Product.id)
                .populate_existing()
            ).all()
        }
        missing = [pid for pid in product_ids if pid not in products]
        if missing:
            raise NotFoundError(
                f"Product {missing[0]} not found",
                details={"missing_product_ids": missing},
            )

        priced = []
        for line in lines:
            product = products[line.product_id]
            computed = compute_line(
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents if line.unit_price_cents is not None else product.price_cents,
                tax_rate_bps=line.tax_rate_bps if line.tax_rate_bps is not None else product.tax_rate_bps,
                discount_cents=line.discount_cents,
            )
            computed["product_id"] = line.product_id
            priced.append(computed)

        _validate_on_hand(lines, products)
        totals = compute_totals(priced)

        invoice = Invoice(
            invoice_number=_draw_unused_number(attempts),
            customer_id=customer.id if customer else None,
            user_id=user_id,
            status=status,
            payment_method=payment_method,
            payment_reference=payment_reference,
            note=note,
            **totals,
        )
        for computed in priced:
            invoice.items.append(InvoiceItem(**computed))
        db.session.add(invoice)
        db.session.flush()

        for computed in priced:
            decrement_stock(
                product_id=computed["product_id"],
                quantity=computed["quantity"],
                invoice_id=invoice.id,
                user_id=user_id,
                note=f"Sale {invoice.invoice_number}",
            )

        points = 0
        if customer is not None:
            customer.total_purchases_cents = customer.total_purchases_cents + invoice.total_cents
            points = accrue_for_invoice(
                customer_id=customer.id,
                invoice_id=invoice.id,
                invoice_number=invoice.invoice_number,
                total_cents=invoice.total_cents,
                user_id=user_id,
            )

        log_activity(
            user_id=user_id,
            action="CREATE_INVOICE",
            entity_type="invoice",
            entity_id=invoice.id,
            details={
                "invoice_number": invoice.invoice_number,
                "total_cents": invoice.total_cents,
                "item_count": len(priced),
                "loyalty_points": points,
            },
        )

        db.session.commit()
        current_app.logger.info(
            "Invoice %s created by user %s: total=%s items=%s",
            invoice.invoice_number, user_id, invoice.total_cents, len(priced),
        )
        return invoice

    for _ in range(attempts):
        try:
            return run_with_retry(_op)
        except IntegrityError as exc:
            # Lost a race for the same number between the check and the insert
            db.session.rollback()
            if "invoice_number" not in str(exc.orig):
                raise
            current_app.logger.warning("Invoice number taken at insert; retrying")
    raise ConflictError("Could not allocate a unique invoice number")


# =============================================================================
# INVOICE VOID
# =============================================================================

def void_invoice(invoice_id: int, user_id: int, reason: str | None = None) -> Invoice:
    """
    Void an invoice and reverse its stock, customer and loyalty effects.

    Raises:
        NotFoundError: invoice does not exist
        AlreadyVoidedError: status is already VOIDED
        HasReturnsError: any return (pending or completed) references it
    """
    def _op():
        begin_write()
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")

        if invoice.status == INVOICE_STATUS_VOIDED:
            raise AlreadyVoidedError("Invoice is already voided")

        return_count = db.session.query(ReturnOrder).filter_by(invoice_id=invoice.id).count()
        if return_count:
            raise HasReturnsError(
                "Cannot void an invoice that has returns",
                details={"return_count": return_count},
            )

        for item in invoice.items:
            increment_stock(
                product_id=item.product_id,
                quantity=item.quantity,
                movement_type=MOVEMENT_ADJUSTMENT,
                invoice_id=invoice.id,
                user_id=user_id,
                note=f"Void invoice {invoice.invoice_number}",
            )

        invoice.status = INVOICE_STATUS_VOIDED
        invoice.voided_at = utcnow()
        invoice.voided_by_user_id = user_id

        points = 0
        if invoice.customer_id is not None:
            customer = lock_for_update(db.session.query(Customer).filter_by(id=invoice.customer_id).populate_existing()).first()
            if customer is not None:
                customer.total_purchases_cents = customer.total_purchases_cents - invoice.total_cents
                points = reverse_for_invoice(
                    customer_id=customer.id,
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    user_id=user_id,
                )

        log_activity(
            user_id=user_id,
            action="VOID_INVOICE",
            entity_type="invoice",
            entity_id=invoice.id,
            details={
                "invoice_number": invoice.invoice_number,
                "total_cents": invoice.total_cents,
                "loyalty_points_reversed": points,
                "reason": reason,
            },
        )

        db.session.commit()
        current_app.logger.info("Invoice %s voided by user %s", invoice.invoice_number, user_id)
        return invoice

    return run_with_retry(_op)


# =============================================================================
# INVOICE UPDATE & QUERIES
# =============================================================================

def update_invoice(
    invoice_id: int,
    user_id: int,
    *,
    status: str | None = None,
    payment_method: str | None = None,
    payment_reference: str | None = None,
    note: str | None = None,
    fields: set[str] | None = None,
) -> Invoice:
    """
    Move status forward and/or edit payment details and note.

    `fields` names which of payment_method/payment_reference/note were
    supplied, so they can be cleared with an explicit null.
    """
    fields = fields or set()

    def _op():
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")

        changes = {}
        if status is not None:
            new_status = status.upper()
            if new_status != invoice.status:
                allowed = FORWARD_TRANSITIONS.get(invoice.status, set())
                if new_status not in allowed:
                    raise ValidationError(
                        f"Cannot change status from {invoice.status} to {new_status}",
                        details={"allowed": sorted(allowed)},
                    )
                changes["status"] = [invoice.status, new_status]
                invoice.status = new_status

        for name, value in (
            ("payment_method", payment_method),
            ("payment_reference", payment_reference),
            ("note", note),
        ):
            if name in fields and getattr(invoice, name) != value:
                changes[name] = [getattr(invoice, name), value]
                setattr(invoice, name, value)

        if changes:
            log_activity(
                user_id=user_id,
                action="UPDATE_INVOICE",
                entity_type="invoice",
                entity_id=invoice.id,
                details={"invoice_number": invoice.invoice_number, "changes": changes},
            )
        db.session.commit()
        return invoice

    return run_with_retry(_op)


def get_invoice(invoice_id: int) -> Invoice:
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def get_invoice_detail(invoice_id: int) -> dict:
    invoice = get_invoice(invoice_id)
    data = invoice.to_dict(include_items=True)
    data["returns"] = [
        r.to_dict(include_items=True)
        for r in invoice.returns.order_by(ReturnOrder.created_at.asc(), ReturnOrder.id.asc()).all()
    ]
    return data


def list_invoices(
    *,
    start: str | None = None,
    end: str | None = None,
    customer_id: int | None = None,
    status: str | None = None,
    search: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
    limit: int = 50,
) -> dict:
    q = db.session.query(Invoice)

    try:
        start_dt = parse_iso_datetime(start)
        end_dt = parse_iso_datetime(end)
    except ValueError:
        raise ValidationError("start and end must be ISO-8601 datetimes")
    if start_dt is not None:
        q = q.filter(Invoice.created_at >= start_dt)
    if end_dt is not None:
        q = q.filter(Invoice.created_at <= end_dt)
    if customer_id is not None:
        q = q.filter(Invoice.customer_id == customer_id)
    if status:
        q = q.filter(Invoice.status == status.upper())
    if search:
        q = q.filter(Invoice.invoice_number.ilike(f"%{search.strip()}%"))

    q = q.order_by(Invoice.created_at.desc(), Invoice.id.desc())
    if page is None:
        q = q.limit(max(min(limit, 500), 1))
    return paginate(q, page=page, per_page=per_page, serialize=lambda inv: inv.to_dict())
