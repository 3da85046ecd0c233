"""
Return Processing Service

WHY: A return must undo part of an invoice without ever giving back more
than was sold. Validation is cumulative: every earlier return on the same
invoice counts, whatever its status.

DESIGN PRINCIPLES:
- Returns reference the original invoice for traceability
- Refund price defaults to the invoiced unit price and may not exceed it
- Refunds are the paid share of the invoice line (after discount, with
  tax), and never add up to more than the invoice total
- Stock restored via `return` ledger rows
- Loyalty deduction capped by what the invoice still holds and the balance
- A fully refunded invoice leaves no purchase credit or points behind
- Immutable once COMPLETED

LIFECYCLE:
1. Create return (PENDING or COMPLETED, default COMPLETED)
2. Complete return (PENDING -> COMPLETED): restore stock, adjust customer,
   flip the invoice to REFUNDED when every invoiced unit is back
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Customer, Invoice, ReturnItem, ReturnOrder
from ..time_utils import parse_iso_datetime, utcnow
from ..validation import optional_int, require_int
from .activity_service import log_activity
from .concurrency import begin_write, lock_for_update, run_with_retry
from .inventory_service import MOVEMENT_RETURN, increment_stock
from .invoice_service import (
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_PARTIALLY_PAID,
    INVOICE_STATUS_REFUNDED,
    round_half_up_div,
)
from .loyalty_service import deduct_for_return
from .pagination import paginate


# =============================================================================
# RETURN STATUS CONSTANTS
# =============================================================================

RETURN_STATUS_PENDING = "PENDING"
RETURN_STATUS_COMPLETED = "COMPLETED"

RETURN_STATUSES = (RETURN_STATUS_PENDING, RETURN_STATUS_COMPLETED)

RETURNABLE_INVOICE_STATUSES = (INVOICE_STATUS_PAID, INVOICE_STATUS_PARTIALLY_PAID)


# =============================================================================
# INTERNAL HELPERS
# =============================================================================

def _invoiced_by_product(invoice: Invoice) -> dict[int, dict]:
    """
    product_id -> {"quantity": total invoiced, "unit_price_cents": first line's
    price, "max_unit_price_cents": highest line price, "list_cents": sum of
    qty * price, "paid_cents": what the customer paid after discount, with tax}
    """
    result: dict[int, dict] = {}
    for item in invoice.items:
        paid = item.line_total_cents - item.discount_cents + item.tax_cents
        entry = result.get(item.product_id)
        if entry is None:
            result[item.product_id] = {
                "quantity": item.quantity,
                "unit_price_cents": item.unit_price_cents,
                "max_unit_price_cents": item.unit_price_cents,
                "list_cents": item.line_total_cents,
                "paid_cents": paid,
            }
        else:
            entry["quantity"] += item.quantity
            entry["max_unit_price_cents"] = max(entry["max_unit_price_cents"], item.unit_price_cents)
            entry["list_cents"] += item.line_total_cents
            entry["paid_cents"] += paid
    return result


def _paid_share(entry: dict, quantity: int) -> int:
    """Paid amount for the first `quantity` units of a product, prorated."""
    return round_half_up_div(entry["paid_cents"] * quantity, entry["quantity"])


def _refund_for_line(entry: dict, line: dict, returned_before: int) -> int:
    """
    Refund for one return line.

    Prorated on the paid amount, cumulatively, so returning every unit gives
    back exactly what was paid. A lower unit price scales the refund down by
    price / invoiced list price.
    """
    refund = _paid_share(entry, returned_before + line["quantity"]) - _paid_share(entry, returned_before)
    if line["unit_price_cents"] != entry["unit_price_cents"]:
        if entry["list_cents"] <= 0:
            return 0
        scaled = round_half_up_div(
            line["quantity"] * line["unit_price_cents"] * entry["paid_cents"],
            entry["list_cents"],
        )
        refund = min(refund, scaled)
    return refund


def _refunded_total(invoice_id: int, statuses=RETURN_STATUSES) -> int:
    total = (
        db.session.query(func.coalesce(func.sum(ReturnOrder.total_cents), 0))
        .filter(ReturnOrder.invoice_id == invoice_id, ReturnOrder.status.in_(statuses))
        .scalar()
    )
    return int(total or 0)


def _returned_by_product(invoice_id: int, statuses=RETURN_STATUSES) -> dict[int, int]:
    rows = (
        db.session.query(ReturnItem.product_id, func.sum(ReturnItem.quantity))
        .join(ReturnOrder, ReturnOrder.id == ReturnItem.return_order_id)
        .filter(ReturnOrder.invoice_id == invoice_id, ReturnOrder.status.in_(statuses))
        .group_by(ReturnItem.product_id)
        .all()
    )
    return {product_id: int(qty or 0) for product_id, qty in rows}


def _parse_return_lines(raw_items) -> list[dict]:
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("Return must have at least one item")

    lines = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{index}] must be an object")
        prefix = f"items[{index}]"
        reason = raw.get("reason")
        lines.append({
            "product_id": require_int(raw.get("product_id"), f"{prefix}.product_id", minimum=1),
            "quantity": require_int(raw.get("quantity"), f"{prefix}.quantity", minimum=1),
            "unit_price_cents": optional_int(raw.get("unit_price_cents"), f"{prefix}.unit_price_cents", minimum=0),
            "reason": str(reason).strip()[:255] if reason else None,
        })
    return lines


def _complete_locked(return_order: ReturnOrder, invoice: Invoice, user_id: int) -> dict:
    """
    Apply completion effects. Caller holds the write lock and commits.
    """
    for item in return_order.items:
        increment_stock(
            product_id=item.product_id,
            quantity=item.quantity,
            movement_type=MOVEMENT_RETURN,
            invoice_id=invoice.id,
            return_order_id=return_order.id,
            user_id=user_id,
            note=f"Return #{return_order.id} for invoice {invoice.invoice_number}",
        )

    return_order.status = RETURN_STATUS_COMPLETED
    return_order.completed_at = utcnow()
    db.session.flush()

    invoiced = _invoiced_by_product(invoice)
    completed = _returned_by_product(invoice.id, statuses=(RETURN_STATUS_COMPLETED,))
    fully_refunded = all(completed.get(pid, 0) >= entry["quantity"] for pid, entry in invoiced.items())
    if fully_refunded:
        invoice.status = INVOICE_STATUS_REFUNDED

    points = 0
    if invoice.customer_id is not None:
        customer = lock_for_update(
            db.session.query(Customer).filter_by(id=invoice.customer_id).populate_existing()
        ).first()
        if customer is not None:
            credit = return_order.total_cents
            if fully_refunded:
                # A lowered refund price leaves part of the invoice credited
                completed_cents = _refunded_total(invoice.id, statuses=(RETURN_STATUS_COMPLETED,))
                credit += max(invoice.total_cents - completed_cents, 0)
            customer.total_purchases_cents = customer.total_purchases_cents - credit
            points = deduct_for_return(
                customer_id=customer.id,
                invoice_id=invoice.id,
                return_order_id=return_order.id,
                return_total_cents=return_order.total_cents,
                user_id=user_id,
                settle=fully_refunded,
            )

    return {"invoice_refunded": fully_refunded, "loyalty_points_deducted": points}


# =============================================================================
# RETURN CREATION
# =============================================================================

def create_return(
    *,
    invoice_id: int,
    user_id: int,
    items,
    reason: str | None = None,
    note: str | None = None,
    status: str | None = None,
) -> ReturnOrder:
    """
    Create a return against an invoice.

    Args:
        invoice_id: Invoice being returned from
        user_id: User processing the return
        items: [{"product_id", "quantity", "unit_price_cents"?, "reason"?}]
        reason: Overall reason for the return
        note: Free-form note
        status: PENDING or COMPLETED (default). COMPLETED applies effects now.

    Raises:
        NotFoundError: invoice not found
        ValidationError: invoice not PAID/PARTIALLY_PAID, product not on the
            invoice, quantity above what is still returnable, price above
            the invoiced price
    """
    status = (status or RETURN_STATUS_COMPLETED).upper()
    if status not in RETURN_STATUSES:
        raise ValidationError(f"Invalid status: {status}. Must be one of {', '.join(RETURN_STATUSES)}")

    lines = _parse_return_lines(items)

    def _op():
        begin_write()
        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=invoice_id)).first()
        if invoice is None:
            raise NotFoundError(f"Invoice {invoice_id} not found")

        if invoice.status not in RETURNABLE_INVOICE_STATUSES:
            raise ValidationError(
                f"Can only return PAID or PARTIALLY_PAID invoices. Invoice {invoice.invoice_number} has status: {invoice.status}"
            )

        invoiced = _invoiced_by_product(invoice)
        already_returned = _returned_by_product(invoice.id)

        requested: dict[int, int] = {}
        for line in lines:
            entry = invoiced.get(line["product_id"])
            if entry is None:
                raise ValidationError(
                    f"Product {line['product_id']} is not on invoice {invoice.invoice_number}"
                )
            if line["unit_price_cents"] is None:
                line["unit_price_cents"] = entry["unit_price_cents"]
            elif line["unit_price_cents"] > entry["max_unit_price_cents"]:
                raise ValidationError(
                    f"Return price for product {line['product_id']} cannot exceed the invoiced price",
                    details={
                        "product_id": line["product_id"],
                        "unit_price_cents": line["unit_price_cents"],
                        "invoiced_unit_price_cents": entry["max_unit_price_cents"],
                    },
                )
            requested[line["product_id"]] = requested.get(line["product_id"], 0) + line["quantity"]

        over = []
        for product_id, qty in requested.items():
            invoiced_qty = invoiced[product_id]["quantity"]
            returned = already_returned.get(product_id, 0)
            if returned + qty > invoiced_qty:
                over.append({
                    "product_id": product_id,
                    "requested_quantity": qty,
                    "invoiced_quantity": invoiced_qty,
                    "already_returned": returned,
                    "available": invoiced_qty - returned,
                })
        if over:
            raise ValidationError(
                "Return quantity exceeds the quantity still returnable",
                details={"items": over},
            )

        return_order = ReturnOrder(
            invoice_id=invoice.id,
            status=RETURN_STATUS_PENDING,
            reason=reason,
            note=note,
            user_id=user_id,
            return_date=utcnow(),
        )
        # Never refund more than the invoice total across all its returns
        remaining = max(invoice.total_cents - _refunded_total(invoice.id), 0)
        counted = dict(already_returned)
        total = 0
        for line in lines:
            entry = invoiced[line["product_id"]]
            before = counted.get(line["product_id"], 0)
            counted[line["product_id"]] = before + line["quantity"]
            line_total = min(_refund_for_line(entry, line, before), remaining)
            remaining -= line_total
            total += line_total
            return_order.items.append(ReturnItem(
                product_id=line["product_id"],
                quantity=line["quantity"],
                unit_price_cents=line["unit_price_cents"],
                line_total_cents=line_total,
                reason=line["reason"],
            ))
        return_order.total_cents = total
        db.session.add(return_order)
        db.session.flush()

        effects = {}
        if status == RETURN_STATUS_COMPLETED:
            effects = _complete_locked(return_order, invoice, user_id)

        log_activity(
            user_id=user_id,
            action="CREATE_RETURN",
            entity_type="return",
            entity_id=return_order.id,
            details={
                "invoice_number": invoice.invoice_number,
                "status": return_order.status,
                "total_cents": total,
                **effects,
            },
        )

        db.session.commit()
        current_app.logger.info(
            "Return #%s (%s) created for invoice %s by user %s: total=%s",
            return_order.id, return_order.status, invoice.invoice_number, user_id, total,
        )
        return return_order

    return run_with_retry(_op)


# =============================================================================
# RETURN COMPLETION
# =============================================================================

def complete_return(return_id: int, user_id: int) -> ReturnOrder:
    """
    Complete a PENDING return: restore stock, adjust the customer and flip
    the invoice to REFUNDED when nothing is left to return.

    Raises:
        NotFoundError: return not found
        ConflictError: return already COMPLETED
        ValidationError: invoice no longer PAID/PARTIALLY_PAID
    """
    def _op():
        begin_write()
        return_order = lock_for_update(db.session.query(ReturnOrder).filter_by(id=return_id)).first()
        if return_order is None:
            raise NotFoundError(f"Return {return_id} not found")

        if return_order.status == RETURN_STATUS_COMPLETED:
            raise ConflictError(f"Return {return_id} is already completed")

        invoice = lock_for_update(db.session.query(Invoice).filter_by(id=return_order.invoice_id)).first()
        if invoice.status not in RETURNABLE_INVOICE_STATUSES:
            raise ValidationError(
                f"Invoice {invoice.invoice_number} has status {invoice.status}; return cannot be completed"
            )

        effects = _complete_locked(return_order, invoice, user_id)

        log_activity(
            user_id=user_id,
            action="COMPLETE_RETURN",
            entity_type="return",
            entity_id=return_order.id,
            details={
                "invoice_number": invoice.invoice_number,
                "total_cents": return_order.total_cents,
                **effects,
            },
        )

        db.session.commit()
        current_app.logger.info(
            "Return #%s completed for invoice %s by user %s",
            return_order.id, invoice.invoice_number, user_id,
        )
        return return_order

    return run_with_retry(_op)


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> ReturnOrder:
    return_order = db.session.get(ReturnOrder, return_id)
    if return_order is None:
        raise NotFoundError(f"Return {return_id} not found")
    return return_order


def list_returns(
    *,
    invoice_id: int | None = None,
    status: str | None = None,
    start: str | None = None,
    end: str | None = None,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    q = db.session.query(ReturnOrder)
    if invoice_id is not None:
        q = q.filter(ReturnOrder.invoice_id == invoice_id)
    if status:
        q = q.filter(ReturnOrder.status == status.upper())

    try:
        start_dt = parse_iso_datetime(start)
        end_dt = parse_iso_datetime(end)
    except ValueError:
        raise ValidationError("start and end must be ISO-8601 datetimes")
    if start_dt is not None:
        q = q.filter(ReturnOrder.return_date >= start_dt)
    if end_dt is not None:
        q = q.filter(ReturnOrder.return_date <= end_dt)

    q = q.order_by(ReturnOrder.return_date.desc(), ReturnOrder.id.desc())
    return paginate(q, page=page, per_page=per_page, serialize=lambda r: r.to_dict(include_items=True))


def get_returnable_items(invoice_id: int) -> dict:
    """
    Per product: invoiced quantity, quantity already returned (any status)
    and quantity still returnable.
    """
    invoice = db.session.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError(f"Invoice {invoice_id} not found")

    invoiced = _invoiced_by_product(invoice)
    returned = _returned_by_product(invoice.id)
    items = []
    for product_id, entry in invoiced.items():
        already = returned.get(product_id, 0)
        items.append({
            "product_id": product_id,
            "invoiced_quantity": entry["quantity"],
            "unit_price_cents": entry["unit_price_cents"],
            "returned_quantity": already,
            "returnable_quantity": max(entry["quantity"] - already, 0),
        })

    return {
        "invoice_id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "status": invoice.status,
        "returnable": invoice.status in RETURNABLE_INVOICE_STATUSES,
        "items": items,
    }
