# Overview: Stock ledger writes, guarded stock decrements and ledger reconciliation.

# backend/retail_billing/services/inventory_service.py

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import Product, StockHistory
"""
Stock Invariants (authoritative)

Inventory model:
- Product.stock is a materialized balance; StockHistory is the ledger.
- For every product, SUM(StockHistory.quantity_delta) == Product.stock.
- Every stock change appends exactly one StockHistory row in the same
  DB transaction. Nothing here commits.

Business invariants:
- Stock may never go negative.
- Sales decrement with a conditional UPDATE (stock >= qty). Two sales of
  the last unit cannot both succeed, whatever the isolation level.

Movement types:
- purchase: stock received (product creation, manual increase)
- sale: invoice line (negative)
- return: completed customer return (positive)
- adjustment: void restoration (positive) or manual decrease (negative)
"""

MOVEMENT_PURCHASE = "purchase"
MOVEMENT_SALE = "sale"
MOVEMENT_RETURN = "return"
MOVEMENT_ADJUSTMENT = "adjustment"


def record_stock_movement(
    *,
    product_id: int,
    quantity_delta: int,
    movement_type: str,
    note: str | None = None,
    invoice_id: int | None = None,
    return_order_id: int | None = None,
    user_id: int | None = None,
) -> StockHistory:
    """
    Append a ledger row. Does not touch Product.stock.
    """
    if movement_type not in StockHistory.TYPES:
        raise ValidationError(f"Unknown stock movement type: {movement_type}")
    if quantity_delta == 0:
        raise ValidationError("quantity_delta must be non-zero")

    entry = StockHistory(
        product_id=product_id,
        quantity_delta=quantity_delta,
        type=movement_type,
        note=note,
        invoice_id=invoice_id,
        return_order_id=return_order_id,
        user_id=user_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def decrement_stock(
    *,
    product_id: int,
    quantity: int,
    invoice_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
) -> StockHistory:
    """
    Sell `quantity` units: conditional decrement plus a `sale` ledger row.

    Raises InsufficientStockError when fewer than `quantity` units remain.
    """
    updated = (
        db.session.query(Product)
        .filter(Product.id == product_id, Product.stock >= quantity)
        .update({Product.stock: Product.stock - quantity}, synchronize_session=False)
    )
    if updated == 0:
        in_stock = db.session.query(Product.stock).filter(Product.id == product_id).scalar()
        if in_stock is None:
            raise NotFoundError(f"Product {product_id} not found")
        raise InsufficientStockError(
            "Insufficient stock",
            details={"items": [{
                "product_id": product_id,
                "requested_quantity": quantity,
                "in_stock": in_stock,
            }]},
        )

    _expire_stock(product_id)
    return record_stock_movement(
        product_id=product_id,
        quantity_delta=-quantity,
        movement_type=MOVEMENT_SALE,
        note=note,
        invoice_id=invoice_id,
        user_id=user_id,
    )


def increment_stock(
    *,
    product_id: int,
    quantity: int,
    movement_type: str,
    invoice_id: int | None = None,
    return_order_id: int | None = None,
    user_id: int | None = None,
    note: str | None = None,
) -> StockHistory:
    """Put `quantity` units back (void restoration, completed return, receipt)."""
    updated = (
        db.session.query(Product)
        .filter(Product.id == product_id)
        .update({Product.stock: Product.stock + quantity}, synchronize_session=False)
    )
    if updated == 0:
        raise NotFoundError(f"Product {product_id} not found")

    _expire_stock(product_id)
    return record_stock_movement(
        product_id=product_id,
        quantity_delta=quantity,
        movement_type=movement_type,
        note=note,
        invoice_id=invoice_id,
        return_order_id=return_order_id,
        user_id=user_id,
    )


def _expire_stock(product_id: int) -> None:
    # Bulk UPDATE bypasses the identity map; force a reload on next access
    product = db.session.identity_map.get(db.session.identity_key(Product, product_id))
    if product is not None:
        db.session.expire(product, ["stock"])


def get_ledger_quantity(product_id: int) -> int:
    q = db.session.query(
        func.coalesce(func.sum(StockHistory.quantity_delta), 0)
    ).filter(StockHistory.product_id == product_id)
    return int(q.scalar() or 0)


def get_stock_history(
    product_id: int,
    *,
    movement_type: str | None = None,
    limit: int = 100,
) -> list[dict]:
    if db.session.get(Product, product_id) is None:
        raise NotFoundError(f"Product {product_id} not found")

    q = db.session.query(StockHistory).filter(StockHistory.product_id == product_id)
    if movement_type:
        q = q.filter(StockHistory.type == movement_type)
    rows = q.order_by(StockHistory.created_at.desc(), StockHistory.id.desc()).limit(limit).all()
    return [r.to_dict() for r in rows]


def reconcile_stock(*, fix: bool = False) -> list[dict]:
    """
    Compare Product.stock to the ledger sum for every product.

    Returns one entry per drifting product. With fix=True the materialized
    balance is rewritten from the ledger (caller commits).
    """
    ledger = dict(
        db.session.query(StockHistory.product_id, func.sum(StockHistory.quantity_delta))
        .group_by(StockHistory.product_id)
        .all()
    )

    drift = []
    for product in db.session.query(Product).order_by(Product.id.asc()).all():
        expected = int(ledger.get(product.id) or 0)
        if product.stock != expected:
            drift.append({
                "product_id": product.id,
                "name": product.name,
                "stock": product.stock,
                "ledger": expected,
                "difference": product.stock - expected,
            })
            if fix:
                product.stock = expected
    if fix and drift:
        db.session.flush()
    return drift
