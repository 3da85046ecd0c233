# Overview: Loyalty points ledger: accrual, reversal, return deductions and manual adjustments.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import NotFoundError, ValidationError
from ..models import Customer, LoyaltyHistory
"""
Loyalty Invariants (authoritative)

- For every customer, SUM(LoyaltyHistory.points) == Customer.loyalty_points.
- Balances never go negative.
- Every balance change appends exactly one LoyaltyHistory row in the same
  DB transaction. Nothing here commits.

Entry types:
- EARN: accrual on invoice creation, floor(total / cents_per_point)
- REVERSE: invoice void, exactly the points the ledger recorded as earned
- RETURN: completed return, capped by what the invoice still holds and
  by the current balance
- ADJUST: manual correction by staff
"""

LOYALTY_EARN = "EARN"
LOYALTY_REVERSE = "REVERSE"
LOYALTY_RETURN = "RETURN"
LOYALTY_ADJUST = "ADJUST"


def cents_per_point() -> int:
    rate = int(current_app.config.get("LOYALTY_CENTS_PER_POINT", 1000))
    if rate <= 0:
        raise ValueError("LOYALTY_CENTS_PER_POINT must be positive")
    return rate


def points_for_amount(amount_cents: int) -> int:
    """floor(amount / rate); zero for non-positive amounts."""
    if amount_cents <= 0:
        return 0
    return amount_cents // cents_per_point()


def _apply_points(
    customer_id: int,
    points: int,
    entry_type: str,
    *,
    description: str | None = None,
    invoice_id: int | None = None,
    return_order_id: int | None = None,
    user_id: int | None = None,
) -> LoyaltyHistory:
    query = db.session.query(Customer).filter(Customer.id == customer_id)
    if points < 0:
        query = query.filter(Customer.loyalty_points >= -points)
    updated = query.update(
        {Customer.loyalty_points: Customer.loyalty_points + points},
        synchronize_session=False,
    )
    if updated == 0:
        if db.session.query(Customer.id).filter(Customer.id == customer_id).scalar() is None:
            raise NotFoundError(f"Customer {customer_id} not found")
        raise ValidationError("Loyalty balance cannot go negative")

    customer = db.session.identity_map.get(db.session.identity_key(Customer, customer_id))
    if customer is not None:
        db.session.expire(customer, ["loyalty_points"])

    entry = LoyaltyHistory(
        customer_id=customer_id,
        points=points,
        type=entry_type,
        description=description,
        invoice_id=invoice_id,
        return_order_id=return_order_id,
        user_id=user_id,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def current_balance(customer_id: int) -> int:
    balance = db.session.query(Customer.loyalty_points).filter(Customer.id == customer_id).scalar()
    if balance is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return int(balance)


def net_points_for_invoice(invoice_id: int) -> int:
    """
    Points an invoice still holds: what it earned minus what voids and
    returns have already taken back.
    """
    q = db.session.query(
        func.coalesce(func.sum(LoyaltyHistory.points), 0)
    ).filter(
        LoyaltyHistory.invoice_id == invoice_id,
        LoyaltyHistory.type.in_([LOYALTY_EARN, LOYALTY_REVERSE, LOYALTY_RETURN]),
    )
    return max(int(q.scalar() or 0), 0)


def accrue_for_invoice(
    *,
    customer_id: int,
    invoice_id: int,
    invoice_number: str,
    total_cents: int,
    user_id: int | None = None,
) -> int:
    points = points_for_amount(total_cents)
    if points > 0:
        _apply_points(
            customer_id,
            points,
            LOYALTY_EARN,
            description=f"Earned on invoice {invoice_number}",
            invoice_id=invoice_id,
            user_id=user_id,
        )
    return points


def reverse_for_invoice(
    *,
    customer_id: int,
    invoice_id: int,
    invoice_number: str,
    user_id: int | None = None,
) -> int:
    """
    Take back what the ledger says this invoice earned.

    If the customer has already spent some of those points the reversal is
    capped at the current balance, and the shortfall is logged.
    """
    earned = net_points_for_invoice(invoice_id)
    if earned <= 0:
        return 0

    balance = current_balance(customer_id)
    points = min(earned, balance)
    if points < earned:
        current_app.logger.warning(
            "Loyalty reversal capped for customer %s on invoice %s: earned=%s balance=%s",
            customer_id, invoice_number, earned, balance,
        )
    if points <= 0:
        return 0

    _apply_points(
        customer_id,
        -points,
        LOYALTY_REVERSE,
        description=f"Reversed for voided invoice {invoice_number}",
        invoice_id=invoice_id,
        user_id=user_id,
    )
    return points


def deduct_for_return(
    *,
    customer_id: int,
    invoice_id: int,
    return_order_id: int,
    return_total_cents: int,
    user_id: int | None = None,
    settle: bool = False,
) -> int:
    """
    min(floor(return_total / rate), points the invoice still holds, balance).

    With settle=True the return refunds the rest of the invoice, so all the
    points the invoice still holds come back (capped by the balance).
    """
    held = net_points_for_invoice(invoice_id)
    owed = held if settle else min(points_for_amount(return_total_cents), held)
    points = min(owed, current_balance(customer_id))
    if points <= 0:
        return 0

    _apply_points(
        customer_id,
        -points,
        LOYALTY_RETURN,
        description=f"Deducted for return #{return_order_id}",
        invoice_id=invoice_id,
        return_order_id=return_order_id,
        user_id=user_id,
    )
    return points


def adjust_points(
    *,
    customer_id: int,
    new_balance: int,
    user_id: int | None = None,
    description: str | None = None,
) -> LoyaltyHistory | None:
    """Set a balance by hand. Writes the difference as an ADJUST entry."""
    if new_balance < 0:
        raise ValidationError("loyalty_points must be >= 0")
    delta = new_balance - current_balance(customer_id)
    if delta == 0:
        return None
    return _apply_points(
        customer_id,
        delta,
        LOYALTY_ADJUST,
        description=description or "Manual adjustment",
        user_id=user_id,
    )


def get_loyalty_history(customer_id: int, *, limit: int = 100) -> list[dict]:
    rows = (
        db.session.query(LoyaltyHistory)
        .filter(LoyaltyHistory.customer_id == customer_id)
        .order_by(LoyaltyHistory.created_at.desc(), LoyaltyHistory.id.desc())
        .limit(limit)
        .all()
    )
    return [r.to_dict() for r in rows]


def reconcile_loyalty(*, fix: bool = False) -> list[dict]:
    """
    Compare Customer.loyalty_points to the ledger sum for every customer.

    With fix=True the materialized balance is rewritten from the ledger
    (caller commits).
    """
    ledger = dict(
        db.session.query(LoyaltyHistory.customer_id, func.sum(LoyaltyHistory.points))
        .group_by(LoyaltyHistory.customer_id)
        .all()
    )

    drift = []
    for customer in db.session.query(Customer).order_by(Customer.id.asc()).all():
        expected = int(ledger.get(customer.id) or 0)
        if customer.loyalty_points != expected:
            drift.append({
                "customer_id": customer.id,
                "name": customer.name,
                "loyalty_points": customer.loyalty_points,
                "ledger": expected,
                "difference": customer.loyalty_points - expected,
            })
            if fix:
                customer.loyalty_points = expected
    if fix and drift:
        db.session.flush()
    return drift
