# Overview: Customer management; manual loyalty edits go through the loyalty ledger.

from __future__ import annotations

from sqlalchemy import or_

from ..extensions import db
from ..errors import ConflictError, NotFoundError, ValidationError
from ..models import Customer, Invoice
from .activity_service import log_activity
from .concurrency import begin_write, lock_for_update, run_with_retry
from .loyalty_service import adjust_points, get_loyalty_history
from .pagination import paginate


def _ensure_unique_contact(patch: dict, *, exclude_id: int | None = None) -> None:
    conditions = []
    if patch.get("email"):
        conditions.append(Customer.email == patch["email"])
    if patch.get("phone"):
        conditions.append(Customer.phone == patch["phone"])
    if not conditions:
        return

    q = db.session.query(Customer.id).filter(or_(*conditions))
    if exclude_id is not None:
        q = q.filter(Customer.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Email or phone number already in use by another customer")


def list_customers(
    *,
    query: str | None = None,
    loyal_only: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    q = db.session.query(Customer)
    if query:
        like = f"%{query.strip()}%"
        q = q.filter(or_(
            Customer.name.ilike(like),
            Customer.email.ilike(like),
            Customer.phone.ilike(like),
        ))
    if loyal_only:
        q = q.filter(Customer.loyalty_points > 0)

    q = q.order_by(Customer.total_purchases_cents.desc(), Customer.id.asc())
    return paginate(q, page=page, per_page=per_page, serialize=lambda c: c.to_dict())


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found")
    return customer


def get_customer_detail(customer_id: int) -> dict:
    """Customer plus loyalty ledger and the 10 most recent invoices."""
    customer = get_customer(customer_id)
    invoices = (
        db.session.query(Invoice)
        .filter(Invoice.customer_id == customer_id)
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .limit(10)
        .all()
    )
    data = customer.to_dict()
    data["loyalty_history"] = get_loyalty_history(customer_id)
    data["recent_invoices"] = [inv.to_dict(include_items=True) for inv in invoices]
    return data


def create_customer(*, patch: dict, user_id: int | None = None) -> Customer:
    def _op():
        begin_write()
        _ensure_unique_contact(patch)

        customer = Customer(**patch)
        db.session.add(customer)
        db.session.flush()
        log_activity(
            user_id=user_id,
            action="CREATE_CUSTOMER",
            entity_type="customer",
            entity_id=customer.id,
            details=f"Created customer: {customer.name}",
        )
        db.session.commit()
        return customer

    return run_with_retry(_op)


def update_customer(
    *,
    customer_id: int,
    patch: dict,
    loyalty_points: int | None = None,
    points_note: str | None = None,
    user_id: int | None = None,
) -> Customer:
    """
    Patch contact fields. A new loyalty_points value is recorded as an
    ADJUST ledger entry for the difference.
    """
    def _op():
        begin_write()
        customer = lock_for_update(db.session.query(Customer).filter_by(id=customer_id)).first()
        if customer is None:
            raise NotFoundError(f"Customer {customer_id} not found")

        _ensure_unique_contact(patch, exclude_id=customer.id)
        for k, v in patch.items():
            setattr(customer, k, v)
        db.session.flush()

        if loyalty_points is not None:
            adjust_points(
                customer_id=customer.id,
                new_balance=loyalty_points,
                user_id=user_id,
                description=points_note,
            )

        log_activity(
            user_id=user_id,
            action="UPDATE_CUSTOMER",
            entity_type="customer",
            entity_id=customer.id,
            details=f"Updated customer: {customer.name}",
        )
        db.session.commit()
        return customer

    return run_with_retry(_op)


def delete_customer(*, customer_id: int, user_id: int | None = None) -> None:
    """Delete a customer with no purchase history."""
    customer = get_customer(customer_id)

    invoice_count = db.session.query(Invoice).filter(Invoice.customer_id == customer_id).count()
    if invoice_count:
        raise ValidationError(
            "Cannot delete customer with purchase history",
            details={"invoice_count": invoice_count},
        )

    def _op():
        begin_write()
        name = customer.name
        customer.loyalty_history.delete(synchronize_session=False)
        db.session.delete(customer)
        log_activity(
            user_id=user_id,
            action="DELETE_CUSTOMER",
            entity_type="customer",
            entity_id=customer_id,
            details=f"Deleted customer: {name}",
        )
        db.session.commit()

    run_with_retry(_op)
