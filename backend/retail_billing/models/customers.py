from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class Customer(db.Model):
    """
    Customer master data for tracking purchases and loyalty.

    WHY: Enables customer lifetime value tracking, repeat purchase
    analysis, and the loyalty points program.

    loyalty_points and total_purchases_cents are denormalized aggregates.
    LoyaltyHistory is the ledger behind loyalty_points.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("email", name="uq_customers_email"),
        db.UniqueConstraint("phone", name="uq_customers_phone"),
        db.CheckConstraint("loyalty_points >= 0", name="loyalty_points_non_negative"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    address = db.Column(db.Text, nullable=True)

    loyalty_points = db.Column(db.Integer, nullable=False, default=0)
    total_purchases_cents = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=db.func.now(),
        onupdate=utcnow,
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "address": self.address,
            "loyalty_points": self.loyalty_points,
            "total_purchases_cents": self.total_purchases_cents,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class LoyaltyHistory(db.Model):
    """Append-only loyalty ledger. Sum of points per customer == Customer.loyalty_points."""
    __tablename__ = "loyalty_history"
    __table_args__ = (
        db.Index("ix_loyalty_history_customer_created", "customer_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    # EARN, REVERSE, RETURN, ADJUST
    TYPES = ("EARN", "REVERSE", "RETURN", "ADJUST")

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    # Signed: positive for EARN, negative for REVERSE / RETURN
    points = db.Column(db.Integer, nullable=False)
    type = db.Column(db.String(16), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=True)

    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=True, index=True)
    return_order_id = db.Column(db.Integer, db.ForeignKey("return_orders.id"), nullable=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("loyalty_history", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "points": self.points,
            "type": self.type,
            "description": self.description,
            "invoice_id": self.invoice_id,
            "return_order_id": self.return_order_id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }
