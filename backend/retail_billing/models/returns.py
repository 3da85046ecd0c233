from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class ReturnOrder(db.Model):
    """
    Customer return against a single invoice.

    Lifecycle: PENDING -> COMPLETED. Stock, loyalty and invoice status only
    change when the return completes.
    """
    __tablename__ = "return_orders"
    __table_args__ = (
        db.Index("ix_return_orders_invoice_status", "invoice_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)
    reason = db.Column(db.String(255), nullable=True)
    note = db.Column(db.Text, nullable=True)

    total_cents = db.Column(db.Integer, nullable=False, default=0)

    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False)
    return_date = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    invoice = db.relationship("Invoice", backref=db.backref("returns", lazy="dynamic"))
    user = db.relationship("User")
    items = db.relationship(
        "ReturnItem",
        backref="return_order",
        cascade="all, delete-orphan",
        order_by="ReturnItem.id",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "invoice_number": self.invoice.invoice_number if self.invoice else None,
            "customer_id": self.invoice.customer_id if self.invoice else None,
            "status": self.status,
            "reason": self.reason,
            "note": self.note,
            "total_cents": self.total_cents,
            "user_id": self.user_id,
            "user_name": self.user.name if self.user else None,
            "return_date": to_utc_z(self.return_date),
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at) if self.completed_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class ReturnItem(db.Model):
    __tablename__ = "return_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_order_id = db.Column(db.Integer, db.ForeignKey("return_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    # Refunded amount: paid share of the invoice line (after discount, with tax)
    line_total_cents = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=True)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_order_id": self.return_order_id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "reason": self.reason,
        }
