from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow


class StoreSetting(db.Model):
    """
    Store-wide settings, kept as a single row (id=1).

    default_tax_rate_bps applies to new products that do not specify a rate.
    """
    __tablename__ = "store_settings"

    id = db.Column(db.Integer, primary_key=True)

    store_name = db.Column(db.String(255), nullable=False, default="My Store")
    address = db.Column(db.Text, nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    currency = db.Column(db.String(3), nullable=False, default="USD")
    default_tax_rate_bps = db.Column(db.Integer, nullable=False, default=0)
    receipt_footer = db.Column(db.Text, nullable=True)

    updated_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, server_default=db.func.now(), onupdate=utcnow)

    def to_dict(self):
        return {
            "store_name": self.store_name,
            "address": self.address,
            "phone": self.phone,
            "email": self.email,
            "currency": self.currency,
            "default_tax_rate_bps": self.default_tax_rate_bps,
            "receipt_footer": self.receipt_footer,
            "updated_by_user_id": self.updated_by_user_id,
            "updated_at": to_utc_z(self.updated_at),
        }
