from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z


class CardProduct(db.Model):
    """
    Catalog projection of a sellable card product.

    Pricing fields (unit_price, tax_rate, min/max quantity) are owned by the
    catalog. stock_count / is_available are a cache recomputed by the
    inventory service from the AVAILABLE unit count; never authoritative.
    """
    __tablename__ = "card_products"
    __table_args__ = (
        db.Index("ix_card_products_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    name_ar = db.Column(db.String(255), nullable=True)

    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    # Fraction, e.g. 0.1500 for 15%
    tax_rate = db.Column(db.Numeric(6, 4), nullable=False, default=Decimal("0"))
    currency = db.Column(db.String(3), nullable=False, default="SAR")

    min_quantity = db.Column(db.Integer, nullable=False, default=1)
    max_quantity = db.Column(db.Integer, nullable=False, default=1000)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_available = db.Column(db.Boolean, nullable=False, default=False)
    stock_count = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<CardProduct id={self.id} name={self.name!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "name_ar": self.name_ar,
            "unit_price": money_str(self.unit_price),
            "tax_rate": str(self.tax_rate) if self.tax_rate is not None else None,
            "currency": self.currency,
            "min_quantity": self.min_quantity,
            "max_quantity": self.max_quantity,
            "is_active": self.is_active,
            "is_available": self.is_available,
            "stock_count": self.stock_count,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
