from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

UNIT_AVAILABLE = "AVAILABLE"
UNIT_RESERVED = "RESERVED"
UNIT_SOLD = "SOLD"
UNIT_EXPIRED = "EXPIRED"
UNIT_INVALID = "INVALID"
UNIT_REFUNDED = "REFUNDED"

UNIT_STATUSES = (
    UNIT_AVAILABLE,
    UNIT_RESERVED,
    UNIT_SOLD,
    UNIT_EXPIRED,
    UNIT_INVALID,
    UNIT_REFUNDED,
)


class CardUnit(db.Model):
    """
    One serialized, sellable credential (activation code and optional PIN).

    Lifecycle:
        AVAILABLE -> RESERVED -> SOLD
        AVAILABLE -> EXPIRED           (expiry sweep)
        RESERVED  -> AVAILABLE         (release on cancel/failure/timeout)
        INVALID, REFUNDED              (terminal, administrative)

    WRITERS: status/order_id/buyer_id are written only by reservation_service
    (and the expiry sweep / admin delete in inventory_service).
    """
    __tablename__ = "card_units"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "code", name="uq_card_units_tenant_code"),
        # Reservation scans: product + status, oldest first
        db.Index("ix_card_units_product_status_imported", "product_id", "status", "imported_at"),
        db.Index("ix_card_units_buyer_status", "buyer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("card_products.id"), nullable=False, index=True)

    code = db.Column(db.String(255), nullable=False)
    pin = db.Column(db.String(255), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(16), nullable=False, default=UNIT_AVAILABLE, index=True)

    # Import lineage
    batch_number = db.Column(db.String(64), nullable=True, index=True)

    order_id = db.Column(db.Integer, db.ForeignKey("card_orders.id"), nullable=True, index=True)
    buyer_id = db.Column(db.Integer, nullable=True)

    imported_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    reserved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    sold_at = db.Column(db.DateTime(timezone=True), nullable=True)

    product = db.relationship("CardProduct", backref=db.backref("units", lazy=True))

    def __repr__(self) -> str:
        return f"<CardUnit id={self.id} product_id={self.product_id} status={self.status}>"

    def to_dict(self, *, reveal: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "status": self.status,
            "expires_at": to_utc_z(self.expires_at),
            "batch_number": self.batch_number,
            "order_id": self.order_id,
            "buyer_id": self.buyer_id,
            "imported_at": to_utc_z(self.imported_at),
            "reserved_at": to_utc_z(self.reserved_at),
            "sold_at": to_utc_z(self.sold_at),
        }
        if reveal:
            data["code"] = self.code
            data["pin"] = self.pin
        return data


class CardBatch(db.Model):
    """
    Immutable record of one import call.

    Written once after the rows have been processed; a batch is recorded even
    when every row failed so the import history stays complete.
    """
    __tablename__ = "card_batches"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "batch_number", name="uq_card_batches_tenant_number"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("card_products.id"), nullable=False, index=True)

    batch_number = db.Column(db.String(64), nullable=False)
    file_name = db.Column(db.String(255), nullable=True)

    total_cards = db.Column(db.Integer, nullable=False, default=0)
    valid_cards = db.Column(db.Integer, nullable=False, default=0)
    invalid_cards = db.Column(db.Integer, nullable=False, default=0)

    imported_by_id = db.Column(db.Integer, nullable=True)
    imported_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "batch_number": self.batch_number,
            "file_name": self.file_name,
            "total_cards": self.total_cards,
            "valid_cards": self.valid_cards,
            "invalid_cards": self.invalid_cards,
            "imported_by_id": self.imported_by_id,
            "imported_at": to_utc_z(self.imported_at),
        }
