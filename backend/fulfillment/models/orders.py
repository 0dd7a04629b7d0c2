from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z

ORDER_DRAFT = "DRAFT"
ORDER_PENDING = "PENDING"
ORDER_PAID = "PAID"
ORDER_DELIVERED = "DELIVERED"
ORDER_COMPLETED = "COMPLETED"
ORDER_CANCELLED = "CANCELLED"
ORDER_FAILED = "FAILED"

PAYMENT_PENDING = "PENDING"
PAYMENT_PAID = "PAID"
PAYMENT_COMPLETED = "COMPLETED"
PAYMENT_REFUNDED = "REFUNDED"


class CardOrder(db.Model):
    """
    Card order document.

    LIFECYCLE:
        PENDING -> PAID -> DELIVERED
        PENDING | PAID -> CANCELLED   (refund when already charged)
        PENDING -> FAILED             (creation aborted, effects compensated)

    DELIVERED/COMPLETED orders can never be cancelled: revealed codes cannot
    be taken back.
    """
    __tablename__ = "card_orders"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "order_number", name="uq_card_orders_tenant_number"),
        db.UniqueConstraint(
            "tenant_id", "buyer_id", "idempotency_key", name="uq_card_orders_idempotency"
        ),
        db.Index("ix_card_orders_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    buyer_id = db.Column(db.Integer, nullable=False, index=True)

    # Human-readable number (e.g. "ORD-LX2K9Q-4F7A")
    order_number = db.Column(db.String(64), nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ORDER_PENDING, index=True)
    payment_status = db.Column(db.String(16), nullable=False, default=PAYMENT_PENDING, index=True)
    payment_method = db.Column(db.String(16), nullable=False, default="WALLET")

    subtotal = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    tax_total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    currency = db.Column(db.String(3), nullable=False, default="SAR")

    notes = db.Column(db.Text, nullable=True)

    # Client retry safety: same key + same fingerprint returns this order
    idempotency_key = db.Column(db.String(128), nullable=True)
    request_fingerprint = db.Column(db.String(64), nullable=True)

    failure_reason = db.Column(db.String(255), nullable=True)
    cancellation_reason = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    paid_at = db.Column(db.DateTime(timezone=True), nullable=True)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    items = db.relationship(
        "CardOrderItem",
        backref="order",
        lazy=True,
        order_by="CardOrderItem.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<CardOrder id={self.id} number={self.order_number!r} status={self.status}>"

    @property
    def is_delivered(self) -> bool:
        return self.status in (ORDER_DELIVERED, ORDER_COMPLETED)

    def to_dict(self, *, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "buyer_id": self.buyer_id,
            "order_number": self.order_number,
            "status": self.status,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "subtotal": money_str(self.subtotal),
            "tax_total": money_str(self.tax_total),
            "total": money_str(self.total),
            "currency": self.currency,
            "notes": self.notes,
            "failure_reason": self.failure_reason,
            "cancellation_reason": self.cancellation_reason,
            "created_at": to_utc_z(self.created_at),
            "paid_at": to_utc_z(self.paid_at),
            "delivered_at": to_utc_z(self.delivered_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
        }
        if include_items:
            data["items"] = [item.to_dict(reveal=self.is_delivered) for item in self.items]
        return data


class CardOrderItem(db.Model):
    """Order line; prices are snapshotted from the catalog at order time."""
    __tablename__ = "card_order_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("card_orders.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("card_products.id"), nullable=False, index=True)

    product_name = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    tax_rate = db.Column(db.Numeric(6, 4), nullable=False)
    line_subtotal = db.Column(db.Numeric(12, 2), nullable=False)
    line_tax = db.Column(db.Numeric(12, 2), nullable=False)
    line_total = db.Column(db.Numeric(12, 2), nullable=False)

    delivered_count = db.Column(db.Integer, nullable=False, default=0)

    deliveries = db.relationship(
        "CardDelivery",
        backref="order_item",
        lazy=True,
        order_by="CardDelivery.id",
        cascade="all, delete-orphan",
    )

    def to_dict(self, *, reveal: bool = False) -> dict:
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": money_str(self.unit_price),
            "tax_rate": str(self.tax_rate) if self.tax_rate is not None else None,
            "line_subtotal": money_str(self.line_subtotal),
            "line_tax": money_str(self.line_tax),
            "line_total": money_str(self.line_total),
            "delivered_count": self.delivered_count,
        }
        if reveal:
            data["deliveries"] = [d.to_dict() for d in self.deliveries]
        return data


class CardDelivery(db.Model):
    """
    Snapshot of a code handed to the buyer.

    Created once at delivery; only viewed_at is ever stamped afterwards.
    """
    __tablename__ = "card_deliveries"
    __table_args__ = (
        db.UniqueConstraint("unit_id", name="uq_card_deliveries_unit"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_item_id = db.Column(db.Integer, db.ForeignKey("card_order_items.id"), nullable=False, index=True)
    unit_id = db.Column(db.Integer, db.ForeignKey("card_units.id"), nullable=False)

    code = db.Column(db.String(255), nullable=False)
    pin = db.Column(db.String(255), nullable=True)

    delivered_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    viewed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_item_id": self.order_item_id,
            "unit_id": self.unit_id,
            "code": self.code,
            "pin": self.pin,
            "delivered_at": to_utc_z(self.delivered_at),
            "viewed_at": to_utc_z(self.viewed_at),
        }


class CardOrderEvent(db.Model):
    """Append-only order history (created, paid, delivered, failed, cancelled)."""
    __tablename__ = "card_order_events"
    __table_args__ = (
        db.Index("ix_card_order_events_order_created", "order_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("card_orders.id"), nullable=False)

    event_type = db.Column(db.String(32), nullable=False)
    from_status = db.Column(db.String(16), nullable=True)
    to_status = db.Column(db.String(16), nullable=True)
    message = db.Column(db.String(255), nullable=True)
    actor_type = db.Column(db.String(16), nullable=False, default="SYSTEM")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "event_type": self.event_type,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "message": self.message,
            "actor_type": self.actor_type,
            "created_at": to_utc_z(self.created_at),
        }
