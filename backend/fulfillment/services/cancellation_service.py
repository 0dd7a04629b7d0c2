# Overview: Service-layer operations for order cancellation and refunds.

from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import CardOrder
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_DELIVERED,
    ORDER_DRAFT,
    ORDER_FAILED,
    ORDER_PAID,
    ORDER_PENDING,
    PAYMENT_COMPLETED,
    PAYMENT_PAID,
    PAYMENT_REFUNDED,
)
from ..models.wallets import TX_REFUND
from ..money import ZERO, to_money
from ..time_utils import utcnow
from . import inventory_service, reservation_service, wallet_service
from .concurrency import lock_for_update, run_with_retry
from .errors import Conflict, NotFound
from .order_event_service import ACTOR_BUYER, append_order_event

"""
Cancellation Invariants (authoritative)

- Only orders that have not been delivered can be cancelled
  (DRAFT, PENDING, PAID). Delivered codes cannot be taken back.
- Release, refund and the status change commit in one transaction on the
  locked order row; a failure leaves the order exactly as it was.
- A refund is issued at most once per order: a second call finds the order
  CANCELLED and does nothing, and an existing REFUND entry for the order
  blocks another credit.
"""

CANCELLABLE_STATUSES = (ORDER_DRAFT, ORDER_PENDING, ORDER_PAID)
REFUNDABLE_PAYMENT_STATUSES = (PAYMENT_PAID, PAYMENT_COMPLETED)


def cancel_order(
    tenant_id: int,
    buyer_id: int | None,
    order_id: int,
    reason: str | None = None,
    actor_type: str = ACTOR_BUYER,
) -> CardOrder:
    """
    Cancel an undelivered order, releasing its cards and refunding the wallet.

    buyer_id=None cancels on behalf of the tenant (admin); otherwise the order
    must belong to that buyer.
    """
    reason = (reason or "Cancelled by request").strip()[:255]
    released_products: list[int] = []

    def _op():
        query = db.session.query(CardOrder).filter_by(id=order_id, tenant_id=tenant_id)
        if buyer_id is not None:
            query = query.filter_by(buyer_id=buyer_id)
        order = lock_for_update(query).first()
        if order is None:
            raise NotFound("Order not found", details={"order_id": order_id})

        if order.status == ORDER_CANCELLED:
            return order, False
        if order.status in (ORDER_DELIVERED, ORDER_COMPLETED):
            raise Conflict(
                "Delivered orders cannot be cancelled",
                details={"order_id": order.id, "status": order.status},
            )
        if order.status not in CANCELLABLE_STATUSES:
            raise Conflict(
                f"Orders in status {order.status} cannot be cancelled",
                details={"order_id": order.id, "status": order.status},
            )

        released_products.clear()
        released_products.extend(item.product_id for item in order.items)
        unit_ids = reservation_service.reserved_unit_ids(order.id)
        reservation_service._release_units(unit_ids)

        refunded = False
        total = to_money(order.total)
        if order.payment_status in REFUNDABLE_PAYMENT_STATUSES and total > ZERO:
            if wallet_service.find_order_entry(order.id, TX_REFUND) is None:
                wallet_service._credit_inner(
                    order.tenant_id,
                    order.buyer_id,
                    total,
                    f"Refund: Order {order.order_number}",
                    f"استرداد: طلب {order.order_number}",
                    reference=order.order_number,
                    tx_type=TX_REFUND,
                    order_id=order.id,
                )
            refunded = True

        previous = order.status
        order.status = ORDER_CANCELLED
        order.cancellation_reason = reason
        order.cancelled_at = utcnow()
        if refunded:
            order.payment_status = PAYMENT_REFUNDED
        append_order_event(
            order_id=order.id,
            event_type="CANCELLED",
            from_status=previous,
            to_status=ORDER_CANCELLED,
            message=reason,
            actor_type=actor_type,
        )
        db.session.commit()
        return order, True

    order, changed = run_with_retry(_op)
    if not changed:
        return order

    inventory_service.refresh_stock_counts(tenant_id, released_products)
    current_app.logger.info(
        "Order %s cancelled (%s), payment status %s",
        order.order_number, reason, order.payment_status,
    )
    return order
