# Overview: Service-layer operations for card orders; the fulfillment saga spanning inventory and wallet.

from __future__ import annotations

import hashlib
import json
import secrets
import time
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import CardDelivery, CardOrder, CardOrderItem, WalletTransaction
from ..models.orders import (
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_DELIVERED,
    ORDER_FAILED,
    ORDER_PAID,
    ORDER_PENDING,
    PAYMENT_PAID,
)
from ..models.wallets import TX_PURCHASE
from ..money import ZERO, to_money
from ..time_utils import utcnow
from . import catalog_service, inventory_service, reservation_service, wallet_service
from .concurrency import lock_for_update, run_with_retry
from .errors import (
    Conflict,
    FulfillmentError,
    InsufficientFunds,
    InsufficientStock,
    NotFound,
    ReservationMismatch,
    TransientStorageError,
    ValidationError,
)
from .order_event_service import ACTOR_BUYER, ACTOR_SYSTEM, append_order_event

"""
Order Fulfillment Invariants (authoritative)

Saga: validate -> PENDING -> reserve -> PAID (debit) -> SOLD -> deliveries -> DELIVERED

- Nothing is written before validation, pricing and the balance pre-check
  have all passed.
- Each reservation is its own committed step. Any failure before PAID
  releases every unit reserved for the order and leaves the order FAILED
  with its idempotency key cleared, so the same key can be retried.
- The wallet debit and the PENDING -> PAID transition commit in one DB
  transaction. The order row is locked and versioned, so a concurrent
  timeout sweep that failed the order makes the payment abort instead of
  charging for released units.
- After PAID the saga only moves forward: a delivery failure leaves the order
  PAID and resume_paid_orders() finishes it. Money is never taken without
  the codes eventually being delivered (or refunded via cancellation).
- Idempotency: (tenant, buyer, key) is unique. Same key + same payload
  returns the stored order; same key + different payload is a Conflict.
"""

_BASE36 = "0123456789ABCDEFGHIJKLMNOPQRSTUVWXYZ"


@dataclass
class OrderResult:
    order: CardOrder
    replayed: bool = False

    def to_dict(self) -> dict:
        data = self.order.to_dict()
        data["replayed"] = self.replayed
        return data


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number() -> str:
    """ORD-<base36 epoch millis>-<4 random hex chars>."""
    return f"ORD-{_base36(int(time.time() * 1000))}-{secrets.token_hex(2).upper()}"


def _normalize_items(items: Any) -> list[dict[str, int]]:
    """Validate item shapes and merge repeated products into one line."""
    if not isinstance(items, list) or not items:
        raise ValidationError("Order must contain at least one item")

    merged: dict[int, int] = {}
    for index, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise ValidationError(f"Item {index} must be an object")
        product_id = item.get("product_id")
        quantity = item.get("quantity")
        if not isinstance(product_id, int) or isinstance(product_id, bool) or product_id <= 0:
            raise ValidationError(f"Item {index}: product_id must be a positive integer")
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise ValidationError(f"Item {index}: quantity must be a positive integer")
        merged[product_id] = merged.get(product_id, 0) + quantity

    return [{"product_id": pid, "quantity": qty} for pid, qty in merged.items()]


def _fingerprint(items: list[dict[str, int]], notes: str | None) -> str:
    payload = {
        "items": sorted(items, key=lambda i: i["product_id"]),
        "notes": notes or None,
    }
    return hashlib.sha256(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()


def _find_by_idempotency_key(tenant_id: int, buyer_id: int, key: str) -> CardOrder | None:
    return (
        db.session.query(CardOrder)
        .filter_by(tenant_id=tenant_id, buyer_id=buyer_id, idempotency_key=key)
        .first()
    )


def _replay(existing: CardOrder, fingerprint: str) -> OrderResult:
    if existing.request_fingerprint != fingerprint:
        raise Conflict(
            "Idempotency key was already used with a different request",
            details={"order_id": existing.id},
        )
    return OrderResult(order=existing, replayed=True)


def _price_lines(tenant_id: int, items: list[dict[str, int]]) -> list[dict[str, Any]]:
    """Load, validate and price every line. No writes."""
    lines = []
    for item in items:
        product = catalog_service.get_product(tenant_id, item["product_id"])
        quantity = item["quantity"]

        # stock_count / is_available are a cache; sellable stock is counted live below
        if not product.is_active:
            raise ValidationError(
                f"{product.name} is not available",
                details={"product_id": product.id},
            )
        if quantity < product.min_quantity or quantity > product.max_quantity:
            raise ValidationError(
                f"Quantity for {product.name} must be between "
                f"{product.min_quantity} and {product.max_quantity}",
                details={"product_id": product.id, "quantity": quantity},
            )

        available = reservation_service.count_sellable(product.id)
        if quantity > available:
            raise InsufficientStock(product.id, requested=quantity, available=available, product_name=product.name)

        unit_price = to_money(product.unit_price)
        tax_rate = Decimal(str(product.tax_rate or 0))
        line_subtotal = to_money(unit_price * quantity)
        line_tax = to_money(line_subtotal * tax_rate)
        lines.append(
            {
                "product_id": product.id,
                "product_name": product.name,
                "quantity": quantity,
                "unit_price": unit_price,
                "tax_rate": tax_rate,
                "line_subtotal": line_subtotal,
                "line_tax": line_tax,
                "line_total": to_money(line_subtotal + line_tax),
            }
        )
    return lines


def _load_order_locked(order_id: int) -> CardOrder:
    order = lock_for_update(db.session.query(CardOrder).filter_by(id=order_id)).first()
    if order is None:
        raise NotFound("Order not found", details={"order_id": order_id})
    return order


def _mark_failed(order_id: int, reason: str) -> None:
    def _op():
        order = _load_order_locked(order_id)
        if order.status != ORDER_PENDING:
            return
        previous = order.status
        order.status = ORDER_FAILED
        order.failure_reason = reason[:255]
        # A failed attempt must not pin the key; the client retries with it
        order.idempotency_key = None
        append_order_event(
            order_id=order.id,
            event_type="FAILED",
            from_status=previous,
            to_status=ORDER_FAILED,
            message=reason[:255],
            actor_type=ACTOR_SYSTEM,
        )
        db.session.commit()

    run_with_retry(_op)


def _compensate(order_id: int, reason: str, tenant_id: int, product_ids: list[int]) -> None:
    """
    Undo every side effect of an unpaid order: release its units, mark it FAILED
    and bring the stock cache back in line with the released units.

    Failures are logged with the unit ids; the timeout sweep recovers whatever
    could not be released here.
    """
    attempts = current_app.config.get("COMPENSATION_RETRY_ATTEMPTS", 5)
    unit_ids: list[int] = []
    try:
        unit_ids = reservation_service.reserved_unit_ids(order_id)
        if unit_ids:
            reservation_service.release(unit_ids, attempts=attempts)
    except Exception:
        db.session.rollback()
        current_app.logger.exception(
            "Failed to release units %s for order %s", unit_ids, order_id
        )

    try:
        _mark_failed(order_id, reason)
    except Exception:
        db.session.rollback()
        current_app.logger.exception("Failed to mark order %s as failed", order_id)

    try:
        inventory_service.refresh_stock_counts(tenant_id, product_ids)
    except TransientStorageError:
        current_app.logger.exception("Stock refresh failed after aborting order %s", order_id)

    current_app.logger.info("Order %s aborted: %s", order_id, reason)


def _pay_order(order_id: int, expected_units: int, description_ar: str | None) -> None:
    """Debit the wallet and move PENDING -> PAID in one transaction."""
    def _op():
        order = _load_order_locked(order_id)
        if order.status != ORDER_PENDING:
            raise Conflict(
                "Order is no longer pending",
                details={"order_id": order.id, "status": order.status},
            )
        held = len(reservation_service.reserved_unit_ids(order.id))
        if held != expected_units:
            raise ReservationMismatch(
                "Reserved cards were released before payment",
                details={"order_id": order.id, "expected": expected_units, "held": held},
            )

        total = to_money(order.total)
        if total > ZERO:
            wallet_service._debit_inner(
                order.tenant_id,
                order.buyer_id,
                total,
                f"Purchase: Order {order.order_number}",
                description_ar,
                reference=order.order_number,
                order_id=order.id,
            )

        order.status = ORDER_PAID
        order.payment_status = PAYMENT_PAID
        order.paid_at = utcnow()
        append_order_event(
            order_id=order.id,
            event_type="PAID",
            from_status=ORDER_PENDING,
            to_status=ORDER_PAID,
            message=f"Paid {total} from wallet",
        )
        db.session.commit()

    run_with_retry(_op)


def _deliver_inner(order: CardOrder) -> list[int]:
    """RESERVED -> SOLD, one delivery per unit, order -> DELIVERED. No commit."""
    units = reservation_service.reserved_units_for_order(order.id)
    by_product = defaultdict(list)
    for unit in units:
        by_product[unit.product_id].append(unit)

    now = utcnow()
    sold_ids = []
    for item in order.items:
        allotted = by_product[item.product_id][: item.quantity]
        if len(allotted) != item.quantity:
            raise ReservationMismatch(
                "Reserved cards do not match the order",
                details={
                    "order_id": order.id,
                    "product_id": item.product_id,
                    "expected": item.quantity,
                    "held": len(allotted),
                },
            )
        for unit in allotted:
            db.session.add(
                CardDelivery(
                    order_item_id=item.id,
                    unit_id=unit.id,
                    code=unit.code,
                    pin=unit.pin,
                    delivered_at=now,
                )
            )
            sold_ids.append(unit.id)
        item.delivered_count = len(allotted)

    reservation_service._mark_units_sold(sold_ids, order.buyer_id, order.id)

    previous = order.status
    order.status = ORDER_DELIVERED
    order.delivered_at = now
    append_order_event(
        order_id=order.id,
        event_type="DELIVERED",
        from_status=previous,
        to_status=ORDER_DELIVERED,
        message=f"Delivered {len(sold_ids)} cards",
    )
    return sold_ids


def _process_delivery(order_id: int) -> CardOrder:
    """Finish a PAID order. Safe to call again: a DELIVERED order is returned as is."""
    def _op():
        order = _load_order_locked(order_id)
        if order.is_delivered:
            return order
        if order.status != ORDER_PAID:
            raise Conflict(
                "Only paid orders can be delivered",
                details={"order_id": order.id, "status": order.status},
            )
        _deliver_inner(order)
        db.session.commit()
        return order

    order = run_with_retry(_op)
    try:
        inventory_service.refresh_stock_counts(order.tenant_id, [item.product_id for item in order.items])
    except TransientStorageError:
        # Cache only; the next import or sweep recomputes it
        current_app.logger.exception("Stock refresh failed after delivering order %s", order.order_number)
    current_app.logger.info("Order %s delivered", order.order_number)
    return order


def create_order(
    tenant_id: int,
    buyer_id: int,
    items: list[dict[str, Any]],
    notes: str | None = None,
    idempotency_key: str | None = None,
    actor_type: str = ACTOR_BUYER,
) -> OrderResult:
    """
    Create, pay for and deliver a card order from the buyer's wallet.

    Raises:
        ValidationError: bad items, inactive product, quantity out of bounds
        InsufficientStock: not enough sellable cards (before or during reservation)
        InsufficientFunds: wallet cannot cover the total
        NotFound: unknown product
        Conflict: idempotency key reused with a different payload
        TransientStorageError: storage kept failing after retries
    """
    normalized = _normalize_items(items)
    if idempotency_key is not None:
        idempotency_key = str(idempotency_key).strip() or None
        if idempotency_key and len(idempotency_key) > 128:
            raise ValidationError("Idempotency key is too long")
    fingerprint = _fingerprint(normalized, notes)

    if idempotency_key:
        existing = _find_by_idempotency_key(tenant_id, buyer_id, idempotency_key)
        if existing is not None:
            return _replay(existing, fingerprint)

    # Validate and price; nothing is written until every check passes
    lines = _price_lines(tenant_id, normalized)
    subtotal = to_money(sum((line["line_subtotal"] for line in lines), ZERO))
    tax_total = to_money(sum((line["line_tax"] for line in lines), ZERO))
    total = to_money(subtotal + tax_total)

    if not wallet_service.has_sufficient_balance(tenant_id, buyer_id, total):
        raise InsufficientFunds(required=total, balance=wallet_service.get_balance(tenant_id, buyer_id))

    currency = current_app.config.get("DEFAULT_CURRENCY", "SAR")

    def _insert():
        order = CardOrder(
            tenant_id=tenant_id,
            buyer_id=buyer_id,
            order_number=generate_order_number(),
            status=ORDER_PENDING,
            subtotal=subtotal,
            tax_total=tax_total,
            total=total,
            currency=currency,
            notes=notes,
            idempotency_key=idempotency_key,
            request_fingerprint=fingerprint,
        )
        for line in lines:
            order.items.append(CardOrderItem(**line))
        db.session.add(order)
        db.session.flush()
        append_order_event(
            order_id=order.id,
            event_type="CREATED",
            to_status=ORDER_PENDING,
            message=f"Order created with {len(lines)} item(s)",
            actor_type=actor_type,
        )
        db.session.commit()
        return order

    try:
        order = run_with_retry(_insert)
    except IntegrityError:
        # Lost the idempotency race; the winner's order is the answer
        if idempotency_key:
            existing = _find_by_idempotency_key(tenant_id, buyer_id, idempotency_key)
            if existing is not None:
                return _replay(existing, fingerprint)
        raise

    order_id = order.id
    order_number = order.order_number
    expected_units = sum(line["quantity"] for line in lines)
    product_ids = [line["product_id"] for line in lines]

    # Reserve, then pay. Any failure here is compensated and re-raised.
    try:
        for line in lines:
            try:
                reservation_service.reserve(line["product_id"], line["quantity"], order_id)
            except InsufficientStock as exc:
                raise InsufficientStock(
                    line["product_id"],
                    requested=line["quantity"],
                    available=exc.details.get("available", 0),
                    product_name=line["product_name"],
                )
        _pay_order(order_id, expected_units, f"شراء: طلب {order_number}")
    except FulfillmentError as exc:
        _compensate(order_id, exc.message, tenant_id, product_ids)
        raise
    except Exception:
        current_app.logger.exception("Unexpected failure while processing order %s", order_number)
        _compensate(order_id, "Unexpected processing error", tenant_id, product_ids)
        raise

    # Past PAID the saga only moves forward
    try:
        order = _process_delivery(order_id)
    except Exception:
        current_app.logger.exception(
            "Order %s is paid but delivery failed; reconciliation will resume it", order_number
        )
        raise

    return OrderResult(order=order)


def resume_paid_orders(tenant_id: int | None = None) -> dict[str, int]:
    """
    Reconciliation sweep.

    - PENDING orders that already carry a PURCHASE ledger entry are promoted to PAID.
    - PAID orders that never reached DELIVERED are delivered.
    """
    promoted = 0
    delivered = 0
    failed = 0

    charged = (
        db.session.query(CardOrder.id)
        .join(WalletTransaction, WalletTransaction.order_id == CardOrder.id)
        .filter(CardOrder.status == ORDER_PENDING, WalletTransaction.type == TX_PURCHASE)
    )
    if tenant_id is not None:
        charged = charged.filter(CardOrder.tenant_id == tenant_id)

    for (order_id,) in charged.distinct().all():
        def _promote(order_id=order_id):
            order = _load_order_locked(order_id)
            if order.status != ORDER_PENDING:
                return False
            order.status = ORDER_PAID
            order.payment_status = PAYMENT_PAID
            order.paid_at = order.paid_at or utcnow()
            append_order_event(
                order_id=order.id,
                event_type="PAID",
                from_status=ORDER_PENDING,
                to_status=ORDER_PAID,
                message="Payment found during reconciliation",
            )
            db.session.commit()
            return True

        try:
            if run_with_retry(_promote):
                promoted += 1
        except Exception:
            failed += 1
            current_app.logger.exception("Failed to promote order %s to PAID", order_id)

    stuck = db.session.query(CardOrder.id).filter(CardOrder.status == ORDER_PAID)
    if tenant_id is not None:
        stuck = stuck.filter(CardOrder.tenant_id == tenant_id)

    for (order_id,) in stuck.order_by(CardOrder.id.asc()).all():
        try:
            _process_delivery(order_id)
            delivered += 1
        except Exception:
            failed += 1
            current_app.logger.exception("Failed to resume delivery for order %s", order_id)

    if promoted or delivered or failed:
        current_app.logger.info(
            "Reconciliation: %s promoted, %s delivered, %s failed", promoted, delivered, failed
        )
    return {"promoted": promoted, "delivered": delivered, "failed": failed}


def get_order(tenant_id: int, buyer_id: int | None, order_id: int, mark_viewed: bool = False) -> CardOrder:
    """
    Fetch one order. buyer_id=None is the admin view (any buyer in the tenant).

    mark_viewed stamps viewed_at on revealed deliveries the first time.
    """
    query = db.session.query(CardOrder).filter_by(id=order_id, tenant_id=tenant_id)
    if buyer_id is not None:
        query = query.filter_by(buyer_id=buyer_id)
    order = query.first()
    if order is None:
        raise NotFound("Order not found", details={"order_id": order_id})

    if mark_viewed and order.is_delivered:
        now = utcnow()
        stamped = False
        for item in order.items:
            for delivery in item.deliveries:
                if delivery.viewed_at is None:
                    delivery.viewed_at = now
                    stamped = True
        if stamped:
            db.session.commit()
    return order


def list_orders(
    tenant_id: int,
    buyer_id: int | None = None,
    status: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> dict:
    page = max(page, 1)
    limit = min(max(limit, 1), 100)

    query = db.session.query(CardOrder).filter_by(tenant_id=tenant_id)
    if buyer_id is not None:
        query = query.filter_by(buyer_id=buyer_id)
    if status:
        query = query.filter_by(status=status)

    total = query.count()
    orders = (
        query.order_by(CardOrder.created_at.desc(), CardOrder.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": [o.to_dict(include_items=False) for o in orders],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


def get_order_stats(tenant_id: int, start: datetime | None = None, end: datetime | None = None) -> dict:
    """Order counts by status and delivered revenue, optionally within [start, end] on created_at."""
    window = [CardOrder.tenant_id == tenant_id]
    if start is not None:
        window.append(CardOrder.created_at >= start)
    if end is not None:
        window.append(CardOrder.created_at <= end)

    rows = (
        db.session.query(CardOrder.status, func.count(CardOrder.id))
        .filter(*window)
        .group_by(CardOrder.status)
        .all()
    )
    by_status = {status: count for status, count in rows}

    revenue_rows = (
        db.session.query(CardOrder.total)
        .filter(*window, CardOrder.status.in_([ORDER_DELIVERED, ORDER_COMPLETED]))
        .all()
    )
    revenue = sum((to_money(row.total) for row in revenue_rows), ZERO)

    return {
        "total_orders": sum(by_status.values()),
        "by_status": by_status,
        "delivered": by_status.get(ORDER_DELIVERED, 0) + by_status.get(ORDER_COMPLETED, 0),
        "pending": by_status.get(ORDER_PENDING, 0) + by_status.get(ORDER_PAID, 0),
        "cancelled": by_status.get(ORDER_CANCELLED, 0),
        "failed": by_status.get(ORDER_FAILED, 0),
        "revenue": str(revenue),
    }
