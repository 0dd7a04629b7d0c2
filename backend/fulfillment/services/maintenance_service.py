# Overview: Service-layer operations for maintenance sweeps; timeouts and expiry across tenants.

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..extensions import db
from ..models import CardOrder, CardUnit
from ..models.cards import UNIT_AVAILABLE, UNIT_RESERVED
from ..models.orders import ORDER_FAILED, ORDER_PAID, ORDER_PENDING
from ..time_utils import utcnow
from . import inventory_service, reservation_service
from .concurrency import lock_for_update, run_with_retry
from .order_event_service import ACTOR_SYSTEM, append_order_event

TIMEOUT_REASON = "Reservation timed out"


def release_stale_reservations(older_than_minutes: int | None = None) -> dict[str, int]:
    """
    Release units RESERVED for longer than the timeout window.

    Units held by PAID orders are left alone; reconciliation delivers those.
    PENDING orders whose units were released are marked FAILED.
    """
    if older_than_minutes is None:
        older_than_minutes = current_app.config.get("RESERVATION_TIMEOUT_MINUTES", 15)
    cutoff = utcnow() - timedelta(minutes=older_than_minutes)

    stale = (
        db.session.query(CardUnit.id, CardUnit.order_id, CardUnit.tenant_id, CardUnit.product_id)
        .outerjoin(CardOrder, CardOrder.id == CardUnit.order_id)
        .filter(
            CardUnit.status == UNIT_RESERVED,
            CardUnit.reserved_at.isnot(None),
            CardUnit.reserved_at < cutoff,
        )
        .filter((CardOrder.id.is_(None)) | (CardOrder.status != ORDER_PAID))
        .all()
    )
    if not stale:
        return {"released": 0, "orders_failed": 0}

    order_ids = sorted({row.order_id for row in stale if row.order_id is not None})
    released = 0
    orders_failed = 0

    # Order first so a concurrent payment sees FAILED and aborts
    for order_id in order_ids:
        def _op(order_id=order_id):
            order = lock_for_update(db.session.query(CardOrder).filter_by(id=order_id)).first()
            if order is None or order.status == ORDER_PAID:
                return 0, False
            failed = False
            if order.status == ORDER_PENDING:
                order.status = ORDER_FAILED
                order.failure_reason = TIMEOUT_REASON
                order.idempotency_key = None
                append_order_event(
                    order_id=order.id,
                    event_type="FAILED",
                    from_status=ORDER_PENDING,
                    to_status=ORDER_FAILED,
                    message=TIMEOUT_REASON,
                    actor_type=ACTOR_SYSTEM,
                )
                failed = True
            count = reservation_service._release_units(
                reservation_service.reserved_unit_ids(order.id)
            )
            db.session.commit()
            return count, failed

        try:
            count, failed = run_with_retry(_op)
        except Exception:
            current_app.logger.exception("Failed to release stale reservations for order %s", order_id)
            continue
        released += count
        orders_failed += int(failed)

    orphans = [row.id for row in stale if row.order_id is None]
    if orphans:
        released += reservation_service.release(orphans)

    by_tenant: dict[int, set[int]] = {}
    for row in stale:
        by_tenant.setdefault(row.tenant_id, set()).add(row.product_id)
    for tenant_id, product_ids in by_tenant.items():
        inventory_service.refresh_stock_counts(tenant_id, product_ids)

    current_app.logger.info(
        "Released %s stale reservations, failed %s orders", released, orders_failed
    )
    return {"released": released, "orders_failed": orders_failed}


def expire_all_tenants() -> int:
    """Run the expiry sweep for every tenant that holds expirable stock."""
    tenants = (
        db.session.query(CardUnit.tenant_id)
        .filter(CardUnit.status == UNIT_AVAILABLE, CardUnit.expires_at.isnot(None))
        .distinct()
        .all()
    )
    return sum(inventory_service.mark_expired(tenant_id) for (tenant_id,) in tenants)
