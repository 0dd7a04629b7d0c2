# Overview: Service-layer operations for card reservations; the only writer of unit status.

from __future__ import annotations

from sqlalchemy import or_, update

from ..extensions import db
from ..models import CardUnit
from ..models.cards import UNIT_AVAILABLE, UNIT_RESERVED, UNIT_SOLD
from ..time_utils import utcnow
from .concurrency import RetryableConflict, lock_for_update, run_with_retry
from .errors import InsufficientStock, ReservationMismatch, ValidationError

"""
Reservation Invariants (authoritative)

- A unit is claimed by at most one order: AVAILABLE -> RESERVED happens in a
  single conditional bulk UPDATE keyed by the selected ids and guarded by
  status = 'AVAILABLE'. If any selected row was taken in the meantime the
  whole claim is rolled back and retried from a fresh selection.
- All-or-nothing: a reservation either claims exactly `quantity` units or
  mutates nothing.
- FIFO: oldest imported_at first, id as tie-breaker. Business preference only;
  correctness never depends on it.
- Expired units (expires_at <= now) are never reserved, even if the expiry
  sweep has not marked them yet.
- release() is idempotent: non-RESERVED units are left untouched.
- mark_sold() only accepts units RESERVED for the same order.
"""

CLAIM_ATTEMPTS = 8


def _sellable_filter(now):
    return (
        CardUnit.status == UNIT_AVAILABLE,
        or_(CardUnit.expires_at.is_(None), CardUnit.expires_at > now),
    )


def count_sellable(product_id: int) -> int:
    """AVAILABLE, unexpired units for a product right now."""
    return (
        db.session.query(CardUnit)
        .filter(CardUnit.product_id == product_id, *_sellable_filter(utcnow()))
        .count()
    )


def _claim_units(product_id: int, quantity: int, order_id: int) -> list[int]:
    """
    One claim attempt without commit.

    Raises InsufficientStock when not enough units qualify and
    RetryableConflict when a concurrent claim won some of the selected rows.
    """
    now = utcnow()
    query = (
        db.session.query(CardUnit.id)
        .filter(CardUnit.product_id == product_id, *_sellable_filter(now))
        .order_by(CardUnit.imported_at.asc(), CardUnit.id.asc())
        .limit(quantity)
    )
    unit_ids = [row.id for row in lock_for_update(query, skip_locked=True).all()]

    if len(unit_ids) < quantity:
        raise InsufficientStock(product_id, requested=quantity, available=len(unit_ids))

    result = db.session.execute(
        update(CardUnit)
        .where(CardUnit.id.in_(unit_ids), CardUnit.status == UNIT_AVAILABLE)
        .values(status=UNIT_RESERVED, order_id=order_id, reserved_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(unit_ids):
        raise RetryableConflict(f"lost claim on product {product_id}")
    return unit_ids


def reserve(product_id: int, quantity: int, order_id: int) -> list[int]:
    """
    Atomically reserve `quantity` sellable units of a product for an order.

    Returns the reserved unit ids (FIFO order). Commits on success; on any
    failure the session is rolled back and no unit is changed.
    """
    if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
        raise ValidationError("quantity must be a positive integer")

    def _op():
        unit_ids = _claim_units(product_id, quantity, order_id)
        db.session.commit()
        return unit_ids

    return run_with_retry(_op, attempts=CLAIM_ATTEMPTS)


def _release_units(unit_ids: list[int]) -> int:
    """RESERVED -> AVAILABLE without commit. Returns rows actually released."""
    if not unit_ids:
        return 0
    result = db.session.execute(
        update(CardUnit)
        .where(CardUnit.id.in_(list(unit_ids)), CardUnit.status == UNIT_RESERVED)
        .values(status=UNIT_AVAILABLE, order_id=None, reserved_at=None)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


def release(unit_ids: list[int], *, attempts: int = 5) -> int:
    """
    Return reserved units to the pool.

    Idempotent: units that are already AVAILABLE (or SOLD, EXPIRED, ...) are
    skipped, so cleanup can be retried safely.
    """
    def _op():
        released = _release_units(unit_ids)
        db.session.commit()
        return released

    return run_with_retry(_op, attempts=attempts)


def _mark_units_sold(unit_ids: list[int], buyer_id: int, order_id: int) -> int:
    """RESERVED -> SOLD without commit; every unit must be held by order_id."""
    unit_ids = list(dict.fromkeys(unit_ids))
    if not unit_ids:
        return 0
    result = db.session.execute(
        update(CardUnit)
        .where(
            CardUnit.id.in_(unit_ids),
            CardUnit.status == UNIT_RESERVED,
            CardUnit.order_id == order_id,
        )
        .values(status=UNIT_SOLD, buyer_id=buyer_id, sold_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != len(unit_ids):
        raise ReservationMismatch(
            "Units are not reserved for this order",
            details={"order_id": order_id, "expected": len(unit_ids), "matched": result.rowcount},
        )
    return result.rowcount


def mark_sold(unit_ids: list[int], buyer_id: int, order_id: int) -> int:
    """
    Sell units previously reserved for order_id.

    A unit that is not RESERVED for this order is a logic error: nothing is
    changed and ReservationMismatch is raised.
    """
    def _op():
        sold = _mark_units_sold(unit_ids, buyer_id, order_id)
        db.session.commit()
        return sold

    return run_with_retry(_op)


def reserved_unit_ids(order_id: int, product_id: int | None = None) -> list[int]:
    query = db.session.query(CardUnit.id).filter(
        CardUnit.order_id == order_id,
        CardUnit.status == UNIT_RESERVED,
    )
    if product_id is not None:
        query = query.filter(CardUnit.product_id == product_id)
    return [row.id for row in query.order_by(CardUnit.imported_at.asc(), CardUnit.id.asc()).all()]


def reserved_units_for_order(order_id: int) -> list[CardUnit]:
    return (
        db.session.query(CardUnit)
        .filter(CardUnit.order_id == order_id, CardUnit.status == UNIT_RESERVED)
        .order_by(CardUnit.imported_at.asc(), CardUnit.id.asc())
        .all()
    )
