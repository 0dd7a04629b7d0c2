# Overview: Append-only order history; written inside the caller's transaction.

from __future__ import annotations

from ..extensions import db
from ..models import CardOrderEvent

"""
Order Event Invariants

- Append-only: no updates or deletes of existing events.
- No business logic here; callers decide what happened.
- Events are written inside the same DB transaction as the status change
  they record, so a rolled-back transition leaves no event behind.
"""

ACTOR_BUYER = "BUYER"
ACTOR_SYSTEM = "SYSTEM"
ACTOR_ADMIN = "ADMIN"


def append_order_event(
    *,
    order_id: int,
    event_type: str,
    from_status: str | None = None,
    to_status: str | None = None,
    message: str | None = None,
    actor_type: str = ACTOR_SYSTEM,
) -> CardOrderEvent:
    ev = CardOrderEvent(
        order_id=order_id,
        event_type=event_type,
        from_status=from_status,
        to_status=to_status,
        message=message,
        actor_type=actor_type,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_order_events(order_id: int) -> list[CardOrderEvent]:
    return (
        db.session.query(CardOrderEvent)
        .filter_by(order_id=order_id)
        .order_by(CardOrderEvent.id.asc())
        .all()
    )
