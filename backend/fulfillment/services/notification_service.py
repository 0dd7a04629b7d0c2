# Overview: Fire-and-forget low-stock notifications.

"""
Low-stock notifications are a side effect of stock recomputation. Delivery
(email, websocket, ...) belongs to the notification collaborator; this module
only fans out to the sinks registered on the running app.

A sink failure is logged and never propagated: inventory and order
operations must not fail because a notification could not be sent.
"""

from __future__ import annotations

from typing import Callable

from flask import current_app

LowStockSink = Callable[[int, int, int], None]

_EXTENSION_KEY = "fulfillment.low_stock_sinks"


def _log_sink(tenant_id: int, product_id: int, remaining: int) -> None:
    current_app.logger.warning(
        "Low stock: tenant=%s product=%s remaining=%s", tenant_id, product_id, remaining
    )


def init_app(app) -> None:
    app.extensions.setdefault(_EXTENSION_KEY, [_log_sink])


def register_low_stock_sink(sink: LowStockSink, app=None) -> None:
    app = app or current_app
    app.extensions.setdefault(_EXTENSION_KEY, [_log_sink]).append(sink)


def unregister_low_stock_sink(sink: LowStockSink, app=None) -> None:
    app = app or current_app
    sinks = app.extensions.get(_EXTENSION_KEY, [])
    if sink in sinks:
        sinks.remove(sink)


def notify_low_stock(tenant_id: int, product_id: int, remaining: int) -> None:
    for sink in list(current_app.extensions.get(_EXTENSION_KEY, [_log_sink])):
        try:
            sink(tenant_id, product_id, remaining)
        except Exception:
            current_app.logger.exception(
                "Low stock notification sink failed for product %s", product_id
            )
