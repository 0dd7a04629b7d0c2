# Overview: Flask API routes for card orders; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant_context
from ..services import cancellation_service, order_service
from ..services.errors import FulfillmentError
from ..time_utils import parse_iso_datetime

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


@orders_bp.post("")
@require_tenant_context
def create_order_route():
    """
    Create, pay for and deliver an order from the caller's wallet.

    Body: {"items": [{"product_id": 1, "quantity": 2}], "notes": "..."}
    Header: Idempotency-Key (optional) makes retries return the same order.
    """
    try:
        data = request.get_json(silent=True) or {}
        result = order_service.create_order(
            g.tenant_id,
            g.user_id,
            data.get("items"),
            notes=data.get("notes"),
            idempotency_key=request.headers.get("Idempotency-Key"),
        )
        return jsonify({"order": result.to_dict()}), 200 if result.replayed else 201

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create order")
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.get("")
@require_tenant_context
def list_orders_route():
    result = order_service.list_orders(
        g.tenant_id,
        buyer_id=g.user_id,
        status=request.args.get("status") or None,
        page=request.args.get("page", default=1, type=int),
        limit=request.args.get("limit", default=20, type=int),
    )
    return jsonify(result), 200


@orders_bp.get("/stats")
@require_tenant_context
def order_stats_route():
    """Tenant-wide order stats. Optional ?start=&end= (ISO-8601) window on created_at."""
    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return jsonify({"error": "start and end must be ISO-8601 dates"}), 400

    stats = order_service.get_order_stats(g.tenant_id, start=start, end=end)
    return jsonify(stats), 200


@orders_bp.get("/<int:order_id>")
@require_tenant_context
def get_order_route(order_id: int):
    try:
        order = order_service.get_order(g.tenant_id, g.user_id, order_id, mark_viewed=True)
        return jsonify({"order": order.to_dict()}), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500


@orders_bp.post("/<int:order_id>/cancel")
@require_tenant_context
def cancel_order_route(order_id: int):
    try:
        data = request.get_json(silent=True) or {}
        order = cancellation_service.cancel_order(
            g.tenant_id, g.user_id, order_id, reason=data.get("reason")
        )
        return jsonify({"order": order.to_dict()}), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to cancel order %s", order_id)
        return jsonify({"error": "Internal server error"}), 500
