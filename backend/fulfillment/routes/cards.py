# Overview: Flask API routes for card inventory; parses input and returns JSON responses.

"""
Card inventory routes.

Tenant and user come from require_tenant_context. Product ownership is
checked by the services (unknown or foreign products are 404).
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant_context
from ..services import inventory_service
from ..services.errors import FulfillmentError

cards_bp = Blueprint("cards", __name__, url_prefix="/api/cards")


@cards_bp.get("/products/<int:product_id>/units")
@require_tenant_context
def list_units_route(product_id: int):
    try:
        result = inventory_service.list_units(
            g.tenant_id,
            product_id,
            status=request.args.get("status") or None,
            page=request.args.get("page", default=1, type=int),
            limit=request.args.get("limit", default=50, type=int),
        )
        result["counts"] = inventory_service.get_status_counts(g.tenant_id, product_id)
        return jsonify(result), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to list cards")
        return jsonify({"error": "Internal server error"}), 500


@cards_bp.post("/products/<int:product_id>/units")
@require_tenant_context
def import_units_route(product_id: int):
    """
    Import cards from a JSON array.

    Body: {"cards": [{"code": "...", "pin": "...", "expiry": "2026-12-31"}, ...]}
    """
    try:
        data = request.get_json(silent=True) or {}
        cards = data.get("cards")
        if not isinstance(cards, list) or not cards:
            return jsonify({"error": "cards must be a non-empty list"}), 400

        result = inventory_service.import_units(
            g.tenant_id,
            product_id,
            cards,
            imported_by=g.user_id,
            file_name=data.get("file_name") or "Manual Import",
        )
        return jsonify(result.to_dict()), 201

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to import cards")
        return jsonify({"error": "Internal server error"}), 500


@cards_bp.post("/products/<int:product_id>/units/upload")
@require_tenant_context
def upload_units_route(product_id: int):
    """Import cards from an uploaded CSV file (multipart field "file")."""
    upload = request.files.get("file")
    if upload is None or not upload.filename:
        return jsonify({"error": "file is required"}), 400

    try:
        result = inventory_service.import_units_from_csv(
            g.tenant_id,
            product_id,
            upload.stream,
            file_name=upload.filename,
            imported_by=g.user_id,
        )
        return jsonify(result.to_dict()), 201

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to upload cards")
        return jsonify({"error": "Internal server error"}), 500


@cards_bp.delete("/units/<int:unit_id>")
@require_tenant_context
def delete_unit_route(unit_id: int):
    try:
        inventory_service.delete_unit(g.tenant_id, unit_id)
        return jsonify({"deleted": True, "id": unit_id}), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to delete card %s", unit_id)
        return jsonify({"error": "Internal server error"}), 500


@cards_bp.get("/batches")
@require_tenant_context
def list_batches_route():
    product_id = request.args.get("product_id", type=int)
    batches = inventory_service.list_batches(g.tenant_id, product_id=product_id)
    return jsonify({"data": [b.to_dict() for b in batches]}), 200


@cards_bp.get("/purchased")
@require_tenant_context
def purchased_units_route():
    """The caller's purchased cards, codes revealed."""
    result = inventory_service.get_user_purchased_units(
        g.tenant_id,
        g.user_id,
        page=request.args.get("page", default=1, type=int),
        limit=request.args.get("limit", default=20, type=int),
    )
    return jsonify(result), 200
