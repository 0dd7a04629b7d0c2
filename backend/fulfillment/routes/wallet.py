# Overview: Flask API routes for wallets; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_tenant_context
from ..models.wallets import CREDIT_TYPES, TX_TOPUP
from ..services import topup_service, wallet_service
from ..services.errors import FulfillmentError

wallet_bp = Blueprint("wallet", __name__, url_prefix="/api/wallet")


@wallet_bp.get("")
@require_tenant_context
def get_wallet_route():
    try:
        wallet = wallet_service.get_or_create_wallet(g.tenant_id, g.user_id)
        return jsonify({"wallet": wallet.to_dict()}), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to load wallet")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.get("/transactions")
@require_tenant_context
def list_transactions_route():
    try:
        result = wallet_service.list_transactions(
            g.tenant_id,
            g.user_id,
            page=request.args.get("page", default=1, type=int),
            limit=request.args.get("limit", default=20, type=int),
        )
        return jsonify(result), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code


@wallet_bp.post("/<int:user_id>/credit")
@require_tenant_context
def credit_wallet_route(user_id: int):
    """
    Admin credit (approved top-up, bonus or adjustment).

    Body: {"amount": "50.00", "type": "TOPUP", "description": "...", "reference": "..."}
    Authorization for admin actions is enforced by the gateway.
    """
    try:
        data = request.get_json(silent=True) or {}
        tx_type = data.get("type") or TX_TOPUP
        if tx_type not in CREDIT_TYPES:
            return jsonify({"error": f"type must be one of {list(CREDIT_TYPES)}"}), 400

        result = wallet_service.credit(
            g.tenant_id,
            user_id,
            data.get("amount"),
            data.get("description") or f"Wallet {tx_type.lower()} by admin",
            data.get("description_ar"),
            reference=data.get("reference"),
            tx_type=tx_type,
        )
        current_app.logger.info("Admin %s credited wallet of user %s", g.user_id, user_id)
        return jsonify(result.to_dict()), 201

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to credit wallet for user %s", user_id)
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.post("/topup")
@require_tenant_context
def create_topup_route():
    """
    Submit a top-up request for admin approval.

    Body: {"amount": "100.00", "payment_method": "BANK_TRANSFER",
           "sender_name": "...", "transfer_reference": "...", "notes": "..."}
    """
    try:
        data = request.get_json(silent=True) or {}
        topup = topup_service.create_topup_request(
            g.tenant_id,
            g.user_id,
            data.get("amount"),
            data.get("payment_method"),
            sender_name=data.get("sender_name"),
            transfer_reference=data.get("transfer_reference"),
            notes=data.get("notes"),
        )
        return jsonify({"request": topup.to_dict()}), 201

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to create top-up request")
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.get("/topup-requests")
@require_tenant_context
def list_own_topups_route():
    try:
        requests = topup_service.list_topup_requests(
            g.tenant_id, user_id=g.user_id, status=request.args.get("status") or None
        )
        return jsonify({"data": [r.to_dict() for r in requests]}), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code


@wallet_bp.get("/admin/topup-requests")
@require_tenant_context
def list_tenant_topups_route():
    """Admin queue; ?status=PENDING for requests awaiting a decision."""
    try:
        requests = topup_service.list_topup_requests(
            g.tenant_id, status=request.args.get("status") or None
        )
        return jsonify({"data": [r.to_dict() for r in requests]}), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code


@wallet_bp.post("/admin/topup/<int:request_id>/approve")
@require_tenant_context
def approve_topup_route(request_id: int):
    try:
        approval = topup_service.approve_topup_request(g.tenant_id, request_id, processed_by=g.user_id)
        return jsonify(approval.to_dict()), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to approve top-up request %s", request_id)
        return jsonify({"error": "Internal server error"}), 500


@wallet_bp.post("/admin/topup/<int:request_id>/reject")
@require_tenant_context
def reject_topup_route(request_id: int):
    try:
        data = request.get_json(silent=True) or {}
        topup = topup_service.reject_topup_request(
            g.tenant_id, request_id, processed_by=g.user_id, reason=data.get("reason")
        )
        return jsonify({"request": topup.to_dict()}), 200

    except FulfillmentError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to reject top-up request %s", request_id)
        return jsonify({"error": "Internal server error"}), 500
