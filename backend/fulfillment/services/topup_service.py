# Overview: Service-layer operations for wallet top-up requests; buyer submits, admin settles.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..extensions import db
from ..models import Wallet, WalletTopUpRequest, WalletTransaction
from ..models.wallets import PAYMENT_METHODS, TOPUP_APPROVED, TOPUP_PENDING, TOPUP_REJECTED, TOPUP_STATUSES, TX_TOPUP
from ..time_utils import utcnow
from . import wallet_service
from .concurrency import lock_for_update, run_with_retry
from .errors import Conflict, NotFound, ValidationError

"""
Top-Up Invariants (authoritative)

- Only PENDING requests can be settled; APPROVED and REJECTED are final.
- Approval credits the requester (never the approving admin) with one TOPUP
  entry whose reference is the request id, in the same transaction as the
  status change. The request row is versioned, so two racing approvals
  cannot both commit and the wallet is credited at most once.
- Rejection records the reason and moves no money.
"""


@dataclass
class TopUpApproval:
    request: WalletTopUpRequest
    wallet: Wallet
    transaction: WalletTransaction

    def to_dict(self) -> dict:
        return {
            "request": self.request.to_dict(),
            "wallet": self.wallet.to_dict(),
            "transaction": self.transaction.to_dict(),
        }


def create_topup_request(
    tenant_id: int,
    user_id: int,
    amount,
    payment_method: str,
    *,
    sender_name: str | None = None,
    transfer_reference: str | None = None,
    notes: str | None = None,
) -> WalletTopUpRequest:
    value = wallet_service._positive_amount(amount)
    if payment_method not in PAYMENT_METHODS:
        raise ValidationError(f"payment_method must be one of {list(PAYMENT_METHODS)}")

    wallet = wallet_service.get_or_create_wallet(tenant_id, user_id)

    request = WalletTopUpRequest(
        tenant_id=tenant_id,
        user_id=user_id,
        amount=value,
        currency=wallet.currency,
        payment_method=payment_method,
        sender_name=sender_name,
        transfer_reference=transfer_reference,
        notes=notes,
        status=TOPUP_PENDING,
    )
    db.session.add(request)
    db.session.commit()

    current_app.logger.info("Created top-up request %s for user %s", request.id, user_id)
    return request


def get_topup_request(tenant_id: int, request_id: int) -> WalletTopUpRequest:
    request = db.session.query(WalletTopUpRequest).filter_by(id=request_id, tenant_id=tenant_id).first()
    if request is None:
        raise NotFound("Top-up request not found", details={"request_id": request_id})
    return request


def list_topup_requests(
    tenant_id: int,
    user_id: int | None = None,
    status: str | None = None,
) -> list[WalletTopUpRequest]:
    """Newest first. user_id=None lists the whole tenant (admin queue)."""
    if status is not None and status not in TOPUP_STATUSES:
        raise ValidationError(f"status must be one of {list(TOPUP_STATUSES)}")

    query = db.session.query(WalletTopUpRequest).filter_by(tenant_id=tenant_id)
    if user_id is not None:
        query = query.filter_by(user_id=user_id)
    if status:
        query = query.filter_by(status=status)
    return query.order_by(WalletTopUpRequest.created_at.desc(), WalletTopUpRequest.id.desc()).all()


def _load_pending_locked(tenant_id: int, request_id: int) -> WalletTopUpRequest:
    request = lock_for_update(
        db.session.query(WalletTopUpRequest).filter_by(id=request_id, tenant_id=tenant_id)
    ).first()
    if request is None:
        raise NotFound("Top-up request not found", details={"request_id": request_id})
    if request.status != TOPUP_PENDING:
        raise Conflict(
            "Top-up request is not pending",
            details={"request_id": request.id, "status": request.status},
        )
    return request


def approve_topup_request(tenant_id: int, request_id: int, processed_by: int) -> TopUpApproval:
    """
    Approve a pending request and credit the requester's wallet.

    Raises:
        NotFound: unknown request in this tenant
        Conflict: request already approved or rejected
    """
    def _op():
        request = _load_pending_locked(tenant_id, request_id)
        result = wallet_service._credit_inner(
            tenant_id,
            request.user_id,
            request.amount,
            "Wallet top-up approved",
            "تم شحن الرصيد",
            reference=str(request.id),
            tx_type=TX_TOPUP,
        )
        result.transaction.topup_request_id = request.id

        request.status = TOPUP_APPROVED
        request.processed_by_id = processed_by
        request.processed_at = utcnow()
        db.session.commit()
        return TopUpApproval(request=request, wallet=result.wallet, transaction=result.transaction)

    approval = run_with_retry(_op)
    current_app.logger.info(
        "Approved top-up request %s: credited %s to user %s (by %s)",
        request_id, approval.request.amount, approval.request.user_id, processed_by,
    )
    return approval


def reject_topup_request(
    tenant_id: int,
    request_id: int,
    processed_by: int,
    reason: str,
) -> WalletTopUpRequest:
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("reason is required")

    def _op():
        request = _load_pending_locked(tenant_id, request_id)
        request.status = TOPUP_REJECTED
        request.rejection_reason = reason[:255]
        request.processed_by_id = processed_by
        request.processed_at = utcnow()
        db.session.commit()
        return request

    request = run_with_retry(_op)
    current_app.logger.info("Rejected top-up request %s: %s", request_id, reason)
    return request
