from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..money import money_str
from ..time_utils import to_utc_z

TX_TOPUP = "TOPUP"
TX_PURCHASE = "PURCHASE"
TX_REFUND = "REFUND"
TX_BONUS = "BONUS"
TX_ADJUSTMENT = "ADJUSTMENT"

CREDIT_TYPES = (TX_TOPUP, TX_REFUND, TX_BONUS, TX_ADJUSTMENT)

TOPUP_PENDING = "PENDING"
TOPUP_APPROVED = "APPROVED"
TOPUP_REJECTED = "REJECTED"

TOPUP_STATUSES = (TOPUP_PENDING, TOPUP_APPROVED, TOPUP_REJECTED)

PAYMENT_METHODS = ("BANK_TRANSFER", "VISA", "MASTERCARD", "MADA", "APPLE_PAY", "STC_PAY")


class Wallet(db.Model):
    """
    Ledger account: one balance per (tenant, user).

    INVARIANTS:
    - balance == SUM(wallet_transactions.amount) for this wallet
    - a debit never takes balance below zero
    - balance is only written by wallet_service, in the same DB transaction
      that appends the matching WalletTransaction

    version_id guards against lost updates when two debits race.
    """
    __tablename__ = "wallets"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "user_id", name="uq_wallets_tenant_user"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    balance = db.Column(db.Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    currency = db.Column(db.String(3), nullable=False, default="SAR")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Wallet id={self.id} user_id={self.user_id} balance={self.balance}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "balance": money_str(self.balance),
            "currency": self.currency,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class WalletTransaction(db.Model):
    """
    Immutable signed monetary movement on a wallet (append-only).

    amount is negative for PURCHASE, positive otherwise.
    balance_before + amount == balance_after for every row.
    """
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        db.Index("ix_wallet_tx_wallet_created", "wallet_id", "created_at"),
        db.Index("ix_wallet_tx_order_type", "order_id", "type"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    wallet_id = db.Column(db.Integer, db.ForeignKey("wallets.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    balance_before = db.Column(db.Numeric(12, 2), nullable=False)
    balance_after = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False)

    description = db.Column(db.String(255), nullable=False)
    description_ar = db.Column(db.String(255), nullable=True)

    # Free-form reference (order id, top-up request id, ...)
    reference = db.Column(db.String(64), nullable=True, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("card_orders.id"), nullable=True)
    topup_request_id = db.Column(
        db.Integer, db.ForeignKey("wallet_topup_requests.id"), nullable=True, index=True
    )

    status = db.Column(db.String(16), nullable=False, default="COMPLETED")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    wallet = db.relationship("Wallet", backref=db.backref("transactions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "wallet_id": self.wallet_id,
            "type": self.type,
            "amount": money_str(self.amount),
            "balance_before": money_str(self.balance_before),
            "balance_after": money_str(self.balance_after),
            "currency": self.currency,
            "description": self.description,
            "description_ar": self.description_ar,
            "reference": self.reference,
            "order_id": self.order_id,
            "topup_request_id": self.topup_request_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class WalletTopUpRequest(db.Model):
    """
    Buyer's request to add funds, settled by an admin.

    PENDING -> APPROVED credits the wallet once (TOPUP entry referencing the
    request) in the same transaction as the status change. PENDING -> REJECTED
    touches no money. Settled requests never change again.
    """
    __tablename__ = "wallet_topup_requests"
    __table_args__ = (
        db.Index("ix_topup_requests_tenant_status", "tenant_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, nullable=False, index=True)
    user_id = db.Column(db.Integer, nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="SAR")
    payment_method = db.Column(db.String(32), nullable=False)
    sender_name = db.Column(db.String(255), nullable=True)
    transfer_reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=TOPUP_PENDING)
    rejection_reason = db.Column(db.String(255), nullable=True)
    processed_by_id = db.Column(db.Integer, nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<WalletTopUpRequest id={self.id} user_id={self.user_id} status={self.status}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "user_id": self.user_id,
            "amount": money_str(self.amount),
            "currency": self.currency,
            "payment_method": self.payment_method,
            "sender_name": self.sender_name,
            "transfer_reference": self.transfer_reference,
            "notes": self.notes,
            "status": self.status,
            "rejection_reason": self.rejection_reason,
            "processed_by_id": self.processed_by_id,
            "processed_at": to_utc_z(self.processed_at),
            "created_at": to_utc_z(self.created_at),
        }
