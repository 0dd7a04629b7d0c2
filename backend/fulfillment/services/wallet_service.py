# Overview: Service-layer operations for wallets; the only writer of balances and ledger entries.

"""
Wallet Ledger Service

WHY: Buyers prepay into a wallet and orders are paid from it. Money must
never be created, lost or double-spent, even when two orders for the same
buyer race each other.

DESIGN PRINCIPLES:
- Append-only ledger: every balance change appends a WalletTransaction with
  balance_before / balance_after snapshots. Corrections are new entries.
- Materialized balance: Wallet.balance is kept equal to the sum of entries.
  Both writes happen in one DB transaction; either both land or neither.
- Non-negative: a debit that would overdraw raises InsufficientFunds and
  writes nothing.
- Concurrency: the wallet row is locked for update and carries a version
  column; a concurrent writer makes the flush fail with StaleDataError and
  the whole unit of work is retried from a fresh read.
- Decimal only: amounts are 2dp Decimals, never floats.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Wallet, WalletTransaction
from ..models.wallets import CREDIT_TYPES, TX_PURCHASE, TX_TOPUP
from ..money import ZERO, to_money
from .concurrency import lock_for_update, run_with_retry
from .errors import InsufficientFunds, NotFound, ValidationError


@dataclass
class LedgerMutationResult:
    wallet: Wallet
    transaction: WalletTransaction

    def to_dict(self) -> dict:
        return {
            "wallet": self.wallet.to_dict(),
            "transaction": self.transaction.to_dict(),
        }


def _positive_amount(amount) -> Decimal:
    try:
        value = to_money(amount)
    except ValueError:
        raise ValidationError("amount must be a number")
    if value <= ZERO:
        raise ValidationError("amount must be positive")
    return value


def _find_wallet(tenant_id: int, user_id: int, *, lock: bool = False) -> Wallet | None:
    query = db.session.query(Wallet).filter_by(tenant_id=tenant_id, user_id=user_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def get_wallet(tenant_id: int, user_id: int) -> Wallet:
    wallet = _find_wallet(tenant_id, user_id)
    if wallet is None:
        raise NotFound("Wallet not found", details={"user_id": user_id})
    return wallet


def _get_or_create_wallet_inner(tenant_id: int, user_id: int) -> Wallet:
    """Lookup or insert without commit; a lost insert race re-reads the winner."""
    wallet = _find_wallet(tenant_id, user_id, lock=True)
    if wallet is not None:
        return wallet

    wallet = Wallet(
        tenant_id=tenant_id,
        user_id=user_id,
        balance=ZERO,
        currency=current_app.config.get("DEFAULT_CURRENCY", "SAR"),
    )
    try:
        with db.session.begin_nested():
            db.session.add(wallet)
    except IntegrityError:
        wallet = _find_wallet(tenant_id, user_id, lock=True)
        if wallet is None:
            raise
        return wallet

    current_app.logger.info("Created wallet for user %s (tenant %s)", user_id, tenant_id)
    return wallet


def get_or_create_wallet(tenant_id: int, user_id: int) -> Wallet:
    """Lazily create a zero-balance wallet. Safe to call repeatedly."""
    def _op():
        wallet = _get_or_create_wallet_inner(tenant_id, user_id)
        db.session.commit()
        return wallet

    return run_with_retry(_op)


def get_balance(tenant_id: int, user_id: int) -> Decimal:
    wallet = _find_wallet(tenant_id, user_id)
    return to_money(wallet.balance) if wallet else ZERO


def has_sufficient_balance(tenant_id: int, user_id: int, amount) -> bool:
    """balance >= amount at 2dp; a missing wallet has no funds."""
    wallet = _find_wallet(tenant_id, user_id)
    if wallet is None:
        return False
    return to_money(wallet.balance) >= to_money(amount)


def _append_entry(
    wallet: Wallet,
    *,
    tx_type: str,
    delta: Decimal,
    description: str,
    description_ar: str | None,
    reference: str | None,
    order_id: int | None,
) -> WalletTransaction:
    balance_before = to_money(wallet.balance)
    balance_after = balance_before + delta

    wallet.balance = balance_after
    entry = WalletTransaction(
        wallet_id=wallet.id,
        type=tx_type,
        amount=delta,
        balance_before=balance_before,
        balance_after=balance_after,
        currency=wallet.currency,
        description=description,
        description_ar=description_ar,
        reference=reference,
        order_id=order_id,
        status="COMPLETED",
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def _debit_inner(
    tenant_id: int,
    user_id: int,
    amount: Decimal,
    description: str,
    description_ar: str | None = None,
    reference: str | None = None,
    order_id: int | None = None,
) -> LedgerMutationResult:
    """Core debit without retry or commit; callers own the transaction."""
    wallet = _find_wallet(tenant_id, user_id, lock=True)
    if wallet is None:
        raise InsufficientFunds(required=amount, balance=ZERO)
    if not wallet.is_active:
        raise ValidationError("Wallet is inactive")

    balance = to_money(wallet.balance)
    if amount > balance:
        raise InsufficientFunds(required=amount, balance=balance)

    entry = _append_entry(
        wallet,
        tx_type=TX_PURCHASE,
        delta=-amount,
        description=description,
        description_ar=description_ar,
        reference=reference,
        order_id=order_id,
    )
    return LedgerMutationResult(wallet=wallet, transaction=entry)


def debit(
    tenant_id: int,
    user_id: int,
    amount,
    description: str,
    description_ar: str | None = None,
    reference: str | None = None,
    order_id: int | None = None,
) -> LedgerMutationResult:
    """
    Subtract funds for a purchase.

    Raises:
        ValidationError: amount not positive
        InsufficientFunds: balance < amount (nothing is written)
    """
    value = _positive_amount(amount)

    def _op():
        result = _debit_inner(
            tenant_id, user_id, value, description, description_ar, reference, order_id
        )
        db.session.commit()
        return result

    result = run_with_retry(_op)
    current_app.logger.info(
        "Debited %s from wallet %s. New balance: %s",
        value, result.wallet.id, result.transaction.balance_after,
    )
    return result


def _credit_inner(
    tenant_id: int,
    user_id: int,
    amount: Decimal,
    description: str,
    description_ar: str | None = None,
    reference: str | None = None,
    tx_type: str = TX_TOPUP,
    order_id: int | None = None,
) -> LedgerMutationResult:
    """Core credit without retry or commit; creates the wallet when missing."""
    if tx_type not in CREDIT_TYPES:
        raise ValidationError(f"Invalid credit type: {tx_type}. Must be one of {list(CREDIT_TYPES)}")

    wallet = _get_or_create_wallet_inner(tenant_id, user_id)
    entry = _append_entry(
        wallet,
        tx_type=tx_type,
        delta=amount,
        description=description,
        description_ar=description_ar,
        reference=reference,
        order_id=order_id,
    )
    return LedgerMutationResult(wallet=wallet, transaction=entry)


def credit(
    tenant_id: int,
    user_id: int,
    amount,
    description: str,
    description_ar: str | None = None,
    reference: str | None = None,
    tx_type: str = TX_TOPUP,
    order_id: int | None = None,
) -> LedgerMutationResult:
    """Add funds (top-up, refund, bonus, adjustment)."""
    value = _positive_amount(amount)

    def _op():
        result = _credit_inner(
            tenant_id, user_id, value, description, description_ar, reference, tx_type, order_id
        )
        db.session.commit()
        return result

    result = run_with_retry(_op)
    current_app.logger.info(
        "Credited %s to wallet %s (%s). New balance: %s",
        value, result.wallet.id, tx_type, result.transaction.balance_after,
    )
    return result


def list_transactions(tenant_id: int, user_id: int, page: int = 1, limit: int = 20) -> dict:
    wallet = get_wallet(tenant_id, user_id)
    page = max(page, 1)
    limit = min(max(limit, 1), 200)

    query = db.session.query(WalletTransaction).filter_by(wallet_id=wallet.id)
    total = query.count()
    rows = (
        query.order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "data": [row.to_dict() for row in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }


def ledger_sum(wallet_id: int) -> Decimal:
    """SUM(amount) over a wallet's entries; equals the wallet balance."""
    entries = db.session.query(WalletTransaction.amount).filter_by(wallet_id=wallet_id).all()
    return sum((to_money(row.amount) for row in entries), ZERO)


def find_order_entry(order_id: int, tx_type: str) -> WalletTransaction | None:
    return (
        db.session.query(WalletTransaction)
        .filter(WalletTransaction.order_id == order_id, WalletTransaction.type == tx_type)
        .order_by(WalletTransaction.id.asc())
        .first()
    )
