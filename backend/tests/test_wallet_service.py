# Overview: Pytest coverage for wallet ledger behavior.

from decimal import Decimal

import pytest

from fulfillment.extensions import db
from fulfillment.models import Wallet, WalletTransaction
from fulfillment.models.wallets import TX_BONUS, TX_PURCHASE, TX_REFUND, TX_TOPUP
from fulfillment.services import wallet_service
from fulfillment.services.errors import InsufficientFunds, NotFound, ValidationError

from conftest import TENANT_ID, OTHER_TENANT_ID, BUYER_ID, fund


class TestWalletCreation:
    def test_get_or_create_is_lazy_and_stable(self, db_session):
        first = wallet_service.get_or_create_wallet(TENANT_ID, BUYER_ID)
        second = wallet_service.get_or_create_wallet(TENANT_ID, BUYER_ID)

        assert first.id == second.id
        assert first.balance == Decimal("0.00")
        assert first.currency == "SAR"
        assert db.session.query(Wallet).count() == 1

    def test_wallets_are_per_tenant(self, db_session):
        a = wallet_service.get_or_create_wallet(TENANT_ID, BUYER_ID)
        b = wallet_service.get_or_create_wallet(OTHER_TENANT_ID, BUYER_ID)
        assert a.id != b.id

    def test_get_wallet_missing(self, db_session):
        with pytest.raises(NotFound):
            wallet_service.get_wallet(TENANT_ID, BUYER_ID)


class TestCreditAndDebit:
    def test_credit_appends_entry_with_snapshots(self, db_session):
        result = fund(BUYER_ID, "50")

        assert result.wallet.balance == Decimal("50.00")
        tx = result.transaction
        assert tx.type == TX_TOPUP
        assert tx.amount == Decimal("50.00")
        assert tx.balance_before == Decimal("0.00")
        assert tx.balance_after == Decimal("50.00")

    def test_debit_records_negative_purchase(self, db_session):
        fund(BUYER_ID, "50.00")

        result = wallet_service.debit(
            TENANT_ID, BUYER_ID, "23.00", "Purchase", "شراء", reference="ORD-1"
        )

        assert result.wallet.balance == Decimal("27.00")
        assert result.transaction.type == TX_PURCHASE
        assert result.transaction.amount == Decimal("-23.00")
        assert result.transaction.balance_before == Decimal("50.00")
        assert result.transaction.balance_after == Decimal("27.00")
        assert result.transaction.description_ar == "شراء"

    def test_overdraw_is_rejected_without_writes(self, db_session):
        fund(BUYER_ID, "5.00")

        with pytest.raises(InsufficientFunds) as exc_info:
            wallet_service.debit(TENANT_ID, BUYER_ID, "11.50", "Purchase")

        assert exc_info.value.details["shortfall"] == "6.50"
        assert wallet_service.get_balance(TENANT_ID, BUYER_ID) == Decimal("5.00")
        assert db.session.query(WalletTransaction).count() == 1

    def test_debit_without_wallet_is_insufficient(self, db_session):
        with pytest.raises(InsufficientFunds):
            wallet_service.debit(TENANT_ID, BUYER_ID, "1.00", "Purchase")

    @pytest.mark.parametrize("amount", ["0", "-5", "abc", None, "NaN", "Infinity", "-Infinity", "1e40"])
    def test_non_positive_amounts_rejected(self, db_session, amount):
        with pytest.raises(ValidationError):
            wallet_service.credit(TENANT_ID, BUYER_ID, amount, "Bad")

    def test_credit_rejects_purchase_type(self, db_session):
        with pytest.raises(ValidationError):
            wallet_service.credit(TENANT_ID, BUYER_ID, "5", "Bad", tx_type=TX_PURCHASE)

    def test_amounts_round_half_up(self, db_session):
        result = fund(BUYER_ID, "10.005")
        assert result.wallet.balance == Decimal("10.01")


class TestLedgerReads:
    def test_has_sufficient_balance(self, db_session):
        assert wallet_service.has_sufficient_balance(TENANT_ID, BUYER_ID, "0.01") is False
        fund(BUYER_ID, "10.00")
        assert wallet_service.has_sufficient_balance(TENANT_ID, BUYER_ID, "10.00") is True
        assert wallet_service.has_sufficient_balance(TENANT_ID, BUYER_ID, "10.01") is False

    def test_balance_equals_ledger_sum(self, db_session):
        fund(BUYER_ID, "100.00")
        wallet_service.debit(TENANT_ID, BUYER_ID, "33.33", "Purchase")
        wallet_service.credit(TENANT_ID, BUYER_ID, "3.33", "Refund", tx_type=TX_REFUND)
        wallet_service.credit(TENANT_ID, BUYER_ID, "1.00", "Bonus", tx_type=TX_BONUS)

        wallet = wallet_service.get_wallet(TENANT_ID, BUYER_ID)
        assert wallet.balance == Decimal("71.00")
        assert wallet_service.ledger_sum(wallet.id) == wallet.balance

    def test_list_transactions_newest_first(self, db_session):
        fund(BUYER_ID, "10.00")
        wallet_service.debit(TENANT_ID, BUYER_ID, "4.00", "Purchase")

        page = wallet_service.list_transactions(TENANT_ID, BUYER_ID, page=1, limit=1)

        assert page["total"] == 2
        assert page["total_pages"] == 2
        assert page["data"][0]["type"] == TX_PURCHASE
        assert page["data"][0]["amount"] == "-4.00"
