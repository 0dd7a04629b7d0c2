# Overview: Pytest coverage for wallet top-up requests.

from decimal import Decimal

import pytest

from fulfillment.extensions import db
from fulfillment.models import WalletTopUpRequest, WalletTransaction
from fulfillment.models.wallets import TOPUP_APPROVED, TOPUP_PENDING, TOPUP_REJECTED, TX_TOPUP
from fulfillment.services import topup_service, wallet_service
from fulfillment.services.errors import Conflict, NotFound, ValidationError

from conftest import TENANT_ID, OTHER_TENANT_ID, BUYER_ID, SECOND_BUYER_ID, ADMIN_ID, tenant_headers


def _request(user_id=BUYER_ID, amount="100.00"):
    return topup_service.create_topup_request(
        TENANT_ID, user_id, amount, "BANK_TRANSFER", transfer_reference="TRX-1"
    )


class TestCreateTopUpRequest:
    def test_create_pending_request(self, db_session):
        request = _request()

        assert request.status == TOPUP_PENDING
        assert request.amount == Decimal("100.00")
        assert request.currency == "SAR"
        # Wallet exists, nothing credited yet
        assert wallet_service.get_balance(TENANT_ID, BUYER_ID) == Decimal("0.00")
        assert db.session.query(WalletTransaction).count() == 0

    @pytest.mark.parametrize("amount", ["0", "-1", "abc", "NaN"])
    def test_invalid_amount(self, db_session, amount):
        with pytest.raises(ValidationError):
            _request(amount=amount)
        assert db.session.query(WalletTopUpRequest).count() == 0

    def test_unknown_payment_method(self, db_session):
        with pytest.raises(ValidationError):
            topup_service.create_topup_request(TENANT_ID, BUYER_ID, "10", "CASH")

    def test_listing_scopes(self, db_session):
        first = _request()
        _request(user_id=SECOND_BUYER_ID)
        topup_service.reject_topup_request(TENANT_ID, first.id, ADMIN_ID, "No transfer found")

        assert len(topup_service.list_topup_requests(TENANT_ID, user_id=BUYER_ID)) == 1
        assert len(topup_service.list_topup_requests(TENANT_ID)) == 2
        pending = topup_service.list_topup_requests(TENANT_ID, status=TOPUP_PENDING)
        assert [r.user_id for r in pending] == [SECOND_BUYER_ID]
        assert topup_service.list_topup_requests(OTHER_TENANT_ID) == []

        with pytest.raises(ValidationError):
            topup_service.list_topup_requests(TENANT_ID, status="DONE")


class TestApproveTopUpRequest:
    def test_approve_credits_requester(self, db_session):
        request = _request()

        approval = topup_service.approve_topup_request(TENANT_ID, request.id, ADMIN_ID)

        assert approval.request.status == TOPUP_APPROVED
        assert approval.request.processed_by_id == ADMIN_ID
        assert approval.request.processed_at is not None
        assert approval.transaction.type == TX_TOPUP
        assert approval.transaction.reference == str(request.id)
        assert approval.transaction.topup_request_id == request.id
        assert wallet_service.get_balance(TENANT_ID, BUYER_ID) == Decimal("100.00")
        # The approving admin gets nothing
        assert wallet_service.get_balance(TENANT_ID, ADMIN_ID) == Decimal("0.00")

    def test_approve_twice_credits_once(self, db_session):
        request = _request()
        topup_service.approve_topup_request(TENANT_ID, request.id, ADMIN_ID)

        with pytest.raises(Conflict):
            topup_service.approve_topup_request(TENANT_ID, request.id, ADMIN_ID)

        assert wallet_service.get_balance(TENANT_ID, BUYER_ID) == Decimal("100.00")
        assert db.session.query(WalletTransaction).filter_by(topup_request_id=request.id).count() == 1
        wallet = wallet_service.get_wallet(TENANT_ID, BUYER_ID)
        assert wallet_service.ledger_sum(wallet.id) == wallet.balance

    def test_approve_foreign_request_not_found(self, db_session):
        request = _request()

        with pytest.raises(NotFound):
            topup_service.approve_topup_request(OTHER_TENANT_ID, request.id, ADMIN_ID)
        assert db.session.get(WalletTopUpRequest, request.id).status == TOPUP_PENDING


class TestRejectTopUpRequest:
    def test_reject_moves_no_money(self, db_session):
        request = _request()

        rejected = topup_service.reject_topup_request(TENANT_ID, request.id, ADMIN_ID, "Receipt unreadable")

        assert rejected.status == TOPUP_REJECTED
        assert rejected.rejection_reason == "Receipt unreadable"
        assert wallet_service.get_balance(TENANT_ID, BUYER_ID) == Decimal("0.00")
        assert db.session.query(WalletTransaction).count() == 0

    def test_rejected_request_cannot_be_approved(self, db_session):
        request = _request()
        topup_service.reject_topup_request(TENANT_ID, request.id, ADMIN_ID, "Duplicate")

        with pytest.raises(Conflict):
            topup_service.approve_topup_request(TENANT_ID, request.id, ADMIN_ID)
        assert wallet_service.get_balance(TENANT_ID, BUYER_ID) == Decimal("0.00")

    def test_approved_request_cannot_be_rejected(self, db_session):
        request = _request()
        topup_service.approve_topup_request(TENANT_ID, request.id, ADMIN_ID)

        with pytest.raises(Conflict):
            topup_service.reject_topup_request(TENANT_ID, request.id, ADMIN_ID, "Too late")
        assert db.session.get(WalletTopUpRequest, request.id).status == TOPUP_APPROVED

    def test_reason_required(self, db_session):
        request = _request()

        with pytest.raises(ValidationError):
            topup_service.reject_topup_request(TENANT_ID, request.id, ADMIN_ID, "  ")


class TestTopUpRoutes:
    def test_request_then_approve(self, client, db_session):
        created = client.post(
            "/api/wallet/topup",
            json={"amount": "40.00", "payment_method": "MADA"},
            headers=tenant_headers(),
        )
        assert created.status_code == 201
        request_id = created.get_json()["request"]["id"]

        queue = client.get("/api/wallet/admin/topup-requests?status=PENDING", headers=tenant_headers(ADMIN_ID))
        assert [r["id"] for r in queue.get_json()["data"]] == [request_id]

        approved = client.post(f"/api/wallet/admin/topup/{request_id}/approve", headers=tenant_headers(ADMIN_ID))
        again = client.post(f"/api/wallet/admin/topup/{request_id}/approve", headers=tenant_headers(ADMIN_ID))

        assert approved.status_code == 200
        assert approved.get_json()["wallet"]["balance"] == "40.00"
        assert again.status_code == 409

        own = client.get("/api/wallet/topup-requests", headers=tenant_headers()).get_json()["data"]
        assert own[0]["status"] == TOPUP_APPROVED

    def test_reject_route(self, client, db_session):
        request = _request()

        response = client.post(
            f"/api/wallet/admin/topup/{request.id}/reject",
            json={"reason": "No transfer found"},
            headers=tenant_headers(ADMIN_ID),
        )
        missing_reason = client.post(
            f"/api/wallet/admin/topup/{request.id}/reject", json={}, headers=tenant_headers(ADMIN_ID)
        )

        assert response.status_code == 200
        assert response.get_json()["request"]["status"] == TOPUP_REJECTED
        assert missing_reason.status_code == 400

    def test_invalid_payment_method_route(self, client, db_session):
        response = client.post(
            "/api/wallet/topup",
            json={"amount": "40.00", "payment_method": "CASH"},
            headers=tenant_headers(),
        )
        assert response.status_code == 400
