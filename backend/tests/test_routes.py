# Overview: Pytest coverage for the HTTP API surface.

"""
API route tests.

Routes are thin: they resolve tenant context from gateway headers, call a
service and map FulfillmentError subclasses to their status codes.
"""

import io
from decimal import Decimal

from fulfillment.extensions import db
from fulfillment.models import CardOrder, CardUnit
from fulfillment.models.cards import UNIT_SOLD
from fulfillment.services import wallet_service

from conftest import TENANT_ID, OTHER_TENANT_ID, BUYER_ID, ADMIN_ID, import_codes, fund, tenant_headers


def _order_body(product, quantity=1):
    return {"items": [{"product_id": product.id, "quantity": quantity}]}


class TestHealth:
    def test_health_ok(self, client, db_session):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.get_json()
        assert data["status"] == "healthy"
        assert data["checks"]["database"]["details"]["reserved_units"] == 0


class TestTenantContext:
    def test_missing_tenant_is_bad_request(self, client, db_session):
        response = client.get("/api/wallet", headers={"X-User-ID": str(BUYER_ID)})
        assert response.status_code == 400

    def test_missing_user_is_unauthorized(self, client, db_session):
        response = client.get("/api/wallet", headers={"X-Tenant-ID": str(TENANT_ID)})
        assert response.status_code == 401

    def test_non_numeric_header_is_rejected(self, client, db_session):
        response = client.get("/api/wallet", headers={"X-Tenant-ID": "abc", "X-User-ID": "1"})
        assert response.status_code == 400


class TestCardRoutes:
    def test_import_json(self, client, product):
        response = client.post(
            f"/api/cards/products/{product.id}/units",
            json={"cards": [{"code": "A1", "pin": "1111"}, {"code": "A1"}, {"pin": "x"}]},
            headers=tenant_headers(ADMIN_ID),
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data["valid_count"] == 1
        assert data["invalid_count"] == 2
        assert data["batch_number"].startswith("MANUAL-")

    def test_import_requires_cards(self, client, product):
        response = client.post(
            f"/api/cards/products/{product.id}/units",
            json={"cards": []},
            headers=tenant_headers(ADMIN_ID),
        )
        assert response.status_code == 400

    def test_import_into_foreign_product_is_not_found(self, client, product):
        response = client.post(
            f"/api/cards/products/{product.id}/units",
            json={"cards": [{"code": "A1"}]},
            headers=tenant_headers(ADMIN_ID, tenant_id=OTHER_TENANT_ID),
        )
        assert response.status_code == 404

    def test_upload_csv(self, client, product):
        csv_bytes = b"code,pin,expiry\nU1,P1,2099-12-31\nU2,P2,\n"
        response = client.post(
            f"/api/cards/products/{product.id}/units/upload",
            data={"file": (io.BytesIO(csv_bytes), "cards.csv")},
            content_type="multipart/form-data",
            headers=tenant_headers(ADMIN_ID),
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data["valid_count"] == 2
        assert data["batch_number"].startswith("BATCH-")

        batches = client.get("/api/cards/batches", headers=tenant_headers(ADMIN_ID)).get_json()["data"]
        assert batches[0]["file_name"] == "cards.csv"

    def test_upload_without_file(self, client, product):
        response = client.post(
            f"/api/cards/products/{product.id}/units/upload",
            data={},
            content_type="multipart/form-data",
            headers=tenant_headers(ADMIN_ID),
        )
        assert response.status_code == 400

    def test_list_units_hides_codes(self, client, product):
        import_codes(product, ["L1", "L2"])

        response = client.get(
            f"/api/cards/products/{product.id}/units", headers=tenant_headers(ADMIN_ID)
        )

        assert response.status_code == 200
        data = response.get_json()
        assert data["total"] == 2
        assert data["counts"]["AVAILABLE"] == 2
        assert all("code" not in unit for unit in data["data"])

    def test_delete_available_unit(self, client, product):
        import_codes(product, ["D1"])
        unit_id = db.session.query(CardUnit.id).scalar()

        response = client.delete(f"/api/cards/units/{unit_id}", headers=tenant_headers(ADMIN_ID))

        assert response.status_code == 200
        assert db.session.query(CardUnit).count() == 0

    def test_delete_sold_unit_conflicts(self, client, product):
        import_codes(product, ["D1"])
        fund(BUYER_ID, "20.00")
        client.post("/api/orders", json=_order_body(product), headers=tenant_headers())
        unit_id = db.session.query(CardUnit.id).scalar()

        response = client.delete(f"/api/cards/units/{unit_id}", headers=tenant_headers(ADMIN_ID))

        assert response.status_code == 409


class TestOrderRoutes:
    def test_create_order_delivers_codes(self, client, product):
        import_codes(product, ["O1", "O2"])
        fund(BUYER_ID, "50.00")

        response = client.post("/api/orders", json=_order_body(product, 2), headers=tenant_headers())

        assert response.status_code == 201
        order = response.get_json()["order"]
        assert order["status"] == "DELIVERED"
        assert order["total"] == "23.00"
        assert order["replayed"] is False
        codes = {d["code"] for d in order["items"][0]["deliveries"]}
        assert codes == {"O1", "O2"}
        assert wallet_service.get_balance(TENANT_ID, BUYER_ID) == Decimal("27.00")

        purchased = client.get("/api/cards/purchased", headers=tenant_headers()).get_json()
        assert purchased["total"] == 2

    def test_idempotent_replay_returns_200(self, client, product):
        import_codes(product, ["O1", "O2"])
        fund(BUYER_ID, "50.00")
        headers = {**tenant_headers(), "Idempotency-Key": "checkout-1"}

        first = client.post("/api/orders", json=_order_body(product), headers=headers)
        second = client.post("/api/orders", json=_order_body(product), headers=headers)

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.get_json()["order"]["replayed"] is True
        assert second.get_json()["order"]["id"] == first.get_json()["order"]["id"]
        assert db.session.query(CardOrder).count() == 1
        assert db.session.query(CardUnit).filter_by(status=UNIT_SOLD).count() == 1

    def test_key_reuse_with_different_body_conflicts(self, client, product):
        import_codes(product, ["O1", "O2"])
        fund(BUYER_ID, "50.00")
        headers = {**tenant_headers(), "Idempotency-Key": "checkout-1"}

        client.post("/api/orders", json=_order_body(product), headers=headers)
        response = client.post("/api/orders", json=_order_body(product, 2), headers=headers)

        assert response.status_code == 409

    def test_insufficient_funds_is_402(self, client, product):
        import_codes(product, ["O1"])
        fund(BUYER_ID, "5.00")

        response = client.post("/api/orders", json=_order_body(product), headers=tenant_headers())

        assert response.status_code == 402
        assert db.session.query(CardOrder).count() == 0

    def test_insufficient_stock_is_409(self, client, product):
        import_codes(product, ["O1"])
        fund(BUYER_ID, "50.00")

        response = client.post("/api/orders", json=_order_body(product, 2), headers=tenant_headers())

        assert response.status_code == 409

    def test_invalid_items_is_400(self, client, product):
        response = client.post("/api/orders", json={"items": []}, headers=tenant_headers())
        assert response.status_code == 400

    def test_get_and_list_orders(self, client, product):
        import_codes(product, ["O1"])
        fund(BUYER_ID, "50.00")
        order_id = client.post(
            "/api/orders", json=_order_body(product), headers=tenant_headers()
        ).get_json()["order"]["id"]

        fetched = client.get(f"/api/orders/{order_id}", headers=tenant_headers())
        listed = client.get("/api/orders", headers=tenant_headers())
        foreign = client.get(f"/api/orders/{order_id}", headers=tenant_headers(BUYER_ID + 1))

        assert fetched.status_code == 200
        assert fetched.get_json()["order"]["items"][0]["deliveries"][0]["viewed_at"] is not None
        assert listed.get_json()["total"] == 1
        assert "items" not in listed.get_json()["data"][0]
        assert foreign.status_code == 404

    def test_order_stats_window(self, client, product):
        import_codes(product, ["O1"])
        fund(BUYER_ID, "50.00")
        client.post("/api/orders", json=_order_body(product), headers=tenant_headers())

        everything = client.get("/api/orders/stats", headers=tenant_headers(ADMIN_ID))
        future = client.get("/api/orders/stats?start=2999-01-01", headers=tenant_headers(ADMIN_ID))
        invalid = client.get("/api/orders/stats?start=yesterday", headers=tenant_headers(ADMIN_ID))

        assert everything.get_json()["total_orders"] == 1
        assert future.get_json()["total_orders"] == 0
        assert invalid.status_code == 400

    def test_cancel_delivered_order_conflicts(self, client, product):
        import_codes(product, ["O1"])
        fund(BUYER_ID, "50.00")
        order_id = client.post(
            "/api/orders", json=_order_body(product), headers=tenant_headers()
        ).get_json()["order"]["id"]

        response = client.post(
            f"/api/orders/{order_id}/cancel", json={"reason": "Too late"}, headers=tenant_headers()
        )

        assert response.status_code == 409

    def test_cancel_unknown_order(self, client, db_session):
        response = client.post("/api/orders/999/cancel", json={}, headers=tenant_headers())
        assert response.status_code == 404


class TestWalletRoutes:
    def test_get_wallet_creates_empty(self, client, db_session):
        response = client.get("/api/wallet", headers=tenant_headers())

        assert response.status_code == 200
        assert response.get_json()["wallet"]["balance"] == "0.00"

    def test_admin_credit_and_history(self, client, db_session):
        response = client.post(
            f"/api/wallet/{BUYER_ID}/credit",
            json={"amount": "25.50", "type": "BONUS", "reference": "promo"},
            headers=tenant_headers(ADMIN_ID),
        )

        assert response.status_code == 201
        data = response.get_json()
        assert data["wallet"]["balance"] == "25.50"
        assert data["transaction"]["type"] == "BONUS"

        history = client.get("/api/wallet/transactions", headers=tenant_headers()).get_json()
        assert history["total"] == 1
        assert history["data"][0]["amount"] == "25.50"

    def test_credit_rejects_debit_type(self, client, db_session):
        response = client.post(
            f"/api/wallet/{BUYER_ID}/credit",
            json={"amount": "10.00", "type": "PURCHASE"},
            headers=tenant_headers(ADMIN_ID),
        )
        assert response.status_code == 400

    def test_credit_rejects_non_positive_amount(self, client, db_session):
        response = client.post(
            f"/api/wallet/{BUYER_ID}/credit",
            json={"amount": "-5"},
            headers=tenant_headers(ADMIN_ID),
        )
        assert response.status_code == 400

    def test_credit_rejects_nan_amount(self, client, db_session):
        response = client.post(
            f"/api/wallet/{BUYER_ID}/credit",
            json={"amount": "NaN"},
            headers=tenant_headers(ADMIN_ID),
        )
        assert response.status_code == 400
