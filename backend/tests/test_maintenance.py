# Overview: Pytest coverage for maintenance sweeps and CLI commands.

from datetime import timedelta
from decimal import Decimal
from unittest import mock

import pytest

from fulfillment.extensions import db
from fulfillment.models import CardOrder, CardUnit
from fulfillment.models.cards import UNIT_AVAILABLE, UNIT_EXPIRED, UNIT_RESERVED
from fulfillment.models.orders import ORDER_FAILED, ORDER_PAID, ORDER_PENDING
from fulfillment.services import (
    catalog_service,
    inventory_service,
    maintenance_service,
    order_service,
    reservation_service,
)
from fulfillment.services.errors import Conflict, TransientStorageError
from fulfillment.time_utils import utcnow

from conftest import TENANT_ID, OTHER_TENANT_ID, BUYER_ID, import_codes, fund


def _age_reservations(minutes):
    for unit in db.session.query(CardUnit).filter_by(status=UNIT_RESERVED).all():
        unit.reserved_at = utcnow() - timedelta(minutes=minutes)
    db.session.commit()


def _pending_order(product, number="ORD-STALE-1"):
    order = CardOrder(tenant_id=TENANT_ID, buyer_id=BUYER_ID, order_number=number, status=ORDER_PENDING)
    db.session.add(order)
    db.session.commit()
    reservation_service.reserve(product.id, 1, order.id)
    return order


class TestReleaseStaleReservations:
    def test_stale_pending_order_is_released_and_failed(self, db_session, product):
        import_codes(product, ["C1"])
        order = _pending_order(product)
        _age_reservations(30)

        result = maintenance_service.release_stale_reservations(15)

        assert result == {"released": 1, "orders_failed": 1}
        refreshed = db.session.get(CardOrder, order.id)
        assert refreshed.status == ORDER_FAILED
        assert refreshed.failure_reason == maintenance_service.TIMEOUT_REASON
        assert db.session.query(CardUnit).one().status == UNIT_AVAILABLE

    def test_fresh_reservations_are_kept(self, db_session, product):
        import_codes(product, ["C1"])
        order = _pending_order(product)

        result = maintenance_service.release_stale_reservations()

        assert result == {"released": 0, "orders_failed": 0}
        assert db.session.get(CardOrder, order.id).status == ORDER_PENDING

    def test_paid_orders_are_left_for_reconciliation(self, db_session, product):
        import_codes(product, ["C1"])
        fund(BUYER_ID, "20.00")
        with mock.patch.object(order_service, "_process_delivery", side_effect=TransientStorageError()):
            with pytest.raises(TransientStorageError):
                order_service.create_order(TENANT_ID, BUYER_ID, [{"product_id": product.id, "quantity": 1}])
        _age_reservations(60)

        result = maintenance_service.release_stale_reservations(15)

        assert result["released"] == 0
        assert db.session.query(CardOrder).one().status == ORDER_PAID
        assert db.session.query(CardUnit).one().status == UNIT_RESERVED

    def test_stale_order_cannot_be_paid_afterwards(self, db_session, product):
        import_codes(product, ["C1"])
        fund(BUYER_ID, "20.00")
        order = _pending_order(product)
        _age_reservations(30)
        maintenance_service.release_stale_reservations(15)

        with pytest.raises(Conflict):
            order_service._pay_order(order.id, 1, None)
        assert db.session.query(CardOrder).one().status == ORDER_FAILED


class TestExpirySweep:
    def test_expire_all_tenants(self, db_session, product):
        foreign = catalog_service.create_product(tenant_id=OTHER_TENANT_ID, name="Foreign", unit_price="1")
        import_codes(product, ["C1"])
        inventory_service.import_units(OTHER_TENANT_ID, foreign.id, [{"code": "F1"}])
        for unit in db.session.query(CardUnit).all():
            unit.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        assert maintenance_service.expire_all_tenants() == 2
        assert {u.status for u in db.session.query(CardUnit).all()} == {UNIT_EXPIRED}


class TestCli:
    def test_release_stale_command(self, app, db_session, product):
        import_codes(product, ["C1"])
        _pending_order(product)
        _age_reservations(30)

        runner = app.test_cli_runner()
        result = runner.invoke(args=["cards", "release-stale", "--minutes", "15"])

        assert result.exit_code == 0
        assert "Released 1 cards" in result.output

    def test_mark_expired_command(self, app, db_session, product):
        import_codes(product, ["C1"])
        unit = db.session.query(CardUnit).one()
        unit.expires_at = utcnow() - timedelta(minutes=1)
        db.session.commit()

        runner = app.test_cli_runner()
        result = runner.invoke(args=["cards", "mark-expired", "--tenant-id", str(TENANT_ID)])

        assert result.exit_code == 0
        assert "Marked 1 cards as expired" in result.output

    def test_reconcile_command(self, app, db_session, product):
        import_codes(product, ["C1"])
        fund(BUYER_ID, "20.00")
        with mock.patch.object(order_service, "_process_delivery", side_effect=TransientStorageError()):
            with pytest.raises(TransientStorageError):
                order_service.create_order(TENANT_ID, BUYER_ID, [{"product_id": product.id, "quantity": 1}])

        runner = app.test_cli_runner()
        result = runner.invoke(args=["cards", "reconcile"])

        assert result.exit_code == 0
        assert "delivered 1" in result.output
        assert db.session.query(CardOrder).one().total == Decimal("11.50")
