"""
Pytest fixtures for card fulfillment tests.

Provides test database setup, catalog/inventory/wallet seed helpers, and test client.
"""

import pytest

from fulfillment import create_app
from fulfillment.extensions import db
from fulfillment.services import catalog_service, inventory_service, wallet_service

TENANT_ID = 1
OTHER_TENANT_ID = 2
BUYER_ID = 100
SECOND_BUYER_ID = 101
ADMIN_ID = 1


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def product(db_session):
    """Card product priced 10.00 with 15% tax."""
    return catalog_service.create_product(
        tenant_id=TENANT_ID,
        name="iTunes 10",
        name_ar="آيتونز 10",
        unit_price="10.00",
        tax_rate="0.15",
        max_quantity=10,
    )


@pytest.fixture(scope='function')
def other_product(db_session):
    return catalog_service.create_product(
        tenant_id=TENANT_ID,
        name="PSN 20",
        unit_price="20.00",
        tax_rate="0",
    )


@pytest.fixture(scope='function')
def low_stock_calls(app):
    """Capture low-stock notifications for the duration of a test."""
    calls = []

    def sink(tenant_id, product_id, remaining):
        calls.append((tenant_id, product_id, remaining))

    from fulfillment.services import notification_service
    notification_service.register_low_stock_sink(sink, app=app)
    yield calls
    notification_service.unregister_low_stock_sink(sink, app=app)


def import_codes(product, codes, **kwargs):
    """Helper to import plain codes into a product."""
    rows = [{"code": code, "pin": f"PIN-{code}"} for code in codes]
    return inventory_service.import_units(TENANT_ID, product.id, rows, imported_by=ADMIN_ID, **kwargs)


def fund(user_id, amount, tenant_id=TENANT_ID):
    """Helper to top up a buyer wallet."""
    return wallet_service.credit(tenant_id, user_id, amount, "Test top-up", reference="seed")


def tenant_headers(user_id=BUYER_ID, tenant_id=TENANT_ID) -> dict:
    """Helper to create gateway context headers."""
    return {'X-Tenant-ID': str(tenant_id), 'X-User-ID': str(user_id)}
