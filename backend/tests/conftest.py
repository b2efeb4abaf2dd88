"""
Pytest fixtures for salonpos backend tests.

Provides test database setup, batch/promotion/loyalty factories, and test client.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest
from salonpos import create_app
from salonpos.extensions import db
from salonpos.models import Batch, LoyaltyAccount, Promotion
from salonpos.models.inventory import USAGE_OTC
from salonpos.services.inventory_service import recompute_stock_record
from salonpos.cart import BillRequest, ProductLine, ServiceLine


BRANCH = "MAIN"
OTHER_BRANCH = "NORTH"

# Business date used by tests that seed 2025-dated batches
AS_OF = date(2025, 5, 1)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOYALTY_ACCRUAL_RATE': 0.01,
        'FINALIZE_RETRY_ATTEMPTS': 3,
        'FINALIZE_RETRY_BACKOFF': 0.0,
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
def make_batch(db_session):
    """
    Factory for committed batches; keeps the stock record in step.

    Usage: make_batch("SHAMPOO", 5, expiration_date=date(2025, 6, 1))
    """
    counter = {"n": 0}

    def _make(
        product_id,
        quantity,
        *,
        branch_id=BRANCH,
        expiration_date=None,
        received_at=None,
        unit_cost="10.00",
        usage_type=USAGE_OTC,
        batch_number=None,
        as_of=AS_OF,
    ):
        counter["n"] += 1
        batch = Batch(
            branch_id=branch_id,
            product_id=product_id,
            product_name=f"Product {product_id}",
            batch_number=batch_number or f"B{counter['n']}",
            quantity=quantity,
            remaining_quantity=quantity,
            unit_cost=Decimal(unit_cost),
            expiration_date=expiration_date,
            received_at=received_at or datetime(2025, 1, 1, 9, 0, counter["n"]),
            usage_type=usage_type,
        )
        db_session.add(batch)
        db_session.flush()
        recompute_stock_record(branch_id, product_id, as_of=as_of)
        db_session.commit()
        return batch

    return _make


@pytest.fixture(scope='function')
def make_promotion(db_session):
    def _make(code="SAVE10", **kwargs):
        values = {
            "name": f"Promotion {code}",
            "discount_type": "percentage",
            "discount_value": Decimal("10"),
            "applies_to": "all",
            "usage_count": 0,
            "is_active": True,
        }
        values.update(kwargs)
        promo = Promotion(code=code.upper(), **values)
        db_session.add(promo)
        db_session.commit()
        return promo

    return _make


@pytest.fixture(scope='function')
def make_loyalty_account(db_session):
    def _make(client_id="C1", points=100, branch_id=BRANCH):
        account = LoyaltyAccount(client_id=client_id, branch_id=branch_id, points_balance=points)
        db_session.add(account)
        db_session.commit()
        return account

    return _make


def service(price, *, service_id="HAIRCUT", **kwargs) -> ServiceLine:
    return ServiceLine(service_id=service_id, name=service_id.title(), base_price=Decimal(str(price)), **kwargs)


def product(product_id, price, quantity=1, **kwargs) -> ProductLine:
    return ProductLine(
        product_id=product_id,
        name=f"Product {product_id}",
        base_price=Decimal(str(price)),
        quantity=quantity,
        **kwargs,
    )


def bill(*items, **kwargs) -> BillRequest:
    values = {
        "branch_id": BRANCH,
        "client_name": "Maria Santos",
        "receipt_number": "R-0001",
        "payment_method": "card",
    }
    values.update(kwargs)
    return BillRequest(items=tuple(items), **values)
