"""
Pytest fixtures for wholesale ledger tests.

Provides an in-memory database, user/shop/product factories, a recording
SMS gateway and authenticated request headers.
"""

import pytest

from wholesale import create_app
from wholesale.config import TestConfig
from wholesale.extensions import db
from wholesale.models import Product, Shop, User
from wholesale.models.auth import ROLE_ADMIN, ROLE_SALES_REP
from wholesale.services import order_service, session_service
from wholesale.services.notification_service import GATEWAY_EXTENSION_KEY, SendResult
from wholesale.time_utils import utcnow


class FakeGateway:
    """Records every send; can be told to fail or to raise."""

    def __init__(self):
        self.sent = []
        self.fail_with = None
        self.raise_with = None

    def send(self, phone_number, message):
        if self.raise_with is not None:
            raise self.raise_with
        self.sent.append((phone_number, message))
        if self.fail_with:
            return SendResult(success=False, error=self.fail_with)
        return SendResult(success=True, message_id=f"msg-{len(self.sent)}")


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def gateway(app, db_session):
    """Fresh recording SMS gateway for each test."""
    fake = FakeGateway()
    app.extensions[GATEWAY_EXTENSION_KEY] = fake
    return fake


# =============================================================================
# FACTORIES
# =============================================================================

@pytest.fixture(scope='function')
def make_user(db_session):
    counter = {"n": 0}

    def _make(role=ROLE_SALES_REP, **overrides):
        counter["n"] += 1
        user = User(
            email=overrides.pop("email", f"{role}{counter['n']}@example.com"),
            first_name=overrides.pop("first_name", role.title()),
            last_name=overrides.pop("last_name", str(counter["n"])),
            role=role,
            is_active=overrides.pop("is_active", True),
            created_at=utcnow(),
            **overrides,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture(scope='function')
def make_shop(db_session):
    def _make(sales_rep, max_bill_amount_cents=10_000, max_active_bills=5, **overrides):
        now = utcnow()
        shop = Shop(
            name=overrides.pop("name", "Corner Shop"),
            address=overrides.pop("address", "1 Temple Road, Colombo"),
            phone=overrides.pop("phone", "0771234567"),
            sales_rep_id=sales_rep.id if sales_rep else None,
            max_bill_amount_cents=max_bill_amount_cents,
            max_active_bills=max_active_bills,
            created_at=now,
            updated_at=now,
            **overrides,
        )
        db_session.add(shop)
        db_session.commit()
        return shop

    return _make


@pytest.fixture(scope='function')
def make_product(db_session):
    def _make(name="Tea 400g", unit_price_cents=100, stock=100, **overrides):
        now = utcnow()
        product = Product(
            name=name,
            unit_price_cents=unit_price_cents,
            stock=stock,
            created_at=now,
            updated_at=now,
            **overrides,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def admin(make_user):
    return make_user(ROLE_ADMIN, email="admin@example.com")


@pytest.fixture(scope='function')
def rep(make_user):
    return make_user(ROLE_SALES_REP, email="rep@example.com", phone="0770000001")


@pytest.fixture(scope='function')
def other_rep(make_user):
    return make_user(ROLE_SALES_REP, email="other@example.com")


@pytest.fixture(scope='function')
def shop(make_shop, rep):
    return make_shop(rep)


@pytest.fixture(scope='function')
def product(make_product):
    return make_product()


@pytest.fixture(scope='function')
def approved_order(gateway, admin, rep, shop, product):
    """
    Helper: place and approve an order of `quantity` units of `product`.

    Returns a callable so tests can create several.
    """
    def _make(quantity=10, target_shop=None, target_product=None, unit_price_cents=None):
        item = {"product_id": (target_product or product).id, "quantity": quantity}
        if unit_price_cents is not None:
            item["unit_price_cents"] = unit_price_cents
        created = order_service.create_order((target_shop or shop).id, rep.id, [item])
        order_service.approve_order(created.value.id, admin.id)
        return created.value

    return _make


# =============================================================================
# AUTH HELPERS
# =============================================================================

def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(admin):
    _, token = session_service.issue_token(admin.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def rep_headers(rep):
    _, token = session_service.issue_token(rep.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def other_rep_headers(other_rep):
    _, token = session_service.issue_token(other_rep.id)
    return auth_headers(token)
