"""
Pytest fixtures for the retail billing backend tests.

Provides an in-memory database app, a per-test cleared session, one user
per role, header helpers for the gateway identity, and small factories
for catalog and customer rows.
"""

import pytest

from retail_billing import create_app
from retail_billing.extensions import db
from retail_billing.models import Category, Customer, Product, StoreSetting, User
from retail_billing.services.inventory_service import MOVEMENT_PURCHASE, record_stock_movement


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'AUTH_GATEWAY_SECRET': None,
        'LOYALTY_CENTS_PER_POINT': 1000,
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
    """Clear all data but keep the schema."""
    db.session.rollback()
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()
    db.session.remove()


def _make_user(role: str, name: str) -> User:
    user = User(name=name, email=f"{name.lower()}@store.test", role=role, is_active=True)
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture
def admin(db_session):
    return _make_user("ADMIN", "Admin")


@pytest.fixture
def manager(db_session):
    return _make_user("MANAGER", "Manager")


@pytest.fixture
def cashier(db_session):
    return _make_user("CASHIER", "Cashier")


def auth_headers(user: User) -> dict:
    """Headers the upstream auth gateway would attach for `user`."""
    return {'X-User-Id': str(user.id)}


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def manager_headers(manager):
    return auth_headers(manager)


@pytest.fixture
def cashier_headers(cashier):
    return auth_headers(cashier)


@pytest.fixture
def make_product(db_session):
    """
    Factory for products. Initial stock goes through the ledger so the
    stock/ledger invariant holds from the first row.
    """
    counter = {'n': 0}

    def _make(*, name=None, price_cents=10000, cost_cents=6000, tax_rate_bps=1000,
              stock=10, min_stock=2, category=None, sku=None) -> Product:
        counter['n'] += 1
        product = Product(
            name=name or f"Product {counter['n']}",
            sku=sku or f"SKU-{counter['n']:04d}",
            price_cents=price_cents,
            cost_cents=cost_cents,
            tax_rate_bps=tax_rate_bps,
            stock=stock,
            min_stock=min_stock,
            category_id=category.id if category else None,
        )
        db.session.add(product)
        db.session.flush()
        if stock:
            record_stock_movement(
                product_id=product.id,
                quantity_delta=stock,
                movement_type=MOVEMENT_PURCHASE,
                note="Initial stock",
            )
        db.session.commit()
        return product

    return _make


@pytest.fixture
def make_customer(db_session):
    counter = {'n': 0}

    def _make(*, name=None, loyalty_points=0) -> Customer:
        counter['n'] += 1
        customer = Customer(
            name=name or f"Customer {counter['n']}",
            email=f"customer{counter['n']}@example.test",
            loyalty_points=loyalty_points,
        )
        db.session.add(customer)
        db.session.commit()
        return customer

    return _make


@pytest.fixture
def category(db_session):
    cat = Category(name="Beverages")
    db.session.add(cat)
    db.session.commit()
    return cat


@pytest.fixture
def store_settings(db_session):
    settings = StoreSetting(id=1, store_name="Corner Shop", currency="USD", default_tax_rate_bps=800)
    db.session.add(settings)
    db.session.commit()
    return settings


def reload(obj):
    """Re-read a row after work done through another transaction or the HTTP layer."""
    db.session.expire_all()
    return db.session.get(type(obj), obj.id)
