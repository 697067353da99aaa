"""
Shared fixtures: one in-memory app per session, tables emptied per test,
plus users, products and logged-in header helpers.
"""

import pytest

from cellarpos import create_app
from cellarpos.extensions import db
from cellarpos.models import Product, ProductCategory, UnitType, User, UserRole
from cellarpos.services.auth_service import hash_password


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
    "BCRYPT_ROUNDS": 4,  # fast hashing; the cost factor is not under test
}


@pytest.fixture(scope="session")
def app():
    flask_app = create_app(TEST_CONFIG)
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    """Empty every table (children first) and hand out the scoped session."""
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        yield db.session
        db.session.rollback()


def _make_user(db_session, username, role, password="secret123", full_name=None, is_active=True):
    user = User(
        username=username,
        full_name=full_name or username.title(),
        password_hash=hash_password(password),
        role=role,
        is_active=is_active,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def admin_user(db_session):
    return _make_user(db_session, "admin", UserRole.ADMIN, full_name="Admin User")


@pytest.fixture
def staff_user(db_session):
    return _make_user(db_session, "staff", UserRole.STAFF, full_name="Staff User")


def make_product(db_session, **overrides):
    values = {
        "name": "Test Product",
        "category": ProductCategory.BEER,
        "unit_type": UnitType.CRATE,
        "cost_price_cents": 200000,
        "selling_price_cents": 250000,
        "current_stock": 20,
        "minimum_stock": 5,
        "has_crate_tracking": False,
        "is_active": True,
    }
    values.update(overrides)
    product = Product(**values)
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture
def product_factory(db_session):
    """Create products with overridable fields."""
    def _factory(**overrides):
        return make_product(db_session, **overrides)
    return _factory


@pytest.fixture
def crate_product(db_session):
    """Crate-tracked beer, 20 in stock."""
    return make_product(db_session, name="Tusker Lager Crate", has_crate_tracking=True)


@pytest.fixture
def bottle_product(db_session):
    """Untracked spirit, 10 in stock."""
    return make_product(
        db_session,
        name="Smirnoff Vodka 750ml",
        category=ProductCategory.VODKA,
        unit_type=UnitType.BOTTLE,
        cost_price_cents=120000,
        selling_price_cents=160000,
        current_stock=10,
    )


def get_auth_token(client, username: str, password: str) -> str | None:
    """Log in through the API; None when the login is refused."""
    resp = client.post("/api/auth/login", json={"username": username, "password": password})
    return resp.json["token"] if resp.status_code == 200 else None


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, "admin", "secret123"))


@pytest.fixture
def staff_headers(client, staff_user):
    return auth_headers(get_auth_token(client, "staff", "secret123"))
