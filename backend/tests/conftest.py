"""
Pytest fixtures for Homelia backend tests.

Provides an app on a fresh in-memory database per test, users for every
role, a small laminate catalog, and auth header helpers.
"""

import pytest

from homelia import create_app
from homelia.extensions import db
from homelia.models import Product
from homelia.permissions import Role
from homelia.services import auth_service


TEST_PASSWORD = "Password123!"

ADDRESS = {
    "line1": "12 Laxmi Road",
    "city": "Pune",
    "state": "Maharashtra",
    "stateCode": "27",
    "pincode": "411030",
}


@pytest.fixture(scope='function')
def app():
    """Create application for testing (schema created fresh per test)."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'BCRYPT_ROUNDS': 4,
        'JWT_SECRET': 'test-jwt-secret',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


def make_user(email: str, role: Role, **extra):
    user = auth_service.create_user(
        email=email,
        password=TEST_PASSWORD,
        name=extra.pop("name", email.split("@")[0].title()),
        role=role,
        **extra,
    )
    db.session.commit()
    return user


@pytest.fixture
def admin(app):
    return make_user("admin@homelia.test", Role.ADMIN)


@pytest.fixture
def dealer(app):
    return make_user("dealer@homelia.test", Role.DEALER, company_name="Shree Interiors", state_code="27")


@pytest.fixture
def b2b(app):
    return make_user("b2b@homelia.test", Role.B2B_CUSTOMER, company_name="Studio Arc", state_code="27")


@pytest.fixture
def other_b2b(app):
    return make_user("other@homelia.test", Role.B2B_CUSTOMER, company_name="Kanpur Builders", state_code="09")


@pytest.fixture
def retail(app):
    return make_user("retail@homelia.test", Role.RETAIL_CUSTOMER)


def _product(**fields):
    defaults = {
        "brand": "Merino",
        "category": "Laminates",
        "finish": "Suede",
        "thickness": "1mm",
        "sheet_size": "8x4 ft",
        "moq": 1,
        "stock_quantity": 50,
    }
    defaults.update(fields)
    product = Product(**defaults)
    db.session.add(product)
    return product


@pytest.fixture
def products(app):
    """
    walnut:  list 100.00, b2b 90.00, dealer 80.00
    marble:  list 200.00, b2b 180.00, no dealer price (falls back to b2b)
    custom:  price on request
    bulk:    list 50.00, MOQ 10
    """
    catalog = {
        "walnut": _product(
            product_code="MER-1001", name="Merino Walnut", collection="Woodgrains",
            price_paise=10000, b2b_price_paise=9000, dealer_price_paise=8000,
            is_featured=True,
        ),
        "marble": _product(
            product_code="MER-2002", name="Merino Carrara", collection="Stones", finish="Gloss",
            price_paise=20000, b2b_price_paise=18000,
            is_bestseller=True,
        ),
        "custom": _product(
            product_code="GRE-9001", name="Greenlam Custom Print", brand="Greenlam",
            is_price_on_request=True,
        ),
        "bulk": _product(
            product_code="CEN-3003", name="Century Plain White", brand="Century",
            price_paise=5000, moq=10, stock_quantity=0,
        ),
    }
    db.session.commit()
    return catalog


def auth_headers(user) -> dict:
    """Helper to create Authorization headers for a user."""
    tokens = auth_service.issue_tokens(user)
    db.session.commit()
    return {'Authorization': f'Bearer {tokens.access_token}'}
