"""Pytest fixtures for storefront tests."""

import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient

import database
from auth import issue_token, register_user
from errors import PaymentAuthorizationFailedError
from payments import PaymentIntent


class FakeGateway:
    """Records calls instead of talking to Stripe."""

    def __init__(self):
        self.authorized = []
        self.cancelled = []
        self.fail_with = None
        self.on_authorize = None
        self._ids = itertools.count(1)

    def authorize(self, amount_cents, currency, payment_method, metadata=None):
        if self.on_authorize is not None:
            hook, self.on_authorize = self.on_authorize, None
            hook()
        if self.fail_with is not None:
            raise PaymentAuthorizationFailedError(self.fail_with)
        n = next(self._ids)
        intent = PaymentIntent(
            id=f"pi_test_{n}",
            client_secret=f"pi_test_{n}_secret",
            amount=amount_cents,
            currency=currency,
        )
        self.authorized.append((amount_cents, currency, payment_method, intent.id))
        return intent

    def cancel(self, intent_id):
        self.cancelled.append(intent_id)
        return True


@pytest.fixture
def db(monkeypatch):
    """A fresh in-memory database wired in place of MongoDB."""
    mock_db = mongomock.MongoClient()["storefront_test"]
    database.ensure_indexes(mock_db)
    monkeypatch.setattr(database, "db", mock_db)
    return mock_db


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def client(db, gateway):
    from main import app
    from payments import get_payment_gateway

    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def user(db):
    return register_user(db, "Alice Shopper", "alice@example.com", "secret123")


@pytest.fixture
def other_user(db):
    return register_user(db, "Bob Shopper", "bob@example.com", "secret123")


@pytest.fixture
def admin(db):
    return register_user(db, "Admin", "admin@example.com", "secret123", role="admin")


def bearer(user_doc):
    return {"Authorization": f"Bearer {issue_token(str(user_doc['_id']))}"}


@pytest.fixture
def user_headers(user):
    return bearer(user)


@pytest.fixture
def other_headers(other_user):
    return bearer(other_user)


@pytest.fixture
def admin_headers(admin):
    return bearer(admin)


@pytest.fixture
def make_product(db):
    """Insert a product and return its id as a string."""

    def _make(name="Apple", price=2.5, stock=10, category="fruits", **extra):
        doc = {
            "name": name,
            "description": f"Fresh {name.lower()}",
            "price": price,
            "category": category,
            "image_url": f"https://img.example.com/{name.lower()}.jpg",
            "stock": stock,
            "is_organic": False,
            "is_featured": False,
        }
        doc.update(extra)
        return database.create_document(db, "product", doc)

    return _make


@pytest.fixture
def shipping_address():
    return {
        "firstName": "Alice",
        "lastName": "Shopper",
        "address": "1 Market Street",
        "city": "Springfield",
        "state": "IL",
        "zipCode": "62701",
        "phone": "555-0100",
    }
