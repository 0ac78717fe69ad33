"""Shared test fixtures for the storefront test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- seed_data: a profile plus a small catalog (two active products, one inactive)
- auth_headers: bearer headers for the seeded profile, identity service patched
- send_event: posts a webhook event signed with the test signing secret
"""

import hashlib
import hmac
import json
import time
from decimal import Decimal
from unittest.mock import patch

import pytest

from storefront import create_app
from storefront.extensions import db as _db
from storefront.models.product import Product
from storefront.models.profile import Profile

WEBHOOK_SECRET = "whsec_test_fake"
USER_ID = "6f1d0c1e-0000-4000-8000-000000000001"
USER_TOKEN = "user-access-token"


def sign_payload(payload, secret=WEBHOOK_SECRET, timestamp=None):
    """Build a Stripe-Signature header for `payload` (str)."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture
def seed_data(app, db_session):
    """Seed a profile and a catalog.

    Returns plain values so tests can use them across app contexts.
    """
    with app.app_context():
        profile = Profile(
            id=USER_ID,
            email="learner@example.com",
            full_name="Ada Learner",
        )
        _db.session.add(profile)

        course = Product(
            stripe_product_id="prod_A",
            stripe_price_id="price_A",
            name="AI for Absolute Beginners",
            description="Learn the basics of ChatGPT and Gemini without the jargon.",
            unit_price=Decimal("49.99"),
            currency="eur",
            category="Full Course",
            image_url="https://cdn.example.com/a.png",
            active=True,
        )
        guide = Product(
            stripe_product_id="prod_B",
            stripe_price_id="price_B",
            name="Everyday Productivity Cheat Sheet",
            description="50 practical prompts.",
            unit_price=Decimal("12.99"),
            currency="eur",
            category="PDF Guide",
            image_url="https://cdn.example.com/b.png",
            active=True,
        )
        retired = Product(
            stripe_product_id="prod_OLD",
            stripe_price_id="price_OLD",
            name="Retired Workshop",
            unit_price=Decimal("29.99"),
            currency="eur",
            category="Mini-Course",
            active=False,
        )
        _db.session.add_all([course, guide, retired])
        _db.session.commit()

        return {
            "user_id": USER_ID,
            "token": USER_TOKEN,
            "email": profile.email,
        }


@pytest.fixture
def auth_headers(seed_data):
    """Bearer headers for the seeded user; the identity service is patched
    to accept USER_TOKEN and reject everything else.
    """

    def fake_identity(token):
        if token == USER_TOKEN:
            return {
                "id": USER_ID,
                "email": "learner@example.com",
                "user_metadata": {"full_name": "Ada Learner"},
            }
        return None

    with patch(
        "storefront.services.auth_service.fetch_identity",
        side_effect=fake_identity,
    ):
        yield {"Authorization": f"Bearer {USER_TOKEN}"}


@pytest.fixture
def send_event(client):
    """POST a Stripe event dict to /stripe/webhooks with a valid signature."""

    def _send(event, secret=WEBHOOK_SECRET):
        payload = json.dumps(event)
        return client.post(
            "/stripe/webhooks",
            data=payload,
            content_type="application/json",
            headers={"Stripe-Signature": sign_payload(payload, secret=secret)},
        )

    return _send
