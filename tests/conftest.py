"""Shared test fixtures for the garage billing test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- gateway: MagicMock(spec=StripeGateway) installed as the app's gateway
- seed_data: admin + member users, a garage, a $150 pass, one active subscription
- make_subscription: factory for extra subscriptions on the seeded pass
- admin_client / member_client: test clients logged in via /auth/login
- stripe_sub: builder for Stripe-shaped subscription dicts
- stripe_signature: signs a raw webhook body like Stripe does
"""

import hashlib
import hmac
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from werkzeug.security import generate_password_hash

from garage_billing import create_app
from garage_billing.extensions import db as _db
from garage_billing.models.garage import Garage, Pass
from garage_billing.models.subscription import Subscription
from garage_billing.models.user import User
from garage_billing.services.gateway import StripeGateway


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
def gateway(app):
    """Replace the app's Stripe gateway with a spec'd mock for one test."""
    mock = MagicMock(spec=StripeGateway)
    # Pure helper, no network: keep the real implementation.
    mock.get_subscription_item_id.side_effect = StripeGateway.get_subscription_item_id
    app.extensions["stripe_gateway"] = mock
    yield mock
    app.extensions.pop("stripe_gateway", None)


@pytest.fixture
def seed_data(app, db_session):
    """Seed an admin, a member with a Stripe customer, a garage, a pass and
    one active subscription.

    Returns plain IDs so tests can use them across sessions.
    """
    now = datetime.now(timezone.utc)

    admin = User(
        first_name="Ada",
        last_name="Admin",
        email="admin@garage.test",
        password_hash=generate_password_hash("admin123"),
        role="super_admin",
    )
    member = User(
        first_name="Pat",
        last_name="Parker",
        email="pat@garage.test",
        password_hash=generate_password_hash("member123"),
        stripe_customer_id="cus_member",
        role="user",
    )
    garage = Garage(name="Main Street Garage", address="1 Main St")
    _db.session.add_all([admin, member, garage])
    _db.session.flush()

    pass_ = Pass(
        garage_id=garage.id,
        name="Monthly Unlimited",
        stripe_product_id="prod_test",
        stripe_price_id="price_150",
        monthly_amount=Decimal("150.00"),
    )
    _db.session.add(pass_)
    _db.session.flush()

    sub = Subscription(
        stripe_subscription_id="sub_test_1",
        user_id=member.id,
        garage_id=garage.id,
        pass_id=pass_.id,
        stripe_price_id="price_150",
        status="active",
        current_period_start=now - timedelta(days=20),
        current_period_end=now + timedelta(days=10),
        cancel_at_period_end=False,
        monthly_amount=Decimal("150.00"),
        renewal_status="pending",
    )
    _db.session.add(sub)
    _db.session.commit()

    return {
        "admin_id": admin.id,
        "admin_email": "admin@garage.test",
        "member_id": member.id,
        "member_email": "pat@garage.test",
        "garage_id": garage.id,
        "pass_id": pass_.id,
        "subscription_id": sub.id,
        "stripe_subscription_id": "sub_test_1",
    }


@pytest.fixture
def make_subscription(seed_data):
    """Factory: add a subscription on the seeded pass and return its id."""
    counter = {"n": 0}

    def _make(**overrides):
        counter["n"] += 1
        now = datetime.now(timezone.utc)
        fields = {
            "stripe_subscription_id": f"sub_extra_{counter['n']}",
            "user_id": seed_data["member_id"],
            "garage_id": seed_data["garage_id"],
            "pass_id": seed_data["pass_id"],
            "stripe_price_id": "price_150",
            "status": "active",
            "current_period_start": now - timedelta(days=25),
            "current_period_end": now + timedelta(days=5),
            "cancel_at_period_end": False,
            "monthly_amount": Decimal("150.00"),
            "renewal_status": "pending",
        }
        fields.update(overrides)
        status = fields.pop("status")
        sub = Subscription(**fields)
        sub.set_status(status)
        _db.session.add(sub)
        _db.session.commit()
        return sub.id

    return _make


def _login(app, email, password):
    client = app.test_client()
    resp = client.post("/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.get_json()
    return client


@pytest.fixture
def admin_client(app, seed_data):
    """Test client logged in as the seeded super_admin."""
    return _login(app, seed_data["admin_email"], "admin123")


@pytest.fixture
def member_client(app, seed_data):
    """Test client logged in as the seeded non-admin member."""
    return _login(app, seed_data["member_email"], "member123")


def _stripe_subscription(sub_id, status="active", period_start=None,
                         period_end=None, cancel_at_period_end=False,
                         price_id="price_150", item_id="si_1", **extra):
    """Build a Stripe-shaped subscription dict for mocks and events."""
    now = datetime.now(timezone.utc)
    period_start = period_start or now
    period_end = period_end or now + timedelta(days=30)
    data = {
        "id": sub_id,
        "object": "subscription",
        "status": status,
        "current_period_start": int(period_start.timestamp()),
        "current_period_end": int(period_end.timestamp()),
        "cancel_at_period_end": cancel_at_period_end,
        "canceled_at": None,
        "items": {"data": [{"id": item_id, "price": {"id": price_id}}]},
        "metadata": {},
    }
    data.update(extra)
    return data


@pytest.fixture
def stripe_sub():
    """Builder for Stripe-shaped subscription dicts."""
    return _stripe_subscription


@pytest.fixture
def stripe_signature(app):
    """Build a Stripe-Signature header for a payload, signed with the app's secret."""

    def _sign(payload, secret=None, timestamp=None):
        secret = secret or app.config["STRIPE_WEBHOOK_SECRET"]
        timestamp = timestamp or int(time.time())
        signature = hmac.new(
            secret.encode("utf-8"),
            f"{timestamp}.{payload}".encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return f"t={timestamp},v1={signature}"

    return _sign
