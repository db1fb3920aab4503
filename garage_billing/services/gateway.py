"""Stripe gateway — every Stripe API call the billing core makes.

Responsible for:
- Verifying webhook signatures and constructing events
- Customers, products, prices (archive = deactivate, never delete)
- Subscriptions, including partial item replacement with proration
- Payment methods and a customer's default payment method

The API key is passed on each call instead of being set on the global
``stripe.api_key``, so a gateway can be built per app (or replaced by a
fake in tests) without touching process-wide state.

Results come back as plain dicts, never StripeObjects.

Every method may raise ``stripe.StripeError``. Callers must treat that as
"remote state unknown": the request may or may not have been applied.
"""

import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

import stripe
from flask import current_app

logger = logging.getLogger(__name__)


class StripeGateway:
    """Thin typed facade over the stripe SDK."""

    def __init__(self, api_key, webhook_secret=None, currency="usd"):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency

    @classmethod
    def from_config(cls, config):
        return cls(
            api_key=config.get("STRIPE_SECRET_KEY"),
            webhook_secret=config.get("STRIPE_WEBHOOK_SECRET"),
            currency=config.get("BILLING_CURRENCY", "usd"),
        )

    # ──────────────────────────────────────────────
    # Webhooks
    # ──────────────────────────────────────────────

    def construct_event(self, payload, sig_header):
        """Verify a webhook signature against the raw body and build the event.

        Raises stripe.SignatureVerificationError on a bad signature and
        ValueError on an unparseable payload or missing secret.
        """
        if not self.webhook_secret:
            raise ValueError("Stripe webhook secret not configured")
        event = stripe.Webhook.construct_event(
            payload, sig_header, self.webhook_secret
        )
        return _plain(event)

    # ──────────────────────────────────────────────
    # Customers
    # ──────────────────────────────────────────────

    def create_customer(self, **params):
        return _plain(stripe.Customer.create(api_key=self.api_key, **params))

    def retrieve_customer(self, customer_id):
        return _plain(
            stripe.Customer.retrieve(customer_id, api_key=self.api_key)
        )

    def update_customer(self, customer_id, **params):
        return _plain(
            stripe.Customer.modify(customer_id, api_key=self.api_key, **params)
        )

    def set_default_payment_method(self, customer_id, payment_method_id):
        return self.update_customer(
            customer_id,
            invoice_settings={"default_payment_method": payment_method_id},
        )

    # ──────────────────────────────────────────────
    # Products & prices
    # ──────────────────────────────────────────────

    def create_product(self, **params):
        return _plain(stripe.Product.create(api_key=self.api_key, **params))

    def create_price(self, **params):
        return _plain(stripe.Price.create(api_key=self.api_key, **params))

    def create_monthly_price(self, product_id, amount, metadata=None):
        """Create a recurring monthly price for a Decimal dollar amount."""
        return self.create_price(
            product=product_id,
            currency=self.currency,
            unit_amount=to_cents(amount),
            recurring={"interval": "month"},
            metadata=metadata or {},
        )

    def retrieve_price(self, price_id):
        return _plain(stripe.Price.retrieve(price_id, api_key=self.api_key))

    def update_price(self, price_id, **params):
        return _plain(stripe.Price.modify(price_id, api_key=self.api_key, **params))

    def archive_price(self, price_id):
        """Deactivate a price. Stripe prices cannot be deleted."""
        logger.info(f"Archiving Stripe price {price_id}")
        return self.update_price(price_id, active=False)

    # ──────────────────────────────────────────────
    # Subscriptions
    # ──────────────────────────────────────────────

    def create_subscription(self, **params):
        return _plain(stripe.Subscription.create(api_key=self.api_key, **params))

    def retrieve_subscription(self, subscription_id):
        return _plain(
            stripe.Subscription.retrieve(subscription_id, api_key=self.api_key)
        )

    def update_subscription(self, subscription_id, **params):
        return _plain(stripe.Subscription.modify(
            subscription_id, api_key=self.api_key, **params
        ))

    def cancel_subscription(self, subscription_id):
        """Hard-cancel now (not at period end)."""
        return _plain(
            stripe.Subscription.cancel(subscription_id, api_key=self.api_key)
        )

    def set_cancel_at_period_end(self, subscription_id, flag):
        return self.update_subscription(
            subscription_id, cancel_at_period_end=bool(flag)
        )

    @staticmethod
    def get_subscription_item_id(subscription):
        """Return the first billing item's id of a Stripe subscription, or None."""
        items = subscription.get("items") or {}
        data = items.get("data") or []
        if data:
            return data[0].get("id")
        return None

    def replace_subscription_price(self, subscription_id, item_id, price_id,
                                   prorate=True):
        """Point an existing subscription item at a new price.

        With prorate=True Stripe issues a prorated adjustment on the
        customer's next invoice.
        """
        return self.update_subscription(
            subscription_id,
            items=[{"id": item_id, "price": price_id}],
            proration_behavior="create_prorations" if prorate else "none",
        )

    # ──────────────────────────────────────────────
    # Payment methods
    # ──────────────────────────────────────────────

    def attach_payment_method(self, payment_method_id, customer_id):
        return _plain(stripe.PaymentMethod.attach(
            payment_method_id, customer=customer_id, api_key=self.api_key
        ))

    def detach_payment_method(self, payment_method_id):
        return _plain(
            stripe.PaymentMethod.detach(payment_method_id, api_key=self.api_key)
        )

    def update_payment_method(self, payment_method_id, **params):
        return _plain(stripe.PaymentMethod.modify(
            payment_method_id, api_key=self.api_key, **params
        ))


def get_gateway():
    """Return the app's gateway, building it from config on first use."""
    gateway = current_app.extensions.get("stripe_gateway")
    if gateway is None:
        gateway = StripeGateway.from_config(current_app.config)
        current_app.extensions["stripe_gateway"] = gateway
    return gateway


# ──────────────────────────────────────────────
# Payload helpers
# ──────────────────────────────────────────────

def _plain(obj):
    """StripeObject -> nested plain dicts and lists.

    Recent stripe releases no longer subclass dict, so everything past the
    gateway works on plain data.
    """
    if isinstance(obj, stripe.StripeObject):
        return obj.to_dict()
    return obj


def to_cents(amount):
    """Convert a Decimal dollar amount to integer cents."""
    cents = Decimal(str(amount)) * 100
    return int(cents.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_timestamp(ts):
    """Unix timestamp -> timezone-aware datetime (None stays None)."""
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def extract_period(sub_data):
    """Extract (current_period_start, current_period_end) from a Stripe subscription.

    In newer Stripe API versions the period fields moved from the
    subscription top level to items.data[0]. This helper checks both.
    """
    start = sub_data.get("current_period_start")
    end = sub_data.get("current_period_end")

    if not start or not end:
        items = sub_data.get("items")
        if items and items.get("data") and len(items["data"]) > 0:
            first = items["data"][0]
            start = start or first.get("current_period_start")
            end = end or first.get("current_period_end")

    return from_timestamp(start), from_timestamp(end)


def extract_price_id(sub_data):
    """Price id of the first subscription item, or None."""
    items = sub_data.get("items")
    if items and items.get("data"):
        price = items["data"][0].get("price") or {}
        if isinstance(price, str):
            return price
        return price.get("id")
    return None


def object_id(value):
    """Stripe fields may hold an id string or an expanded object."""
    if value is None or isinstance(value, str):
        return value
    return value.get("id")
