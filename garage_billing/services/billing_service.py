"""Billing service — customers, pass products and new subscriptions.

Responsible for:
- Getting or creating the Stripe customer for a user
- Creating the Stripe product + monthly price backing a pass
- Subscribing a user to a pass (Stripe first, then the local row)
"""

import logging

from garage_billing.errors import InvalidStateError, NotFoundError
from garage_billing.models.subscription import Subscription
from garage_billing.models.user import User
from garage_billing.services.gateway import extract_price_id
from garage_billing.services.stores import (
    PassStore,
    RemoteSubscriptionState,
    SubscriptionStore,
)

logger = logging.getLogger(__name__)


class BillingService:
    def __init__(self, session, gateway):
        self.session = session
        self.gateway = gateway
        self.passes = PassStore(session)
        self.subscriptions = SubscriptionStore(session)

    def get_or_create_customer(self, user):
        """Return the user's Stripe customer id, creating the customer if needed."""
        if user.stripe_customer_id:
            return user.stripe_customer_id

        customer = self.gateway.create_customer(
            email=user.email,
            name=user.full_name,
            phone=user.phone or None,
            metadata={"user_id": user.id},
        )
        user.stripe_customer_id = customer["id"]
        self.session.commit()
        logger.info(f"Created Stripe customer {customer['id']} for user {user.id}")
        return user.stripe_customer_id

    def create_pass_product(self, pass_id):
        """Create the Stripe product and monthly price for a pass that has none."""
        pass_ = self.passes.require(pass_id)
        if pass_.stripe_product_id:
            raise InvalidStateError("Pass already has a Stripe product")

        product = self.gateway.create_product(
            name=f"{pass_.garage.name} - {pass_.name}",
            description=pass_.description or None,
            metadata={"pass_id": pass_.id, "garage_id": pass_.garage_id},
        )
        price = self.gateway.create_monthly_price(
            product["id"],
            pass_.monthly_amount,
            metadata={"pass_id": pass_.id, "garage_id": pass_.garage_id},
        )

        pass_.stripe_product_id = product["id"]
        pass_.stripe_price_id = price["id"]
        self.session.commit()

        logger.info(f"Created Stripe product {product['id']} / price {price['id']} for pass {pass_.id}")
        return pass_

    def subscribe_user_to_pass(self, user_id, pass_id, payment_method_id=None):
        """Create a Stripe subscription for a user and mirror it locally.

        The subscription carries user/pass/garage metadata so that, if the
        local insert is lost after Stripe accepted it, the
        customer.subscription.created webhook can rebuild the row.
        """
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        pass_ = self.passes.require(pass_id)
        if not pass_.active:
            raise InvalidStateError("Pass is not available")
        if not pass_.stripe_price_id:
            raise InvalidStateError("Pass has no Stripe price")

        existing = (
            self.session.query(Subscription)
            .filter(
                Subscription.user_id == user.id,
                Subscription.pass_id == pass_.id,
                Subscription.status.in_(["active", "trialing", "past_due"]),
            )
            .first()
        )
        if existing:
            raise InvalidStateError("User already has a subscription to this pass")

        customer_id = self.get_or_create_customer(user)

        params = {
            "customer": customer_id,
            "items": [{"price": pass_.stripe_price_id}],
            "metadata": {
                "user_id": user.id,
                "pass_id": pass_.id,
                "garage_id": pass_.garage_id,
            },
        }
        if payment_method_id:
            params["default_payment_method"] = payment_method_id

        remote = self.gateway.create_subscription(**params)

        # Stripe may already have delivered customer.subscription.created.
        sub = self.subscriptions.get_by_stripe_id(remote["id"])
        if sub is None:
            state = RemoteSubscriptionState.from_stripe(remote)
            sub = Subscription(
                stripe_subscription_id=remote["id"],
                user_id=user.id,
                garage_id=pass_.garage_id,
                pass_id=pass_.id,
                stripe_price_id=extract_price_id(remote) or pass_.stripe_price_id,
                monthly_amount=pass_.monthly_amount,
                cancel_at_period_end=state.cancel_at_period_end,
                renewal_status="pending",
            )
            sub.set_status(state.status, canceled_at=state.canceled_at)
            sub.set_period(state.current_period_start, state.current_period_end)
            self.subscriptions.add(sub)
        self.session.commit()

        logger.info(f"Subscribed user {user.id} to pass {pass_.id} ({remote['id']})")
        return sub
