"""Stores — the durable record of subscriptions, payments, passes and price history.

Each store wraps an injected SQLAlchemy session. Stores mutate and flush;
the calling controller owns the commit boundary.

Partial updates go through explicit records (RemoteSubscriptionState,
PriceAssignment) listing exactly the fields an operation may touch, so a
Stripe sync can never clobber price fields and a price migration can never
clobber period fields.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from garage_billing.errors import NotFoundError
from garage_billing.models.garage import Pass
from garage_billing.models.payment import Payment
from garage_billing.models.price_history import PassPriceHistory
from garage_billing.models.subscription import Subscription
from garage_billing.services.gateway import extract_period, from_timestamp

logger = logging.getLogger(__name__)

# Stripe statuses outside the local enum, folded onto the closest local one.
STRIPE_STATUS_MAP = {
    "incomplete": "past_due",
    "incomplete_expired": "canceled",
    "paused": "past_due",
}


def normalize_status(stripe_status):
    status = STRIPE_STATUS_MAP.get(stripe_status, stripe_status)
    if status not in Subscription.STATUSES:
        logger.warning(f"Unknown Stripe subscription status {stripe_status!r}, treating as past_due")
        return "past_due"
    return status


# ──────────────────────────────────────────────
# Update records
# ──────────────────────────────────────────────

@dataclass(frozen=True)
class RemoteSubscriptionState:
    """The subscription fields Stripe is authoritative for."""

    status: str
    current_period_start: Optional[datetime]
    current_period_end: Optional[datetime]
    cancel_at_period_end: bool
    canceled_at: Optional[datetime] = None

    @classmethod
    def from_stripe(cls, sub_data):
        status = normalize_status(sub_data.get("status", "active"))
        start, end = extract_period(sub_data)
        canceled_at = None
        if status == "canceled":
            canceled_at = from_timestamp(
                sub_data.get("canceled_at") or sub_data.get("ended_at")
            )
        return cls(
            status=status,
            current_period_start=start,
            current_period_end=end,
            cancel_at_period_end=bool(sub_data.get("cancel_at_period_end", False)),
            canceled_at=canceled_at,
        )


@dataclass(frozen=True)
class PriceAssignment:
    """The subscription fields a price migration may touch."""

    stripe_price_id: Optional[str]
    monthly_amount: Decimal


# ──────────────────────────────────────────────
# Subscriptions
# ──────────────────────────────────────────────

class SubscriptionStore:
    def __init__(self, session):
        self.session = session

    def get(self, subscription_id):
        return self.session.get(Subscription, subscription_id)

    def require(self, subscription_id):
        sub = self.get(subscription_id)
        if sub is None:
            raise NotFoundError("Subscription not found")
        return sub

    def get_by_stripe_id(self, stripe_subscription_id):
        return (
            self.session.query(Subscription)
            .filter_by(stripe_subscription_id=stripe_subscription_id)
            .first()
        )

    def list_for_pass(self, pass_id, include_canceled=False):
        query = self.session.query(Subscription).filter_by(pass_id=pass_id)
        if not include_canceled:
            query = query.filter(Subscription.status != "canceled")
        return query.order_by(Subscription.created_at, Subscription.id).all()

    def find_expiring(self, days_ahead, now=None):
        """Active subscriptions whose period ends within days_ahead days.

        Skips subscriptions flagged to cancel at period end (they are not
        renewing) and those whose renewal is already being processed.
        """
        now = now or datetime.now(timezone.utc)
        horizon = now + timedelta(days=days_ahead)
        return (
            self.session.query(Subscription)
            .filter(
                Subscription.status == "active",
                Subscription.cancel_at_period_end.is_(False),
                Subscription.current_period_end.isnot(None),
                Subscription.current_period_end > now,
                Subscription.current_period_end <= horizon,
                Subscription.renewal_status != "processing",
            )
            .order_by(Subscription.current_period_end.asc())
            .all()
        )

    def add(self, sub):
        self.session.add(sub)
        self.session.flush()
        return sub

    def apply_remote_state(self, sub, state):
        """Full overwrite of the Stripe-owned fields. Never an increment."""
        sub.set_status(state.status, canceled_at=state.canceled_at)
        sub.set_period(state.current_period_start, state.current_period_end)
        sub.cancel_at_period_end = state.cancel_at_period_end
        self.session.flush()
        return sub

    def apply_renewal(self, sub, state, attempted_at=None):
        """Overwrite Stripe-owned fields and record a completed renewal."""
        self.apply_remote_state(sub, state)
        sub.renewal_status = "completed"
        sub.renewal_attempted_at = attempted_at or datetime.now(timezone.utc)
        sub.next_renewal_date = state.current_period_end
        self.session.flush()
        return sub

    def mark_renewal(self, sub, renewal_status, attempted_at=None):
        sub.renewal_status = renewal_status
        if renewal_status == "processing":
            sub.renewal_attempted_at = attempted_at or datetime.now(timezone.utc)
        self.session.flush()
        return sub

    def set_cancel_flag(self, sub, flag):
        sub.cancel_at_period_end = bool(flag)
        self.session.flush()
        return sub

    def mark_canceled(self, sub, canceled_at=None):
        sub.set_status("canceled", canceled_at=canceled_at)
        sub.cancel_at_period_end = False
        self.session.flush()
        return sub

    def assign_price(self, sub, assignment):
        sub.stripe_price_id = assignment.stripe_price_id
        sub.monthly_amount = assignment.monthly_amount
        self.session.flush()
        return sub


# ──────────────────────────────────────────────
# Payments
# ──────────────────────────────────────────────

class PaymentStore:
    def __init__(self, session):
        self.session = session

    def get_by_intent(self, payment_intent_id):
        return (
            self.session.query(Payment)
            .filter_by(stripe_payment_intent_id=payment_intent_id)
            .first()
        )

    def record_invoice_payment(self, subscription, payment_intent_id,
                               amount_cents, fee_cents, currency,
                               payment_date=None, status="succeeded"):
        """Insert a payment the first time a payment intent is seen.

        Returns (payment, created). A known intent is returned unchanged.
        """
        existing = self.get_by_intent(payment_intent_id)
        if existing is not None:
            return existing, False

        payment = Payment.from_cents(
            amount_cents,
            fee_cents,
            stripe_payment_intent_id=payment_intent_id,
            subscription_id=subscription.id,
            garage_id=subscription.garage_id,
            status=status,
            currency=(currency or "usd").lower(),
            payment_date=payment_date or datetime.now(timezone.utc),
        )
        self.session.add(payment)
        self.session.flush()
        return payment, True

    def set_status_by_intent(self, payment_intent_id, status):
        """Overwrite the status of the payment for an intent, if one exists."""
        if status not in Payment.STATUSES:
            raise ValueError(f"Invalid payment status: {status}")
        payment = self.get_by_intent(payment_intent_id)
        if payment is None:
            return None
        payment.status = status
        self.session.flush()
        return payment


# ──────────────────────────────────────────────
# Passes & price history
# ──────────────────────────────────────────────

class PassStore:
    def __init__(self, session):
        self.session = session

    def get(self, pass_id):
        return self.session.get(Pass, pass_id)

    def require(self, pass_id):
        pass_ = self.get(pass_id)
        if pass_ is None:
            raise NotFoundError("Pass not found")
        return pass_

    def set_price(self, pass_, amount, stripe_price_id=None):
        pass_.monthly_amount = amount
        if stripe_price_id:
            pass_.stripe_price_id = stripe_price_id
        self.session.flush()
        return pass_


class PriceHistoryStore:
    """Append-only: there is deliberately no update or delete here."""

    def __init__(self, session):
        self.session = session

    def append(self, pass_id, old_price, new_price, old_stripe_price_id=None,
               new_stripe_price_id=None, changed_by=None, change_reason=None,
               effective_date=None):
        entry = PassPriceHistory(
            pass_id=pass_id,
            old_price=old_price,
            new_price=new_price,
            old_stripe_price_id=old_stripe_price_id,
            new_stripe_price_id=new_stripe_price_id,
            changed_by=changed_by,
            change_reason=change_reason,
            effective_date=effective_date or datetime.now(timezone.utc),
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_for_pass(self, pass_id):
        return (
            self.session.query(PassPriceHistory)
            .filter_by(pass_id=pass_id)
            .order_by(PassPriceHistory.effective_date, PassPriceHistory.created_at)
            .all()
        )

    def earliest(self, pass_id):
        return (
            self.session.query(PassPriceHistory)
            .filter_by(pass_id=pass_id)
            .order_by(PassPriceHistory.effective_date.asc())
            .first()
        )

    def latest_at(self, pass_id, at):
        """The most recent change effective at or before `at`, or None."""
        return (
            self.session.query(PassPriceHistory)
            .filter(
                PassPriceHistory.pass_id == pass_id,
                PassPriceHistory.effective_date <= at,
            )
            .order_by(PassPriceHistory.effective_date.desc())
            .first()
        )
