"""Payment models.

- Payment: one row per settled or failed charge, created first-seen per
  Stripe payment intent and updated in place afterwards. net_amount is
  always amount - stripe_fee; build rows through Payment.from_cents().
- PaymentMethod: local mirror of a Stripe payment method attached to a
  user's customer (card display fields only, no sensitive data).
"""

import uuid
from decimal import Decimal

from garage_billing.extensions import db

CENT = Decimal("0.01")


def cents_to_decimal(cents):
    """Convert a Stripe minor-unit integer to a Decimal currency amount."""
    return (Decimal(int(cents or 0)) / 100).quantize(CENT)


class Payment(db.Model):
    __tablename__ = "payments"

    STATUSES = ["succeeded", "failed", "processing", "canceled"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_payment_intent_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # e.g. "pi_1Abc..."
    subscription_id = db.Column(
        db.String(36),
        db.ForeignKey("subscriptions.id"),
        nullable=False,
        index=True,
    )
    garage_id = db.Column(
        db.String(36), db.ForeignKey("garages.id"), nullable=False, index=True
    )  # denormalized from subscription for reporting
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    stripe_fee = db.Column(db.Numeric(10, 2), nullable=False)
    net_amount = db.Column(db.Numeric(10, 2), nullable=False)
    status = db.Column(db.String(50), nullable=False, index=True)
    currency = db.Column(db.String(3), nullable=False, default="usd")
    payment_date = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    subscription = db.relationship("Subscription", back_populates="payments")
    garage = db.relationship("Garage")

    @classmethod
    def from_cents(cls, amount_cents, fee_cents, **kwargs):
        """Build a payment from Stripe minor units, deriving net_amount."""
        amount = cents_to_decimal(amount_cents)
        fee = cents_to_decimal(fee_cents)
        return cls(amount=amount, stripe_fee=fee, net_amount=amount - fee, **kwargs)

    def __repr__(self):
        return f"<Payment {self.stripe_payment_intent_id} {self.amount} ({self.status})>"


class PaymentMethod(db.Model):
    __tablename__ = "payment_methods"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    stripe_payment_method_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "pm_1Abc..."
    type = db.Column(db.String(50), nullable=False)  # card, us_bank_account, ...
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    card_brand = db.Column(db.String(50))
    card_last4 = db.Column(db.String(4))
    card_exp_month = db.Column(db.Integer)
    card_exp_year = db.Column(db.Integer)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # named metadata_ to avoid the declarative attribute clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="payment_methods")

    def apply_card(self, pm_data):
        """Copy card display fields from a Stripe payment method object."""
        card = pm_data.get("card") if pm_data.get("type") == "card" else None
        if card:
            self.card_brand = card.get("brand")
            self.card_last4 = card.get("last4")
            self.card_exp_month = card.get("exp_month")
            self.card_exp_year = card.get("exp_year")
        self.metadata_ = dict(pm_data.get("metadata") or {})

    def to_dict(self):
        return {
            "id": self.id,
            "stripe_payment_method_id": self.stripe_payment_method_id,
            "type": self.type,
            "is_default": self.is_default,
            "card_brand": self.card_brand,
            "card_last4": self.card_last4,
            "card_exp_month": self.card_exp_month,
            "card_exp_year": self.card_exp_year,
        }

    def __repr__(self):
        return f"<PaymentMethod {self.stripe_payment_method_id}>"
