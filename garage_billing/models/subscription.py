"""Subscription model.

One row per user entitlement to a pass at a garage. Status, billing period
and the cancel flag mirror the Stripe subscription; the renewal_* columns
are local bookkeeping for the renewal scan.

Invariants kept by the model itself:
- status == "canceled" if and only if canceled_at is set (set_status()).
- stripe_subscription_id is write-once.

Rows are never deleted; cancellation is a status transition.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy.orm import validates

from garage_billing.extensions import db


def _utcnow():
    return datetime.now(timezone.utc)


class Subscription(db.Model):
    __tablename__ = "subscriptions"

    # -- Valid statuses (synced from Stripe) --
    STATUSES = [
        "active",
        "past_due",
        "canceled",
        "unpaid",
        "trialing",
    ]
    RENEWAL_STATUSES = ["pending", "processing", "completed", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_subscription_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # e.g. "sub_1Abc..."
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False, index=True
    )
    garage_id = db.Column(
        db.String(36), db.ForeignKey("garages.id"), nullable=False, index=True
    )
    pass_id = db.Column(
        db.String(36), db.ForeignKey("passes.id"), nullable=False, index=True
    )
    stripe_price_id = db.Column(db.String(255), nullable=True)
    status = db.Column(
        db.String(50), nullable=False, index=True
    )  # active | past_due | canceled | unpaid | trialing
    current_period_start = db.Column(db.DateTime(timezone=True), nullable=True)
    current_period_end = db.Column(
        db.DateTime(timezone=True), nullable=True, index=True
    )
    cancel_at_period_end = db.Column(db.Boolean, nullable=False, default=False)
    canceled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    monthly_amount = db.Column(db.Numeric(10, 2), nullable=False)

    # --- Renewal bookkeeping ---
    renewal_status = db.Column(
        db.String(50), nullable=False, default="pending", index=True
    )  # pending | processing | completed | failed
    renewal_attempted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    next_renewal_date = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("User", back_populates="subscriptions")
    garage = db.relationship("Garage")
    pass_ = db.relationship("Pass", back_populates="subscriptions")
    payments = db.relationship(
        "Payment", back_populates="subscription", lazy="dynamic"
    )

    @validates("stripe_subscription_id")
    def _validate_stripe_subscription_id(self, key, value):
        current = self.stripe_subscription_id
        if current is not None and value != current:
            raise ValueError(
                f"stripe_subscription_id is write-once ({current} -> {value})"
            )
        return value

    @validates("status")
    def _validate_status(self, key, value):
        if value not in self.STATUSES:
            raise ValueError(f"Invalid subscription status: {value}")
        return value

    @validates("renewal_status")
    def _validate_renewal_status(self, key, value):
        if value not in self.RENEWAL_STATUSES:
            raise ValueError(f"Invalid renewal status: {value}")
        return value

    def set_status(self, status, canceled_at=None):
        """Set status and keep canceled_at consistent with it.

        Entering "canceled" stamps canceled_at (the given time, else the
        existing stamp, else now); any other status clears it.
        """
        self.status = status
        if status == "canceled":
            self.canceled_at = canceled_at or self.canceled_at or _utcnow()
        else:
            self.canceled_at = None

    def set_period(self, start, end):
        """Overwrite the billing period.

        When the period end moves, the next renewal is re-armed: the
        renewal scan keys off next_renewal_date and renewal_status.
        """
        moved = end is not None and end != _comparable(self.current_period_end, end)
        self.current_period_start = start
        self.current_period_end = end
        if moved:
            self.next_renewal_date = end
            self.renewal_status = "pending"

    @property
    def is_canceled(self):
        return self.status == "canceled"

    def to_dict(self):
        return {
            "id": self.id,
            "stripe_subscription_id": self.stripe_subscription_id,
            "user_id": self.user_id,
            "garage_id": self.garage_id,
            "pass_id": self.pass_id,
            "stripe_price_id": self.stripe_price_id,
            "status": self.status,
            "current_period_start": _iso(self.current_period_start),
            "current_period_end": _iso(self.current_period_end),
            "cancel_at_period_end": self.cancel_at_period_end,
            "canceled_at": _iso(self.canceled_at),
            "monthly_amount": str(self.monthly_amount),
            "renewal_status": self.renewal_status,
            "renewal_attempted_at": _iso(self.renewal_attempted_at),
            "next_renewal_date": _iso(self.next_renewal_date),
        }

    def __repr__(self):
        return f"<Subscription {self.stripe_subscription_id} ({self.status})>"


def _iso(value):
    return value.isoformat() if value else None


def _comparable(stored, incoming):
    """Align a stored datetime with an incoming one for comparison.

    SQLite hands back naive datetimes even for timezone=True columns.
    """
    if stored is None or incoming is None:
        return stored
    if stored.tzinfo is None and incoming.tzinfo is not None:
        return stored.replace(tzinfo=timezone.utc)
    return stored
