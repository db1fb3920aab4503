"""Garage and pass models.

- Garage: a parking facility.
- Pass: a monthly parking product sold at a garage. stripe_product_id /
  stripe_price_id point at the Stripe objects that bill it; monthly_amount
  is the current price and is only changed through the price service so
  that every change lands in pass_price_history.
"""

import uuid

from garage_billing.extensions import db


class Garage(db.Model):
    __tablename__ = "garages"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    name = db.Column(db.String(255), nullable=False)
    address = db.Column(db.String(500), nullable=False)
    stripe_account_id = db.Column(db.String(255), nullable=True, index=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    passes = db.relationship("Pass", back_populates="garage", lazy="dynamic")

    def __repr__(self):
        return f"<Garage {self.name}>"


class Pass(db.Model):
    __tablename__ = "passes"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    garage_id = db.Column(
        db.String(36), db.ForeignKey("garages.id"), nullable=False, index=True
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.String(1000))
    stripe_product_id = db.Column(db.String(255), nullable=True, index=True)
    stripe_price_id = db.Column(db.String(255), nullable=True)
    monthly_amount = db.Column(db.Numeric(10, 2), nullable=False)
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    garage = db.relationship("Garage", back_populates="passes")
    subscriptions = db.relationship(
        "Subscription", back_populates="pass_", lazy="dynamic"
    )
    price_history = db.relationship(
        "PassPriceHistory",
        back_populates="pass_",
        lazy="dynamic",
        order_by="PassPriceHistory.effective_date",
    )

    def __repr__(self):
        return f"<Pass {self.name} ${self.monthly_amount}>"
