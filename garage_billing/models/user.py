"""User model.

Stores credentials, profile info and the Stripe customer link.
Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from garage_billing.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    ROLES = ["user", "garage_admin", "super_admin"]
    ADMIN_ROLES = ("garage_admin", "super_admin")

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    first_name = db.Column(db.String(255), nullable=False)
    last_name = db.Column(db.String(255), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)
    phone = db.Column(db.String(50))
    password_hash = db.Column(db.String(255))
    stripe_customer_id = db.Column(
        db.String(255), nullable=True, index=True
    )  # e.g. "cus_1Abc..."
    role = db.Column(db.String(50), nullable=False, default="user")
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    subscriptions = db.relationship(
        "Subscription", back_populates="user", lazy="dynamic"
    )
    payment_methods = db.relationship(
        "PaymentMethod", back_populates="user", lazy="dynamic"
    )

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self):
        return self.role in self.ADMIN_ROLES

    def __repr__(self):
        return f"<User {self.email}>"
