"""Pass price history model.

Append-only: one row per price change on a pass. Rows are never updated
or deleted after creation.
"""

import uuid
from datetime import datetime, timezone

from garage_billing.extensions import db


class PassPriceHistory(db.Model):
    __tablename__ = "pass_price_history"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    pass_id = db.Column(
        db.String(36), db.ForeignKey("passes.id"), nullable=False, index=True
    )
    old_price = db.Column(db.Numeric(10, 2), nullable=True)  # null on first change
    new_price = db.Column(db.Numeric(10, 2), nullable=False)
    old_stripe_price_id = db.Column(db.String(255), nullable=True)
    new_stripe_price_id = db.Column(db.String(255), nullable=True)
    changed_by = db.Column(db.String(255), nullable=True)
    change_reason = db.Column(db.Text, nullable=True)
    effective_date = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        index=True,
        default=lambda: datetime.now(timezone.utc),
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    pass_ = db.relationship("Pass", back_populates="price_history")

    def to_dict(self):
        return {
            "id": self.id,
            "pass_id": self.pass_id,
            "old_price": str(self.old_price) if self.old_price is not None else None,
            "new_price": str(self.new_price),
            "old_stripe_price_id": self.old_stripe_price_id,
            "new_stripe_price_id": self.new_stripe_price_id,
            "changed_by": self.changed_by,
            "change_reason": self.change_reason,
            "effective_date": (
                self.effective_date.isoformat() if self.effective_date else None
            ),
        }

    def __repr__(self):
        return f"<PassPriceHistory {self.old_price} -> {self.new_price}>"
