"""Webhook event model (idempotency ledger).

Every Stripe webhook event is recorded by its Stripe event ID, inserted
exactly once thanks to the unique constraint. The status column tracks
processing: pending -> processing -> processed | failed. Only "processed"
blocks reprocessing; "failed" rows stay retryable so Stripe's own
redelivery can finish the job. The full payload is kept for audit/replay.
"""

import uuid

from garage_billing.extensions import db


class WebhookEvent(db.Model):
    __tablename__ = "webhook_events"

    STATUSES = ["pending", "processing", "processed", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False, index=True
    )  # e.g. "customer.subscription.updated"
    status = db.Column(
        db.String(50), nullable=False, default="pending", index=True
    )
    payload = db.Column(db.JSON, nullable=False)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    error_message = db.Column(db.Text, nullable=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now(), index=True
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self):
        return f"<WebhookEvent {self.stripe_event_id} ({self.event_type}, {self.status})>"
