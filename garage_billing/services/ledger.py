"""Idempotency ledger — the webhook_events table.

The only de-duplication mechanism for Stripe webhooks. An event id is
inserted at most once: record_if_new() relies on the unique constraint on
stripe_event_id (insert, and on IntegrityError re-fetch the winner's row),
never on an existence check followed by an insert, so two concurrent
deliveries of the same event cannot both see themselves as new.

Status transitions are conditional UPDATEs, which makes them atomic
against concurrent workers and keeps them monotonic: nothing moves a row
out of "processed".
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from garage_billing.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


class IdempotencyLedger:
    def __init__(self, session):
        self.session = session

    def record_if_new(self, event_id, event_type, payload):
        """Insert a pending entry for event_id, or fetch the existing one.

        Commits the insert so the entry is durable before any handler runs.
        Returns (is_new, entry_id). An existing entry is returned untouched.
        """
        entry = WebhookEvent(
            stripe_event_id=event_id,
            event_type=event_type,
            status="pending",
            payload=payload,
        )
        self.session.add(entry)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            existing = self.get_by_event_id(event_id)
            if existing is None:
                # The conflict was not on stripe_event_id.
                raise
            logger.info(f"Webhook event {event_id} already recorded ({existing.status})")
            return False, existing.id

        return True, entry.id

    def claim(self, entry_id, from_statuses=("pending",), retry=False):
        """Move an entry to "processing" if it is still in one of from_statuses.

        Returns True when this caller won the entry. With retry=True the
        retry counter is bumped as part of the same UPDATE.
        """
        values = {
            WebhookEvent.status: "processing",
            WebhookEvent.error_message: None,
        }
        if retry:
            values[WebhookEvent.retry_count] = WebhookEvent.retry_count + 1

        claimed = (
            self.session.query(WebhookEvent)
            .filter(
                WebhookEvent.id == entry_id,
                WebhookEvent.status.in_(list(from_statuses)),
            )
            .update(values, synchronize_session=False)
        )
        self.session.commit()
        return claimed == 1

    def mark_processing(self, entry_id):
        """pending -> processing."""
        return self.claim(entry_id, from_statuses=("pending",))

    def mark_processed(self, entry_id):
        """-> processed. Commits together with any pending handler writes."""
        self._transition(
            entry_id,
            {
                WebhookEvent.status: "processed",
                WebhookEvent.processed_at: datetime.now(timezone.utc),
                WebhookEvent.error_message: None,
            },
        )

    def mark_failed(self, entry_id, message):
        """-> failed, keeping the error for inspection. Failed entries stay retryable."""
        self._transition(
            entry_id,
            {
                WebhookEvent.status: "failed",
                WebhookEvent.error_message: (message or "")[:MAX_ERROR_LENGTH],
            },
        )

    def _transition(self, entry_id, values):
        updated = (
            self.session.query(WebhookEvent)
            .filter(
                WebhookEvent.id == entry_id,
                WebhookEvent.status != "processed",
            )
            .update(values, synchronize_session=False)
        )
        self.session.commit()
        if not updated:
            logger.warning(f"Ledger entry {entry_id} is already processed; transition ignored")

    def get(self, entry_id):
        return self.session.get(WebhookEvent, entry_id)

    def get_by_event_id(self, event_id):
        return (
            self.session.query(WebhookEvent)
            .filter_by(stripe_event_id=event_id)
            .first()
        )
