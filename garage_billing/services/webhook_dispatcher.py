"""Webhook dispatcher — turns verified Stripe events into local state.

Responsible for:
- Recording every event in the idempotency ledger before acting on it
- Routing each event type to its handler
- Ledger state machine: pending -> processing -> processed | failed

Signature verification happens before the dispatcher (see the webhooks
blueprint); by the time an event gets here it is trusted.

Every handler write is an overwrite keyed by a remote id (customer,
payment method, subscription, payment intent), so a handler may be re-run
safely after a partial failure. Handler writes and the "processed" mark
are committed together.
"""

import json
import logging

from garage_billing.models.garage import Pass
from garage_billing.models.payment import PaymentMethod
from garage_billing.models.subscription import Subscription
from garage_billing.models.user import User
from garage_billing.services.gateway import (
    extract_price_id,
    from_timestamp,
    object_id,
)
from garage_billing.services.ledger import IdempotencyLedger
from garage_billing.services.stores import (
    PaymentStore,
    RemoteSubscriptionState,
    SubscriptionStore,
)

logger = logging.getLogger(__name__)


class WebhookDispatcher:
    def __init__(self, session, ledger=None):
        self.session = session
        self.ledger = ledger or IdempotencyLedger(session)
        self.subscriptions = SubscriptionStore(session)
        self.payments = PaymentStore(session)

        self._handlers = {
            "customer.created": self._handle_customer_upsert,
            "customer.updated": self._handle_customer_upsert,
            "customer.deleted": self._handle_customer_deleted,
            "payment_method.attached": self._handle_payment_method_attached,
            "payment_method.detached": self._handle_payment_method_detached,
            "payment_method.updated": self._handle_payment_method_updated,
            "customer.subscription.created": self._handle_subscription_upsert,
            "customer.subscription.updated": self._handle_subscription_upsert,
            "customer.subscription.deleted": self._handle_subscription_deleted,
            "payment_intent.succeeded": self._handle_payment_intent_succeeded,
            "payment_intent.payment_failed": self._handle_payment_intent_failed,
            "invoice.paid": self._handle_invoice_paid,
            "invoice.payment_failed": self._handle_invoice_payment_failed,
        }

    @property
    def handled_event_types(self):
        return sorted(self._handlers)

    def dispatch(self, event):
        """Process a verified Stripe event at most once.

        Returns "processed", "ignored" (unknown type, still recorded) or
        "already_processed" (duplicate delivery, or another worker holds
        it). Handler exceptions are recorded on the ledger entry and
        re-raised so the transport can answer 500 and Stripe redelivers.
        """
        event_id = event["id"]
        event_type = event["type"]

        is_new, entry_id = self.ledger.record_if_new(
            event_id, event_type, _serialize_event(event)
        )

        if is_new:
            claimed = self.ledger.claim(entry_id)
        else:
            entry = self.ledger.get(entry_id)
            if entry is not None and entry.status == "failed":
                # Failed entries stay retryable; only "processed" blocks.
                claimed = self.ledger.claim(
                    entry_id, from_statuses=("failed",), retry=True
                )
                if claimed:
                    logger.info(f"Retrying previously failed event {event_id} ({event_type})")
            else:
                claimed = False

        if not claimed:
            logger.info(f"Duplicate webhook event {event_id} ({event_type}), skipping")
            return "already_processed"

        handler = self._handlers.get(event_type)
        if handler is None:
            logger.info(f"Unhandled webhook event type: {event_type}")
            self.ledger.mark_processed(entry_id)
            return "ignored"

        data_object = event["data"]["object"]
        try:
            handler(data_object)
            self.ledger.mark_processed(entry_id)
        except Exception as e:
            self.session.rollback()
            logger.error(
                f"Error processing webhook {event_id} ({event_type}): {e}",
                exc_info=True,
            )
            self.ledger.mark_failed(entry_id, str(e))
            raise

        logger.info(f"Processed webhook event {event_id} ({event_type})")
        return "processed"

    # ──────────────────────────────────────────────
    # Customers
    # ──────────────────────────────────────────────

    def _user_for_customer(self, customer_id):
        if not customer_id:
            return None
        return (
            self.session.query(User)
            .filter_by(stripe_customer_id=customer_id)
            .first()
        )

    def _handle_customer_upsert(self, customer):
        user = self._user_for_customer(customer.get("id"))
        if not user:
            logger.info(f"No local user for Stripe customer {customer.get('id')}")
            return

        if customer.get("email"):
            user.email = customer["email"]
        user.phone = customer.get("phone")
        self.session.flush()

    def _handle_customer_deleted(self, customer):
        user = self._user_for_customer(customer.get("id"))
        if not user:
            return
        user.stripe_customer_id = None
        self.session.flush()
        logger.info(f"Cleared Stripe customer {customer.get('id')} from user {user.id}")

    # ──────────────────────────────────────────────
    # Payment methods
    # ──────────────────────────────────────────────

    def _payment_method(self, pm_id):
        return (
            self.session.query(PaymentMethod)
            .filter_by(stripe_payment_method_id=pm_id)
            .first()
        )

    def _handle_payment_method_attached(self, pm_data):
        if self._payment_method(pm_data["id"]):
            return

        user = self._user_for_customer(object_id(pm_data.get("customer")))
        if not user:
            logger.warning(
                f"payment_method.attached {pm_data['id']}: no local user for customer"
            )
            return

        pm = PaymentMethod(
            user_id=user.id,
            stripe_payment_method_id=pm_data["id"],
            type=pm_data.get("type", "card"),
            is_default=False,
        )
        pm.apply_card(pm_data)
        self.session.add(pm)
        self.session.flush()

    def _handle_payment_method_detached(self, pm_data):
        pm = self._payment_method(pm_data["id"])
        if pm:
            self.session.delete(pm)
            self.session.flush()

    def _handle_payment_method_updated(self, pm_data):
        pm = self._payment_method(pm_data["id"])
        if not pm:
            return
        pm.apply_card(pm_data)
        self.session.flush()

    # ──────────────────────────────────────────────
    # Subscriptions
    # ──────────────────────────────────────────────

    def _handle_subscription_upsert(self, sub_data):
        """customer.subscription.created / .updated

        Full overwrite of the Stripe-owned fields. Price fields are left to
        the price migration service.
        """
        stripe_sub_id = sub_data["id"]
        state = RemoteSubscriptionState.from_stripe(sub_data)

        sub = self.subscriptions.get_by_stripe_id(stripe_sub_id)
        if sub:
            self.subscriptions.apply_remote_state(sub, state)
            logger.info(f"Synced subscription {stripe_sub_id} -> {state.status}")
            return

        sub = self._subscription_from_metadata(sub_data, state)
        if sub:
            logger.info(f"Created local subscription {sub.id} for {stripe_sub_id}")

    def _subscription_from_metadata(self, sub_data, state):
        # A local insert can be lost after Stripe accepted the subscription;
        # the metadata written at creation time lets the webhook rebuild it.
        metadata = sub_data.get("metadata") or {}
        user_id = metadata.get("user_id")
        pass_id = metadata.get("pass_id")
        if not user_id or not pass_id:
            logger.warning(
                f"Subscription {sub_data['id']} unknown locally and has no "
                f"user_id/pass_id metadata"
            )
            return None

        pass_ = self.session.get(Pass, pass_id)
        if not pass_ or not self.session.get(User, user_id):
            logger.warning(
                f"Subscription {sub_data['id']} references unknown user/pass "
                f"({user_id}/{pass_id})"
            )
            return None

        sub = Subscription(
            stripe_subscription_id=sub_data["id"],
            user_id=user_id,
            garage_id=metadata.get("garage_id") or pass_.garage_id,
            pass_id=pass_.id,
            stripe_price_id=extract_price_id(sub_data) or pass_.stripe_price_id,
            monthly_amount=pass_.monthly_amount,
            cancel_at_period_end=state.cancel_at_period_end,
            renewal_status="pending",
        )
        sub.set_status(state.status, canceled_at=state.canceled_at)
        sub.set_period(state.current_period_start, state.current_period_end)
        return self.subscriptions.add(sub)

    def _handle_subscription_deleted(self, sub_data):
        sub = self.subscriptions.get_by_stripe_id(sub_data["id"])
        if not sub:
            logger.warning(f"customer.subscription.deleted for unknown subscription {sub_data['id']}")
            return

        canceled_at = from_timestamp(
            sub_data.get("canceled_at") or sub_data.get("ended_at")
        )
        self.subscriptions.mark_canceled(sub, canceled_at)
        logger.info(f"Subscription {sub_data['id']} canceled")

    # ──────────────────────────────────────────────
    # Payments
    # ──────────────────────────────────────────────

    def _handle_payment_intent_succeeded(self, intent):
        self.payments.set_status_by_intent(intent["id"], "succeeded")

    def _handle_payment_intent_failed(self, intent):
        self.payments.set_status_by_intent(intent["id"], "failed")

    def _subscription_for_invoice(self, invoice):
        stripe_sub_id = object_id(invoice.get("subscription"))
        if not stripe_sub_id:
            # Newer API versions nest it under parent.subscription_details.
            parent = invoice.get("parent") or {}
            details = parent.get("subscription_details") or {}
            stripe_sub_id = object_id(details.get("subscription"))
        if not stripe_sub_id:
            return None, None
        return stripe_sub_id, self.subscriptions.get_by_stripe_id(stripe_sub_id)

    def _handle_invoice_paid(self, invoice):
        stripe_sub_id, sub = self._subscription_for_invoice(invoice)
        if not sub:
            logger.info(f"invoice.paid {invoice.get('id')}: no local subscription ({stripe_sub_id})")
            return

        intent_id = object_id(invoice.get("payment_intent"))
        if not intent_id:
            logger.info(f"invoice.paid {invoice.get('id')} has no payment intent, nothing to record")
            return

        transitions = invoice.get("status_transitions") or {}
        payment, created = self.payments.record_invoice_payment(
            sub,
            intent_id,
            amount_cents=invoice.get("amount_paid", 0),
            fee_cents=invoice.get("application_fee_amount") or 0,
            currency=invoice.get("currency"),
            payment_date=from_timestamp(transitions.get("paid_at")),
        )
        if created:
            logger.info(f"Recorded payment {intent_id} of {payment.amount} for subscription {sub.id}")

    def _handle_invoice_payment_failed(self, invoice):
        stripe_sub_id, sub = self._subscription_for_invoice(invoice)
        if not sub:
            return
        if sub.is_canceled:
            # canceled is terminal; a late failure notice does not revive it.
            logger.info(f"invoice.payment_failed for canceled subscription {stripe_sub_id}, ignoring")
            return
        sub.set_status("past_due")
        self.session.flush()
        logger.warning(f"Subscription {stripe_sub_id} is past due")


def _serialize_event(event):
    """Plain-JSON copy of the event for the ledger's audit payload."""
    return json.loads(json.dumps(event, default=str))
