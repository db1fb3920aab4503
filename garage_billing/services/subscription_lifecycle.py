"""Subscription lifecycle — cancellation, reactivation and renewal.

Responsible for:
- Cancel at period end / reactivate (the cancel_at_period_end flag)
- Immediate (hard) cancellation
- Manual renewal sync from Stripe
- The due-for-renewal batch scan

Every mutating operation is a two-phase, best-effort sequence: the Stripe
call goes first, then the local write. If the local commit fails after
Stripe accepted the change the two systems disagree until the next
customer.subscription.* webhook overwrites the local row.
"""

import logging
from datetime import datetime, timezone

from garage_billing.errors import InvalidStateError
from garage_billing.services.stores import RemoteSubscriptionState, SubscriptionStore

logger = logging.getLogger(__name__)

DEFAULT_DAYS_AHEAD = 7


class SubscriptionLifecycleService:
    def __init__(self, session, gateway):
        self.session = session
        self.gateway = gateway
        self.subscriptions = SubscriptionStore(session)

    # ──────────────────────────────────────────────
    # Cancellation
    # ──────────────────────────────────────────────

    def cancel_at_period_end(self, subscription_id):
        """Flag a subscription to end when its current period ends.

        Calling it on an already flagged subscription is a successful no-op
        that makes no Stripe call. Status stays as-is until Stripe reports
        the cancellation.
        """
        sub = self.subscriptions.require(subscription_id)
        if sub.is_canceled:
            raise InvalidStateError("Subscription is already canceled")

        if sub.cancel_at_period_end:
            logger.info(f"Subscription {sub.id} already scheduled for cancellation")
            return _result(
                sub,
                "scheduled_for_cancellation",
                "Subscription is already scheduled for cancellation",
            )

        _require_remote_id(sub)
        self.gateway.set_cancel_at_period_end(sub.stripe_subscription_id, True)
        self.subscriptions.set_cancel_flag(sub, True)
        self.session.commit()

        logger.info(f"Subscription {sub.id} scheduled for cancellation at period end")
        return _result(
            sub,
            "scheduled_for_cancellation",
            "Subscription will be canceled at the end of the current billing period",
        )

    def reactivate(self, subscription_id):
        """Undo a scheduled cancellation."""
        sub = self.subscriptions.require(subscription_id)
        if sub.is_canceled:
            raise InvalidStateError("Canceled subscriptions cannot be reactivated")
        if not sub.cancel_at_period_end:
            raise InvalidStateError("Subscription is not scheduled for cancellation")

        _require_remote_id(sub)
        self.gateway.set_cancel_at_period_end(sub.stripe_subscription_id, False)
        self.subscriptions.set_cancel_flag(sub, False)
        self.session.commit()

        logger.info(f"Subscription {sub.id} reactivated")
        return _result(sub, "reactivated", "Subscription reactivated")

    def cancel_immediately(self, subscription_id):
        sub = self.subscriptions.require(subscription_id)
        if sub.is_canceled:
            raise InvalidStateError("Subscription is already canceled")

        _require_remote_id(sub)
        self.gateway.cancel_subscription(sub.stripe_subscription_id)
        self.subscriptions.mark_canceled(sub)
        self.session.commit()

        logger.info(f"Subscription {sub.id} canceled immediately")
        return _result(sub, "canceled", "Subscription canceled")

    # ──────────────────────────────────────────────
    # Renewal
    # ──────────────────────────────────────────────

    def renew(self, subscription_id):
        """Pull status and period from Stripe and record a completed renewal.

        Raises on any failure; the batch scan below is the variant that
        records failures instead.
        """
        sub = self.subscriptions.require(subscription_id)
        result = self._sync_renewal(sub)
        self.session.commit()
        return result

    def process_due_renewals(self, days_ahead=DEFAULT_DAYS_AHEAD, now=None):
        """Renew every subscription whose period ends within days_ahead days.

        Items are processed one by one, each in its own commit. A failure
        marks that subscription's renewal "failed" and moves on.
        """
        due = self.subscriptions.find_expiring(days_ahead, now=now)
        logger.info(f"Processing {len(due)} subscription renewal(s) due within {days_ahead} days")

        # Plain ids: a rollback expires every loaded instance.
        due_ids = [sub.id for sub in due]
        results = []
        for sub_id in due_ids:
            sub = self.subscriptions.get(sub_id)
            self.subscriptions.mark_renewal(sub, "processing")
            self.session.commit()

            try:
                result = self._sync_renewal(sub)
                self.session.commit()
                results.append(result)
            except Exception as e:
                self.session.rollback()
                logger.warning(f"Renewal failed for subscription {sub_id}: {e}")
                sub = self.subscriptions.get(sub_id)
                self.subscriptions.mark_renewal(sub, "failed")
                self.session.commit()
                results.append({
                    "subscription_id": sub_id,
                    "status": "failed",
                    "error": str(e),
                })

        return results

    def _sync_renewal(self, sub):
        _require_remote_id(sub)
        remote = self.gateway.retrieve_subscription(sub.stripe_subscription_id)
        state = RemoteSubscriptionState.from_stripe(remote)
        self.subscriptions.apply_renewal(
            sub, state, attempted_at=datetime.now(timezone.utc)
        )

        if state.status == "canceled":
            logger.info(f"Subscription {sub.id} is canceled in Stripe; not renewed")
            return _result(sub, "cancelled", "Subscription is canceled in Stripe")

        logger.info(f"Subscription {sub.id} renewed through {state.current_period_end}")
        return _result(sub, "renewed", "Subscription renewed")


def _require_remote_id(sub):
    if not sub.stripe_subscription_id:
        raise InvalidStateError("Subscription has no Stripe subscription")


def _result(sub, status, message):
    return {
        "subscription_id": sub.id,
        "user_id": sub.user_id,
        "status": status,
        "subscription_status": sub.status,
        "cancel_at_period_end": sub.cancel_at_period_end,
        "current_period_end": (
            sub.current_period_end.isoformat() if sub.current_period_end else None
        ),
        "message": message,
    }
