"""Tests for the subscription lifecycle service.

Covers:
- cancel_at_period_end (idempotent, one Stripe call, status untouched)
- reactivate / cancel_immediately state checks
- renew (overwrite from Stripe, canceled remote stamps canceled_at)
- process_due_renewals window selection and per-item failure isolation
- Renewal against StripeObjects returned by the SDK
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest
import stripe

from garage_billing.errors import InvalidStateError, NotFoundError
from garage_billing.extensions import db
from garage_billing.models.subscription import Subscription
from garage_billing.services.gateway import StripeGateway
from garage_billing.services.subscription_lifecycle import SubscriptionLifecycleService


def _naive(value):
    return value.replace(tzinfo=None) if value is not None else None


def _sub(sub_id):
    return db.session.get(Subscription, sub_id)


class TestCancelAtPeriodEnd:
    """Tests for cancel_at_period_end()."""

    def test_schedules_cancellation(self, db_session, gateway, seed_data):
        service = SubscriptionLifecycleService(db_session, gateway)

        result = service.cancel_at_period_end(seed_data["subscription_id"])

        assert result["status"] == "scheduled_for_cancellation"
        assert result["cancel_at_period_end"] is True
        gateway.set_cancel_at_period_end.assert_called_once_with("sub_test_1", True)

        sub = _sub(seed_data["subscription_id"])
        assert sub.cancel_at_period_end is True
        assert sub.status == "active"
        assert sub.canceled_at is None

    def test_second_call_is_a_no_op(self, db_session, gateway, seed_data):
        """Calling twice -> same state, exactly one Stripe call."""
        service = SubscriptionLifecycleService(db_session, gateway)

        first = service.cancel_at_period_end(seed_data["subscription_id"])
        second = service.cancel_at_period_end(seed_data["subscription_id"])

        assert gateway.set_cancel_at_period_end.call_count == 1
        assert second["status"] == first["status"] == "scheduled_for_cancellation"
        assert second["cancel_at_period_end"] is True
        assert "already" in second["message"]
        assert _sub(seed_data["subscription_id"]).status == "active"

    def test_rejects_canceled(self, db_session, gateway, make_subscription):
        sub_id = make_subscription(status="canceled")
        service = SubscriptionLifecycleService(db_session, gateway)

        with pytest.raises(InvalidStateError):
            service.cancel_at_period_end(sub_id)
        gateway.set_cancel_at_period_end.assert_not_called()

    def test_unknown_subscription(self, db_session, gateway, seed_data):
        service = SubscriptionLifecycleService(db_session, gateway)

        with pytest.raises(NotFoundError):
            service.cancel_at_period_end("does-not-exist")

    def test_stripe_failure_leaves_local_row_alone(self, db_session, gateway, seed_data):
        gateway.set_cancel_at_period_end.side_effect = stripe.APIConnectionError("network down")
        service = SubscriptionLifecycleService(db_session, gateway)

        with pytest.raises(stripe.StripeError):
            service.cancel_at_period_end(seed_data["subscription_id"])

        db_session.rollback()
        assert _sub(seed_data["subscription_id"]).cancel_at_period_end is False


class TestReactivateAndCancelImmediately:
    """Tests for reactivate() and cancel_immediately()."""

    def test_reactivate_clears_flag(self, db_session, gateway, make_subscription):
        sub_id = make_subscription(cancel_at_period_end=True)
        service = SubscriptionLifecycleService(db_session, gateway)

        result = service.reactivate(sub_id)

        assert result["status"] == "reactivated"
        assert _sub(sub_id).cancel_at_period_end is False
        gateway.set_cancel_at_period_end.assert_called_once_with("sub_extra_1", False)

    def test_reactivate_requires_flag(self, db_session, gateway, seed_data):
        service = SubscriptionLifecycleService(db_session, gateway)

        with pytest.raises(InvalidStateError):
            service.reactivate(seed_data["subscription_id"])

    def test_reactivate_rejects_canceled(self, db_session, gateway, make_subscription):
        sub_id = make_subscription(status="canceled", cancel_at_period_end=True)
        service = SubscriptionLifecycleService(db_session, gateway)

        with pytest.raises(InvalidStateError):
            service.reactivate(sub_id)

    def test_cancel_immediately(self, db_session, gateway, make_subscription):
        sub_id = make_subscription(cancel_at_period_end=True)
        service = SubscriptionLifecycleService(db_session, gateway)

        result = service.cancel_immediately(sub_id)

        assert result["status"] == "canceled"
        gateway.cancel_subscription.assert_called_once_with("sub_extra_1")
        sub = _sub(sub_id)
        assert sub.status == "canceled"
        assert sub.canceled_at is not None
        assert sub.cancel_at_period_end is False

    def test_cancel_immediately_rejects_canceled(self, db_session, gateway,
                                                 make_subscription):
        sub_id = make_subscription(status="canceled")
        service = SubscriptionLifecycleService(db_session, gateway)

        with pytest.raises(InvalidStateError):
            service.cancel_immediately(sub_id)
        gateway.cancel_subscription.assert_not_called()


class TestRenew:
    """Tests for renew()."""

    def test_renew_overwrites_period(self, db_session, gateway, seed_data, stripe_sub):
        new_end = datetime.now(timezone.utc) + timedelta(days=40)
        gateway.retrieve_subscription.return_value = stripe_sub(
            "sub_test_1", period_end=new_end
        )
        service = SubscriptionLifecycleService(db_session, gateway)

        result = service.renew(seed_data["subscription_id"])

        assert result["status"] == "renewed"
        sub = _sub(seed_data["subscription_id"])
        expected_end = _naive(datetime.fromtimestamp(int(new_end.timestamp()), tz=timezone.utc))
        assert _naive(sub.current_period_end) == expected_end
        assert _naive(sub.next_renewal_date) == expected_end
        assert sub.renewal_status == "completed"
        assert sub.renewal_attempted_at is not None

    def test_renew_remote_canceled_stamps_canceled_at(self, db_session, gateway,
                                                      seed_data, stripe_sub):
        gateway.retrieve_subscription.return_value = stripe_sub(
            "sub_test_1", status="canceled", canceled_at=1798761600
        )
        service = SubscriptionLifecycleService(db_session, gateway)

        result = service.renew(seed_data["subscription_id"])

        assert result["status"] == "cancelled"
        sub = _sub(seed_data["subscription_id"])
        assert sub.status == "canceled"
        assert _naive(sub.canceled_at) == datetime(2027, 1, 1, 0, 0)

    def test_renew_requires_stripe_subscription(self, db_session, gateway,
                                                make_subscription):
        sub_id = make_subscription(stripe_subscription_id=None)
        service = SubscriptionLifecycleService(db_session, gateway)

        with pytest.raises(InvalidStateError):
            service.renew(sub_id)


class TestProcessDueRenewals:
    """Tests for process_due_renewals()."""

    def test_selects_only_due_active_subscriptions(self, db_session, gateway,
                                                   seed_data, make_subscription,
                                                   stripe_sub):
        now = datetime.now(timezone.utc)
        due = make_subscription(current_period_end=now + timedelta(days=3))
        make_subscription(current_period_end=now + timedelta(days=20))  # too far
        make_subscription(current_period_end=now - timedelta(days=1))  # already past
        make_subscription(current_period_end=now + timedelta(days=2),
                          cancel_at_period_end=True)
        make_subscription(current_period_end=now + timedelta(days=2),
                          status="past_due")
        make_subscription(current_period_end=now + timedelta(days=2),
                          renewal_status="processing")

        gateway.retrieve_subscription.side_effect = lambda sid: stripe_sub(
            sid, period_end=now + timedelta(days=33)
        )
        service = SubscriptionLifecycleService(db_session, gateway)

        results = service.process_due_renewals(days_ahead=7)

        assert [r["subscription_id"] for r in results] == [due]
        assert results[0]["status"] == "renewed"
        assert _sub(due).renewal_status == "completed"

    def test_failure_is_isolated_per_subscription(self, db_session, gateway,
                                                  seed_data, make_subscription,
                                                  stripe_sub):
        now = datetime.now(timezone.utc)
        ids = [
            make_subscription(current_period_end=now + timedelta(days=d))
            for d in (1, 2, 3)
        ]
        failing = _sub(ids[1]).stripe_subscription_id

        def retrieve(sid):
            if sid == failing:
                raise stripe.APIConnectionError("timeout")
            return stripe_sub(sid, period_end=now + timedelta(days=35))

        gateway.retrieve_subscription.side_effect = retrieve
        service = SubscriptionLifecycleService(db_session, gateway)

        results = service.process_due_renewals(days_ahead=7)
        by_id = {r["subscription_id"]: r for r in results}

        assert by_id[ids[0]]["status"] == "renewed"
        assert by_id[ids[2]]["status"] == "renewed"
        assert by_id[ids[1]]["status"] == "failed"
        assert "timeout" in by_id[ids[1]]["error"]

        assert _sub(ids[0]).renewal_status == "completed"
        assert _sub(ids[1]).renewal_status == "failed"
        assert _sub(ids[2]).renewal_status == "completed"

    def test_remote_cancellation_reported(self, db_session, gateway, seed_data,
                                          make_subscription, stripe_sub):
        now = datetime.now(timezone.utc)
        sub_id = make_subscription(current_period_end=now + timedelta(days=1))
        gateway.retrieve_subscription.side_effect = lambda sid: stripe_sub(
            sid, status="canceled", canceled_at=int(now.timestamp())
        )
        service = SubscriptionLifecycleService(db_session, gateway)

        results = service.process_due_renewals(days_ahead=7)

        assert results[0]["status"] == "cancelled"
        sub = _sub(sub_id)
        assert sub.status == "canceled"
        assert sub.canceled_at is not None


class TestSdkSubscriptions:
    """Renewal through a real gateway fed StripeObjects, not dicts."""

    RETRIEVE = "garage_billing.services.gateway.stripe.Subscription.retrieve"

    def test_renew_reads_stripe_subscription(self, app, db_session, seed_data, stripe_sub):
        new_end = datetime.now(timezone.utc) + timedelta(days=38)
        remote = stripe.Subscription.construct_from(
            stripe_sub("sub_test_1", period_end=new_end), "sk_test_fake"
        )
        service = SubscriptionLifecycleService(
            db_session, StripeGateway.from_config(app.config)
        )

        with patch(self.RETRIEVE, return_value=remote):
            result = service.renew(seed_data["subscription_id"])

        assert result["status"] == "renewed"
        sub = _sub(seed_data["subscription_id"])
        assert _naive(sub.current_period_end) == _naive(
            datetime.fromtimestamp(int(new_end.timestamp()), tz=timezone.utc)
        )
        assert sub.renewal_status == "completed"

    def test_batch_renewal_reads_stripe_subscriptions(self, app, db_session, seed_data,
                                                      make_subscription, stripe_sub):
        now = datetime.now(timezone.utc)
        due = make_subscription(current_period_end=now + timedelta(days=2))
        service = SubscriptionLifecycleService(
            db_session, StripeGateway.from_config(app.config)
        )

        def retrieve(sub_id, api_key=None):
            return stripe.Subscription.construct_from(
                stripe_sub(sub_id, period_end=now + timedelta(days=32)), api_key
            )

        with patch(self.RETRIEVE, side_effect=retrieve):
            results = service.process_due_renewals(days_ahead=7)

        assert [r["status"] for r in results] == ["renewed"]
        assert _sub(due).renewal_status == "completed"
