"""Tests for the billing service and model-level invariants.

Covers:
- subscribe_user_to_pass (customer reuse/creation, metadata, local mirror)
- create_pass_product
- Subscription invariants (canceled_at, write-once Stripe id, renewal re-arm)
- Payment.from_cents net amount
- CLI commands
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from garage_billing.errors import InvalidStateError
from garage_billing.extensions import db
from garage_billing.models.garage import Pass
from garage_billing.models.payment import Payment
from garage_billing.models.subscription import Subscription
from garage_billing.models.user import User
from garage_billing.services.billing_service import BillingService


class TestSubscribeUserToPass:
    """Tests for BillingService.subscribe_user_to_pass()."""

    def test_creates_remote_and_local_subscription(self, db_session, gateway,
                                                   seed_data, stripe_sub):
        gateway.create_customer.return_value = {"id": "cus_admin"}
        gateway.create_subscription.return_value = stripe_sub("sub_new")
        service = BillingService(db_session, gateway)

        sub = service.subscribe_user_to_pass(seed_data["admin_id"], seed_data["pass_id"])

        assert sub.stripe_subscription_id == "sub_new"
        assert sub.monthly_amount == Decimal("150.00")
        assert sub.status == "active"
        assert sub.current_period_end is not None
        assert db.session.get(User, seed_data["admin_id"]).stripe_customer_id == "cus_admin"

        kwargs = gateway.create_subscription.call_args.kwargs
        assert kwargs["customer"] == "cus_admin"
        assert kwargs["items"] == [{"price": "price_150"}]
        assert kwargs["metadata"] == {
            "user_id": seed_data["admin_id"],
            "pass_id": seed_data["pass_id"],
            "garage_id": seed_data["garage_id"],
        }

    def test_existing_customer_is_reused(self, db_session, gateway, seed_data,
                                         stripe_sub):
        # Cancel the member's seeded subscription so they may subscribe again.
        existing = db.session.get(Subscription, seed_data["subscription_id"])
        existing.set_status("canceled")
        db.session.commit()
        gateway.create_subscription.return_value = stripe_sub("sub_again")
        service = BillingService(db_session, gateway)

        service.subscribe_user_to_pass(seed_data["member_id"], seed_data["pass_id"])

        gateway.create_customer.assert_not_called()
        assert gateway.create_subscription.call_args.kwargs["customer"] == "cus_member"

    def test_duplicate_active_subscription_rejected(self, db_session, gateway, seed_data):
        service = BillingService(db_session, gateway)

        with pytest.raises(InvalidStateError):
            service.subscribe_user_to_pass(seed_data["member_id"], seed_data["pass_id"])
        gateway.create_subscription.assert_not_called()


class TestCreatePassProduct:
    """Tests for BillingService.create_pass_product()."""

    def test_creates_product_and_price(self, db_session, gateway, seed_data):
        pass_ = Pass(
            garage_id=seed_data["garage_id"],
            name="Nights & Weekends",
            monthly_amount=Decimal("89.50"),
        )
        db.session.add(pass_)
        db.session.commit()
        gateway.create_product.return_value = {"id": "prod_nights"}
        gateway.create_monthly_price.return_value = {"id": "price_nights"}

        BillingService(db_session, gateway).create_pass_product(pass_.id)

        refreshed = db.session.get(Pass, pass_.id)
        assert refreshed.stripe_product_id == "prod_nights"
        assert refreshed.stripe_price_id == "price_nights"
        args = gateway.create_monthly_price.call_args
        assert args.args[0] == "prod_nights"
        assert args.args[1] == Decimal("89.50")

    def test_rejects_pass_with_product(self, db_session, gateway, seed_data):
        with pytest.raises(InvalidStateError):
            BillingService(db_session, gateway).create_pass_product(seed_data["pass_id"])


class TestModelInvariants:
    """Model-level guarantees that every write path relies on."""

    def test_canceled_at_tracks_status(self, seed_data):
        sub = db.session.get(Subscription, seed_data["subscription_id"])

        sub.set_status("canceled")
        assert sub.canceled_at is not None

        stamp = datetime(2026, 5, 1, tzinfo=timezone.utc)
        sub.set_status("canceled", canceled_at=stamp)
        assert sub.canceled_at == stamp

        sub.set_status("past_due")
        assert sub.canceled_at is None

    def test_stripe_subscription_id_is_write_once(self, seed_data):
        sub = db.session.get(Subscription, seed_data["subscription_id"])

        sub.stripe_subscription_id = "sub_test_1"  # same value is fine
        with pytest.raises(ValueError):
            sub.stripe_subscription_id = "sub_other"

    def test_invalid_status_rejected(self, seed_data):
        sub = db.session.get(Subscription, seed_data["subscription_id"])
        with pytest.raises(ValueError):
            sub.set_status("paused")

    def test_period_move_rearms_renewal(self, seed_data):
        sub = db.session.get(Subscription, seed_data["subscription_id"])
        sub.renewal_status = "completed"
        db.session.commit()

        new_end = datetime.now(timezone.utc) + timedelta(days=45)
        sub.set_period(datetime.now(timezone.utc), new_end)

        assert sub.renewal_status == "pending"
        assert sub.next_renewal_date == new_end

    def test_payment_net_amount(self):
        payment = Payment.from_cents(15000, 465)
        assert payment.amount == Decimal("150.00")
        assert payment.stripe_fee == Decimal("4.65")
        assert payment.net_amount == Decimal("145.35")
        assert payment.net_amount == payment.amount - payment.stripe_fee


class TestCli:
    """Tests for the flask CLI commands."""

    def test_create_admin(self, app):
        runner = app.test_cli_runner()
        result = runner.invoke(
            args=["create-admin", "--email", "Boss@Garage.test", "--password", "pw12345"]
        )

        assert result.exit_code == 0
        user = User.query.filter_by(email="boss@garage.test").first()
        assert user.role == "super_admin"
        assert user.is_admin

    def test_migrate_pass_subscriptions_dry_run(self, app, gateway, seed_data):
        runner = app.test_cli_runner()
        result = runner.invoke(
            args=["migrate-pass-subscriptions", seed_data["pass_id"], "--dry-run"]
        )

        assert result.exit_code == 0
        assert "0 of 1 subscription(s) would migrate" in result.output
        gateway.replace_subscription_price.assert_not_called()

    def test_process_renewals(self, app, gateway, make_subscription, stripe_sub):
        now = datetime.now(timezone.utc)
        make_subscription(current_period_end=now + timedelta(days=1))
        gateway.retrieve_subscription.side_effect = lambda sid: stripe_sub(sid)

        result = app.test_cli_runner().invoke(args=["process-renewals", "--days-ahead", "2"])

        assert result.exit_code == 0
        assert "Processed 1 renewal(s), 0 failed." in result.output
