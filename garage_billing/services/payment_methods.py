"""Payment methods — attach, detach and choose a user's default card.

Payment methods are created client-side (Stripe Elements) and only
attached to the customer here. The local table mirrors display fields.
"""

import logging

from garage_billing.errors import InvalidStateError, NotFoundError
from garage_billing.models.payment import PaymentMethod
from garage_billing.models.user import User

logger = logging.getLogger(__name__)


class PaymentMethodService:
    def __init__(self, session, gateway):
        self.session = session
        self.gateway = gateway

    def _user_with_customer(self, user_id):
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        if not user.stripe_customer_id:
            raise InvalidStateError("User does not have a Stripe customer")
        return user

    def _require(self, user_id, payment_method_id):
        pm = (
            self.session.query(PaymentMethod)
            .filter_by(id=payment_method_id, user_id=user_id)
            .first()
        )
        if not pm:
            raise NotFoundError("Payment method not found")
        return pm

    def _clear_defaults(self, user_id):
        self.session.query(PaymentMethod).filter_by(user_id=user_id).update(
            {PaymentMethod.is_default: False}, synchronize_session="fetch"
        )

    def list_payment_methods(self, user_id):
        return (
            self.session.query(PaymentMethod)
            .filter_by(user_id=user_id)
            .order_by(PaymentMethod.is_default.desc(), PaymentMethod.created_at)
            .all()
        )

    def add_payment_method(self, user_id, stripe_payment_method_id,
                           set_as_default=False):
        user = self._user_with_customer(user_id)

        pm_data = self.gateway.attach_payment_method(
            stripe_payment_method_id, user.stripe_customer_id
        )
        if set_as_default:
            self.gateway.set_default_payment_method(
                user.stripe_customer_id, pm_data["id"]
            )
            self._clear_defaults(user.id)

        # payment_method.attached may have beaten us here.
        pm = (
            self.session.query(PaymentMethod)
            .filter_by(stripe_payment_method_id=pm_data["id"])
            .first()
        )
        if pm is None:
            pm = PaymentMethod(
                user_id=user.id,
                stripe_payment_method_id=pm_data["id"],
                type=pm_data.get("type", "card"),
            )
            self.session.add(pm)
        pm.is_default = bool(set_as_default)
        pm.apply_card(pm_data)
        self.session.commit()

        logger.info(f"Attached payment method {pm_data['id']} to user {user.id}")
        return pm

    def remove_payment_method(self, user_id, payment_method_id):
        pm = self._require(user_id, payment_method_id)
        self.gateway.detach_payment_method(pm.stripe_payment_method_id)
        self.session.delete(pm)
        self.session.commit()
        logger.info(f"Detached payment method {pm.stripe_payment_method_id} from user {user_id}")

    def set_default_payment_method(self, user_id, payment_method_id):
        user = self._user_with_customer(user_id)
        pm = self._require(user.id, payment_method_id)

        self.gateway.set_default_payment_method(
            user.stripe_customer_id, pm.stripe_payment_method_id
        )
        self._clear_defaults(user.id)
        pm.is_default = True
        self.session.commit()
        return pm
