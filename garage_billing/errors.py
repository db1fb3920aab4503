"""Billing error types.

Controllers raise these; blueprints map them to HTTP status codes.
Stripe failures are not wrapped; they propagate as stripe.StripeError,
meaning the remote state is unknown.
"""


class BillingError(Exception):
    """Base class for billing-domain rejections."""

    status_code = 400


class NotFoundError(BillingError):
    """A referenced subscription, pass, user or payment method is absent."""

    status_code = 404


class InvalidStateError(BillingError):
    """The requested transition is not allowed from the current state."""

    status_code = 409
