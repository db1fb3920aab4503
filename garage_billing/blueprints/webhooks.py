"""Webhooks blueprint — /api/webhooks/*

Receives Stripe webhook events. CSRF-exempt, rate limited.
Raw body is required for signature verification.
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from garage_billing.extensions import db, limiter
from garage_billing.services.gateway import get_gateway
from garage_billing.services.webhook_dispatcher import WebhookDispatcher

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/api/webhooks")


def _webhook_rate_limit():
    return current_app.config.get("WEBHOOK_RATE_LIMIT", "300 per minute")


@webhooks_bp.route("/stripe", methods=["POST"])
@limiter.limit(_webhook_rate_limit)
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET; failures never reach the ledger
    3. Dispatch (idempotent via the webhook_events ledger)
    4. 200 to acknowledge, 500 so Stripe redelivers on a handler error

    CSRF is exempted for this blueprint in create_app().
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    # --- Verify signature ---
    try:
        event = get_gateway().construct_event(payload, sig_header)
    except Exception as e:
        logger.warning(f"Webhook signature verification failed: {e}")
        return jsonify({"error": "Invalid signature"}), 400

    # --- Process event (idempotent) ---
    try:
        status = WebhookDispatcher(db.session).dispatch(event)
    except Exception as e:
        logger.error(f"Webhook processing failed: {e}")
        return jsonify({"error": "Webhook processing failed"}), 500

    return jsonify({"status": status, "event_id": event["id"]}), 200


@webhooks_bp.route("/stripe/test", methods=["GET"])
def stripe_webhook_test():
    """Reachability probe for the webhook endpoint."""
    return jsonify({
        "status": "ok",
        "message": "Stripe webhook endpoint is reachable",
        "webhook_secret_configured": bool(current_app.config.get("STRIPE_WEBHOOK_SECRET")),
    }), 200
