"""Subscriptions blueprint — /api/subscriptions/*

Admin JSON API over the subscription lifecycle.

Route Map:
  POST /api/subscriptions                          — Subscribe a user to a pass
  GET  /api/subscriptions/<id>                     — Subscription detail
  POST /api/subscriptions/<id>/cancel              — Cancel at period end
  POST /api/subscriptions/<id>/reactivate          — Undo a scheduled cancel
  POST /api/subscriptions/<id>/cancel-immediately  — Hard cancel
  POST /api/subscriptions/<id>/renew               — Sync renewal from Stripe
  POST /api/subscriptions/process-renewals         — Batch renewal scan

BillingError and stripe.StripeError are turned into JSON responses by the
app-level error handlers.
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user

from garage_billing.decorators import admin_required
from garage_billing.extensions import db
from garage_billing.services.billing_service import BillingService
from garage_billing.services.gateway import get_gateway
from garage_billing.services.stores import SubscriptionStore
from garage_billing.services.subscription_lifecycle import SubscriptionLifecycleService

logger = logging.getLogger(__name__)

subscriptions_bp = Blueprint(
    "subscriptions", __name__, url_prefix="/api/subscriptions"
)


def _lifecycle():
    return SubscriptionLifecycleService(db.session, get_gateway())


@subscriptions_bp.route("", methods=["POST"])
@admin_required
def subscribe():
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id")
    pass_id = data.get("pass_id")
    if not user_id or not pass_id:
        return jsonify({"error": "user_id and pass_id are required"}), 400

    sub = BillingService(db.session, get_gateway()).subscribe_user_to_pass(
        user_id, pass_id, payment_method_id=data.get("payment_method_id")
    )
    return jsonify({"success": True, "subscription": sub.to_dict()}), 201


@subscriptions_bp.route("/<subscription_id>", methods=["GET"])
@admin_required
def get_subscription(subscription_id):
    sub = SubscriptionStore(db.session).require(subscription_id)
    return jsonify({"subscription": sub.to_dict()})


@subscriptions_bp.route("/<subscription_id>/cancel", methods=["POST"])
@admin_required
def cancel(subscription_id):
    result = _lifecycle().cancel_at_period_end(subscription_id)
    logger.info(f"{current_user.email} requested cancellation of {subscription_id}")
    return jsonify({"success": True, **result})


@subscriptions_bp.route("/<subscription_id>/reactivate", methods=["POST"])
@admin_required
def reactivate(subscription_id):
    result = _lifecycle().reactivate(subscription_id)
    return jsonify({"success": True, **result})


@subscriptions_bp.route("/<subscription_id>/cancel-immediately", methods=["POST"])
@admin_required
def cancel_immediately(subscription_id):
    result = _lifecycle().cancel_immediately(subscription_id)
    logger.info(f"{current_user.email} canceled {subscription_id} immediately")
    return jsonify({"success": True, **result})


@subscriptions_bp.route("/<subscription_id>/renew", methods=["POST"])
@admin_required
def renew(subscription_id):
    result = _lifecycle().renew(subscription_id)
    return jsonify({"success": True, **result})


@subscriptions_bp.route("/process-renewals", methods=["POST"])
@admin_required
def process_renewals():
    default = current_app.config.get("RENEWAL_DAYS_AHEAD", 7)
    days_ahead = request.args.get("days_ahead", default, type=int)
    if days_ahead is None or days_ahead < 1:
        return jsonify({"error": "days_ahead must be a positive integer"}), 400

    results = _lifecycle().process_due_renewals(days_ahead=days_ahead)
    return jsonify({
        "success": True,
        "days_ahead": days_ahead,
        "processed": len(results),
        "renewed": sum(1 for r in results if r["status"] == "renewed"),
        "failed": sum(1 for r in results if r["status"] == "failed"),
        "cancelled": sum(1 for r in results if r["status"] == "cancelled"),
        "results": results,
    })
