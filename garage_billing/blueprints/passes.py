"""Passes blueprint — /api/passes/*

Admin JSON API for pass pricing.

Route Map:
  POST /api/passes/<id>/stripe-product          — Create Stripe product + price
  PUT  /api/passes/<id>/price                   — Change price (+ migrate)
  GET  /api/passes/<id>/price-history           — Price changes, oldest first
  GET  /api/passes/<id>/migration-preview       — Dry run of a migration
  POST /api/passes/<id>/migrate-subscriptions   — Migrate all subscriptions
"""

import logging

from flask import Blueprint, jsonify, request
from flask_login import current_user

from garage_billing.decorators import admin_required
from garage_billing.extensions import db
from garage_billing.services.billing_service import BillingService
from garage_billing.services.gateway import get_gateway
from garage_billing.services.price_migration import PriceMigrationService

logger = logging.getLogger(__name__)

passes_bp = Blueprint("passes", __name__, url_prefix="/api/passes")


def _pricing():
    return PriceMigrationService(db.session, get_gateway())


@passes_bp.route("/<pass_id>/stripe-product", methods=["POST"])
@admin_required
def create_stripe_product(pass_id):
    pass_ = BillingService(db.session, get_gateway()).create_pass_product(pass_id)
    return jsonify({
        "success": True,
        "pass_id": pass_.id,
        "stripe_product_id": pass_.stripe_product_id,
        "stripe_price_id": pass_.stripe_price_id,
    }), 201


@passes_bp.route("/<pass_id>/price", methods=["PUT"])
@admin_required
def update_price(pass_id):
    """Change a pass's monthly price.

    Body: {"new_price": "200.00", "change_reason": "...", "skip_migration": false}
    """
    data = request.get_json(silent=True) or {}
    if data.get("new_price") in (None, ""):
        return jsonify({"error": "new_price is required"}), 400

    try:
        result = _pricing().update_pass_price(
            pass_id,
            data["new_price"],
            changed_by=current_user.email,
            change_reason=data.get("change_reason"),
            skip_migration=bool(data.get("skip_migration", False)),
        )
    except ValueError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"success": True, **result})


@passes_bp.route("/<pass_id>/price-history", methods=["GET"])
@admin_required
def price_history(pass_id):
    entries = _pricing().get_price_history(pass_id)
    return jsonify({
        "pass_id": pass_id,
        "history": [entry.to_dict() for entry in entries],
    })


@passes_bp.route("/<pass_id>/migration-preview", methods=["GET"])
@admin_required
def migration_preview(pass_id):
    return jsonify(_pricing().preview_price_migration(pass_id))


@passes_bp.route("/<pass_id>/migrate-subscriptions", methods=["POST"])
@admin_required
def migrate_subscriptions(pass_id):
    summary = _pricing().migrate_all_subscriptions_for_pass(pass_id)
    logger.info(
        f"{current_user.email} migrated pass {pass_id}: "
        f"{summary['migrated']} migrated, {summary['failed']} failed"
    )
    return jsonify({"success": summary["failed"] == 0, **summary})
