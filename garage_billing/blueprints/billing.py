"""Billing blueprint — /api/billing/*

The logged-in user's payment methods.

Route Map:
  GET    /api/billing/payment-methods            — List
  POST   /api/billing/payment-methods            — Attach (pm created client-side)
  DELETE /api/billing/payment-methods/<id>       — Detach
  POST   /api/billing/payment-methods/<id>/default — Make default
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required

from garage_billing.extensions import db
from garage_billing.services.gateway import get_gateway
from garage_billing.services.payment_methods import PaymentMethodService

billing_bp = Blueprint("billing", __name__, url_prefix="/api/billing")


def _payment_methods():
    return PaymentMethodService(db.session, get_gateway())


@billing_bp.route("/payment-methods", methods=["GET"])
@login_required
def list_payment_methods():
    methods = _payment_methods().list_payment_methods(current_user.id)
    return jsonify({"payment_methods": [pm.to_dict() for pm in methods]})


@billing_bp.route("/payment-methods", methods=["POST"])
@login_required
def add_payment_method():
    data = request.get_json(silent=True) or {}
    stripe_pm_id = data.get("payment_method_id")
    if not stripe_pm_id:
        return jsonify({"error": "payment_method_id is required"}), 400

    pm = _payment_methods().add_payment_method(
        current_user.id,
        stripe_pm_id,
        set_as_default=bool(data.get("set_as_default", False)),
    )
    return jsonify({"success": True, "payment_method": pm.to_dict()}), 201


@billing_bp.route("/payment-methods/<payment_method_id>", methods=["DELETE"])
@login_required
def remove_payment_method(payment_method_id):
    _payment_methods().remove_payment_method(current_user.id, payment_method_id)
    return jsonify({"success": True})


@billing_bp.route("/payment-methods/<payment_method_id>/default", methods=["POST"])
@login_required
def set_default_payment_method(payment_method_id):
    pm = _payment_methods().set_default_payment_method(
        current_user.id, payment_method_id
    )
    return jsonify({"success": True, "payment_method": pm.to_dict()})
