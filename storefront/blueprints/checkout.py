"""Checkout blueprint — /api/checkout/*

Routes:
- POST /api/checkout                      — create a Checkout Session for the cart
- GET  /api/checkout/sessions/<id>        — payment status for the success page

Callers authenticate with the identity service's bearer token.
"""

import logging

from flask import Blueprint, current_app, jsonify, request
from flask_login import current_user, login_required

from storefront.errors import ValidationError
from storefront.extensions import limiter
from storefront.services.checkout_service import create_checkout_session
from storefront.services.purchase_service import (
    get_payment_for_session,
    get_session_purchases,
)

logger = logging.getLogger(__name__)

checkout_bp = Blueprint("checkout", __name__, url_prefix="/api/checkout")


def _requested_product_ids(data):
    """Pull product ids from a checkout body.

    Accepts {"productIds": [...]} or the legacy {"productId": "..."}.
    Any other field (prices included) is ignored.
    """
    if "productIds" in data:
        return data["productIds"]
    if data.get("productId"):
        return [data["productId"]]
    raise ValidationError("productIds is required")


# ──────────────────────────────────────────────
# POST /api/checkout
# ──────────────────────────────────────────────

@checkout_bp.route("", methods=["POST"])
@limiter.limit(lambda: current_app.config["CHECKOUT_RATE_LIMIT"])
@login_required
def create_checkout():
    """Create a Stripe Checkout Session and return its URL.

    The client redirects the browser to `url`. Prices are taken from the
    catalog, never from the request.
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    result = create_checkout_session(current_user, _requested_product_ids(data))
    return jsonify(result), 200


# ──────────────────────────────────────────────
# GET /api/checkout/sessions/<session_id>
# ──────────────────────────────────────────────

@checkout_bp.route("/sessions/<session_id>", methods=["GET"])
@login_required
def session_status(session_id):
    """Polled by the success page until the webhook has landed.

    Read-only: status changes only ever come from Stripe events.
    """
    payment = get_payment_for_session(current_user.id, session_id)
    if payment is None:
        return jsonify({"error": "Session not found"}), 404

    purchases = get_session_purchases(current_user.id, session_id)
    return jsonify({
        "payment": payment.to_dict(),
        "purchases": [p.to_dict() for p in purchases],
    }), 200
