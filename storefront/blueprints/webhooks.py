"""Webhooks blueprint — /stripe/webhooks

Receives Stripe webhook events. No user auth: Stripe is the caller and
proves it with the Stripe-Signature header. The raw body is required for
signature verification.
"""

import logging

import stripe
from flask import Blueprint, request, jsonify

from storefront.services.reconcile_service import handle_webhook_event
from storefront.services.stripe_service import verify_webhook_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhooks", methods=["POST"])
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body bytes (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Pass to handle_webhook_event
    4. Return 200 for anything evaluated, so Stripe only retries real failures
    """
    payload = request.get_data(cache=False)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    if not payload:
        logger.warning("Webhook received with empty body")
        return jsonify({"error": "Empty request body"}), 400

    # --- Verify signature ---
    try:
        event = verify_webhook_signature(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Webhook signature verification failed: {e} (body {len(payload)} bytes)")
        return jsonify({"error": "Invalid signature"}), 401
    except ValueError as e:
        # Signed, but not JSON
        logger.warning(f"Webhook payload could not be parsed: {e}")
        return jsonify({"error": "Invalid payload"}), 400

    # --- Process event ---
    success, message = handle_webhook_event(event)

    if success:
        return jsonify({"status": message, "event_id": event["id"], "event_type": event["type"]}), 200
    else:
        logger.error(f"Webhook processing failed for {event['id']}: {message}")
        return jsonify({"error": message}), 500
