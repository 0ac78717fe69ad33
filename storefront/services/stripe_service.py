"""Stripe service — shared Stripe plumbing.

Responsible for:
- Configuring the Stripe SDK from app config (fail fast when unset)
- Verifying webhook signatures over the raw request body
- Converting between Stripe minor units and catalog decimals
"""

import json
import logging
from decimal import Decimal, ROUND_HALF_UP

import stripe
from flask import current_app

from storefront.errors import ConfigurationError

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def configure_stripe():
    """Point the Stripe SDK at the configured secret key.

    Raises ConfigurationError if STRIPE_SECRET_KEY is not set.
    """
    api_key = current_app.config.get("STRIPE_SECRET_KEY")
    if not api_key:
        raise ConfigurationError(
            "STRIPE_SECRET_KEY is not set. Add it to the environment "
            "before creating checkout sessions or syncing products."
        )
    stripe.api_key = api_key
    return api_key


def verify_webhook_signature(payload, sig_header):
    """Verify a Stripe webhook signature and parse the event.

    `payload` must be the exact bytes Stripe sent. The signature is
    computed over that body, so it is checked before any JSON parsing.

    Returns the event as a plain dict.
    Raises stripe.SignatureVerificationError on an invalid signature,
    ConfigurationError if STRIPE_WEBHOOK_SECRET is not set.
    """
    webhook_secret = current_app.config.get("STRIPE_WEBHOOK_SECRET")
    if not webhook_secret:
        raise ConfigurationError(
            "STRIPE_WEBHOOK_SECRET is not set. Use the signing secret from "
            "the Stripe dashboard (or `stripe listen` locally)."
        )

    if isinstance(payload, bytes):
        payload = payload.decode("utf-8")

    stripe.WebhookSignature.verify_header(payload, sig_header, webhook_secret)
    return json.loads(payload)


def to_minor_units(amount):
    """Decimal major units -> integer cents, e.g. Decimal("49.99") -> 4999."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(unit_amount):
    """Integer cents -> Decimal major units. None -> Decimal("0.00")."""
    if unit_amount is None:
        return Decimal("0.00")
    return (Decimal(unit_amount) / 100).quantize(CENT)


def to_decimal(value):
    """Coerce a stored price (Decimal, str, float, int) to a 2-place Decimal.

    Returns None for missing or unparseable values.
    """
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value)).quantize(CENT)
    except (ArithmeticError, ValueError):
        logger.warning(f"Ignoring unparseable price value {value!r}")
        return None


def stripe_id(value):
    """Return the id of an expandable Stripe field (id string or object)."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    return value.get("id")
