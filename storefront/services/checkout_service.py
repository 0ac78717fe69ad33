"""Checkout service — turns a purchase request into a Stripe Checkout Session.

Responsible for:
- Validating the requested product ids
- Resolving them against the active catalog (all-or-nothing)
- Getting or creating the Stripe customer for the profile
- Creating the Checkout Session at server-side catalog prices
- Recording the pending Payment row once Stripe confirmed the session

Prices always come from the products table; nothing price-like in the
request body is read.
"""

import logging
from decimal import Decimal

import stripe
from flask import current_app

from storefront.errors import ProductNotFoundError, UpstreamError, ValidationError
from storefront.extensions import db
from storefront.models.payment import Payment
from storefront.models.profile import Profile
from storefront.services.catalog_service import resolve_active_products
from storefront.services.stripe_service import configure_stripe, to_minor_units

logger = logging.getLogger(__name__)

# Stripe metadata values are capped at 500 characters; the joined id list
# has to fit in one.
MAX_ITEMS = 20


def normalize_product_ids(product_ids):
    """Validate a requested id list. Returns ids de-duplicated, in order.

    Raises ValidationError for a non-list, an empty list, or any entry
    that isn't a non-blank string.
    """
    if not isinstance(product_ids, (list, tuple)) or not product_ids:
        raise ValidationError("productIds must be a non-empty list of product ids")

    cleaned = []
    for pid in product_ids:
        if not isinstance(pid, str) or not pid.strip():
            raise ValidationError("productIds must contain only non-empty strings")
        pid = pid.strip()
        if pid not in cleaned:
            cleaned.append(pid)

    if len(cleaned) > MAX_ITEMS:
        raise ValidationError(f"At most {MAX_ITEMS} products can be checked out at once")
    return cleaned


# ──────────────────────────────────────────────
# Customer
# ──────────────────────────────────────────────

def _create_stripe_customer(profile, idempotency_key=None):
    params = {"metadata": {"supabase_user_id": profile.id}}
    if profile.email:
        params["email"] = profile.email
    if profile.full_name:
        params["name"] = profile.full_name
    if idempotency_key:
        params["idempotency_key"] = idempotency_key
    return stripe.Customer.create(**params)


def get_or_create_stripe_customer(profile):
    """Return the profile's Stripe customer id, creating one on first checkout.

    The profile row is locked for the check-then-create, and the Stripe
    call is keyed by user id, so two concurrent first checkouts end up
    with the same customer instead of two.
    """
    locked = db.session.execute(
        db.select(Profile)
        .filter_by(id=profile.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one()

    if locked.stripe_customer_id:
        return locked.stripe_customer_id

    customer = _create_stripe_customer(
        locked, idempotency_key=f"customer-create-{locked.id}"
    )
    locked.stripe_customer_id = customer.id
    db.session.commit()
    logger.info(f"Created Stripe customer {customer.id} for user {locked.id}")
    return customer.id


def _replace_stale_customer(profile):
    """The stored customer doesn't exist on this Stripe account
    (e.g. it was created with test keys before switching to live).
    Create a fresh one and store it.
    """
    customer = _create_stripe_customer(profile)
    profile.stripe_customer_id = customer.id
    db.session.commit()
    logger.warning(f"Replaced stale Stripe customer for user {profile.id} with {customer.id}")
    return customer.id


# ──────────────────────────────────────────────
# Checkout Session
# ──────────────────────────────────────────────

def create_checkout_session(profile, product_ids):
    """Create a Stripe Checkout Session for `product_ids` and record a pending Payment.

    Returns {"sessionId": ..., "url": ...}.
    Raises ValidationError, ProductNotFoundError (no side effects) or
    UpstreamError (Stripe failed; no Payment row written).
    """
    product_ids = normalize_product_ids(product_ids)

    found, missing = resolve_active_products(product_ids)
    if missing:
        logger.info(f"Checkout rejected for user {profile.id}: missing {missing}")
        raise ProductNotFoundError(missing)

    products = [found[pid] for pid in product_ids]

    currencies = {p.currency for p in products}
    if len(currencies) > 1:
        raise ValidationError("All products in one checkout must share a currency")
    currency = currencies.pop() if currencies else current_app.config["DEFAULT_CURRENCY"]

    configure_stripe()
    site_url = current_app.config["SITE_URL"].rstrip("/")

    metadata = {
        "user_id": profile.id,
        "product_ids": ",".join(product_ids),
    }
    if len(product_ids) == 1:
        metadata["product_id"] = product_ids[0]  # legacy single-product field

    def _create_session(customer_id):
        return stripe.checkout.Session.create(
            mode="payment",
            customer=customer_id,
            client_reference_id=profile.id,
            line_items=[
                {
                    "price_data": {
                        "currency": product.currency,
                        "product": product.stripe_product_id,
                        "unit_amount": to_minor_units(product.unit_price),
                    },
                    "quantity": 1,
                }
                for product in products
            ],
            success_url=(
                f"{site_url}/checkout/success"
                f"?session_id={{CHECKOUT_SESSION_ID}}"
            ),
            cancel_url=f"{site_url}/checkout/cancel",
            metadata=metadata,
        )

    try:
        customer_id = get_or_create_stripe_customer(profile)
        try:
            session = _create_session(customer_id)
        except stripe.InvalidRequestError as e:
            if "No such customer" not in str(e):
                raise
            customer_id = _replace_stale_customer(profile)
            session = _create_session(customer_id)
    except stripe.StripeError as e:
        db.session.rollback()
        logger.error(f"Stripe checkout creation failed for user {profile.id}: {e}", exc_info=True)
        raise UpstreamError("Payment provider error while creating checkout session") from e

    # An insert failure past this point leaves an orphaned Stripe session
    # with no Payment row; its webhook will be a logged no-op.
    payment = Payment(
        user_id=profile.id,
        stripe_checkout_session_id=session.id,
        stripe_customer_id=customer_id,
        amount=sum((p.unit_price for p in products), Decimal("0.00")),
        currency=currency,
        status="pending",
        product_ids=",".join(product_ids),
        metadata_={
            "products": {p.stripe_product_id: p.snapshot() for p in products},
        },
    )
    db.session.add(payment)
    db.session.commit()

    logger.info(
        f"Checkout session {session.id} created for user {profile.id}: "
        f"{len(products)} item(s), {payment.amount} {currency}"
    )
    return {"sessionId": session.id, "url": session.url}
