"""Reconcile service — Stripe webhook handling.

Responsible for:
- Dispatching verified Stripe events to event-specific handlers
- Moving Payment rows to their terminal status
- Materializing one Purchase per product of a paid checkout session
- Delegating product/price events to catalog_service
- Recording processed events in stripe_events

Stripe may deliver events late, twice, or out of order. Status updates are
last-write-wins, and purchases are guarded by a lookup on
(user_id, product_id, stripe_checkout_session_id) before every insert,
so any replay is harmless.
"""

import logging
import uuid

import stripe
from sqlalchemy import insert, select
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from storefront.extensions import db
from storefront.models.payment import Payment
from storefront.models.product import Product
from storefront.models.purchase import Purchase
from storefront.models.stripe_event import StripeEvent
from storefront.services import catalog_service
from storefront.services.stripe_service import configure_stripe, stripe_id, to_decimal

logger = logging.getLogger(__name__)

# Column added by a later migration. Deployments that haven't run it yet
# still get purchases, just without the session link.
SESSION_COLUMN = "stripe_checkout_session_id"


def handle_webhook_event(event):
    """Process a verified Stripe webhook event.

    Idempotency: an event id already in stripe_events returns immediately.

    Returns (success: bool, message: str).
    """
    event_id = event["id"]
    event_type = event["type"]

    # --- Processed-event check ---
    existing = StripeEvent.query.filter_by(
        stripe_event_id=event_id
    ).first()
    if existing:
        logger.info(f"Duplicate webhook event {event_id}, skipping")
        return True, "already_processed"

    # --- Route to handler ---
    handler = EVENT_HANDLERS.get(event_type)
    if handler:
        try:
            handler(event)
        except Exception as e:
            logger.error(f"Error handling {event_type} ({event_id}): {e}", exc_info=True)
            db.session.rollback()
            return False, str(e)
    else:
        logger.info(f"Unhandled event type {event_type} ({event_id}), acknowledging")

    # --- Record event ---
    db.session.add(StripeEvent(stripe_event_id=event_id, event_type=event_type))
    try:
        db.session.commit()
    except IntegrityError:
        # Same event evaluated concurrently by another worker
        db.session.rollback()
        logger.info(f"Event {event_id} recorded concurrently, skipping")
        return True, "already_processed"

    return True, "processed"


# ──────────────────────────────────────────────
# Payment status
# ──────────────────────────────────────────────

def status_from_intent(intent_status):
    """Map a PaymentIntent status onto a Payment status."""
    if intent_status == "succeeded":
        return "succeeded"
    if intent_status == "canceled":
        return "canceled"
    return "pending"


def _handle_checkout_completed(event):
    """Handle checkout.session.completed / async_payment_succeeded.

    The session's own flags are not trusted: the payment intent is
    retrieved and its status decides. Purchases are only created for a
    succeeded intent on a session that carries a user_id.
    """
    session = event["data"]["object"]
    session_id = session.get("id")

    payment = Payment.query.filter_by(
        stripe_checkout_session_id=session_id
    ).first()
    if not payment:
        logger.warning(f"{event['type']}: no payment row for session {session_id}, ignoring")
        return

    payment_intent_id = stripe_id(session.get("payment_intent"))
    intent_status = None
    if payment_intent_id:
        configure_stripe()
        intent = stripe.PaymentIntent.retrieve(payment_intent_id)
        intent_status = intent.get("status")
        payment.stripe_payment_intent_id = payment_intent_id
    else:
        logger.warning(f"Session {session_id} has no payment intent")

    payment.status = status_from_intent(intent_status)
    db.session.flush()
    logger.info(f"Payment for session {session_id} is {payment.status} (intent {intent_status})")

    metadata = session.get("metadata") or {}
    user_id = metadata.get("user_id")
    if payment.status != "succeeded":
        return
    if not user_id:
        logger.warning(f"Session {session_id} succeeded without user_id metadata, no purchases created")
        return

    created = materialize_purchases(payment, session_id, user_id, metadata)

    if created and not payment.purchase_id:
        payment.purchase_id = created[0]
        db.session.flush()


def _handle_checkout_async_failed(event):
    """Handle checkout.session.async_payment_failed."""
    session = event["data"]["object"]
    payment = Payment.query.filter_by(
        stripe_checkout_session_id=session.get("id")
    ).first()
    if not payment:
        logger.warning(f"async_payment_failed: no payment row for session {session.get('id')}")
        return
    payment.status = "failed"
    db.session.flush()


def _handle_checkout_expired(event):
    """Handle checkout.session.expired. Only an unpaid (pending) payment is canceled."""
    session = event["data"]["object"]
    payment = Payment.query.filter_by(
        stripe_checkout_session_id=session.get("id")
    ).first()
    if not payment or payment.status != "pending":
        return
    payment.status = "canceled"
    db.session.flush()
    logger.info(f"Session {session.get('id')} expired, payment canceled")


def _set_status_by_intent(event, status):
    """Locate the Payment by payment intent id and set its status.

    No purchase side effects: intent events don't carry the user/product
    context, that belongs to the session-completed path.
    """
    intent = event["data"]["object"]
    intent_id = intent.get("id")

    payment = Payment.query.filter_by(
        stripe_payment_intent_id=intent_id
    ).first()
    if not payment:
        # Arrives before checkout.session.completed linked the intent;
        # that event retrieves the intent status itself.
        logger.info(f"{event['type']}: no payment linked to intent {intent_id} yet")
        return

    payment.status = status
    db.session.flush()
    logger.info(f"Payment {payment.id} set to {status} from {event['type']}")


def _handle_intent_succeeded(event):
    _set_status_by_intent(event, "succeeded")


def _handle_intent_failed(event):
    _set_status_by_intent(event, "failed")


def _handle_intent_canceled(event):
    _set_status_by_intent(event, "canceled")


# ──────────────────────────────────────────────
# Purchases
# ──────────────────────────────────────────────

def parse_product_ids(metadata, payment=None):
    """Product ids a session covers, from its metadata.

    Reads the comma-joined `product_ids`, falls back to the legacy
    singular `product_id`, then to the Payment row's own list.
    """
    raw = metadata.get("product_ids") or ""
    ids = [pid.strip() for pid in raw.split(",") if pid.strip()]
    if not ids and metadata.get("product_id"):
        ids = [metadata["product_id"].strip()]
    if not ids and payment is not None:
        ids = payment.product_id_list
    return ids


def resolve_purchase_fields(product_id, payment, single_product, metadata=None):
    """Display fields for one purchased product.

    Priority: catalog row, then the payment's snapshot. The payment total
    is used as the price only for single-product sessions; a multi-product
    session can't split its total safely.

    Returns a dict, or None if no price can be determined.
    """
    product = Product.query.filter_by(stripe_product_id=product_id).first()
    snapshot = payment.product_snapshot(product_id)
    metadata = metadata or {}

    price = None
    if product is not None and product.unit_price and product.unit_price > 0:
        price = to_decimal(product.unit_price)
    if price is None:
        price = to_decimal(snapshot.get("price"))
    if price is None and single_product:
        price = to_decimal(payment.amount)
    if price is None:
        return None

    def pick(catalog_value, snapshot_key):
        if catalog_value:
            return catalog_value
        return snapshot.get(snapshot_key) or ""

    title = pick(product.name if product else None, "title")
    if not title:
        title = metadata.get("product_title") or product_id

    return {
        "product_title": title,
        "product_description": pick(product.description if product else None, "description"),
        "product_price": price,
        "product_category": pick(product.category if product else None, "category"),
        "product_image_url": pick(product.image_url if product else None, "image_url"),
    }


def _is_missing_session_column(error):
    message = str(getattr(error, "orig", error)).lower()
    return SESSION_COLUMN in message and "column" in message


def purchase_exists(user_id, product_id, session_id):
    """Idempotency guard: has this (user, product, session) been recorded?"""
    try:
        with db.session.begin_nested():
            row = db.session.execute(
                select(Purchase.id)
                .filter_by(
                    user_id=user_id,
                    product_id=product_id,
                    stripe_checkout_session_id=session_id,
                )
                .limit(1)
            ).first()
        return row is not None
    except (ProgrammingError, OperationalError) as e:
        if not _is_missing_session_column(e):
            raise
        logger.warning(
            f"purchases.{SESSION_COLUMN} missing, checking duplicates by user/product only"
        )
        row = db.session.execute(
            select(Purchase.id)
            .filter_by(user_id=user_id, product_id=product_id)
            .limit(1)
        ).first()
        return row is not None


def _execute_purchase_insert(values):
    with db.session.begin_nested():
        db.session.execute(insert(Purchase).values(**values))


def insert_purchase(values):
    """Insert a purchase row, degrading once on the known schema drift.

    If the database lacks the session column, the insert is retried a
    single time without it. Any other database error propagates.
    Returns the new purchase id.
    """
    try:
        _execute_purchase_insert(values)
    except (ProgrammingError, OperationalError) as e:
        if not _is_missing_session_column(e):
            raise
        logger.warning(
            f"purchases.{SESSION_COLUMN} column not found, retrying insert without it. "
            f"Run the pending migrations (flask db upgrade)."
        )
        reduced = {k: v for k, v in values.items() if k != SESSION_COLUMN}
        _execute_purchase_insert(reduced)
    return values["id"]


def materialize_purchases(payment, session_id, user_id, metadata):
    """Create one Purchase per product of a paid session.

    Each product is handled on its own: an unpriceable product or a lost
    duplicate race is logged and skipped without affecting the others.

    Returns the ids of purchases created by this call, in product order.
    """
    product_ids = parse_product_ids(metadata, payment)
    if not product_ids:
        logger.error(f"Session {session_id} succeeded but lists no products")
        return []

    single_product = len(product_ids) == 1
    created = []

    for product_id in product_ids:
        if purchase_exists(user_id, product_id, session_id):
            logger.info(f"Purchase of {product_id} for session {session_id} exists, skipping")
            continue

        fields = resolve_purchase_fields(product_id, payment, single_product, metadata)
        if fields is None:
            logger.error(
                f"No price for {product_id} in multi-product session {session_id} "
                f"(catalog and snapshot both missing), purchase skipped"
            )
            continue

        values = {
            "id": str(uuid.uuid4()),
            "user_id": user_id,
            "product_id": product_id,
            SESSION_COLUMN: session_id,
            **fields,
        }
        try:
            created.append(insert_purchase(values))
        except IntegrityError as e:
            if purchase_exists(user_id, product_id, session_id):
                logger.info(f"Purchase of {product_id} for session {session_id} recorded concurrently")
            else:
                logger.error(f"Could not record purchase of {product_id} for session {session_id}: {e}")
            continue

        logger.info(
            f"Recorded purchase of {product_id} at {fields['product_price']} "
            f"for user {user_id} (session {session_id})"
        )

    return created


# ──────────────────────────────────────────────
# Catalog events
# ──────────────────────────────────────────────

def _handle_product_upsert(event):
    catalog_service.upsert_from_product(event["data"]["object"])


def _handle_product_deleted(event):
    catalog_service.deactivate_product(event["data"]["object"]["id"])


def _handle_price_upsert(event):
    catalog_service.upsert_from_price(event["data"]["object"])


EVENT_HANDLERS = {
    "checkout.session.completed": _handle_checkout_completed,
    "checkout.session.async_payment_succeeded": _handle_checkout_completed,
    "checkout.session.async_payment_failed": _handle_checkout_async_failed,
    "checkout.session.expired": _handle_checkout_expired,
    "payment_intent.succeeded": _handle_intent_succeeded,
    "payment_intent.payment_failed": _handle_intent_failed,
    "payment_intent.canceled": _handle_intent_canceled,
    "product.created": _handle_product_upsert,
    "product.updated": _handle_product_upsert,
    "product.deleted": _handle_product_deleted,
    "price.created": _handle_price_upsert,
    "price.updated": _handle_price_upsert,
}
