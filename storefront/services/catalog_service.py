"""Catalog service — keeps the products table in step with Stripe.

Responsible for:
- Upserting products from Stripe product objects (webhooks + bulk resync)
- Applying default-price changes from Stripe price events
- Soft-deleting products (active=False, rows are never removed)
- Read helpers used by checkout and the shop listing

Stripe is the source of truth; this module is the only writer of the
products table.
"""

import logging
from decimal import Decimal

import stripe
from sqlalchemy.exc import IntegrityError

from storefront.extensions import db
from storefront.models.product import Product
from storefront.services.stripe_service import (
    configure_stripe,
    from_minor_units,
    stripe_id,
)

logger = logging.getLogger(__name__)


def _extract_category(product):
    metadata = product.get("metadata") or {}
    return metadata.get("category") or metadata.get("Category") or ""


def _extract_image(product):
    images = product.get("images") or []
    return images[0] if images else None


def _resolve_default_price(product):
    """Return the product's default Price object, or None if it has none.

    `default_price` is an id unless the payload was expanded.
    Raises stripe.StripeError if the price can't be retrieved.
    """
    default_price = product.get("default_price")
    if not default_price:
        return None
    if isinstance(default_price, str):
        configure_stripe()
        return stripe.Price.retrieve(default_price)
    return default_price


def _upsert_row(stripe_product_id, fields):
    """Insert or update the products row for `stripe_product_id`.

    Runs inside a savepoint. If a concurrent writer inserted the same
    stripe_product_id first, the unique constraint fires and the existing
    row is updated instead.
    """
    for attempt in range(2):
        try:
            with db.session.begin_nested():
                row = Product.query.filter_by(
                    stripe_product_id=stripe_product_id
                ).first()
                if row is None:
                    row = Product(stripe_product_id=stripe_product_id)
                    db.session.add(row)
                for key, value in fields.items():
                    setattr(row, key, value)
            return row
        except IntegrityError:
            if attempt:
                raise
            logger.info(f"Concurrent insert for {stripe_product_id}, retrying as update")


def upsert_from_product(product):
    """Upsert a catalog row from a Stripe product object.

    If the default price can't be resolved the product is still stored,
    with unit_price 0, so it stays visible; the next price event heals it.

    Returns the Product row (flushed, not committed).
    """
    stripe_product_id = product["id"]

    price = None
    try:
        price = _resolve_default_price(product)
    except stripe.StripeError as e:
        logger.error(
            f"Partial sync for {stripe_product_id}: could not resolve default "
            f"price {stripe_id(product.get('default_price'))}: {e}"
        )

    fields = {
        "name": product.get("name") or stripe_product_id,
        "description": product.get("description"),
        "category": _extract_category(product),
        "image_url": _extract_image(product),
        "active": bool(product.get("active", True)),
        "metadata_": dict(product.get("metadata") or {}),
        "stripe_price_id": price.get("id") if price else None,
        "unit_price": from_minor_units(price.get("unit_amount")) if price else Decimal("0.00"),
    }
    if price and price.get("currency"):
        fields["currency"] = price["currency"]

    row = _upsert_row(stripe_product_id, fields)
    logger.info(f"Synced product {stripe_product_id} ({row.name}) at {row.unit_price}")
    return row


def upsert_from_price(price):
    """Apply a Stripe price event to the catalog.

    Only the product's default price is tracked (single-price model);
    any other price is ignored. Returns the updated Product or None.
    """
    price_id = price["id"]
    stripe_product_id = stripe_id(price.get("product"))
    if not stripe_product_id:
        logger.warning(f"Price {price_id} has no product, ignoring")
        return None

    configure_stripe()
    product = stripe.Product.retrieve(stripe_product_id)

    if stripe_id(product.get("default_price")) != price_id:
        logger.info(
            f"Price {price_id} is not the default for {stripe_product_id}, ignoring"
        )
        return None

    row = Product.query.filter_by(stripe_product_id=stripe_product_id).first()
    if row is None:
        # First we hear of this product; store it whole.
        return upsert_from_product(product)

    row.stripe_price_id = price_id
    row.unit_price = from_minor_units(price.get("unit_amount"))
    if price.get("currency"):
        row.currency = price["currency"]
    db.session.flush()

    logger.info(f"Updated price for {stripe_product_id} to {row.unit_price} {row.currency}")
    return row


def deactivate_product(stripe_product_id):
    """Mark a product inactive. Never deletes: purchases still reference it.

    Returns the Product or None if it was never synced.
    """
    row = Product.query.filter_by(stripe_product_id=stripe_product_id).first()
    if row is None:
        logger.warning(f"deactivate: no catalog row for {stripe_product_id}")
        return None

    row.active = False
    db.session.flush()
    logger.info(f"Deactivated product {stripe_product_id}")
    return row


def bulk_resync():
    """Re-sync every active Stripe product into the catalog.

    Each product is isolated: a failure is logged and counted, the batch
    carries on. Safe to run alongside webhook upserts.

    Returns {"synced": int, "errors": int, "total": int}.
    """
    configure_stripe()
    logger.info("Starting product sync from Stripe")

    synced = 0
    errors = 0
    total = 0

    products = stripe.Product.list(active=True, limit=100)
    for product in products.auto_paging_iter():
        total += 1
        try:
            upsert_from_product(product)
            db.session.commit()
            synced += 1
        except Exception as e:
            db.session.rollback()
            errors += 1
            logger.error(f"Error syncing product {product.get('id')}: {e}", exc_info=True)

    logger.info(f"Product sync done: {synced} synced, {errors} errors, {total} total")
    return {"synced": synced, "errors": errors, "total": total}


# ──────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────

def list_active_products(category=None):
    """Active catalog rows for the shop, optionally filtered by category."""
    query = Product.query.filter_by(active=True)
    if category:
        query = query.filter_by(category=category)
    return query.order_by(Product.name).all()


def resolve_active_products(stripe_product_ids):
    """Map each requested id to its sellable Product.

    A row left at unit_price 0 by a partial sync is not sellable until a
    price event sets its price, so it is reported as missing.

    Returns (found: dict[id, Product], missing: list[id]) with `missing`
    in request order.
    """
    rows = Product.query.filter(
        Product.stripe_product_id.in_(stripe_product_ids),
        Product.active.is_(True),
        Product.unit_price > 0,
    ).all()
    found = {row.stripe_product_id: row for row in rows}
    missing = [pid for pid in stripe_product_ids if pid not in found]
    return found, missing
