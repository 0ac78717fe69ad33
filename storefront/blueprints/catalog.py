"""Catalog blueprint — /api/products, /api/catalog/*

Routes:
- GET  /api/products        — active products for the shop (public)
- POST /api/catalog/sync    — re-sync every product from Stripe (service key)
"""

import logging

from flask import Blueprint, jsonify, request

from storefront.decorators import service_key_required
from storefront.services.catalog_service import bulk_resync, list_active_products

logger = logging.getLogger(__name__)

catalog_bp = Blueprint("catalog", __name__, url_prefix="/api")


@catalog_bp.route("/products", methods=["GET"])
def list_products():
    category = (request.args.get("category") or "").strip() or None
    products = list_active_products(category=category)
    return jsonify({"products": [p.to_dict() for p in products]}), 200


@catalog_bp.route("/catalog/sync", methods=["POST"])
@service_key_required
def sync_products():
    """Pull all active products from Stripe into the catalog.

    Used for initial seeding or when webhooks were missed. Per-product
    failures are counted, not fatal.
    """
    summary = bulk_resync()
    logger.info(f"Manual catalog sync: {summary}")
    return jsonify(summary), 200
