"""Account blueprint — /api/purchases

The signed-in user's purchase history (dashboard "My Products") and
per-product ownership checks (course pages gate their content on it).
"""

from flask import Blueprint, jsonify
from flask_login import current_user, login_required

from storefront.services.purchase_service import get_user_purchases, has_purchased

account_bp = Blueprint("account", __name__, url_prefix="/api")


@account_bp.route("/purchases", methods=["GET"])
@login_required
def purchases():
    rows = get_user_purchases(current_user.id)
    return jsonify({"purchases": [p.to_dict() for p in rows]}), 200


@account_bp.route("/purchases/<product_id>", methods=["GET"])
@login_required
def owns_product(product_id):
    return jsonify({
        "productId": product_id,
        "owned": has_purchased(current_user.id, product_id),
    }), 200
