"""Purchase service — read side of the purchase ledger.

Purchases are written by reconcile_service only; this module serves
them back to their owner (dashboard, checkout success page).
"""

from storefront.models.payment import Payment
from storefront.models.purchase import Purchase


def get_user_purchases(user_id):
    """All purchases for a user, newest first."""
    return (
        Purchase.query
        .filter_by(user_id=user_id)
        .order_by(Purchase.purchased_at.desc())
        .all()
    )


def has_purchased(user_id, product_id):
    return (
        Purchase.query
        .filter_by(user_id=user_id, product_id=product_id)
        .first()
        is not None
    )


def get_payment_for_session(user_id, session_id):
    """The caller's Payment for a checkout session, or None.

    Scoped to `user_id` so one user can't read another's payment by
    guessing a session id.
    """
    return Payment.query.filter_by(
        user_id=user_id,
        stripe_checkout_session_id=session_id,
    ).first()


def get_session_purchases(user_id, session_id):
    return (
        Purchase.query
        .filter_by(user_id=user_id, stripe_checkout_session_id=session_id)
        .order_by(Purchase.product_title)
        .all()
    )
