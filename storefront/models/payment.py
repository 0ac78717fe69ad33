"""Payment model.

Exactly one row per Stripe Checkout Session. Created `pending` by
checkout_service, moved to a terminal status by reconcile_service.
Never deleted.
"""

import uuid

from storefront.extensions import db


class Payment(db.Model):
    __tablename__ = "payments"

    # -- Valid statuses --
    STATUSES = [
        "pending",
        "succeeded",
        "failed",
        "canceled",
        "refunded",  # reserved, no transition implemented
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("profiles.id"), nullable=False, index=True
    )
    purchase_id = db.Column(
        db.String(36), nullable=True
    )  # first purchase created for this session, informational only
    stripe_payment_intent_id = db.Column(
        db.String(255), unique=True, nullable=True
    )
    stripe_checkout_session_id = db.Column(
        db.String(255), unique=True, nullable=False
    )
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    amount = db.Column(db.Numeric(10, 2), nullable=False)
    currency = db.Column(db.String(3), nullable=False, default="eur")
    status = db.Column(
        db.String(50), nullable=False, default="pending", index=True
    )  # pending | succeeded | failed | canceled | refunded
    product_ids = db.Column(db.Text, nullable=False)  # comma-joined stripe product ids
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # {"products": {<id>: snapshot}} captured at session creation
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    user = db.relationship("Profile", back_populates="payments")

    @property
    def product_id_list(self):
        return [p for p in (self.product_ids or "").split(",") if p]

    def product_snapshot(self, product_id):
        """Stored display fields for one product, or {} if none were captured."""
        products = (self.metadata_ or {}).get("products") or {}
        return products.get(product_id) or {}

    def to_dict(self):
        return {
            "id": self.id,
            "sessionId": self.stripe_checkout_session_id,
            "status": self.status,
            "amount": float(self.amount),
            "currency": self.currency,
            "productIds": self.product_id_list,
            "purchaseId": self.purchase_id,
        }

    def __repr__(self):
        return f"<Payment {self.stripe_checkout_session_id} ({self.status})>"
