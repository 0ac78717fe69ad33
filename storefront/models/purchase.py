"""Purchase model (purchase ledger).

One row per (user, product, checkout session), created only by the
webhook reconciler. There is no update or delete path: purchase history
is immutable. Product fields are a denormalized snapshot so history
survives catalog deactivation or edits.
"""

import uuid

from storefront.extensions import db


class Purchase(db.Model):
    __tablename__ = "purchases"
    __table_args__ = (
        db.UniqueConstraint(
            "user_id",
            "product_id",
            "stripe_checkout_session_id",
            name="uq_purchases_user_product_session",
        ),
    )

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("profiles.id"), nullable=False, index=True
    )
    product_id = db.Column(db.String(255), nullable=False)  # weak ref to products.stripe_product_id
    product_title = db.Column(db.String(255), nullable=False)
    product_description = db.Column(db.Text, nullable=True)
    product_price = db.Column(db.Numeric(10, 2), nullable=False)
    product_category = db.Column(db.String(255), nullable=False, default="")
    product_image_url = db.Column(db.Text, nullable=True)
    stripe_checkout_session_id = db.Column(
        db.String(255), nullable=True, index=True
    )  # added in a later migration; see reconcile_service schema-drift retry
    purchased_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    user = db.relationship("Profile", back_populates="purchases")

    def to_dict(self):
        return {
            "id": self.id,
            "productId": self.product_id,
            "title": self.product_title,
            "description": self.product_description,
            "price": float(self.product_price),
            "category": self.product_category,
            "imageUrl": self.product_image_url,
            "sessionId": self.stripe_checkout_session_id,
            "purchasedAt": self.purchased_at.isoformat() if self.purchased_at else None,
        }

    def __repr__(self):
        return f"<Purchase {self.product_id} user={self.user_id}>"
