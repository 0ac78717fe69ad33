"""Product model (catalog store).

One row per sellable Stripe product, keyed by stripe_product_id.
Populated and kept current by catalog_service only. Rows are never
deleted: deactivation flips `active` so purchase history keeps resolving.
"""

import uuid
from decimal import Decimal

from storefront.extensions import db


class Product(db.Model):
    __tablename__ = "products"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_product_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "prod_Abc..."
    stripe_price_id = db.Column(db.String(255), nullable=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    unit_price = db.Column(
        db.Numeric(10, 2), nullable=False, default=Decimal("0.00")
    )  # major currency units
    currency = db.Column(db.String(3), nullable=False, default="eur")
    category = db.Column(db.String(255), nullable=True, index=True)
    image_url = db.Column(db.Text, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True, index=True)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # raw Stripe product metadata
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def snapshot(self):
        """Denormalized display fields, as stored on payments and purchases."""
        return {
            "title": self.name,
            "description": self.description or "",
            "price": str(self.unit_price),
            "category": self.category or "",
            "image_url": self.image_url or "",
        }

    def to_dict(self):
        return {
            "id": self.stripe_product_id,
            "title": self.name,
            "description": self.description,
            "price": float(self.unit_price),
            "currency": self.currency,
            "category": self.category,
            "imageUrl": self.image_url,
        }

    def __repr__(self):
        return f"<Product {self.stripe_product_id} ({'active' if self.active else 'inactive'})>"
