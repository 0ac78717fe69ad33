"""Stripe event model (processed-event log).

A webhook event is recorded by its Stripe event ID once it has been
evaluated successfully. A redelivery of a recorded event id returns 200
immediately. Purchase-level idempotency does not depend on this table:
the (user, product, session) guard in reconcile_service holds even for
distinct events describing the same session.
"""

import uuid

from storefront.extensions import db


class StripeEvent(db.Model):
    __tablename__ = "stripe_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    stripe_event_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "evt_1Abc..."
    event_type = db.Column(
        db.String(255), nullable=False
    )  # e.g. "checkout.session.completed"
    processed_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<StripeEvent {self.stripe_event_id} ({self.event_type})>"
