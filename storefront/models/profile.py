"""Profile model.

Local mirror of an identity-service user. The id is the identity
service's user id; there are no local credentials.
Flask-Login integration via UserMixin (loaded per request from a bearer
token, see extensions.load_user_from_request).
"""

from flask_login import UserMixin

from storefront.extensions import db


class Profile(UserMixin, db.Model):
    __tablename__ = "profiles"

    id = db.Column(db.String(36), primary_key=True)  # identity-service user id
    email = db.Column(db.String(255), nullable=True)
    full_name = db.Column(db.String(255))
    stripe_customer_id = db.Column(
        db.String(255), unique=True, nullable=True
    )  # set on first checkout
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    payments = db.relationship("Payment", back_populates="user", lazy="dynamic")
    purchases = db.relationship("Purchase", back_populates="user", lazy="dynamic")

    def __repr__(self):
        return f"<Profile {self.email or self.id}>"
