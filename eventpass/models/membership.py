"""Membership model.

A purchasable tier. Price is an integer amount in minor currency units
(pence), read at checkout time; the price actually charged is copied onto
the Payment row.
"""

import uuid

from eventpass.extensions import db


class Membership(db.Model):
    __tablename__ = "memberships"

    PAYMENT_TYPES = ["one_off", "recurring"]
    BILLING_TYPES = ["per-day", "package"]

    FREE_TIER_NAME = "Free"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    host_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    price = db.Column(db.Integer, nullable=False, default=0)  # minor units
    payment_type = db.Column(
        db.String(20), default="one_off", nullable=False
    )  # one_off | recurring
    billing = db.Column(
        db.String(20), default="package", nullable=False
    )  # per-day | package
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    host = db.relationship("User", back_populates="memberships")
    event_links = db.relationship("EventMembership", back_populates="membership")

    @property
    def is_free_tier(self):
        return (self.name or "").strip() == self.FREE_TIER_NAME

    def __repr__(self):
        return f"<Membership {self.name} {self.price} ({self.billing})>"
