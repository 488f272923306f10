"""Payment model.

One row per Stripe Checkout attempt. checkout_session_id is unique, so
there is at most one Payment per session. status moves out of "pending"
exactly once (see webhook_service.settle_checkout_session).
"""

import uuid

from eventpass.extensions import db


class Payment(db.Model):
    __tablename__ = "payments"

    STATUSES = ["pending", "succeeded", "failed"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    contact_id = db.Column(
        db.String(36), db.ForeignKey("contacts.id"), nullable=False
    )
    lead_id = db.Column(
        db.String(36), db.ForeignKey("leads.id"), nullable=False
    )
    event_id = db.Column(
        db.String(36), db.ForeignKey("events.id"), nullable=False
    )
    membership_id = db.Column(
        db.String(36), db.ForeignKey("memberships.id"), nullable=False
    )
    checkout_session_id = db.Column(
        db.String(255), unique=True, nullable=False
    )  # e.g. "cs_test_a1B2..."
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    stripe_payment_intent_id = db.Column(db.String(255), nullable=True)
    amount = db.Column(db.Integer, nullable=False)  # minor units, as charged
    currency = db.Column(db.String(3), nullable=False, default="gbp")
    status = db.Column(
        db.String(20), default="pending", nullable=False
    )  # pending | succeeded | failed
    payment_type = db.Column(db.String(20), default="one_off", nullable=False)
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # receipt data: event name, membership name, dates
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    contact = db.relationship("Contact", back_populates="payments")
    lead = db.relationship("Lead", back_populates="payments")
    event = db.relationship("Event")
    membership = db.relationship("Membership")

    @property
    def is_settled(self):
        return self.status != "pending"

    def __repr__(self):
        return f"<Payment {self.checkout_session_id} ({self.status})>"
