"""Lead model.

A person registered for one event, identified by (event_id, token).
The token is an opaque random code sent in the membership-gateway link;
it is not a JWT.

membership_active only flips to True inside the webhook reconciler's
payment-success transition. It is never taken from request input.
"""

import uuid

from eventpass.extensions import db


class Lead(db.Model):
    __tablename__ = "leads"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_id = db.Column(
        db.String(36), db.ForeignKey("events.id"), nullable=False
    )
    host_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    name = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(100), nullable=True)
    token = db.Column(db.String(64), nullable=False)
    membership_level = db.Column(
        db.String(36), db.ForeignKey("memberships.id"), nullable=True
    )
    membership_active = db.Column(db.Boolean, default=False, nullable=False)
    dates = db.Column(db.JSON, default=list)  # dates covered by the purchase
    form_identifier = db.Column(db.String(100), nullable=True)
    status_identifier = db.Column(db.String(30), default="Manual")
    source_url = db.Column(db.Text, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint("event_id", "token", name="uq_lead_event_token"),
    )

    # --- Relationships ---
    event = db.relationship("Event", back_populates="leads")
    membership = db.relationship("Membership", foreign_keys=[membership_level])
    payments = db.relationship("Payment", back_populates="lead", lazy="dynamic")
    bookings = db.relationship("Booking", back_populates="lead", lazy="dynamic")

    def to_public_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
        }

    def __repr__(self):
        return f"<Lead {self.email} event={self.event_id} active={self.membership_active}>"
