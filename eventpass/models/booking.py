"""Booking model.

A lead's confirmed place at an event. Created by the webhook reconciler in
the same transaction that activates the lead's membership. payment_id is
unique so a settled payment yields at most one booking.
"""

import uuid

from eventpass.extensions import db


class Booking(db.Model):
    __tablename__ = "bookings"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_id = db.Column(
        db.String(36), db.ForeignKey("events.id"), nullable=False
    )
    lead_id = db.Column(
        db.String(36), db.ForeignKey("leads.id"), nullable=False
    )
    host_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    payment_id = db.Column(
        db.String(36), db.ForeignKey("payments.id"), unique=True, nullable=True
    )
    passcode = db.Column(db.String(64), nullable=True)  # the lead's token
    dates = db.Column(db.JSON, default=list)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    # --- Relationships ---
    lead = db.relationship("Lead", back_populates="bookings")
    event = db.relationship("Event")

    def __repr__(self):
        return f"<Booking lead={self.lead_id} event={self.event_id}>"
