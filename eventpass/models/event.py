"""Event models.

- Event: something a host runs (venue, video call) or publishes
  (prerecorded course content). Courses are events with
  event_type = "prerecorded".
- EventMembership: the tiers offered for an event. Gating treats any
  attached tier not literally named "Free" as paid.
"""

import uuid

from eventpass.extensions import db


class Event(db.Model):
    __tablename__ = "events"

    EVENT_TYPES = ["live_venue", "live_video_call", "prerecorded"]
    STATUSES = ["active", "suspended", "cancelled"]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    host_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    event_name = db.Column(db.String(255), nullable=False)
    event_description = db.Column(db.Text, nullable=True)
    event_type = db.Column(
        db.String(30), default="live_venue", nullable=False
    )  # live_venue | live_video_call | prerecorded
    live_venue_address = db.Column(db.String(500), nullable=True)
    live_video_url = db.Column(db.String(500), nullable=True)
    status = db.Column(
        db.String(20), default="active", nullable=False
    )  # active | suspended | cancelled
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    host = db.relationship("User", back_populates="events")
    membership_links = db.relationship(
        "EventMembership",
        back_populates="event",
        cascade="all, delete-orphan",
    )
    leads = db.relationship("Lead", back_populates="event", lazy="dynamic")

    @property
    def memberships(self):
        """Tiers currently attached to this event."""
        return [link.membership for link in self.membership_links if link.membership]

    def offers_membership(self, membership_id):
        return any(m.id == membership_id for m in self.memberships)

    def __repr__(self):
        return f"<Event {self.event_name} ({self.event_type})>"


class EventMembership(db.Model):
    __tablename__ = "event_memberships"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    event_id = db.Column(
        db.String(36), db.ForeignKey("events.id"), nullable=False
    )
    membership_id = db.Column(
        db.String(36), db.ForeignKey("memberships.id"), nullable=False
    )
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    __table_args__ = (
        db.UniqueConstraint(
            "event_id", "membership_id", name="uq_event_membership"
        ),
    )

    # --- Relationships ---
    event = db.relationship("Event", back_populates="membership_links")
    membership = db.relationship("Membership", back_populates="event_links")

    def __repr__(self):
        return f"<EventMembership event={self.event_id} membership={self.membership_id}>"
