"""User model.

Hosts (tenants) who publish events and sell memberships. Stores login
credentials, the Stripe Connect account that receives lead payments,
and the host's own platform subscription state (mirrored from webhooks).
Flask-Login integration via UserMixin.
"""

import uuid

from flask_login import UserMixin

from eventpass.extensions import db


class User(UserMixin, db.Model):
    __tablename__ = "users"

    ROLES = ["master", "owner", "host", "user"]
    ACCOUNT_STATUSES = ["pending", "active", "rejected", "restricted"]
    SUBSCRIPTION_STATUSES = [
        "trialing",
        "active",
        "past_due",
        "canceled",
        "incomplete",
        "incomplete_expired",
        "paused",
        "unpaid",
    ]

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    email = db.Column(db.String(255), unique=True, nullable=False)
    password_hash = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255))
    role = db.Column(db.String(20), default="host")  # master | owner | host | user
    is_active = db.Column(db.Boolean, default=True)

    # --- Stripe Connect (receives lead payments) ---
    stripe_account_id = db.Column(db.String(255), unique=True, nullable=True)
    stripe_account_status = db.Column(
        db.String(20), default="pending", nullable=False
    )  # pending | active | rejected | restricted

    # --- Platform subscription (mirrored from Stripe webhooks) ---
    subscription_id = db.Column(db.String(255), unique=True, nullable=True)
    subscription_status = db.Column(db.String(30), nullable=True)
    trial_ends_at = db.Column(db.DateTime(timezone=True), nullable=True)
    subscription_synced_at = db.Column(
        db.DateTime(timezone=True), nullable=True
    )  # provider `created` time of the last applied subscription event

    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    # --- Relationships ---
    events = db.relationship("Event", back_populates="host", lazy="dynamic")
    memberships = db.relationship(
        "Membership", back_populates="host", lazy="dynamic"
    )
    contacts = db.relationship("Contact", back_populates="host", lazy="dynamic")

    @property
    def payments_configured(self):
        return bool(self.stripe_account_id)

    def __repr__(self):
        return f"<User {self.email}>"
