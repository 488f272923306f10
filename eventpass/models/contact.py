"""Contact model.

A host's address-book entry for a person. Leads are matched to their
Contact by (host, email); the Contact carries the Stripe customer ID used
for every checkout that person starts with this host.
"""

import uuid

from eventpass.extensions import db


class Contact(db.Model):
    __tablename__ = "contacts"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    host_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=False
    )
    email = db.Column(db.String(255), nullable=False)
    name = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(100), nullable=True)
    stripe_customer_id = db.Column(db.String(255), nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __table_args__ = (
        db.UniqueConstraint("host_id", "email", name="uq_contact_host_email"),
    )

    # --- Relationships ---
    host = db.relationship("User", back_populates="contacts")
    payments = db.relationship("Payment", back_populates="contact", lazy="dynamic")

    def __repr__(self):
        return f"<Contact {self.email}>"
