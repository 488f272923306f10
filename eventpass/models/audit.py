"""Audit event model.

Logs significant state transitions (checkout created, payment settled,
membership activated, Connect account status changes, etc.) for the
host's activity feed and debugging.
"""

import uuid

from eventpass.extensions import db


class AuditEvent(db.Model):
    __tablename__ = "audit_events"

    id = db.Column(
        db.String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    host_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )
    actor_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id"), nullable=True
    )  # None for webhook / lead-initiated actions
    action = db.Column(db.String(255), nullable=False)  # e.g. "payment.succeeded"
    metadata_ = db.Column(
        "metadata", db.JSON, default=dict
    )  # extra context, named metadata_ to avoid Python builtin clash
    created_at = db.Column(
        db.DateTime(timezone=True), server_default=db.func.now()
    )

    def __repr__(self):
        return f"<AuditEvent {self.action}>"


def log_audit(action, host_id=None, metadata=None, actor_user_id=None):
    """Add an audit row to the current session.

    Uses flush() so the caller controls the commit boundary.
    """
    event = AuditEvent(
        host_id=host_id,
        actor_user_id=actor_user_id,
        action=action,
        metadata_=metadata or {},
    )
    db.session.add(event)
    db.session.flush()
    return event
