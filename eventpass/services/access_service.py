"""Access service — decides whether a lead may open an event.

Responsible for:
- Resolving a lead by (event_id, token), failing closed
- Checking a supplied email against the lead's stored email
- Membership gating (any non-"Free" tier requires an active membership)
- Lazily giving the lead's contact a Stripe customer ID when payment is
  required

Two gating computations exist because older code paths disagree about a
lead whose membership_level points at a tier the host has since removed
from the event:

    gated_by_event_tiers  — only looks at membership_active
    gated_by_lead_level   — also requires membership_level to still be
                            one of the event's tiers

evaluate_access() uses gated_by_event_tiers and logs whenever the two
disagree. An active lead has paid once for this event; checkout refuses a
second purchase on membership_active alone, so gating must not send that
lead back to checkout either.
"""

import logging

from eventpass.errors import ERRORS, NotFound, ValidationFailure
from eventpass.extensions import db
from eventpass.models.contact import Contact
from eventpass.models.event import Event
from eventpass.models.lead import Lead
from eventpass.models.user import User

logger = logging.getLogger(__name__)


class AccessDecision:
    """Outcome of evaluate_access()."""

    def __init__(self, allowed, requires_payment=False, reason=None,
                 setup_payments=False):
        self.allowed = allowed
        self.requires_payment = requires_payment
        self.reason = reason
        self.setup_payments = setup_payments

    def __repr__(self):
        return (
            f"<AccessDecision allowed={self.allowed} "
            f"requires_payment={self.requires_payment}>"
        )


# ──────────────────────────────────────────────
# Lookups
# ──────────────────────────────────────────────

def get_event(event_id):
    """Load an event or raise NotFound."""
    event = db.session.get(Event, event_id) if event_id else None
    if event is None:
        raise NotFound(ERRORS["EVENT_NOT_FOUND"], code="event_not_found")
    return event


def resolve_lead(event_id, token):
    """Find the lead for (event_id, token).

    Exact match only. An unknown or empty token raises NotFound — there is
    no default-allow path.
    """
    token = (token or "").strip()
    lead = None
    if token:
        lead = Lead.query.filter_by(event_id=event_id, token=token).first()
    if lead is None:
        raise NotFound(ERRORS["LEAD_WITH_TOKEN_NOT_FOUND"], code="lead_not_found")
    return lead


def find_contact_for_lead(lead):
    """The host's Contact with the lead's email, or None."""
    if not lead.email:
        return None
    return Contact.query.filter_by(
        host_id=lead.host_id, email=lead.email.strip().lower()
    ).first()


def check_email(lead, email):
    """Raise ValidationFailure if a supplied email differs from the lead's.

    A missing email is not checked.
    """
    if email is None or not str(email).strip():
        return
    supplied = str(email).strip().lower()
    stored = (lead.email or "").strip().lower()
    if supplied != stored:
        logger.warning(f"Email mismatch for lead {lead.id} on event {lead.event_id}")
        raise ValidationFailure(ERRORS["EMAIL_MISMATCH"], code="email_mismatch")


# ──────────────────────────────────────────────
# Gating
# ──────────────────────────────────────────────

def paid_tiers(event):
    return [m for m in event.memberships if not m.is_free_tier]


def gated_by_event_tiers(event, lead):
    """True if any attached tier is paid and the lead is not active."""
    return bool(paid_tiers(event)) and not lead.membership_active


def gated_by_lead_level(event, lead):
    """Like gated_by_event_tiers, but an active lead whose stored tier is no
    longer attached to the event counts as inactive.

    A lead activated without a recorded tier (membership_level is None)
    keeps its access.
    """
    if not paid_tiers(event):
        return False
    if not lead.membership_active:
        return True
    if lead.membership_level is None:
        return False
    return not event.offers_membership(lead.membership_level)


def is_gated(event, lead):
    """The gating rule used for access decisions (see module docstring)."""
    by_tiers = gated_by_event_tiers(event, lead)
    by_level = gated_by_lead_level(event, lead)
    if by_tiers != by_level:
        logger.warning(
            f"Gating disagreement for lead {lead.id} on event {event.id}: "
            f"event_tiers={by_tiers} lead_level={by_level} "
            f"(membership_level={lead.membership_level}); using event_tiers"
        )
    return by_tiers


# ──────────────────────────────────────────────
# Stripe customer
# ──────────────────────────────────────────────

def ensure_stripe_customer(contact, gateway):
    """Give the contact a Stripe customer ID if it has none.

    Check-then-create: an existing ID is returned untouched.
    Returns the customer ID (committed).
    """
    if contact.stripe_customer_id:
        return contact.stripe_customer_id

    customer_id = gateway.create_customer(
        contact.email,
        name=contact.name,
        metadata={"contactId": str(contact.id), "hostId": str(contact.host_id)},
    )
    contact.stripe_customer_id = customer_id
    db.session.commit()
    return customer_id


# ──────────────────────────────────────────────
# Evaluation
# ──────────────────────────────────────────────

def evaluate_access(event, lead, email=None, gateway=None):
    """Decide whether `lead` may access `event`.

    Email mismatch raises ValidationFailure (hard denial). A gated lead gets
    allowed=False, requires_payment=True. When the host can take payments,
    the lead's contact is given a Stripe customer ID so checkout can start
    straight away, and setup_payments is True.

    Raises NotFound if a gated lead has no contact or the host is missing.
    """
    check_email(lead, email)

    if not is_gated(event, lead):
        return AccessDecision(allowed=True, reason="Access granted")

    host = db.session.get(User, lead.host_id)
    if host is None:
        raise NotFound(ERRORS["USER_NOT_FOUND"], code="host_not_found")

    contact = find_contact_for_lead(lead)
    if contact is None:
        raise NotFound(ERRORS["CONTACT_NOT_FOUND"], code="contact_not_found")

    setup_payments = False
    if host.payments_configured:
        if gateway is None:
            from eventpass.services.stripe_service import get_gateway
            gateway = get_gateway()
        ensure_stripe_customer(contact, gateway)
        setup_payments = True
    else:
        logger.info(
            f"Lead {lead.id} needs payment but host {host.id} has no Stripe account"
        )

    return AccessDecision(
        allowed=False,
        requires_payment=True,
        reason="Payment required to access this event",
        setup_payments=setup_payments,
    )


def check_ticket_payment(event, lead):
    """Raise ValidationFailure unless the lead may use its ticket."""
    if is_gated(event, lead):
        raise ValidationFailure(
            ERRORS["MEMBERSHIP_NOT_ACTIVE"], code="membership_not_active"
        )
