"""Checkout service — membership purchase for leads.

Responsible for:
- Validating a purchase request (event, tier, lead, host payments setup)
- Pricing (per-day vs package billing)
- Creating the Stripe Checkout Session on behalf of the host's
  Connect account
- Recording the pending Payment row keyed by the checkout session ID
- Registering new leads and emailing their membership-gateway link
"""

import logging
import secrets
import time
from urllib.parse import urlencode

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from eventpass.errors import (
    ERRORS,
    AlreadyPurchased,
    NotConfigured,
    NotFound,
    ValidationFailure,
)
from eventpass.extensions import db
from eventpass.models.audit import log_audit
from eventpass.models.contact import Contact
from eventpass.models.lead import Lead
from eventpass.models.membership import Membership
from eventpass.models.payment import Payment
from eventpass.models.user import User
from eventpass.services.access_service import (
    check_email,
    ensure_stripe_customer,
    find_contact_for_lead,
    get_event,
    resolve_lead,
)

logger = logging.getLogger(__name__)

CURRENCY_SYMBOLS = {"gbp": "£", "usd": "$", "eur": "€"}


# ──────────────────────────────────────────────
# Pricing
# ──────────────────────────────────────────────

def compute_price(membership, dates):
    """Amount to charge, in minor units.

    per-day: price for each selected date. package: flat price.
    Raises ValidationFailure for an empty date list or unknown billing.
    """
    if not dates:
        raise ValidationFailure(ERRORS["DATES_REQUIRED"], code="dates_required")

    if membership.billing == "per-day":
        return membership.price * len(dates)
    if membership.billing == "package":
        return membership.price
    raise ValidationFailure(
        f"Unsupported billing type: {membership.billing}", code="invalid_billing"
    )


def format_amount(amount, currency):
    symbol = CURRENCY_SYMBOLS.get((currency or "").lower())
    value = f"{amount / 100:.2f}"
    if symbol:
        return f"{symbol}{value}"
    return f"{value} {currency.upper()}"


def describe_price(membership, dates, currency):
    """Line-item description telling the lead which pricing rule applied."""
    if membership.billing == "per-day":
        days = len(dates)
        unit = "day" if days == 1 else "days"
        return (
            f"{days} {unit} of access at "
            f"{format_amount(membership.price, currency)}/day"
        )
    return "Multi-day access, one payment"


# ──────────────────────────────────────────────
# Redirect URLs
# ──────────────────────────────────────────────

def _lead_query(lead, **extra):
    params = {"token": lead.token, "email": lead.email or "", "code": lead.event_id}
    params.update(extra)
    return urlencode(params)


def build_success_url(event, lead, now=None):
    """Where Stripe sends the lead after paying.

    Prerecorded content goes straight to the playback page; venue and
    video-call events land on the thank-you page.
    """
    frontend_url = current_app.config["FRONTEND_URL"]
    if event.event_type == "prerecorded":
        return f"{frontend_url}/events/content?{_lead_query(lead)}"

    timestamp = int(now if now is not None else time.time())
    query = _lead_query(lead, action="success", timestamp=timestamp)
    return f"{frontend_url}/events/thank-you?{query}"


def build_cancel_url(lead):
    frontend_url = current_app.config["FRONTEND_URL"]
    return f"{frontend_url}/events/event?{_lead_query(lead, action='cancel')}"


# ──────────────────────────────────────────────
# Purchase
# ──────────────────────────────────────────────

def purchase_membership(event_id, membership_id, token, dates, email=None,
                        gateway=None):
    """Start a Stripe Checkout for a lead buying a membership tier.

    Every precondition failure raises a named DomainError before anything
    is created. On success exactly one Checkout Session and exactly one
    pending Payment row exist for the purchase.

    Returns the Stripe Checkout Session.
    Raises stripe.StripeError if Stripe rejects the session.
    """
    if gateway is None:
        from eventpass.services.stripe_service import get_gateway
        gateway = get_gateway()

    dates = list(dates or [])

    event = get_event(event_id)

    if not dates:
        raise ValidationFailure(ERRORS["DATES_REQUIRED"], code="dates_required")

    membership = db.session.get(Membership, membership_id) if membership_id else None
    if membership is None:
        raise NotFound(ERRORS["MEMBERSHIP_NOT_FOUND"], code="membership_not_found")
    if not event.offers_membership(membership.id):
        raise NotFound(ERRORS["MEMBERSHIP_NOT_ON_EVENT"], code="membership_not_found")

    lead = resolve_lead(event.id, token)
    check_email(lead, email)

    if lead.membership_active:
        raise AlreadyPurchased(ERRORS["MEMBERSHIP_ALREADY_PURCHASED"])

    if membership.price <= 0:
        raise ValidationFailure(ERRORS["MEMBERSHIP_IS_FREE"], code="membership_is_free")

    host = db.session.get(User, event.host_id)
    if host is None:
        raise NotFound(ERRORS["USER_NOT_FOUND"], code="host_not_found")
    if not host.payments_configured:
        raise NotConfigured(ERRORS["STRIPE_ACCOUNT_ID_NOT_FOUND"])

    contact = find_contact_for_lead(lead)
    if contact is None:
        raise NotFound(ERRORS["CONTACT_NOT_FOUND"], code="contact_not_found")

    customer_id = ensure_stripe_customer(contact, gateway)

    price = compute_price(membership, dates)
    description = describe_price(membership, dates, gateway.currency)
    metadata = {
        "type": "lead_upgrade",
        "leadId": str(lead.id),
        "eventId": str(event.id),
        "membershipId": str(membership.id),
    }

    session = gateway.create_lead_checkout_session(
        customer_id=customer_id,
        connected_account_id=host.stripe_account_id,
        amount=price,
        product_name=f"{event.event_name} - {membership.name}",
        description=description,
        success_url=build_success_url(event, lead),
        cancel_url=build_cancel_url(lead),
        metadata=metadata,
    )

    try:
        payment = Payment(
            contact_id=contact.id,
            lead_id=lead.id,
            event_id=event.id,
            membership_id=membership.id,
            checkout_session_id=session.id,
            stripe_customer_id=customer_id,
            amount=price,
            currency=gateway.currency,
            status="pending",
            payment_type=membership.payment_type or "one_off",
            metadata_={
                "eventName": event.event_name,
                "membershipName": membership.name,
                "sessionId": session.id,
                "dates": dates,
                "billing": membership.billing,
                "unitPrice": membership.price,
                "description": description,
            },
        )
        db.session.add(payment)
        log_audit("checkout.created", host_id=host.id, metadata={
            "lead_id": lead.id,
            "membership_id": membership.id,
            "checkout_session_id": session.id,
            "amount": price,
        })
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.error(
            f"Failed to record payment for checkout session {session.id}; "
            f"expiring session",
            exc_info=True,
        )
        _expire_orphaned_session(gateway, session.id)
        raise

    logger.info(
        f"Checkout session {session.id} created for lead {lead.id} "
        f"({membership.name}, {price} {gateway.currency})"
    )
    return session


def _expire_orphaned_session(gateway, session_id):
    """Compensating action: a session without a Payment row must not be payable."""
    try:
        gateway.expire_checkout_session(session_id)
    except Exception as e:
        logger.error(f"Could not expire orphaned checkout session {session_id}: {e}")


# ──────────────────────────────────────────────
# Registration
# ──────────────────────────────────────────────

def generate_lead_token(event_id):
    """Random 6-digit code, unique within the event."""
    while True:
        token = str(100000 + secrets.randbelow(900000))
        if not Lead.query.filter_by(event_id=event_id, token=token).first():
            return token


def get_or_create_contact(host_id, email, name=None, phone=None):
    """Get the host's Contact for this email or create one (flushed)."""
    email = email.strip().lower()
    contact = Contact.query.filter_by(host_id=host_id, email=email).first()
    if contact:
        return contact

    contact = Contact(host_id=host_id, email=email, name=name, phone=phone)
    db.session.add(contact)
    db.session.flush()
    return contact


def build_gateway_link(event, lead):
    frontend_url = current_app.config["FRONTEND_URL"]
    return f"{frontend_url}/events/membership-gateway?{_lead_query(lead)}"


def register_lead(event_id, name, email, phone=None, source_url=None,
                  form_identifier="external_form"):
    """Register a lead for an event and email them their access link.

    Returns the new Lead (committed).
    """
    event = get_event(event_id)
    if event.status != "active":
        raise ValidationFailure("This event is not open for registration",
                                code="event_not_active")

    email = (email or "").strip().lower()
    if not email:
        raise ValidationFailure("A valid email is required.", code="email_required")

    get_or_create_contact(event.host_id, email, name=name, phone=phone)

    lead = Lead(
        event_id=event.id,
        host_id=event.host_id,
        name=name,
        email=email,
        phone=phone,
        token=generate_lead_token(event.id),
        membership_level=None,
        membership_active=False,
        form_identifier=form_identifier,
        status_identifier="Form",
        source_url=source_url or "direct",
    )
    db.session.add(lead)
    db.session.flush()
    log_audit("lead.registered", host_id=event.host_id, metadata={
        "lead_id": lead.id,
        "event_id": event.id,
    })
    db.session.commit()

    _send_invitation_email(event, lead)
    return lead


def _send_invitation_email(event, lead):
    """Email the membership-gateway link. Failures are logged only."""
    try:
        from eventpass.services.email_service import send_email

        send_email(
            to=lead.email,
            subject=event.event_name,
            template="emails/event_invitation.html",
            context={
                "lead_name": lead.name or "",
                "event_name": event.event_name,
                "gateway_link": build_gateway_link(event, lead),
            },
        )
    except Exception as e:
        logger.error(f"Failed to send invitation email for lead {lead.id}: {e}")
