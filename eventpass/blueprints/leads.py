"""Leads blueprint — /lead/*

Public JSON API used by the event pages. Leads authenticate with the
(event_id, token) pair from their membership-gateway link, so this
blueprint is CSRF-exempt and rate limited.

Route Map:
  POST /lead/register                 — register for an event, email the link
  POST /lead/lead-validate-event      — may this lead open the event?
  POST /lead/validate-ticket-payment  — has the lead paid for its ticket?
  POST /lead/purchase-membership      — start a Stripe Checkout for a tier
  POST /lead/payment-status           — poll settlement after checkout

Precondition failures raise DomainError subclasses, rendered as
{"error": ..., "code": ...} by the app-level handler.
"""

import logging
import re

import stripe
from flask import Blueprint, jsonify, request

from eventpass.errors import ValidationFailure
from eventpass.extensions import limiter
from eventpass.services.access_service import (
    check_ticket_payment,
    evaluate_access,
    get_event,
    resolve_lead,
)
from eventpass.services.checkout_service import purchase_membership, register_lead
from eventpass.services.webhook_service import sync_lead_payment

logger = logging.getLogger(__name__)

leads_bp = Blueprint("leads", __name__, url_prefix="/lead")

# Simple email regex — not exhaustive, just sanity-check
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationFailure("Invalid request.", code="invalid_request")
    return data


def _require(data, *fields):
    missing = [f for f in fields if data.get(f) in (None, "")]
    if missing:
        raise ValidationFailure(
            f"Missing required fields: {', '.join(missing)}", code="missing_fields"
        )


# ──────────────────────────────────────────────
# POST /lead/register
# ──────────────────────────────────────────────

@leads_bp.route("/register", methods=["POST"])
@limiter.limit("10 per hour")
def register():
    """Register a lead for an event.

    Accepts JSON or a plain HTML form POST (external sign-up forms).
    Required fields: event_id, name, email. Optional: phone.
    """
    if request.is_json:
        data = request.get_json(silent=True) or {}
    else:
        data = request.form.to_dict()

    _require(data, "event_id", "name", "email")
    email = str(data["email"]).strip()
    if not EMAIL_RE.match(email):
        raise ValidationFailure("A valid email is required.", code="email_required")

    lead = register_lead(
        event_id=data["event_id"],
        name=str(data["name"]).strip(),
        email=email,
        phone=(data.get("phone") or "").strip() or None,
        source_url=request.headers.get("Referer") or "direct",
    )
    return jsonify({
        "success": True,
        "message": "Registration successful",
        "leadId": lead.id,
    }), 201


# ──────────────────────────────────────────────
# POST /lead/lead-validate-event
# ──────────────────────────────────────────────

@leads_bp.route("/lead-validate-event", methods=["POST"])
@limiter.limit("30 per minute")
def validate_event_link():
    """Access check for an event link.

    Body: {event_id, token, email?}
    """
    data = _json_body()
    _require(data, "event_id", "token")

    event = get_event(data["event_id"])
    lead = resolve_lead(event.id, data["token"])
    decision = evaluate_access(event, lead, email=data.get("email"))

    body = {
        "isAllowed": decision.allowed,
        "requiresPayment": decision.requires_payment,
        "setupPayments": decision.setup_payments,
        "message": decision.reason,
        **lead.to_public_dict(),
    }
    if decision.allowed:
        body.update({
            "created_at": lead.created_at.isoformat() if lead.created_at else None,
            "updated_at": lead.updated_at.isoformat() if lead.updated_at else None,
            "membership_level": lead.membership_level,
            "membership_active": lead.membership_active,
        })
    return jsonify(body)


# ──────────────────────────────────────────────
# POST /lead/validate-ticket-payment
# ──────────────────────────────────────────────

@leads_bp.route("/validate-ticket-payment", methods=["POST"])
@limiter.limit("30 per minute")
def validate_ticket_payment():
    data = _json_body()
    _require(data, "event_id", "token")

    event = get_event(data["event_id"])
    lead = resolve_lead(event.id, data["token"])
    check_ticket_payment(event, lead)
    return jsonify({"isAllowed": True, "message": "Access granted"})


# ──────────────────────────────────────────────
# POST /lead/purchase-membership
# ──────────────────────────────────────────────

@leads_bp.route("/purchase-membership", methods=["POST"])
@limiter.limit("10 per minute")
def purchase():
    """Start a Stripe Checkout for a membership tier.

    Body: {event_id, membership_id, token, dates[], email?}
    Returns the checkout session id + URL to redirect the lead to.
    """
    data = _json_body()
    _require(data, "event_id", "membership_id", "token")

    dates = data.get("dates") or []
    if not isinstance(dates, list):
        raise ValidationFailure("dates must be a list", code="invalid_dates")

    try:
        session = purchase_membership(
            event_id=data["event_id"],
            membership_id=data["membership_id"],
            token=data["token"],
            dates=dates,
            email=data.get("email"),
        )
    except stripe.StripeError as e:
        logger.error(f"Checkout error: {e}", exc_info=True)
        return jsonify({
            "error": "Something went wrong starting checkout. Please try again.",
            "code": "payment_provider_error",
        }), 502

    return jsonify({"checkoutSession": {"id": session.id, "url": session.url}})


# ──────────────────────────────────────────────
# POST /lead/payment-status — AJAX poll
# ──────────────────────────────────────────────

@leads_bp.route("/payment-status", methods=["POST"])
@limiter.limit("60 per minute")
def payment_status():
    """Polled by the thank-you page until the membership is active.

    If the webhook hasn't arrived yet, the lead's pending payment is synced
    from Stripe's copy of the checkout session.
    """
    data = _json_body()
    _require(data, "event_id", "token")

    event = get_event(data["event_id"])
    lead = resolve_lead(event.id, data["token"])
    payment = sync_lead_payment(lead)

    return jsonify({
        "status": payment.status if payment else None,
        "membershipActive": bool(lead.membership_active),
    })
