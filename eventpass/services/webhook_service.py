"""Webhook service — applies Stripe webhook events to our ledger.

Responsible for:
- Signature verification (fail closed, nothing touched on failure)
- Decoding the raw event envelope into one typed event per kind we handle
- Idempotency via the stripe_events table (provider event ID)
- Settling Payments: pending -> succeeded | failed, exactly once
- Activating the lead's membership in the same transaction as the payment
  transition (a second paid session for an already-active lead is audited
  as payment.duplicate and books nothing)
- Mirroring Connect account status and host subscription state
- A reconciliation sweep that settles stale pending payments from the
  checkout session Stripe holds

Once the signature is valid and the envelope parses, the caller always
gets a 200: Stripe owns the retry schedule, so business failures are
logged here instead of being returned.
"""

import logging
from datetime import datetime, timedelta, timezone

from flask import current_app

from eventpass.errors import SignatureInvalid, Unmatched
from eventpass.extensions import db
from eventpass.models.audit import log_audit
from eventpass.models.booking import Booking
from eventpass.models.event import Event
from eventpass.models.lead import Lead
from eventpass.models.payment import Payment
from eventpass.models.stripe_event import StripeEvent
from eventpass.models.user import User
from eventpass.services.stripe_service import as_dict, derive_account_status

logger = logging.getLogger(__name__)


def _from_timestamp(ts):
    if not ts:
        return None
    return datetime.fromtimestamp(int(ts), tz=timezone.utc)


def _as_aware(dt):
    """SQLite returns naive datetimes; Postgres returns aware ones."""
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# ──────────────────────────────────────────────
# Typed events
# ──────────────────────────────────────────────

class WebhookEvent:
    """A verified Stripe event. Subclasses carry the fields their handler reads."""

    def __init__(self, event_id, event_type, created=None):
        self.event_id = event_id
        self.event_type = event_type
        self.created = created

    def __repr__(self):
        return f"<{type(self).__name__} {self.event_id} ({self.event_type})>"


class CheckoutCompleted(WebhookEvent):
    """checkout.session.completed — paid now, or later for async methods."""

    def __init__(self, event_id, event_type, created, session_id,
                 payment_status, payment_intent_id=None):
        super().__init__(event_id, event_type, created)
        self.session_id = session_id
        self.payment_status = payment_status
        self.payment_intent_id = payment_intent_id

    @property
    def is_paid(self):
        return self.payment_status in ("paid", "no_payment_required")


class CheckoutAsyncSucceeded(WebhookEvent):
    """checkout.session.async_payment_succeeded."""

    def __init__(self, event_id, event_type, created, session_id,
                 payment_intent_id=None):
        super().__init__(event_id, event_type, created)
        self.session_id = session_id
        self.payment_intent_id = payment_intent_id


class CheckoutFailed(WebhookEvent):
    """checkout.session.expired / checkout.session.async_payment_failed."""

    def __init__(self, event_id, event_type, created, session_id):
        super().__init__(event_id, event_type, created)
        self.session_id = session_id


class AccountUpdated(WebhookEvent):
    """account.updated — a host's Connect account changed."""

    def __init__(self, event_id, event_type, created, account):
        super().__init__(event_id, event_type, created)
        self.account = account
        self.account_id = account.get("id")
        self.user_id = (account.get("metadata") or {}).get("userId")


class SubscriptionChanged(WebhookEvent):
    """customer.subscription.created / updated / deleted."""

    def __init__(self, event_id, event_type, created, subscription):
        super().__init__(event_id, event_type, created)
        self.subscription_id = subscription.get("id")
        self.deleted = event_type == "customer.subscription.deleted"
        self.status = "canceled" if self.deleted else subscription.get("status")
        self.trial_ends_at = _from_timestamp(subscription.get("trial_end"))
        self.user_id = (subscription.get("metadata") or {}).get("userId")


class IgnoredEvent(WebhookEvent):
    """Any event type we do not act on."""


def decode_event(event):
    """Turn a verified Stripe event into one of the typed events above.

    Raises ValueError if the envelope is missing id, type or data.object.
    """
    event = as_dict(event)
    event_id = event.get("id")
    event_type = event.get("type")
    data = event.get("data")
    if not event_id or not event_type or not isinstance(data, dict):
        raise ValueError("Malformed Stripe event envelope")
    obj = data.get("object")
    if not isinstance(obj, dict):
        raise ValueError("Stripe event has no data.object")

    created = _from_timestamp(event.get("created"))

    if event_type == "checkout.session.completed":
        return CheckoutCompleted(
            event_id, event_type, created,
            session_id=obj.get("id"),
            payment_status=obj.get("payment_status"),
            payment_intent_id=obj.get("payment_intent"),
        )
    if event_type == "checkout.session.async_payment_succeeded":
        return CheckoutAsyncSucceeded(
            event_id, event_type, created,
            session_id=obj.get("id"),
            payment_intent_id=obj.get("payment_intent"),
        )
    if event_type in ("checkout.session.expired",
                      "checkout.session.async_payment_failed"):
        return CheckoutFailed(event_id, event_type, created, session_id=obj.get("id"))
    if event_type == "account.updated":
        return AccountUpdated(event_id, event_type, created, account=obj)
    if event_type in ("customer.subscription.created",
                      "customer.subscription.updated",
                      "customer.subscription.deleted"):
        return SubscriptionChanged(event_id, event_type, created, subscription=obj)
    return IgnoredEvent(event_id, event_type, created)


# ──────────────────────────────────────────────
# Entry points
# ──────────────────────────────────────────────

def handle_webhook(payload, sig_header, gateway=None):
    """Verify, decode and apply one webhook delivery.

    Returns the outcome string (e.g. "settled", "already_processed").
    Raises SignatureInvalid if the signature does not verify and ValueError
    if the payload is not a well-formed event; nothing is written in
    either case.
    """
    if gateway is None:
        from eventpass.services.stripe_service import get_gateway
        gateway = get_gateway()

    try:
        event = gateway.verify_webhook_signature(payload, sig_header)
    except ValueError:
        raise
    except Exception as e:
        raise SignatureInvalid(f"Invalid signature: {e}")

    return handle_webhook_event(decode_event(event))


def handle_webhook_event(event):
    """Apply a decoded event once.

    Idempotency: checks stripe_events before processing and records the
    event in the same transaction as its effects. Handler errors roll the
    whole transaction back and are logged.

    Returns the outcome string.
    """
    existing = StripeEvent.query.filter_by(stripe_event_id=event.event_id).first()
    if existing:
        logger.info(f"Duplicate webhook event {event.event_id}, skipping")
        return "already_processed"

    handlers = {
        CheckoutCompleted: _handle_checkout_completed,
        CheckoutAsyncSucceeded: _handle_checkout_async_succeeded,
        CheckoutFailed: _handle_checkout_failed,
        AccountUpdated: _handle_account_updated,
        SubscriptionChanged: _handle_subscription_changed,
    }
    handler = handlers.get(type(event))

    settled_payment = None
    try:
        if handler is None:
            outcome = "ignored"
        else:
            outcome, settled_payment = handler(event)

        db.session.add(StripeEvent(
            stripe_event_id=event.event_id,
            event_type=event.event_type,
            outcome=outcome,
        ))
        db.session.commit()
    except Exception as e:
        db.session.rollback()
        logger.error(f"Error handling {event.event_type} ({event.event_id}): {e}",
                     exc_info=True)
        return "failed"

    logger.info(f"Webhook {event.event_id} ({event.event_type}): {outcome}")

    if settled_payment is not None and settled_payment.status == "succeeded":
        send_ticket_confirmation(settled_payment)

    return outcome


# ──────────────────────────────────────────────
# Payment settlement
# ──────────────────────────────────────────────

def settle_checkout_session(session_id, succeeded, payment_intent_id=None):
    """Move the Payment for `session_id` out of pending, at most once.

    Compare-and-swap on status: only an UPDATE that actually moves a row
    from "pending" goes on to touch the lead. Redelivered, concurrent and
    stale events find nothing pending and return None.

    On success the lead is activated (unless another payment already
    did), a booking created and audit rows written in the caller's
    transaction (flushed, not committed), so the payment transition and
    the lead activation commit or roll back together.

    Returns the Payment if this call moved it, else None.
    Raises Unmatched if no Payment has this session ID.
    """
    if not session_id:
        raise Unmatched("Checkout event without a session id")

    new_status = "succeeded" if succeeded else "failed"
    values = {"status": new_status, "settled_at": datetime.now(timezone.utc)}
    if payment_intent_id:
        values["stripe_payment_intent_id"] = payment_intent_id

    moved = (
        Payment.query
        .filter_by(checkout_session_id=session_id, status="pending")
        .update(values, synchronize_session=False)
    )

    payment = (
        Payment.query
        .populate_existing()
        .filter_by(checkout_session_id=session_id)
        .first()
    )
    if payment is None:
        raise Unmatched(f"No payment for checkout session {session_id}")

    if moved != 1:
        logger.info(
            f"Payment for session {session_id} already {payment.status}; "
            f"not re-applying {new_status}"
        )
        return None

    event = db.session.get(Event, payment.event_id)
    host_id = event.host_id if event else None

    log_audit(f"payment.{new_status}", host_id=host_id, metadata={
        "payment_id": payment.id,
        "checkout_session_id": session_id,
        "amount": payment.amount,
    })

    if succeeded:
        _activate_lead(payment, host_id)

    db.session.flush()
    return payment


def _activate_lead(payment, host_id):
    """Grant the purchased membership and book the lead in.

    The only place membership_active becomes True. The flip is a
    conditional UPDATE on membership_active=False, so when two paid
    sessions for the same lead settle, only the first books the lead;
    the second is left succeeded with no booking and flagged for refund.

    Returns True if this payment activated the lead.
    """
    dates = (payment.metadata_ or {}).get("dates") or []

    moved = (
        Lead.query
        .filter_by(id=payment.lead_id, membership_active=False)
        .update({
            "membership_active": True,
            "membership_level": payment.membership_id,
            "dates": dates,
            "status_identifier": "Member",
        }, synchronize_session=False)
    )

    lead = Lead.query.populate_existing().filter_by(id=payment.lead_id).first()
    if lead is None:
        raise RuntimeError(f"Payment {payment.id} references missing lead {payment.lead_id}")

    if moved != 1:
        logger.warning(
            f"Lead {lead.id} already active; payment {payment.id} "
            f"({payment.checkout_session_id}) is a duplicate and needs a refund"
        )
        log_audit("payment.duplicate", host_id=host_id or lead.host_id, metadata={
            "lead_id": lead.id,
            "payment_id": payment.id,
            "checkout_session_id": payment.checkout_session_id,
            "amount": payment.amount,
        })
        db.session.flush()
        return False

    db.session.add(Booking(
        event_id=payment.event_id,
        lead_id=lead.id,
        host_id=host_id or lead.host_id,
        payment_id=payment.id,
        passcode=lead.token,
        dates=dates,
    ))

    log_audit("lead.membership_activated", host_id=host_id or lead.host_id, metadata={
        "lead_id": lead.id,
        "membership_id": payment.membership_id,
        "payment_id": payment.id,
    })
    db.session.flush()
    logger.info(f"Activated membership {payment.membership_id} for lead {lead.id}")
    return True


def _is_booked(payment):
    """True if settling this payment booked the lead (not a duplicate)."""
    return Booking.query.filter_by(payment_id=payment.id).first() is not None


def _settle(session_id, succeeded, payment_intent_id=None):
    try:
        payment = settle_checkout_session(session_id, succeeded, payment_intent_id)
    except Unmatched as e:
        logger.warning(f"Unmatched checkout webhook: {e.message}")
        return "unmatched", None
    if payment is None:
        return "already_settled", None
    if payment.status == "succeeded" and not _is_booked(payment):
        return "duplicate_payment", None
    return "settled", payment


def _handle_checkout_completed(event):
    if not event.is_paid:
        # Async payment methods complete first and pay later.
        logger.info(
            f"Checkout {event.session_id} completed with payment_status="
            f"{event.payment_status}; waiting for async result"
        )
        return "awaiting_payment", None
    return _settle(event.session_id, True, event.payment_intent_id)


def _handle_checkout_async_succeeded(event):
    return _settle(event.session_id, True, event.payment_intent_id)


def _handle_checkout_failed(event):
    return _settle(event.session_id, False)


# ──────────────────────────────────────────────
# Host account & subscription
# ──────────────────────────────────────────────

def _handle_account_updated(event):
    """Refresh the host's stripe_account_status from the account object."""
    user = None
    if event.account_id:
        user = User.query.filter_by(stripe_account_id=event.account_id).first()
    if user is None and event.user_id:
        user = db.session.get(User, event.user_id)
    if user is None:
        logger.warning(f"account.updated: no host for account={event.account_id}")
        return "unmatched", None

    status = derive_account_status(event.account)
    old_status = user.stripe_account_status
    if status == old_status:
        return "unchanged", None

    user.stripe_account_status = status
    if not user.stripe_account_id and event.account_id:
        user.stripe_account_id = event.account_id
    log_audit("stripe_account.updated", host_id=user.id, metadata={
        "account_id": event.account_id,
        "old_status": old_status,
        "status": status,
    })
    return "updated", None


def _handle_subscription_changed(event):
    """Mirror subscription_status / trial_ends_at onto the host.

    Keyed by subscription ID. Events older than the last one applied are
    ignored, as are events for a subscription the host has since replaced.
    """
    user = None
    if event.subscription_id:
        user = User.query.filter_by(subscription_id=event.subscription_id).first()
    if user is None and event.user_id:
        user = db.session.get(User, event.user_id)
    if user is None:
        logger.warning(
            f"{event.event_type}: no host for subscription={event.subscription_id}"
        )
        return "unmatched", None

    synced_at = _as_aware(user.subscription_synced_at)
    if synced_at and event.created and event.created < synced_at:
        logger.info(f"Stale {event.event_type} for {event.subscription_id}, skipping")
        return "stale", None

    if (
        user.subscription_id
        and user.subscription_id != event.subscription_id
        and event.event_type != "customer.subscription.created"
    ):
        logger.info(
            f"{event.event_type} for superseded subscription "
            f"{event.subscription_id} (host has {user.subscription_id}), skipping"
        )
        return "superseded", None

    user.subscription_status = event.status
    user.trial_ends_at = event.trial_ends_at
    user.subscription_id = None if event.deleted else event.subscription_id
    if event.created:
        user.subscription_synced_at = event.created

    log_audit("subscription.updated", host_id=user.id, metadata={
        "subscription_id": event.subscription_id,
        "status": event.status,
    })
    return "updated", None


# ──────────────────────────────────────────────
# Reconciliation
# ──────────────────────────────────────────────

def session_outcome(session):
    """Settlement a Checkout Session implies: True (paid), False (expired), None."""
    session = as_dict(session)
    if session.get("payment_status") in ("paid", "no_payment_required"):
        return True
    if session.get("status") == "expired":
        return False
    return None


def _sync_payment(payment, gateway):
    """Settle one pending payment from Stripe's copy of its session.

    Commits. Returns the outcome string.
    """
    session = as_dict(gateway.retrieve_checkout_session(payment.checkout_session_id))
    succeeded = session_outcome(session)
    if succeeded is None:
        return "still_pending"

    settled = settle_checkout_session(
        payment.checkout_session_id, succeeded, session.get("payment_intent")
    )
    db.session.commit()
    if settled is None:
        return "already_settled"
    if settled.status == "succeeded":
        if not _is_booked(settled):
            return "duplicate_payment"
        send_ticket_confirmation(settled)
    return settled.status


def reconcile_pending_payments(older_than_minutes=None, gateway=None):
    """Settle pending payments whose webhook never arrived (or failed).

    Returns a dict counting outcomes, e.g. {"succeeded": 2, "still_pending": 1}.
    """
    if gateway is None:
        from eventpass.services.stripe_service import get_gateway
        gateway = get_gateway()
    if older_than_minutes is None:
        older_than_minutes = current_app.config["PENDING_PAYMENT_SWEEP_MINUTES"]

    cutoff = datetime.now(timezone.utc) - timedelta(minutes=older_than_minutes)
    pending = (
        Payment.query
        .filter(Payment.status == "pending", Payment.created_at < cutoff)
        .order_by(Payment.created_at)
        .all()
    )

    counts = {}
    for payment in pending:
        session_id = payment.checkout_session_id
        try:
            outcome = _sync_payment(payment, gateway)
        except Exception as e:
            db.session.rollback()
            logger.error(f"Reconciliation failed for session {session_id}: {e}",
                         exc_info=True)
            outcome = "error"
        counts[outcome] = counts.get(outcome, 0) + 1

    logger.info(f"Reconciled {len(pending)} pending payments: {counts}")
    return counts


def sync_lead_payment(lead, gateway=None):
    """Bring the lead's latest payment up to date with Stripe.

    Used by the post-checkout page poll when the webhook has not landed
    yet. Returns the latest Payment (or None if the lead never checked out).
    """
    payment = (
        Payment.query
        .filter_by(lead_id=lead.id)
        .order_by(Payment.created_at.desc())
        .first()
    )
    if payment is None or payment.is_settled:
        return payment

    if gateway is None:
        from eventpass.services.stripe_service import get_gateway
        gateway = get_gateway()

    try:
        _sync_payment(payment, gateway)
    except Exception as e:
        db.session.rollback()
        logger.warning(f"Failed to sync payment {payment.id} from Stripe: {e}")

    return db.session.get(Payment, payment.id)


# ──────────────────────────────────────────────
# Email Notifications
# ──────────────────────────────────────────────

def send_ticket_confirmation(payment):
    """Email the lead that their ticket is confirmed.

    Called after the settling transaction commits. Never lets email failure
    break webhook handling.
    """
    try:
        from eventpass.services.email_service import send_email

        lead = db.session.get(Lead, payment.lead_id)
        event = db.session.get(Event, payment.event_id)
        if not lead or not lead.email or not event:
            return

        metadata = payment.metadata_ or {}
        send_email(
            to=lead.email,
            subject="Your Ticket is Confirmed",
            template="emails/ticket_confirmed.html",
            context={
                "lead_name": lead.name or "",
                "event_name": event.event_name,
                "event_type": event.event_type,
                "venue_address": event.live_venue_address,
                "video_url": event.live_video_url,
                "membership_name": metadata.get("membershipName", ""),
                "dates": metadata.get("dates") or [],
                "token": lead.token,
                "frontend_url": current_app.config["FRONTEND_URL"],
            },
        )
        logger.info(f"Ticket confirmation sent to {lead.email} for payment {payment.id}")
    except Exception as e:
        logger.error(f"Failed to send ticket confirmation for payment {payment.id}: {e}")
