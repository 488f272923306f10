"""Webhooks blueprint — /stripe/webhook

Receives Stripe webhook events. CSRF-exempt, no login.
Raw body is required for signature verification.
"""

import logging

from flask import Blueprint, request, jsonify

from eventpass.errors import SignatureInvalid
from eventpass.extensions import limiter
from eventpass.services.webhook_service import handle_webhook

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint("webhooks", __name__, url_prefix="/stripe")


@webhooks_bp.route("/webhook", methods=["POST"])
@limiter.limit("300 per minute")
def stripe_webhook():
    """Receive and process Stripe webhook events.

    1. Get raw body (required for signature verification)
    2. Verify signature with STRIPE_WEBHOOK_SECRET
    3. Apply the event (idempotent via stripe_events + status CAS)
    4. Return 200 to acknowledge receipt, whatever the business outcome

    CSRF is exempted for this blueprint in create_app().
    """
    payload = request.get_data(as_text=True)
    sig_header = request.headers.get("Stripe-Signature")

    if not sig_header:
        logger.warning("Webhook received without Stripe-Signature header")
        return jsonify({"error": "Missing signature"}), 400

    try:
        outcome = handle_webhook(payload, sig_header)
    except SignatureInvalid as e:
        logger.warning(f"Webhook signature verification failed: {e.message}")
        return jsonify({"error": "Invalid signature"}), 400
    except ValueError as e:
        logger.warning(f"Malformed webhook payload: {e}")
        return jsonify({"error": "Invalid payload"}), 400

    return jsonify({"received": True, "status": outcome}), 200
