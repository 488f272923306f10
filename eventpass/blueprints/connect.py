"""Connect blueprint — /stripe/connect/*

Host-side Stripe Connect onboarding. Leads can only pay a host whose
connected account id is stored on their user row; stripe_account_status
is kept in step by these routes and by account.updated webhooks.

Routes:
- POST /stripe/connect/account — create the Express account (if needed)
                                 and return an onboarding link
- GET  /stripe/connect/status  — refresh and return the account status
"""

import logging

import stripe
from flask import Blueprint, current_app, jsonify
from flask_login import current_user

from eventpass.decorators import host_required
from eventpass.errors import ERRORS, NotFound
from eventpass.extensions import db, limiter
from eventpass.models.audit import log_audit
from eventpass.services.stripe_service import (
    as_dict,
    derive_account_status,
    get_gateway,
)

logger = logging.getLogger(__name__)

connect_bp = Blueprint("connect", __name__, url_prefix="/stripe/connect")


@connect_bp.route("/account", methods=["POST"])
@host_required
@limiter.limit("10 per minute")
def create_account():
    """Start (or resume) Connect onboarding for the logged-in host."""
    gateway = get_gateway()
    user = current_user

    try:
        if user.stripe_account_id:
            account = as_dict(gateway.get_account(user.stripe_account_id))
            if account.get("charges_enabled"):
                return jsonify({
                    "error": "Stripe account is already set up",
                    "code": "already_connected",
                }), 400
            account_id = user.stripe_account_id
        else:
            account = gateway.create_connect_account(user.id, user.email)
            account_id = account.id
            user.stripe_account_id = account_id
            user.stripe_account_status = "pending"
            log_audit(
                "connect.account_created",
                host_id=user.id,
                actor_user_id=user.id,
                metadata={"account_id": account_id},
            )
            db.session.commit()
            logger.info(f"Created Connect account {account_id} for host {user.id}")

        link = gateway.create_account_link(
            account_id, current_app.config["APP_BASE_URL"]
        )
    except stripe.StripeError as e:
        logger.error(f"Connect onboarding error for host {user.id}: {e}", exc_info=True)
        return jsonify({
            "error": "Something went wrong with Stripe. Please try again.",
            "code": "payment_provider_error",
        }), 502

    return jsonify({"url": link.url, "accountId": account_id})


@connect_bp.route("/status", methods=["GET"])
@host_required
def account_status():
    """Re-read the connected account from Stripe and store its status."""
    user = current_user
    if not user.stripe_account_id:
        raise NotFound(ERRORS["STRIPE_ACCOUNT_ID_NOT_FOUND"], code="account_not_found")

    try:
        account = as_dict(get_gateway().get_account(user.stripe_account_id))
    except stripe.StripeError as e:
        logger.error(f"Connect status error for host {user.id}: {e}", exc_info=True)
        return jsonify({
            "error": "Could not reach Stripe. Please try again.",
            "code": "payment_provider_error",
        }), 502

    status = derive_account_status(account)
    if status != user.stripe_account_status:
        previous = user.stripe_account_status
        user.stripe_account_status = status
        log_audit(
            "connect.status_changed",
            host_id=user.id,
            metadata={"from": previous, "to": status},
        )
        db.session.commit()

    return jsonify({
        "accountId": user.stripe_account_id,
        "chargesEnabled": bool(account.get("charges_enabled")),
        "payoutsEnabled": bool(account.get("payouts_enabled")),
        "detailsSubmitted": bool(account.get("details_submitted")),
        "status": status,
    })
