"""Stripe service — the payment gateway client.

Responsible for:
- Creating Stripe Customers for lead contacts
- Creating lead-upgrade Checkout Sessions routed to the host's
  Connect account
- Expiring / retrieving Checkout Sessions (compensation + reconciliation)
- Verifying webhook signatures
- Stripe Connect account creation, onboarding links and status

All calls go through a StripeGateway built from app config and passed into
the services that need it. Nothing here touches the database.
"""

import logging

import stripe
from flask import current_app

logger = logging.getLogger(__name__)


class StripeGateway:
    """Thin wrapper over the stripe SDK bound to one API key."""

    def __init__(self, api_key, webhook_secret, currency="gbp",
                 connect_country="GB"):
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.currency = currency
        self.connect_country = connect_country

    @classmethod
    def from_config(cls, config):
        return cls(
            api_key=config["STRIPE_SECRET_KEY"],
            webhook_secret=config["STRIPE_WEBHOOK_SECRET"],
            currency=config.get("STRIPE_CURRENCY", "gbp"),
            connect_country=config.get("STRIPE_CONNECT_COUNTRY", "GB"),
        )

    # ──────────────────────────────────────────────
    # Customers & Checkout
    # ──────────────────────────────────────────────

    def create_customer(self, email, name=None, metadata=None):
        """Create a Stripe Customer on the platform account. Returns its ID."""
        params = {"email": email, "metadata": metadata or {}}
        if name:
            params["name"] = name
        customer = stripe.Customer.create(api_key=self.api_key, **params)
        logger.info(f"Created Stripe customer {customer.id} for {email}")
        return customer.id

    def create_lead_checkout_session(self, customer_id, connected_account_id,
                                     amount, product_name, description,
                                     success_url, cancel_url, metadata):
        """Create a one-off payment Checkout Session for a membership purchase.

        The charge is made on behalf of the host's connected account and the
        funds are transferred to it, so settlement lands with the right tenant.

        Returns the Stripe Checkout Session.
        Raises stripe.StripeError on API failures.
        """
        return stripe.checkout.Session.create(
            api_key=self.api_key,
            mode="payment",
            payment_method_types=["card"],
            customer=customer_id,
            line_items=[
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": product_name,
                            "description": description,
                        },
                        "unit_amount": amount,
                    },
                    "quantity": 1,
                }
            ],
            payment_intent_data={
                "on_behalf_of": connected_account_id,
                "transfer_data": {"destination": connected_account_id},
                "metadata": metadata,
            },
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
        )

    def retrieve_checkout_session(self, session_id):
        return stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)

    def expire_checkout_session(self, session_id):
        """Expire an open Checkout Session so it can no longer be paid."""
        return stripe.checkout.Session.expire(session_id, api_key=self.api_key)

    # ──────────────────────────────────────────────
    # Webhooks
    # ──────────────────────────────────────────────

    def verify_webhook_signature(self, payload, sig_header):
        """Verify Stripe webhook signature and construct the event.

        Returns the verified Stripe event object.
        Raises stripe.SignatureVerificationError on invalid signature and
        ValueError on an unparseable payload.
        """
        return stripe.Webhook.construct_event(
            payload, sig_header, self.webhook_secret
        )

    # ──────────────────────────────────────────────
    # Connect
    # ──────────────────────────────────────────────

    def create_connect_account(self, user_id, email):
        return stripe.Account.create(
            api_key=self.api_key,
            type="express",
            country=self.connect_country,
            email=email,
            capabilities={
                "transfers": {"requested": True},
                "card_payments": {"requested": True},
            },
            metadata={"userId": str(user_id)},
        )

    def create_account_link(self, account_id, base_url):
        return stripe.AccountLink.create(
            api_key=self.api_key,
            account=account_id,
            refresh_url=f"{base_url}/stripe/connect/refresh",
            return_url=f"{base_url}/stripe/connect/return",
            type="account_onboarding",
        )

    def get_account(self, account_id):
        return stripe.Account.retrieve(account_id, api_key=self.api_key)


def get_gateway():
    """Build a gateway from the current app's config."""
    return StripeGateway.from_config(current_app.config)


def as_dict(obj):
    """Plain-dict view of a Stripe object (or a dict passed through as-is)."""
    if obj is None:
        return {}
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    return dict(obj)


def derive_account_status(account):
    """Map a Stripe Connect account to our stripe_account_status enum.

    Mapping:
        charges + payouts enabled      -> 'active'
        requirements.disabled_reason   -> 'restricted'
        requirements.errors non-empty  -> 'rejected'
        otherwise                      -> 'pending'
    """
    account = as_dict(account)
    requirements = account.get("requirements") or {}

    if account.get("charges_enabled") and account.get("payouts_enabled"):
        return "active"
    if requirements.get("disabled_reason"):
        return "restricted"
    if requirements.get("errors"):
        return "rejected"
    return "pending"
