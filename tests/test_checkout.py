"""Tests for membership checkout and lead registration.

Covers:
- Pricing: per-day vs package, empty dates, unknown billing
- Success / cancel URLs per event type
- purchase-membership: Stripe session params, pending Payment row
- Precondition failures create neither a session nor a Payment
- Failed Payment insert expires the orphaned session
- Stripe API errors surface as 502
- Lead registration (token, contact, invitation email)
"""

from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
import stripe
from sqlalchemy.exc import SQLAlchemyError

from eventpass.errors import ValidationFailure
from eventpass.extensions import db
from eventpass.models.audit import AuditEvent
from eventpass.models.contact import Contact
from eventpass.models.event import Event, EventMembership
from eventpass.models.lead import Lead
from eventpass.models.membership import Membership
from eventpass.models.payment import Payment
from eventpass.services.checkout_service import (
    build_cancel_url,
    build_success_url,
    compute_price,
    describe_price,
    format_amount,
    purchase_membership,
)

DATES = ["2026-07-01", "2026-07-02", "2026-07-03"]


def _purchase(client, seed_data, membership_key="gold_id", dates=None, **extra):
    body = {
        "event_id": seed_data["event_id"],
        "membership_id": seed_data[membership_key],
        "token": seed_data["lead_token"],
        "dates": DATES if dates is None else dates,
    }
    body.update(extra)
    return client.post("/lead/purchase-membership", json=body)


def _session(session_id="cs_test_abc"):
    return MagicMock(id=session_id, url=f"https://checkout.stripe.com/c/pay/{session_id}")


class TestPricing:
    """compute_price / describe_price."""

    def test_per_day_multiplies_by_dates(self):
        gold = Membership(name="Gold", price=500, billing="per-day")
        assert compute_price(gold, DATES) == 1500

    def test_package_is_flat(self):
        vip = Membership(name="VIP", price=2500, billing="package")
        assert compute_price(vip, DATES) == 2500
        assert compute_price(vip, ["2026-07-01"]) == 2500

    def test_empty_dates_rejected(self):
        vip = Membership(name="VIP", price=2500, billing="package")
        with pytest.raises(ValidationFailure) as exc:
            compute_price(vip, [])
        assert exc.value.code == "dates_required"

    def test_unknown_billing_rejected(self):
        odd = Membership(name="Odd", price=100, billing="weekly")
        with pytest.raises(ValidationFailure) as exc:
            compute_price(odd, DATES)
        assert exc.value.code == "invalid_billing"

    def test_descriptions(self):
        gold = Membership(name="Gold", price=500, billing="per-day")
        vip = Membership(name="VIP", price=2500, billing="package")
        assert describe_price(gold, DATES, "gbp") == "3 days of access at £5.00/day"
        assert describe_price(gold, DATES[:1], "gbp") == "1 day of access at £5.00/day"
        assert describe_price(vip, DATES, "gbp") == "Multi-day access, one payment"

    def test_format_amount_unknown_currency(self):
        assert format_amount(1234, "sek") == "12.34 SEK"


class TestRedirectUrls:
    """Success URL depends on the event type."""

    def test_prerecorded_goes_to_content(self, seed_data):
        event = db.session.get(Event, seed_data["course_id"])
        lead = db.session.get(Lead, seed_data["course_lead_id"])

        url = urlparse(build_success_url(event, lead))
        assert url.path == "/events/content"
        query = parse_qs(url.query)
        assert query["token"] == [seed_data["course_lead_token"]]
        assert query["code"] == [seed_data["course_id"]]
        assert "action" not in query

    def test_live_event_goes_to_thank_you(self, seed_data):
        event = db.session.get(Event, seed_data["event_id"])
        lead = db.session.get(Lead, seed_data["lead_id"])

        url = urlparse(build_success_url(event, lead, now=1750000000))
        assert url.path == "/events/thank-you"
        query = parse_qs(url.query)
        assert query["action"] == ["success"]
        assert query["timestamp"] == ["1750000000"]
        assert query["email"] == ["lead@example.com"]

    def test_cancel_returns_to_event_page(self, seed_data):
        lead = db.session.get(Lead, seed_data["lead_id"])

        url = urlparse(build_cancel_url(lead))
        assert url.path == "/events/event"
        assert parse_qs(url.query)["action"] == ["cancel"]


class TestPurchaseMembership:
    """POST /lead/purchase-membership."""

    @patch("eventpass.services.stripe_service.stripe.checkout.Session.create")
    @patch("eventpass.services.stripe_service.stripe.Customer.create")
    def test_creates_session_and_pending_payment(self, mock_customer, mock_session,
                                                 client, seed_data):
        mock_customer.return_value = MagicMock(id="cus_buyer")
        mock_session.return_value = _session("cs_test_gold")

        resp = _purchase(client, seed_data)
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["checkoutSession"]["id"] == "cs_test_gold"
        assert data["checkoutSession"]["url"].startswith("https://checkout.stripe.com/")

        kwargs = mock_session.call_args.kwargs
        assert kwargs["mode"] == "payment"
        assert kwargs["customer"] == "cus_buyer"
        line_item = kwargs["line_items"][0]
        assert line_item["price_data"]["unit_amount"] == 1500
        assert line_item["price_data"]["currency"] == "gbp"
        assert kwargs["payment_intent_data"]["transfer_data"]["destination"] == "acct_host_123"
        assert kwargs["payment_intent_data"]["on_behalf_of"] == "acct_host_123"
        assert kwargs["metadata"] == {
            "type": "lead_upgrade",
            "leadId": seed_data["lead_id"],
            "eventId": seed_data["event_id"],
            "membershipId": seed_data["gold_id"],
        }

        payment = Payment.query.filter_by(checkout_session_id="cs_test_gold").one()
        assert payment.status == "pending"
        assert payment.amount == 1500
        assert payment.lead_id == seed_data["lead_id"]
        assert payment.stripe_customer_id == "cus_buyer"
        assert payment.metadata_["dates"] == DATES
        assert payment.metadata_["membershipName"] == "Gold"

        assert AuditEvent.query.filter_by(action="checkout.created").count() == 1

        # Purchase never activates the lead; only the webhook does.
        lead = db.session.get(Lead, seed_data["lead_id"])
        assert lead.membership_active is False

    @patch("eventpass.services.stripe_service.stripe.checkout.Session.create")
    @patch("eventpass.services.stripe_service.stripe.Customer.create")
    def test_package_tier_charges_flat_price(self, mock_customer, mock_session,
                                             client, seed_data):
        mock_customer.return_value = MagicMock(id="cus_buyer")
        mock_session.return_value = _session("cs_test_vip")

        resp = _purchase(client, seed_data, membership_key="vip_id")
        assert resp.status_code == 200

        kwargs = mock_session.call_args.kwargs
        assert kwargs["line_items"][0]["price_data"]["unit_amount"] == 2500
        payment = Payment.query.filter_by(checkout_session_id="cs_test_vip").one()
        assert payment.amount == 2500

    @patch("eventpass.services.stripe_service.stripe.checkout.Session.create")
    @patch("eventpass.services.stripe_service.stripe.Customer.create")
    def test_existing_customer_is_reused(self, mock_customer, mock_session,
                                         client, seed_data):
        contact = db.session.get(Contact, seed_data["contact_id"])
        contact.stripe_customer_id = "cus_existing"
        db.session.commit()
        mock_session.return_value = _session()

        resp = _purchase(client, seed_data)
        assert resp.status_code == 200
        mock_customer.assert_not_called()
        assert mock_session.call_args.kwargs["customer"] == "cus_existing"

    @patch("eventpass.services.stripe_service.stripe.checkout.Session.create")
    def test_already_purchased(self, mock_session, client, seed_data):
        lead = db.session.get(Lead, seed_data["lead_id"])
        lead.membership_active = True
        lead.membership_level = seed_data["gold_id"]
        db.session.commit()

        resp = _purchase(client, seed_data)
        assert resp.status_code == 400
        data = resp.get_json()
        assert data["code"] == "already_purchased"
        assert data["error"] == "This membership has already been purchased"
        mock_session.assert_not_called()
        assert Payment.query.count() == 0

    @patch("eventpass.services.stripe_service.stripe.checkout.Session.create")
    def test_already_purchased_on_removed_tier(self, mock_session, client, seed_data):
        """An active lead whose tier left the event still cannot buy again."""
        lead = db.session.get(Lead, seed_data["lead_id"])
        lead.membership_active = True
        lead.membership_level = seed_data["vip_id"]
        EventMembership.query.filter_by(
            event_id=seed_data["event_id"], membership_id=seed_data["vip_id"]
        ).delete()
        db.session.commit()

        resp = _purchase(client, seed_data, membership_key="gold_id")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "already_purchased"
        mock_session.assert_not_called()
        assert Payment.query.count() == 0

    @patch("eventpass.services.stripe_service.stripe.checkout.Session.create")
    def test_host_without_payments(self, mock_session, client, seed_data):
        resp = client.post("/lead/purchase-membership", json={
            "event_id": seed_data["event_no_stripe_id"],
            "membership_id": seed_data["other_gold_id"],
            "token": seed_data["lead_no_stripe_token"],
            "dates": DATES,
        })
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "payments_not_configured"
        mock_session.assert_not_called()
        assert Payment.query.count() == 0

    @patch("eventpass.services.stripe_service.stripe.checkout.Session.create")
    def test_empty_dates_rejected(self, mock_session, client, seed_data):
        resp = _purchase(client, seed_data, dates=[])
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "dates_required"
        mock_session.assert_not_called()

    @patch("eventpass.services.stripe_service.stripe.checkout.Session.create")
    def test_tier_not_on_event(self, mock_session, client, seed_data):
        resp = _purchase(client, seed_data, membership_key="other_gold_id")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "membership_not_found"
        mock_session.assert_not_called()

    @patch("eventpass.services.stripe_service.stripe.checkout.Session.create")
    def test_free_tier_cannot_be_bought(self, mock_session, client, seed_data):
        resp = _purchase(client, seed_data, membership_key="free_id")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "membership_is_free"
        mock_session.assert_not_called()

    @patch("eventpass.services.stripe_service.stripe.checkout.Session.create")
    def test_email_mismatch(self, mock_session, client, seed_data):
        resp = _purchase(client, seed_data, email="intruder@example.com")
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "email_mismatch"
        mock_session.assert_not_called()

    @patch("eventpass.services.stripe_service.stripe.checkout.Session.create")
    @patch("eventpass.services.stripe_service.stripe.Customer.create")
    def test_stripe_error_returns_502(self, mock_customer, mock_session,
                                      client, seed_data):
        mock_customer.return_value = MagicMock(id="cus_buyer")
        mock_session.side_effect = stripe.InvalidRequestError("No such customer", None)

        resp = _purchase(client, seed_data)
        assert resp.status_code == 502
        assert resp.get_json()["code"] == "payment_provider_error"
        assert Payment.query.count() == 0

    @patch("eventpass.services.checkout_service.log_audit")
    @patch("eventpass.services.stripe_service.stripe.checkout.Session.expire")
    @patch("eventpass.services.stripe_service.stripe.checkout.Session.create")
    @patch("eventpass.services.stripe_service.stripe.Customer.create")
    def test_failed_payment_insert_expires_session(self, mock_customer, mock_session,
                                                   mock_expire, mock_audit, seed_data):
        mock_customer.return_value = MagicMock(id="cus_buyer")
        mock_session.return_value = _session("cs_test_orphan")
        mock_audit.side_effect = SQLAlchemyError("database is gone")

        with pytest.raises(SQLAlchemyError):
            purchase_membership(
                seed_data["event_id"], seed_data["gold_id"],
                seed_data["lead_token"], DATES,
            )

        mock_expire.assert_called_once()
        assert mock_expire.call_args.args[0] == "cs_test_orphan"
        assert Payment.query.count() == 0


class TestRegisterLead:
    """POST /lead/register."""

    def test_register_creates_lead_and_contact(self, client, seed_data, mock_send_email):
        resp = client.post("/lead/register", json={
            "event_id": seed_data["event_id"],
            "name": "New Person",
            "email": "New.Person@Example.com",
        })
        assert resp.status_code == 201
        lead_id = resp.get_json()["leadId"]

        lead = db.session.get(Lead, lead_id)
        assert lead.email == "new.person@example.com"
        assert lead.membership_active is False
        assert lead.status_identifier == "Form"
        assert len(lead.token) == 6 and lead.token.isdigit()

        contact = Contact.query.filter_by(
            host_id=seed_data["host_id"], email="new.person@example.com"
        ).first()
        assert contact is not None

        mock_send_email.assert_called_once()
        kwargs = mock_send_email.call_args.kwargs
        assert kwargs["template"] == "emails/event_invitation.html"
        assert lead.token in kwargs["context"]["gateway_link"]

    def test_register_reuses_contact(self, client, seed_data):
        resp = client.post("/lead/register", json={
            "event_id": seed_data["event_id"],
            "name": "Lee Again",
            "email": "lead@example.com",
        })
        assert resp.status_code == 201
        assert Contact.query.filter_by(
            host_id=seed_data["host_id"], email="lead@example.com"
        ).count() == 1

    def test_register_accepts_form_post(self, client, seed_data):
        resp = client.post("/lead/register", data={
            "event_id": seed_data["event_id"],
            "name": "Form Person",
            "email": "form@example.com",
        })
        assert resp.status_code == 201

    def test_register_invalid_email(self, client, seed_data):
        resp = client.post("/lead/register", json={
            "event_id": seed_data["event_id"],
            "name": "Bad Email",
            "email": "not-an-email",
        })
        assert resp.status_code == 400
        assert Lead.query.filter_by(name="Bad Email").count() == 0

    def test_register_inactive_event(self, client, seed_data):
        event = db.session.get(Event, seed_data["event_id"])
        event.status = "cancelled"
        db.session.commit()

        resp = client.post("/lead/register", json={
            "event_id": seed_data["event_id"],
            "name": "Late",
            "email": "late@example.com",
        })
        assert resp.status_code == 400
        assert resp.get_json()["code"] == "event_not_active"
