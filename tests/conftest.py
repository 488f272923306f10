"""Shared test fixtures for the Eventpass test suite.

Provides:
- app: Flask app configured for testing (in-memory SQLite, CSRF off)
- client: Flask test client
- db_session: clean database per test (tables created/dropped)
- mock_send_email: email sending patched out for every test
- seed_data: hosts, tiers, events, a lead and its contact
"""

from unittest.mock import patch

import pytest
from werkzeug.security import generate_password_hash

from eventpass import create_app
from eventpass.extensions import db as _db
from eventpass.models.contact import Contact
from eventpass.models.event import Event, EventMembership
from eventpass.models.lead import Lead
from eventpass.models.membership import Membership
from eventpass.models.payment import Payment
from eventpass.models.user import User


@pytest.fixture(scope="session")
def app():
    """Create the Flask application configured for testing."""
    app = create_app("testing")
    yield app


@pytest.fixture(autouse=True)
def db_session(app):
    """Create all tables before each test, drop after."""
    with app.app_context():
        _db.create_all()
        yield _db.session
        _db.session.rollback()
        _db.drop_all()


@pytest.fixture(autouse=True)
def mock_send_email():
    """No SMTP threads in tests; assert on the mock instead."""
    with patch("eventpass.services.email_service.send_email") as mock_send:
        yield mock_send


@pytest.fixture
def client(app):
    """Flask test client."""
    return app.test_client()


def _link(event, *memberships):
    for membership in memberships:
        _db.session.add(EventMembership(event_id=event.id, membership_id=membership.id))


@pytest.fixture
def seed_data(db_session):
    """Seed the database for access / checkout / webhook tests.

    - host: Connect account configured (acct_host_123)
    - host_no_stripe: no Connect account
    - event (live_venue): Free, Gold (500/day, per-day), VIP (2500, package)
    - course (prerecorded): Gold
    - free_event: Free only
    - bare_event: no tiers at all
    - lead on event, token 123456, email lead@example.com, with a Contact
    - lead_no_stripe on an event run by host_no_stripe, with a Contact

    Returns a dict of plain IDs (and a few values) for easy access in tests.
    """
    # --- Hosts ---
    host = User(
        email="host@example.com",
        password_hash=generate_password_hash("host123"),
        name="Host One",
        role="host",
        stripe_account_id="acct_host_123",
        stripe_account_status="active",
    )
    host_no_stripe = User(
        email="nostripe@example.com",
        password_hash=generate_password_hash("host123"),
        name="Host Two",
        role="host",
    )
    _db.session.add_all([host, host_no_stripe])
    _db.session.flush()

    # --- Tiers ---
    free = Membership(host_id=host.id, name="Free", price=0, billing="package")
    gold = Membership(host_id=host.id, name="Gold", price=500, billing="per-day")
    vip = Membership(host_id=host.id, name="VIP", price=2500, billing="package")
    other_gold = Membership(
        host_id=host_no_stripe.id, name="Gold", price=700, billing="package"
    )
    _db.session.add_all([free, gold, vip, other_gold])
    _db.session.flush()

    # --- Events ---
    event = Event(
        host_id=host.id,
        event_name="Summer Meetup",
        event_type="live_venue",
        live_venue_address="1 High Street, London",
    )
    course = Event(
        host_id=host.id,
        event_name="Recorded Course",
        event_type="prerecorded",
    )
    free_event = Event(host_id=host.id, event_name="Open Day", event_type="live_venue")
    bare_event = Event(
        host_id=host.id, event_name="Drop-in", event_type="live_video_call",
        live_video_url="https://meet.example.com/dropin",
    )
    event_no_stripe = Event(
        host_id=host_no_stripe.id, event_name="Unpaid Host Event",
        event_type="live_venue",
    )
    _db.session.add_all([event, course, free_event, bare_event, event_no_stripe])
    _db.session.flush()

    _link(event, free, gold, vip)
    _link(course, gold)
    _link(free_event, free)
    _link(event_no_stripe, other_gold)

    # --- Contacts + leads ---
    contact = Contact(host_id=host.id, email="lead@example.com", name="Lee Lead")
    contact_no_stripe = Contact(
        host_id=host_no_stripe.id, email="other@example.com", name="Olly Other"
    )
    _db.session.add_all([contact, contact_no_stripe])

    lead = Lead(
        event_id=event.id, host_id=host.id, name="Lee Lead",
        email="lead@example.com", token="123456",
    )
    course_lead = Lead(
        event_id=course.id, host_id=host.id, name="Lee Lead",
        email="lead@example.com", token="654321",
    )
    free_lead = Lead(
        event_id=free_event.id, host_id=host.id, name="Lee Lead",
        email="lead@example.com", token="111111",
    )
    bare_lead = Lead(
        event_id=bare_event.id, host_id=host.id, name="Lee Lead",
        email="lead@example.com", token="222222",
    )
    lead_no_stripe = Lead(
        event_id=event_no_stripe.id, host_id=host_no_stripe.id, name="Olly Other",
        email="other@example.com", token="333333",
    )
    _db.session.add_all([lead, course_lead, free_lead, bare_lead, lead_no_stripe])
    _db.session.commit()

    return {
        "host_id": host.id,
        "host_email": host.email,
        "host_no_stripe_id": host_no_stripe.id,
        "host_no_stripe_email": host_no_stripe.email,
        "free_id": free.id,
        "gold_id": gold.id,
        "vip_id": vip.id,
        "other_gold_id": other_gold.id,
        "event_id": event.id,
        "course_id": course.id,
        "free_event_id": free_event.id,
        "bare_event_id": bare_event.id,
        "event_no_stripe_id": event_no_stripe.id,
        "contact_id": contact.id,
        "contact_no_stripe_id": contact_no_stripe.id,
        "lead_id": lead.id,
        "lead_token": lead.token,
        "course_lead_id": course_lead.id,
        "course_lead_token": course_lead.token,
        "free_lead_token": free_lead.token,
        "bare_lead_token": bare_lead.token,
        "lead_no_stripe_id": lead_no_stripe.id,
        "lead_no_stripe_token": lead_no_stripe.token,
    }


@pytest.fixture
def make_payment(db_session, seed_data):
    """Factory for a pending Payment on the seeded lead."""

    def _make(session_id="cs_test_123", membership_id=None, dates=None,
              amount=1500, status="pending", created_at=None):
        payment = Payment(
            contact_id=seed_data["contact_id"],
            lead_id=seed_data["lead_id"],
            event_id=seed_data["event_id"],
            membership_id=membership_id or seed_data["gold_id"],
            checkout_session_id=session_id,
            stripe_customer_id="cus_test_123",
            amount=amount,
            currency="gbp",
            status=status,
            metadata_={
                "eventName": "Summer Meetup",
                "membershipName": "Gold",
                "sessionId": session_id,
                "dates": dates if dates is not None else ["2026-07-01", "2026-07-02", "2026-07-03"],
            },
        )
        if created_at is not None:
            payment.created_at = created_at
        _db.session.add(payment)
        _db.session.commit()
        return payment.id

    return _make
