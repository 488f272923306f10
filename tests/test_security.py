"""Security tests.

Tests:
- Security headers are present on responses
- Errors are JSON, never HTML
- Membership can't be activated from request input
- Rate limiting configuration
"""

from unittest.mock import MagicMock, patch

from eventpass.extensions import db
from eventpass.models.lead import Lead


class TestSecurityHeaders:
    """Verify security headers are present on responses."""

    def test_x_content_type_options(self, client):
        response = client.get("/health")
        assert response.headers.get("X-Content-Type-Options") == "nosniff"

    def test_x_frame_options(self, client):
        response = client.get("/health")
        assert response.headers.get("X-Frame-Options") == "DENY"

    def test_referrer_policy(self, client):
        response = client.get("/health")
        assert response.headers.get("Referrer-Policy") == "strict-origin-when-cross-origin"

    def test_csp_header(self, client):
        response = client.get("/health")
        csp = response.headers.get("Content-Security-Policy")
        assert csp is not None
        assert "default-src 'none'" in csp
        assert "frame-ancestors 'none'" in csp

    def test_no_hsts_in_debug(self, app, client):
        """HSTS is only sent outside debug (TestConfig runs with DEBUG on)."""
        assert app.debug is True
        response = client.get("/health")
        assert "Strict-Transport-Security" not in response.headers

    def test_headers_on_error_responses(self, client):
        response = client.get("/no-such-route")
        assert response.status_code == 404
        assert response.headers.get("X-Frame-Options") == "DENY"


class TestJsonErrors:
    """Every error path answers with JSON."""

    def test_404_is_json(self, client):
        response = client.get("/no-such-route")
        assert response.get_json() == {"error": "Not found"}

    def test_405_is_json(self, client):
        response = client.get("/lead/purchase-membership")
        assert response.status_code == 405
        assert "error" in response.get_json()

    def test_non_json_body_is_rejected(self, client, seed_data):
        response = client.post(
            "/lead/lead-validate-event", data="not json", content_type="text/plain"
        )
        assert response.status_code == 400
        assert response.get_json()["code"] == "invalid_request"


class TestNoSelfActivation:
    """membership_active is never taken from request input."""

    @patch("eventpass.services.stripe_service.stripe.Customer.create")
    def test_validate_ignores_membership_fields(self, mock_customer, client, seed_data):
        mock_customer.return_value = MagicMock(id="cus_sneaky")
        client.post("/lead/lead-validate-event", json={
            "event_id": seed_data["event_id"],
            "token": seed_data["lead_token"],
            "membership_active": True,
            "membership_level": seed_data["gold_id"],
        })
        lead = db.session.get(Lead, seed_data["lead_id"])
        assert lead.membership_active is False

    def test_register_cannot_activate(self, client, seed_data):
        resp = client.post("/lead/register", json={
            "event_id": seed_data["event_id"],
            "name": "Sneaky",
            "email": "sneaky@example.com",
            "membership_active": True,
            "membership_level": seed_data["gold_id"],
        })
        lead = db.session.get(Lead, resp.get_json()["leadId"])
        assert lead.membership_active is False
        assert lead.membership_level is None


class TestRateLimiting:
    """Verify rate limiting is configured."""

    def test_limiter_disabled_in_tests(self, app):
        assert app.config.get("RATELIMIT_ENABLED") is False

    def test_register_not_throttled_when_disabled(self, client, seed_data):
        """/lead/register allows 10 per hour; with limits off none are refused."""
        codes = [
            client.post("/lead/register", json={
                "event_id": seed_data["event_id"],
                "name": f"Guest {i}",
                "email": f"guest{i}@example.com",
            }).status_code
            for i in range(12)
        ]
        assert 429 not in codes
        assert codes == [201] * 12
