import os
import logging

import click
from flask import Flask, jsonify
from werkzeug.security import generate_password_hash

from eventpass.config import config_by_name
from eventpass.errors import DomainError
from eventpass.extensions import db, login_manager, csrf, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so create_all() can discover them ---
    with app.app_context():
        from eventpass import models  # noqa: F401

    # --- Register blueprints ---
    from eventpass.blueprints.auth import auth_bp
    from eventpass.blueprints.leads import leads_bp
    from eventpass.blueprints.webhooks import webhooks_bp
    from eventpass.blueprints.connect import connect_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(leads_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(connect_bp)

    # Exempt webhooks from CSRF — raw body needed for Stripe signature verification
    csrf.exempt(webhooks_bp)
    # Exempt lead API from CSRF — public, token-authenticated, called cross-origin
    csrf.exempt(leads_bp)

    @app.route("/health")
    def health():
        return jsonify({"status": "ok"})

    # --- Error handlers ---
    @app.errorhandler(DomainError)
    def domain_error(e):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(403)
    def forbidden(e):
        return jsonify({"error": "Forbidden"}), 403

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests. Please slow down."}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """Add security headers to every response."""
        # Prevent MIME type sniffing
        response.headers["X-Content-Type-Options"] = "nosniff"
        # Prevent clickjacking
        response.headers["X-Frame-Options"] = "DENY"
        # Control referrer information
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        # JSON API: nothing should ever be rendered or framed
        response.headers["Content-Security-Policy"] = (
            "default-src 'none'; frame-ancestors 'none';"
        )
        # Strict Transport Security (only in production)
        if not app.debug:
            response.headers["Strict-Transport-Security"] = (
                "max-age=31536000; includeSubDomains"
            )
        return response

    # --- Logging ---
    if not app.debug:
        logging.basicConfig(level=logging.INFO)

    return app


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("init-db")
    def init_db():
        """Create all tables that don't exist yet."""
        db.create_all()
        click.echo("Database tables created.")

    @app.cli.command("seed-demo")
    @click.option("--email", default="host@eventpass.local", help="Host email")
    @click.option("--password", default="host123", help="Host password")
    @click.option("--stripe-account", default=None,
                  help="Existing Connect account ID (acct_...) for the host")
    def seed_demo(email, password, stripe_account):
        """Create a demo host + event with Free/Gold tiers + one lead.

        Usage:
            flask seed-demo
            flask seed-demo --email host@example.com --stripe-account acct_123
        """
        from eventpass.models.user import User
        from eventpass.models.event import Event, EventMembership
        from eventpass.models.membership import Membership
        from eventpass.services.checkout_service import (
            build_gateway_link,
            get_or_create_contact,
            generate_lead_token,
        )
        from eventpass.models.lead import Lead

        # --- 1. Host ---
        host = User.query.filter_by(email=email).first()
        if host:
            click.echo(f"Host already exists: {email}")
        else:
            host = User(
                email=email,
                password_hash=generate_password_hash(password),
                name="Demo Host",
                role="host",
            )
            db.session.add(host)
            db.session.flush()
            click.echo(f"Created host: {email}")

        if stripe_account:
            host.stripe_account_id = stripe_account

        # --- 2. Tiers ---
        free = Membership(host_id=host.id, name="Free", price=0, billing="package")
        gold = Membership(host_id=host.id, name="Gold", price=500, billing="per-day")
        db.session.add_all([free, gold])
        db.session.flush()

        # --- 3. Event ---
        event = Event(
            host_id=host.id,
            event_name="Demo Live Workshop",
            event_description="A demo event with a paid Gold tier.",
            event_type="live_video_call",
            live_video_url="https://meet.example.com/demo",
        )
        db.session.add(event)
        db.session.flush()
        db.session.add_all([
            EventMembership(event_id=event.id, membership_id=free.id),
            EventMembership(event_id=event.id, membership_id=gold.id),
        ])

        # --- 4. Lead + contact ---
        lead_email = "lead@example.com"
        get_or_create_contact(host.id, lead_email, name="Demo Lead")
        lead = Lead(
            event_id=event.id,
            host_id=host.id,
            name="Demo Lead",
            email=lead_email,
            token=generate_lead_token(event.id),
            status_identifier="Manual",
        )
        db.session.add(lead)
        db.session.commit()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Seed data created successfully!")
        click.echo("=" * 60)
        click.echo(f"  Host:     {email} / {password}")
        click.echo(f"  Event:    {event.event_name} (id: {event.id})")
        click.echo(f"  Tiers:    Free (id: {free.id}), Gold 500/day (id: {gold.id})")
        click.echo(f"  Lead:     {lead_email} token={lead.token}")
        click.echo(f"  Link:     {build_gateway_link(event, lead)}")
        click.echo("=" * 60)

    @app.cli.command("reconcile-payments")
    @click.option("--older-than", type=int, default=None,
                  help="Only pending payments older than N minutes "
                       "(default: PENDING_PAYMENT_SWEEP_MINUTES)")
    def reconcile_payments(older_than):
        """Settle pending payments whose webhook never arrived.

        Looks up each stale pending payment's Checkout Session in Stripe and
        applies the same transition a webhook would. Safe to run on a cron.

        Usage:
            flask reconcile-payments
            flask reconcile-payments --older-than 5
        """
        from eventpass.services.webhook_service import reconcile_pending_payments

        counts = reconcile_pending_payments(older_than_minutes=older_than)
        if not counts:
            click.echo("No pending payments to reconcile.")
            return
        for outcome, count in sorted(counts.items()):
            click.echo(f"  {outcome}: {count}")
