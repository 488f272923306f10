"""Auth blueprint — /auth/*

JSON session login for hosts. Leads never log in; they use the per-event
token from their gateway link.

Routes:
- GET  /auth/csrf-token — CSRF token for session-authenticated POSTs
- POST /auth/login      — email + password login
- POST /auth/logout     — end the session
- GET  /auth/me         — the logged-in host
"""

from flask import Blueprint, jsonify, request
from flask_login import current_user, login_required, login_user, logout_user
from flask_wtf.csrf import generate_csrf
from werkzeug.security import check_password_hash

from eventpass.extensions import limiter
from eventpass.models.user import User

auth_bp = Blueprint("auth", __name__, url_prefix="/auth")


def serialize_user(user):
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "stripeAccountId": user.stripe_account_id,
        "stripeAccountStatus": user.stripe_account_status,
        "subscriptionStatus": user.subscription_status,
    }


# ──────────────────────────────────────────────
# GET /auth/csrf-token
# ──────────────────────────────────────────────

@auth_bp.route("/csrf-token")
def csrf_token():
    """Token to send back in the X-CSRFToken header."""
    return jsonify({"csrfToken": generate_csrf()})


# ──────────────────────────────────────────────
# POST /auth/login
# ──────────────────────────────────────────────

@auth_bp.route("/login", methods=["POST"])
@limiter.limit("15 per minute")
def login():
    """Standard email + password login."""
    data = request.get_json(silent=True) or {}
    email = (data.get("email") or "").lower().strip()
    password = data.get("password") or ""

    if not email or not password:
        return jsonify({"error": "Email and password are required."}), 400

    user = User.query.filter_by(email=email).first()

    if user is None or not check_password_hash(user.password_hash, password):
        return jsonify({"error": "Invalid email or password."}), 401

    if not user.is_active:
        return jsonify({"error": "Your account has been deactivated."}), 403

    login_user(user, remember=bool(data.get("remember")))
    return jsonify(serialize_user(user))


# ──────────────────────────────────────────────
# POST /auth/logout
# ──────────────────────────────────────────────

@auth_bp.route("/logout", methods=["POST"])
def logout():
    logout_user()
    return jsonify({"message": "Logged out"})


# ──────────────────────────────────────────────
# GET /auth/me
# ──────────────────────────────────────────────

@auth_bp.route("/me")
@login_required
def me():
    return jsonify(serialize_user(current_user))
