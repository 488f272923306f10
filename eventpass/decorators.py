"""
Custom route decorators for access control.

- host_required: ensures user is logged in AND has the "host" role.
"""

from functools import wraps

from flask import jsonify
from flask_login import current_user, login_required


def host_required(f):
    """Require login + host role."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if current_user.role != "host":
            return jsonify({"error": "Host account required"}), 403
        return f(*args, **kwargs)

    return decorated
