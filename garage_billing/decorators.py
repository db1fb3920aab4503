"""
Custom route decorators for access control.

- admin_required: ensures user is logged in AND holds a garage_admin or
  super_admin role. Finer-grained per-garage permissions live outside
  this service.
"""

from functools import wraps

from flask import abort
from flask_login import current_user, login_required


def admin_required(f):
    """Require login + an admin role."""

    @wraps(f)
    @login_required
    def decorated(*args, **kwargs):
        if not current_user.is_admin:
            abort(403)
        return f(*args, **kwargs)

    return decorated
