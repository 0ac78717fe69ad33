"""
Custom route decorators for access control.

- service_key_required: the caller must present the service-role key as a
  bearer token (server-to-server jobs such as catalog resync).

End-user routes use flask_login.login_required; users are loaded from
their bearer token by the request loader in extensions.py.
"""

import secrets
from functools import wraps

from flask import current_app, request

from storefront.errors import AuthenticationError


def service_key_required(f):
    """Require `Authorization: Bearer <SUPABASE_SERVICE_KEY>`."""

    @wraps(f)
    def decorated(*args, **kwargs):
        expected = current_app.config.get("SUPABASE_SERVICE_KEY")
        header = request.headers.get("Authorization", "")
        token = header[len("Bearer "):].strip() if header.startswith("Bearer ") else ""

        if not expected or not token or not secrets.compare_digest(token, expected):
            raise AuthenticationError("Service credentials required")

        return f(*args, **kwargs)

    return decorated
