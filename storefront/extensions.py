"""
Deferred extension instances.

Created here, bound to the app in create_app() via init_app().
"""

from flask import jsonify
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate
from flask_login import LoginManager
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address

db = SQLAlchemy()
migrate = Migrate()
login_manager = LoginManager()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # per-route limits only
    storage_uri="memory://",
)


@login_manager.request_loader
def load_user_from_request(request):
    """Resolve the caller from an `Authorization: Bearer <token>` header.

    The token is issued by the identity service; it is verified there and
    mapped onto a local Profile. Imports lazily to avoid circular deps.
    """
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    if not token:
        return None

    from storefront.services.auth_service import load_profile_from_token

    return load_profile_from_token(token)


@login_manager.unauthorized_handler
def unauthorized():
    """API callers get JSON, not a redirect to a login page."""
    return jsonify({"error": "Authentication required"}), 401
