"""Auth service — bearer tokens from the identity service (Supabase Auth).

The storefront keeps no credentials. A caller presents the access token
the identity service issued; we ask the identity service who it belongs
to and map the answer onto a local Profile row.
"""

import logging

import requests
from flask import current_app
from sqlalchemy.exc import IntegrityError

from storefront.extensions import db
from storefront.models.profile import Profile

logger = logging.getLogger(__name__)


def fetch_identity(token):
    """Return the identity-service user JSON for `token`, or None.

    None means the token was rejected or the identity service was
    unreachable; both are treated as unauthenticated.
    """
    base_url = (current_app.config.get("SUPABASE_URL") or "").rstrip("/")
    api_key = current_app.config.get("SUPABASE_ANON_KEY")
    if not base_url or not api_key:
        logger.error("SUPABASE_URL / SUPABASE_ANON_KEY not configured, cannot verify tokens")
        return None

    try:
        resp = requests.get(
            f"{base_url}/auth/v1/user",
            headers={
                "Authorization": f"Bearer {token}",
                "apikey": api_key,
            },
            timeout=10,
        )
    except requests.RequestException as e:
        logger.error(f"Identity service request failed: {e}")
        return None

    if resp.status_code != 200:
        logger.info(f"Identity service rejected token (HTTP {resp.status_code})")
        return None

    user = resp.json()
    if not user or not user.get("id"):
        return None
    return user


def get_or_create_profile(user):
    """Get the Profile for an identity user dict, creating it on first sight.

    Keeps email / full name in step with the identity service.
    Returns the Profile instance (committed).
    """
    profile = db.session.get(Profile, user["id"])
    full_name = (user.get("user_metadata") or {}).get("full_name")

    if profile:
        changed = False
        if user.get("email") and profile.email != user["email"]:
            profile.email = user["email"]
            changed = True
        if full_name and profile.full_name != full_name:
            profile.full_name = full_name
            changed = True
        if changed:
            db.session.commit()
        return profile

    profile = Profile(
        id=user["id"],
        email=user.get("email"),
        full_name=full_name,
    )
    db.session.add(profile)
    try:
        db.session.commit()
    except IntegrityError:
        # A parallel request for the same user created it first
        db.session.rollback()
        return db.session.get(Profile, user["id"])
    logger.info(f"Created profile for user {profile.id}")
    return profile


def load_profile_from_token(token):
    """Flask-Login request loader backend. Returns a Profile or None."""
    user = fetch_identity(token)
    if user is None:
        return None
    return get_or_create_profile(user)
