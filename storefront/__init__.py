import os
import logging

import click
from flask import Flask, jsonify

from storefront.config import config_by_name
from storefront.errors import StorefrontError
from storefront.extensions import db, migrate, login_manager, limiter


def create_app(config_name=None):
    """Application factory."""

    if config_name is None:
        config_name = os.environ.get("FLASK_ENV", "development")

    app = Flask(__name__)
    app.config.from_object(config_by_name[config_name])

    # --- Validate required env vars (skip in testing) ---
    # Production refuses to boot without its secrets; development warns.
    if config_name != "testing":
        try:
            config_by_name[config_name].validate()
        except RuntimeError as e:
            if config_name == "production":
                raise
            app.logger.warning(f"Config validation: {e}")

    # --- Init extensions ---
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from storefront import models  # noqa: F401

    # --- Register blueprints ---
    from storefront.blueprints.checkout import checkout_bp
    from storefront.blueprints.webhooks import webhooks_bp
    from storefront.blueprints.catalog import catalog_bp
    from storefront.blueprints.account import account_bp

    app.register_blueprint(checkout_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(catalog_bp)
    app.register_blueprint(account_bp)

    # --- Error handlers ---
    @app.errorhandler(StorefrontError)
    def storefront_error(e):
        if e.status_code >= 500:
            app.logger.error(f"{type(e).__name__}: {e.message}")
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return jsonify({"error": "Method not allowed"}), 405

    @app.errorhandler(429)
    def rate_limited(e):
        return jsonify({"error": "Too many requests, please try again shortly."}), 429

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
        """JSON API: no sniffing, no framing."""
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
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

    @app.cli.command("sync-products")
    def sync_products():
        """Pull every active Stripe product into the products table.

        Usage:
            flask sync-products
        """
        from storefront.services.catalog_service import bulk_resync

        summary = bulk_resync()

        click.echo("")
        click.echo("=" * 60)
        click.echo("Product sync finished")
        click.echo("=" * 60)
        click.echo(f"  Synced:  {summary['synced']}")
        click.echo(f"  Errors:  {summary['errors']}")
        click.echo(f"  Total:   {summary['total']}")
        click.echo("=" * 60)

    @app.cli.command("verify-stripe")
    def verify_stripe():
        """Report which Stripe mode the configured key is in and whether
        the webhook signing secret is present.
        """
        api_key = app.config.get("STRIPE_SECRET_KEY")
        webhook_secret = app.config.get("STRIPE_WEBHOOK_SECRET")

        if not api_key:
            click.echo("ERROR: STRIPE_SECRET_KEY is not set.")
        else:
            key_mode = "Live" if api_key.startswith("sk_live_") else "Test"
            click.echo(f"Stripe key mode: {key_mode}")

        if not webhook_secret:
            click.echo("ERROR: STRIPE_WEBHOOK_SECRET is not set. Webhooks will be rejected.")
        else:
            click.echo("Webhook signing secret: configured")

        click.echo(f"Site URL: {app.config.get('SITE_URL')}")
