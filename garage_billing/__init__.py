import os
import logging

import click
import stripe
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash

from garage_billing.config import config_by_name
from garage_billing.errors import BillingError
from garage_billing.extensions import db, migrate, login_manager, csrf, limiter

logger = logging.getLogger(__name__)


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
    migrate.init_app(app, db)
    login_manager.init_app(app)
    csrf.init_app(app)
    limiter.init_app(app)

    # --- Import models so Alembic can discover them ---
    with app.app_context():
        from garage_billing import models  # noqa: F401

    # --- Register blueprints ---
    from garage_billing.blueprints.auth import auth_bp
    from garage_billing.blueprints.billing import billing_bp
    from garage_billing.blueprints.passes import passes_bp
    from garage_billing.blueprints.subscriptions import subscriptions_bp
    from garage_billing.blueprints.webhooks import webhooks_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(billing_bp)
    app.register_blueprint(passes_bp)
    app.register_blueprint(subscriptions_bp)
    app.register_blueprint(webhooks_bp)

    # Exempt webhooks from CSRF — raw body needed for Stripe signature verification
    csrf.exempt(webhooks_bp)

    register_error_handlers(app)

    # --- CLI commands ---
    register_cli(app)

    # --- Security headers ---
    @app.after_request
    def add_security_headers(response):
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


def register_error_handlers(app):
    """JSON errors for every route. This service has no HTML pages."""

    @app.errorhandler(BillingError)
    def billing_error(e):
        return jsonify({"error": str(e)}), e.status_code

    @app.errorhandler(stripe.StripeError)
    def stripe_error(e):
        db.session.rollback()
        logger.error(f"Stripe request failed: {e}")
        message = getattr(e, "user_message", None) or str(e)
        return jsonify({"error": f"Payment provider error: {message}"}), 502

    @app.errorhandler(HTTPException)
    def http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(500)
    def server_error(e):
        return jsonify({"error": "Internal server error"}), 500


def register_cli(app):
    """Register custom CLI commands with the Flask app."""

    @app.cli.command("create-admin")
    @click.option("--email", required=True, help="Admin email")
    @click.option("--password", required=True, help="Admin password")
    @click.option("--first-name", default="Garage", help="First name")
    @click.option("--last-name", default="Admin", help="Last name")
    @click.option(
        "--role",
        type=click.Choice(["garage_admin", "super_admin"]),
        default="super_admin",
        help="Admin role",
    )
    def create_admin(email, password, first_name, last_name, role):
        """Create an admin user (or promote an existing one).

        Usage:
            flask create-admin --email admin@example.com --password s3cret
        """
        from garage_billing.models.user import User

        email = email.lower().strip()
        user = User.query.filter_by(email=email).first()
        if user:
            user.role = role
            user.password_hash = generate_password_hash(password)
            click.echo(f"Updated existing user {email} -> {role}")
        else:
            user = User(
                email=email,
                first_name=first_name,
                last_name=last_name,
                password_hash=generate_password_hash(password),
                role=role,
            )
            db.session.add(user)
            click.echo(f"Created admin user: {email} ({role})")
        db.session.commit()

    @app.cli.command("process-renewals")
    @click.option(
        "--days-ahead",
        type=int,
        default=None,
        help="Renewal window in days (default: RENEWAL_DAYS_AHEAD).",
    )
    def process_renewals(days_ahead):
        """Sync every subscription whose period ends within the window.

        Usage:
            flask process-renewals
            flask process-renewals --days-ahead 3
        """
        from garage_billing.services.gateway import get_gateway
        from garage_billing.services.subscription_lifecycle import (
            SubscriptionLifecycleService,
        )

        if days_ahead is None:
            days_ahead = app.config.get("RENEWAL_DAYS_AHEAD", 7)

        service = SubscriptionLifecycleService(db.session, get_gateway())
        results = service.process_due_renewals(days_ahead=days_ahead)

        for r in results:
            line = f"  {r['subscription_id']}: {r['status']}"
            if r.get("error"):
                line += f" ({r['error']})"
            click.echo(line)

        failed = sum(1 for r in results if r["status"] == "failed")
        click.echo(f"Processed {len(results)} renewal(s), {failed} failed.")

    @app.cli.command("migrate-pass-subscriptions")
    @click.argument("pass_id")
    @click.option("--dry-run", is_flag=True, help="Show what would change without touching Stripe.")
    def migrate_pass_subscriptions(pass_id, dry_run):
        """Move every subscription on a pass onto the pass's current price.

        Usage:
            flask migrate-pass-subscriptions <pass_id>
            flask migrate-pass-subscriptions <pass_id> --dry-run
        """
        from garage_billing.services.gateway import get_gateway
        from garage_billing.services.price_migration import PriceMigrationService

        service = PriceMigrationService(db.session, get_gateway())

        if dry_run:
            preview = service.preview_price_migration(pass_id)
            for row in preview["subscriptions"]:
                flag = "migrate" if row["will_migrate"] else "skip"
                click.echo(
                    f"  {row['subscription_id']}: {row['current_price']} -> "
                    f"{row['new_price']} ({flag})"
                )
            click.echo(
                f"{preview['will_migrate']} of {preview['total']} subscription(s) would migrate."
            )
            return

        summary = service.migrate_all_subscriptions_for_pass(pass_id)
        for r in summary["results"]:
            line = f"  {r['subscription_id']}: {r['status']}"
            if r.get("error"):
                line += f" ({r['error']})"
            click.echo(line)
        click.echo(
            f"Migrated {summary['migrated']}, skipped {summary['skipped']}, "
            f"failed {summary['failed']}."
        )
