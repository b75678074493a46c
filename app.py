import logging

import click
from flask import Flask, jsonify
from flask_migrate import Migrate
from werkzeug.middleware.proxy_fix import ProxyFix
from sqlalchemy.exc import SQLAlchemyError

from config import Config
from models import db
from routes import activity_bp, auth_bp, cron_bp, health_bp, oauth_bp
from routes.cron import run_cleanup
from security.csrf import csrf_protect
from security.oauth import init_oauth
from security.otp import OtpStorageError
from utils.auth_context import load_current_user

logger = logging.getLogger(__name__)


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    proxy_hops = int(app.config.get("PROXY_FIX_X_FOR", 0))
    if proxy_hops:
        # remote_addr becomes the address the outermost trusted proxy saw
        app.wsgi_app = ProxyFix(app.wsgi_app, x_for=proxy_hops)

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(oauth_bp)
    app.register_blueprint(activity_bp)
    app.register_blueprint(cron_bp)

    # Database init
    db.init_app(app)

    # Migrations
    Migrate(app, db)

    # Google sign-in
    init_oauth(app)

    @app.before_request
    def _load_user():
        load_current_user()

    @app.before_request
    def _csrf_protect():
        return csrf_protect()

    @app.errorhandler(SQLAlchemyError)
    def _storage_error(exc):
        db.session.rollback()
        logger.exception("Unhandled storage error")
        return jsonify(error="Internal server error"), 500

    @app.errorhandler(OtpStorageError)
    def _otp_storage_error(exc):
        return jsonify(error="Could not issue a code. Please try again later."), 500

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app

#-------------------------

def register_cli(app):
    @app.cli.command("init-db")
    def init_db():
        """Create all tables (local development; use `flask db upgrade` elsewhere)."""
        db.create_all()
        click.echo("Database tables created")

    @app.cli.command("cleanup-auth")
    def cleanup_auth():
        """Reap idle rate-limit records and dead one-time codes."""
        removed = run_cleanup()
        for name, count in removed.items():
            click.echo(f"{name}: {count} removed")

#-------------------------


if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
