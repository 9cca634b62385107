import logging

from flask import Flask, jsonify
from config import Config
from routes import health_bp, booking_bp, availability_bp, payments_bp, webhook_bp, owner_bp

from models import db
from models.db import use_immediate_transactions
from flask_migrate import Migrate
import services
from services.errors import DomainError
from utils.auth_context import load_current_user


def create_app(config_object=Config, redis_client=None, gateway=None, notifier=None):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(availability_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(owner_bp)

    # Database init
    db.init_app(app)
    with app.app_context():
        use_immediate_transactions(db.engine)

    # Migrations
    Migrate(app, db)

    # Gateway, lock and notifier are chosen here, once
    services.init_app(app, redis_client=redis_client, gateway=gateway, notifier=notifier)

    @app.before_request
    def _load_user():
        load_current_user()

    @app.errorhandler(DomainError)
    def _domain_error(exc):
        resp = jsonify(exc.to_dict())
        retry_after = getattr(exc, "retry_after", None)
        if retry_after:
            resp.headers["Retry-After"] = str(retry_after)
        return resp, exc.http_status

    @app.teardown_request
    def _rollback_on_error(exc):
        if exc is not None:
            db.session.rollback()

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
import click
from services.sweeps import expire_due_holds, complete_finished

def register_cli(app):
    @app.cli.command("expire-holds")
    @click.option("--limit", default=500, show_default=True, help="Max holds to expire in one run.")
    def expire_holds(limit):
        """Expire unpaid holds whose deadline has passed."""
        count = expire_due_holds(services.get_services().holds, limit=limit)
        print(f"{count} hold(s) expired")

    @app.cli.command("complete-bookings")
    @click.option("--limit", default=500, show_default=True, help="Max bookings to complete in one run.")
    def complete_bookings(limit):
        """Mark confirmed bookings whose end time has passed as completed."""
        count = complete_finished(services.get_services().holds, limit=limit)
        print(f"{count} booking(s) completed")

    @app.cli.command("init-db")
    def init_db():
        """Create tables and the overlap constraints (local dev without migrations)."""
        db.create_all()
        print("Database initialised")

#-------------------------




if __name__ == "__main__":
    app = create_app()
    # Run locally
    app.run(host="127.0.0.1", port=5002)
