import logging

import click
from flask import Flask, request, jsonify
from flask_migrate import Migrate

from config import Config
from models import db
from models.user import User
from routes import health_bp, auth_bp, booking_bp, payments_bp, webhook_bp, admin_bp
from security.csrf import csrf_protect
from services.errors import BookingError
from utils.auth_context import load_current_user
from utils.seed import ensure_role, seed_roles

logger = logging.getLogger(__name__)


def create_app(config_object=Config):
    app = Flask(__name__)
    app.config.from_object(config_object)

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Register routes
    app.register_blueprint(health_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(booking_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(webhook_bp)
    app.register_blueprint(admin_bp)

    db.init_app(app)
    Migrate(app, db)

    with app.app_context():
        if app.config.get("TESTING"):
            db.create_all()
        seed_roles()

    @app.errorhandler(BookingError)
    def _booking_error(exc):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.code, exc.message)
        else:
            logger.info("%s on %s %s: %s", exc.code, request.method, request.path, exc.message)
        return jsonify(**exc.to_dict()), exc.status_code

    app.before_request(load_current_user)
    app.before_request(csrf_protect)

    @app.after_request
    def add_security_headers(resp):
        resp.headers["X-Content-Type-Options"] = "nosniff"
        resp.headers["X-Frame-Options"] = "DENY"
        resp.headers["Referrer-Policy"] = "no-referrer"
        resp.headers["Permissions-Policy"] = "geolocation=(), microphone=(), camera=()"
        resp.headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none';"
        return resp

    register_cli(app)

    return app


def register_cli(app):
    @app.cli.command("make-admin")
    @click.argument("email")
    def make_admin(email):
        """Promote a user to ADMIN by email (bootstrap)."""
        user = User.query.filter_by(email=email.strip().lower()).first()
        if not user:
            click.echo("User not found")
            return

        admin_role = ensure_role("ADMIN")
        if admin_role not in user.roles:
            user.roles.append(admin_role)
        db.session.commit()

        click.echo(f"{user.email} promoted to ADMIN")

    @app.cli.command("seed-roles")
    def seed_roles_command():
        """Create the CLIENT, STAFF and ADMIN roles if missing."""
        created = seed_roles()
        click.echo(f"Created roles: {', '.join(created)}" if created else "Roles already present")


if __name__ == "__main__":
    app = create_app()
    app.run(host="127.0.0.1", port=5002)
