"""
smartcrm/__init__.py

Flask application factory for the Smart Home CRM (installation objects, tasks,
commercial proposals and invoices).

Notes:
- JSON API only; the single page client lives elsewhere.
- SQLite for development, any SQLAlchemy URL in production (Flask-Migrate for schema changes).
- Domain errors (errors.CRMError) are mapped to JSON responses here, once.
"""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler

import click
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .errors import CRMError
from .extensions import csrf, db, login_manager, migrate
from .models import Profile

logger = logging.getLogger(__name__)


def create_app(config_object: str | object = "config.Config") -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)
    app.config.from_object(config_object)

    # Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)
    login_manager.init_app(app)

    @login_manager.user_loader
    def load_user(user_id: str) -> Profile | None:
        """Load profile for Flask-Login."""
        if not str(user_id).isdigit():
            return None
        profile = db.session.get(Profile, int(user_id))
        if profile is None or not profile.is_active:
            return None
        return profile

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({"error": "Authentication required.", "type": "Unauthorized"}), 401

    # ----------------------------------------------------------------------
    # Blueprints
    # ----------------------------------------------------------------------
    from .blueprints.auth.routes import auth_bp
    from .blueprints.objects.routes import objects_bp
    from .blueprints.tasks.routes import tasks_bp
    from .blueprints.proposals.routes import invoices_bp, proposals_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(objects_bp)
    app.register_blueprint(tasks_bp)
    app.register_blueprint(proposals_bp)
    app.register_blueprint(invoices_bp)

    _register_error_handlers(app)

    if app.config.get("LOG_TO_FILE", True):
        _configure_logging(app)

    # ----------------------------------------------------------------------
    # CLI
    # ----------------------------------------------------------------------
    @app.cli.command("create-admin")
    @click.option("--username", prompt=True)
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option("--full-name", default="Администратор", show_default=True)
    def create_admin_command(username: str, password: str, full_name: str):
        """Create the first admin profile."""
        from .seed import create_admin

        profile, created = create_admin(username, password, full_name)
        if created:
            click.echo(f"Admin '{profile.username}' created.")
        else:
            click.echo(f"Profile '{profile.username}' already exists; nothing changed.")

    @app.cli.command("seed-catalog")
    def seed_catalog_command():
        """Seed the default product catalog."""
        from .seed import seed_catalog

        created = seed_catalog()
        click.echo(f"Catalog seeded ({created} new products).")

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "app": app.config.get("APP_NAME")})

    return app


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(CRMError)
    def handle_crm_error(exc: CRMError):
        if exc.status_code >= 500:
            logger.error("%s: %s", exc.__class__.__name__, exc.message)
        else:
            logger.info("%s: %s", exc.__class__.__name__, exc.message)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        return jsonify({"error": exc.description, "type": exc.name}), exc.code


def _configure_logging(app: Flask) -> None:
    log_dir = os.path.join(app.instance_path, "logs")
    os.makedirs(log_dir, exist_ok=True)

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s:%(lineno)d %(message)s"
    )

    def _rot(path: str, level: int) -> RotatingFileHandler:
        h = RotatingFileHandler(
            os.path.join(log_dir, path),
            maxBytes=2 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        h.setLevel(level)
        h.setFormatter(formatter)
        return h

    root = logging.getLogger()
    for h in root.handlers[:]:
        root.removeHandler(h)

    level = logging.DEBUG if app.debug else getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO)
    root.setLevel(level)

    root.addHandler(_rot("app.log", logging.INFO))
    root.addHandler(_rot("error.log", logging.ERROR))

    # Debug log and console only in development
    if app.debug:
        root.addHandler(_rot("debug.log", logging.DEBUG))

        console = logging.StreamHandler()
        console.setLevel(logging.DEBUG)
        console.setFormatter(formatter)
        root.addHandler(console)

    app.logger.handlers = []
    app.logger.propagate = True
    app.logger.setLevel(root.level)

    app.logger.info("Logging initialised (debug=%s).", app.debug)
