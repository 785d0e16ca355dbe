from datetime import timedelta
import logging

import click
from flask import Flask, current_app
from flasgger import Swagger
from flask_cors import CORS

from .config import get_config
from .errors import register_error_handlers
from models.db_storage import DBStorage
from services.bookings import BookingEngine
from services.clock import utcnow
from services.tokens import TokenManager

# Minimal Swagger config: exposes /swagger.json and UI at /apidocs
SWAGGER_TEMPLATE = {
    "swagger": "2.0",
    "info": {
        "title": "LabBook API",
        "version": "1.0.0",
        "description": "REST API for lab equipment booking, users and authentication.",
    },
    "basePath": "/",  # Blueprints are mounted under /api/v1
    "schemes": ["http"],
    "securityDefinitions": {
        "Bearer": {
            "type": "apiKey",
            "name": "Authorization",
            "in": "header",
            "description": "Enter the token with the `Bearer ` prefix, e.g. \"Bearer abcde12345\"."
        }
    }
}

SWAGGER_CONFIG = {
    "headers": [],
    "specs": [
        {
            "endpoint": "apispec_1",
            "route": "/swagger.json",
            "rule_filter": lambda rule: True,   # include all endpoints
            "model_filter": lambda tag: True,   # include all models
        }
    ],
    "static_url_path": "/flasgger_static",
    "swagger_ui": True,
    "specs_route": "/apidocs/",
}


def get_storage() -> DBStorage:
    return current_app.extensions["labbook.storage"]


def get_tokens() -> TokenManager:
    return current_app.extensions["labbook.tokens"]


def get_bookings() -> BookingEngine:
    return current_app.extensions["labbook.bookings"]


def create_app(config_name: str | None = None, storage: DBStorage | None = None, clock=utcnow) -> Flask:
    """
    Application factory: creates and configures the Flask app.

    `storage` and `clock` are injected so tests can supply an in-memory
    database and a controllable clock; by default a DBStorage is built
    from DATABASE_URL.
    """
    app = Flask(__name__)

    # Load configuration (reads .env via get_config)
    app.config.from_object(get_config(config_name))

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # Cross-Origin Resource Sharing: enable for dev, configurable for prod
    CORS(app, resources={r"/*": {"origins": app.config.get("CORS_ORIGINS", "*")}})

    # Swagger UI and JSON
    Swagger(app, template=SWAGGER_TEMPLATE, config=SWAGGER_CONFIG)

    # Register global error handlers that return the uniform error envelope
    register_error_handlers(app)

    if storage is None:
        storage = DBStorage(app.config["DATABASE_URL"], echo=app.config.get("SQL_ECHO", False))
        storage.reload()
    app.extensions["labbook.storage"] = storage
    app.extensions["labbook.tokens"] = TokenManager.from_config(storage, app.config, clock=clock)
    app.extensions["labbook.bookings"] = BookingEngine(
        storage,
        clock=clock,
        schedule_window=timedelta(days=app.config["DEFAULT_BOOKING_WINDOW_DAYS"]),
    )

    from .health import bp as health_bp
    from .auth import bp as auth_bp
    from .users import bp as users_bp
    from .equipment import bp as equipment_bp
    from .bookings import bp as bookings_bp

    app.register_blueprint(health_bp, url_prefix="/api/v1")
    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")
    app.register_blueprint(users_bp, url_prefix="/api/v1")
    app.register_blueprint(equipment_bp, url_prefix="/api/v1")
    app.register_blueprint(bookings_bp, url_prefix="/api/v1")

    # Ensure the DB session is removed at the end of each request/app context
    @app.teardown_appcontext
    def remove_session(exception=None):
        # scoped_session.remove(), preventing connection leaks
        storage.close()

    @app.cli.command("purge-tokens")
    def purge_tokens():
        """Delete expired refresh tokens from the database."""
        count = app.extensions["labbook.tokens"].purge_expired()
        click.echo(f"Purged {count} expired refresh tokens")

    @app.route("/")
    def root():
        return {
            "message": "Welcome to LabBook API",
            "docs": "/apidocs/",
            "health": "/api/v1/health",
        }, 200

    return app
