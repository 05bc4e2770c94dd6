"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, which enables:
           - Multiple isolated test app instances
           - Clean separation between app creation and app startup
           - Alembic to import the metadata without starting the server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Build the immutable AuthSettings once and store it in app.extensions
  3. Initialise SQLAlchemy via init_app()
  4. Register the auth blueprint under /api/v1/auth
  5. Register global error handlers (AppError → JSON, Exception → 500)
  6. Set the socialnet logger level from LOG_LEVEL
"""

from __future__ import annotations

import logging
import traceback

from flask import Flask, jsonify
from marshmallow import ValidationError

from socialnet.config import config_by_name, validate_production_config


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development", overrides: dict | None = None) -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.
        overrides:   Optional config values applied after the config class
                     (tests use this to flip AUTH_VERBOSE_ERRORS and friends).

    Returns:
        A fully configured Flask app ready to serve requests.
    """
    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)
    if overrides:
        app.config.update(overrides)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    logging.getLogger("socialnet").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    from socialnet.app.middleware.auth_middleware import AUTH_SETTINGS_KEY
    from socialnet.app.services.auth_settings import AuthSettings
    app.extensions[AUTH_SETTINGS_KEY] = AuthSettings.from_config(app.config)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from socialnet.app.extensions import db
    db.init_app(app)

    # ── Model registration ─────────────────────────────────────────────────
    # Import all models so that SQLAlchemy's MetaData is populated.
    with app.app_context():
        from socialnet.app.models import refresh_token, user  # noqa: F401

    # ── Blueprints ─────────────────────────────────────────────────────────
    from socialnet.app.routes.auth import auth_bp
    app.register_blueprint(auth_bp, url_prefix="/api/v1/auth")

    # ── Error handlers ─────────────────────────────────────────────────────
    _register_error_handlers(app)

    return app


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
      ValidationError → marshmallow schema errors as MISSING_FIELD /
                        INVALID_FIELD responses (400)
      Exception       → generic INTERNAL_ERROR (500); full traceback logged

    Stack traces and configuration details never leave the server.
    """
    from socialnet.app.errors import GENERIC_INTERNAL_MESSAGE, AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """
        Converts an AppError raised anywhere in the request lifecycle
        (middleware, service result unwrap, repository) into the envelope.
        """
        if error.http_status >= 500:
            app.logger.error("Internal error: %r", error, exc_info=error.__cause__)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """
        Converts marshmallow ValidationError into the standard error envelope.
        Only the FIRST field error is returned.
        """
        messages = error.messages  # e.g. {"email": ["Not a valid email address."]}

        field = None
        raw_message = "Invalid input."
        code = ErrorCode.INVALID_FIELD

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None

                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                else:
                    raw_message = str(field_errors)

                if str(raw_message).startswith("Missing data for required field"):
                    code = ErrorCode.MISSING_FIELD
                break
        elif isinstance(messages, list):
            raw_message = messages[0] if messages else "Invalid input."

        response_body = {"error": {"code": code, "message": raw_message}}
        if field is not None:
            response_body["error"]["field"] = field

        return jsonify(response_body), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        """
        Catches all unhandled exceptions and returns a generic 500 response.
        HTTP exceptions (404, 405, ...) keep their own status.
        """
        from werkzeug.exceptions import HTTPException

        if isinstance(error, HTTPException):
            return jsonify({
                "error": {"code": error.name.upper().replace(" ", "_"), "message": error.description},
            }), error.code

        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": GENERIC_INTERNAL_MESSAGE,
            }
        }), 500
