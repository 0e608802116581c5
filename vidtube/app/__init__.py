"""
app/__init__.py — VidTube application factory.

create_app(config_name) builds a fresh Flask app on every call; importing this
package has no side effects, so tests can build isolated apps and Alembic can
load the model metadata without a server.

Build order:
  1. Config class from config_by_name, then any overrides
  2. db / ma bound with init_app()
  3. TokenCodec and LocalMediaUploader built from config, stored in
     app.extensions
  4. Blueprints: /api/v1/users and /media
  5. Error handlers and development CORS headers
"""

from __future__ import annotations

import traceback
from typing import Any, Mapping

from flask import Flask, jsonify, request
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from vidtube.config import config_by_name, validate_production_config


def create_app(
        config_name: str = "development",
        overrides: Mapping[str, Any] | None = None,
) -> Flask:
    """
    Builds the VidTube Flask app.

    Args:
        config_name: "development", "testing" or "production"; unknown names
                     fall back to development.
        overrides:   Config values applied on top of the config class
                     (the test suite points MEDIA_ROOT at a temp directory).
    """
    app = Flask(__name__)

    app.config.from_object(config_by_name.get(config_name, config_by_name["development"]))
    if overrides:
        app.config.update(overrides)
    if config_name == "production":
        validate_production_config(app)

    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Late imports: models and services import extensions, which must not
    # import this package back.
    from vidtube.app.extensions import MEDIA_UPLOADER_KEY, TOKEN_CODEC_KEY, db, ma
    from vidtube.app.services.media_storage import LocalMediaUploader
    from vidtube.app.services.token_codec import TokenCodec

    db.init_app(app)
    ma.init_app(app)

    # A bad signing configuration stops the app here, not on the first request.
    app.extensions[TOKEN_CODEC_KEY] = TokenCodec.from_config(app.config)
    app.extensions[MEDIA_UPLOADER_KEY] = LocalMediaUploader(
        app.config["MEDIA_ROOT"],
        app.config["MEDIA_BASE_URL"],
    )

    with app.app_context():
        from vidtube.app.models import subscription, user  # noqa: F401

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    return app


def _register_blueprints(app: Flask) -> None:
    from vidtube.app.routes.media import media_bp
    from vidtube.app.routes.users import users_bp

    app.register_blueprint(users_bp, url_prefix="/api/v1/users")
    # Matches the default MEDIA_BASE_URL.
    app.register_blueprint(media_bp, url_prefix="/media")


def _first_validation_error(messages) -> tuple[str | None, str]:
    """
    Picks the first (field, message) pair out of marshmallow's error messages.

    Schema-level errors (key "_schema") carry no field.
    """
    if isinstance(messages, list):
        return None, str(messages[0]) if messages else "Invalid input."
    if not isinstance(messages, dict) or not messages:
        return None, "Invalid input."

    field_name, field_errors = next(iter(messages.items()))
    field = None if field_name == "_schema" else field_name
    if isinstance(field_errors, list):
        return field, str(field_errors[0]) if field_errors else "Invalid value."
    return field, str(field_errors)


def _register_error_handlers(app: Flask) -> None:
    """
    Every failure leaves the app in the envelope
    {"error": {"code": ..., "message": ...[, "field": ...]}}.

      AppError        → its own status; AuthError always as the generic 401
      ValidationError → 400 MISSING_FIELD or INVALID_FIELD, first error only
      HTTPException   → werkzeug's status (404, 405, 413, ...)
      Exception       → 500 INTERNAL_ERROR, traceback to the log only
    """
    from vidtube.app.errors import AppError, AuthError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        # The internal code is logged here and nowhere else; the client gets
        # error.to_dict(), which hides it for AuthError.
        if isinstance(error, AuthError):
            app.logger.info(
                "%s %s rejected: %s (%s)",
                request.method, request.path, error.code, error.message,
            )
        elif error.http_status >= 500:
            app.logger.error("%s %s failed: %r", request.method, request.path, error)
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        field, message = _first_validation_error(error.messages)
        code = (
            ErrorCode.MISSING_FIELD
            if message.startswith("Missing data for required field")
            else ErrorCode.INVALID_FIELD
        )
        body = {"code": code, "message": message}
        if field is not None:
            body["field"] = field
        return jsonify({"error": body}), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return jsonify({
            "error": {
                "code": (error.name or "HTTP_ERROR").upper().replace(" ", "_"),
                "message": error.description,
            }
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.error(
            "Unhandled exception on %s %s: %s\n%s",
            request.method, request.path, error, traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Reflects the request Origin with credentials allowed, so a local frontend
    can send the auth cookies. Only active when DEBUG or TESTING is set.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if not origin or not (app.config.get("DEBUG") or app.config.get("TESTING")):
            return response

        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Credentials"] = "true"
        response.headers["Access-Control-Allow-Methods"] = "GET, POST, PATCH, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
        response.headers["Vary"] = "Origin"
        return response
