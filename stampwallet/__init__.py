# stampwallet/__init__.py
import logging

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import (
    API_FORBIDDEN,
    API_INVALID_REQUEST,
    API_NOT_FOUND,
    API_UNAUTHORIZED,
    API_UNKNOWN_ERROR,
    LedgerError,
)
from .extensions import db, migrate


_HTTP_STATUS_TO_API = {
    400: API_INVALID_REQUEST,
    401: API_UNAUTHORIZED,
    403: API_FORBIDDEN,
    404: API_NOT_FOUND,
    405: API_INVALID_REQUEST,
    413: API_INVALID_REQUEST,
}


def create_app(config_overrides: dict | None = None, ledger_services=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)
    # Multipart overhead on top of the largest accepted file
    if app.config.get("MAX_CONTENT_LENGTH") is None:
        app.config["MAX_CONTENT_LENGTH"] = app.config["FILE_UPLOAD_LIMIT_BYTES"] + 64 * 1024

    logging.getLogger("stampwallet").setLevel(app.config["LOG_LEVEL"])
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Invalid ledger configuration fails startup with ValueError
    from .wallet import build_wallet
    app.extensions["stampwallet"] = build_wallet(app.config, ledger_services)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.business import business_bp
    from .routes.user import user_bp
    from .routes.files import files_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(business_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(files_bp)

    from .responses import error_response, internal_error

    @app.errorhandler(LedgerError)
    def handle_ledger_error(e):
        return error_response(e)

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"status": _HTTP_STATUS_TO_API.get(e.code, API_UNKNOWN_ERROR)}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return internal_error()

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
