import logging
from datetime import datetime, timezone
from typing import Optional

from flask import Flask, jsonify
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from storefront.config import Config
from storefront.db import DatabaseConnector
from storefront.exceptions import BaseAPIException
from storefront.metrics import Metrics
from storefront.routes import admin_bp, auth_bp, cart_bp, categories_bp, orders_bp, products_bp
from storefront.services import TokenService

logger = logging.getLogger(__name__)

HTTP_ERROR_CODES = {
    400: "BAD_REQUEST",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}


def _error_response(status: int, code: str, message: str, details=None):
    return jsonify({
        "success": False,
        "error": {"code": code, "message": message, "details": details or {}},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }), status


def create_app(config: Config, connector: DatabaseConnector, metrics: Optional[Metrics] = None) -> Flask:
    """
    Application factory.

    The connector must already be connected (server.start_database) or be
    connected by the caller; the app only borrows it. Metrics default to a
    fresh registry so tests can build several apps in one process.
    """
    app = Flask(__name__)
    app.config["DEBUG"] = config.app.debug
    app.config["TAX_RATE"] = config.app.tax_rate
    app.config["ENVIRONMENT"] = config.app.environment

    app.extensions["config"] = config
    app.extensions["db_connector"] = connector
    app.extensions["tokens"] = TokenService(config.security)

    metrics = metrics or Metrics()
    metrics.init_app(app)

    # ------------------------------------------------------------------ #
    # Blueprints                                                           #
    # ------------------------------------------------------------------ #
    app.register_blueprint(auth_bp,       url_prefix="/api/auth")
    app.register_blueprint(categories_bp, url_prefix="/api/categories")
    app.register_blueprint(products_bp,   url_prefix="/api/products")
    app.register_blueprint(cart_bp,       url_prefix="/api/cart")
    app.register_blueprint(orders_bp,     url_prefix="/api/orders")
    app.register_blueprint(admin_bp,      url_prefix="/api/admin")

    # ------------------------------------------------------------------ #
    # Error handlers: consistent JSON error envelope                       #
    # ------------------------------------------------------------------ #
    @app.errorhandler(BaseAPIException)
    def api_error(e: BaseAPIException):
        if e.status_code >= 500:
            logger.error(f"{e.error_code}: {e.internal_message}")
        else:
            logger.info(f"{e.error_code}: {e.message}")
        body = e.to_dict()
        body["timestamp"] = datetime.now(timezone.utc).isoformat()
        return jsonify(body), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        code = HTTP_ERROR_CODES.get(e.code, "HTTP_ERROR")
        return _error_response(e.code, code, str(e.description))

    @app.errorhandler(SQLAlchemyError)
    def db_error(e):
        logger.error(f"Database error: {e}")
        return _error_response(500, "DATABASE_ERROR", "A database error occurred.")

    @app.errorhandler(500)
    def internal_error(e):
        logger.error(f"Internal error: {getattr(e, 'original_exception', e)}")
        return _error_response(500, "INTERNAL_ERROR", "An internal server error occurred.")

    # ------------------------------------------------------------------ #
    # Health check                                                         #
    # ------------------------------------------------------------------ #
    @app.get("/health")
    def health():
        """Readiness probe. Returns 503 while the database is unreachable."""
        reachable = connector.ping()
        body = {
            "status": "ok" if reachable else "error",
            "database": "connected" if reachable else "disconnected",
            "connection_state": connector.state.value,
            "environment": config.app.environment,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        return jsonify(body), 200 if reachable else 503

    return app
