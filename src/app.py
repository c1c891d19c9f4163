"""
Flask Application Factory

Builds the diagnostics application around one ``PaymentServices`` container
per process. The container is stored in ``app.extensions['payment_services']``
and shared by every request; blueprints read it through ``current_app``.

Usage:
    # Development server
    export APP_ENV=development
    flask --app "src.app:create_app()" run

    # Production WSGI deployment
    gunicorn "app:application"

    # Application factory usage
    from src.app import create_app
    app = create_app('testing')
"""

from typing import Any, Dict, Optional

import structlog
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from src.blueprints import register_all_blueprints
from src.blueprints.health import EXTENSION_KEY
from src.business.services import PaymentServices, create_payment_services
from src.config.settings import get_config
from src.monitoring.logging import setup_structured_logging

logger = structlog.get_logger(__name__)

__version__ = "1.0.0"


def create_app(
    config_name: Optional[str] = None,
    services: Optional[PaymentServices] = None,
    **service_overrides: Any
) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_name: Environment name (``development``, ``testing``, ``staging``,
            ``production``); falls back to ``APP_ENV`` / ``FLASK_ENV``
        services: Pre-built service container (tests)
        **service_overrides: Passed to ``create_payment_services`` when no
            container is given (transports, fake clock, sleep)

    Returns:
        Configured Flask application

    Raises:
        ValueError: For an unknown environment name
    """
    config = get_config(config_name)

    setup_structured_logging(
        level=config.LOG_LEVEL or ('DEBUG' if config.DEBUG else 'INFO'),
        json_format=config.LOG_JSON_FORMAT,
    )

    app = Flask(__name__)
    app.config.from_object(config)

    for problem in config.validate_configuration():
        logger.warning("Configuration problem", environment=config.ENVIRONMENT, problem=problem)

    app.extensions[EXTENSION_KEY] = services or create_payment_services(config, **service_overrides)

    register_all_blueprints(app)
    _register_error_handlers(app)

    logger.info(
        "Flask application created",
        environment=config.ENVIRONMENT,
        debug=config.DEBUG,
        version=__version__,
    )
    return app


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return jsonify(_error_body(error.name, error.description)), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_exception(error: Exception):
        logger.error("Unhandled application error", error=str(error),
                     error_type=type(error).__name__, exc_info=True)
        return jsonify(_error_body('Internal Server Error', 'An unexpected error occurred')), 500


def _error_body(error: str, message: str) -> Dict[str, str]:
    return {'error': error, 'message': message}
