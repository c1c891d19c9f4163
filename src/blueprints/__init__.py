"""
Flask Blueprints Package

Centralised blueprint registration for the application factory.

Blueprint Organization:
- Health Blueprint (/health/*, /metrics): payment subsystem diagnostics
"""

from typing import List

import structlog
from flask import Blueprint, Flask

from .health import health_bp

logger = structlog.get_logger(__name__)

ALL_BLUEPRINTS: List[Blueprint] = [health_bp]


def register_all_blueprints(app: Flask) -> None:
    """Register every blueprint on ``app``."""
    for blueprint in ALL_BLUEPRINTS:
        app.register_blueprint(blueprint)
        logger.debug("Blueprint registered", blueprint=blueprint.name)


__all__ = ['health_bp', 'register_all_blueprints', 'ALL_BLUEPRINTS']
