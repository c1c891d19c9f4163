"""
Configuration package for the payment resilience layer.

Usage:
    >>> from src.config import get_config
    >>> config_class = get_config('production')
"""

from src.config.settings import (
    BaseConfig,
    DevelopmentConfig,
    TestingConfig,
    StagingConfig,
    ProductionConfig,
    DEFAULT_DISCOUNT_CODES,
    DEFAULT_METRO_PINCODES,
    DEFAULT_SHIPPING_TIERS,
    config_map,
    get_config,
)

__all__ = [
    'BaseConfig',
    'DevelopmentConfig',
    'TestingConfig',
    'StagingConfig',
    'ProductionConfig',
    'DEFAULT_DISCOUNT_CODES',
    'DEFAULT_METRO_PINCODES',
    'DEFAULT_SHIPPING_TIERS',
    'config_map',
    'get_config',
]
