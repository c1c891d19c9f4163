"""
Payment Resilience Configuration Classes

This module implements environment-specific settings (Development, Testing, Staging,
Production) for the payment resilience layer. Values are read once from the process
environment, with python-dotenv loading a local ``.env`` file first, and are consumed
by the service container (``src.business.services``) and the Flask application factory.

Key Components:
- Logger verbosity, ring buffer size and remote log shipping endpoint
- Payment gateway API location, public checkout key and widget branding
- Checkout script URL and load timeout
- Retry engine and circuit breaker defaults
- Pricing business constants and the discount code table

Usage:
    >>> from src.config import get_config
    >>> config_class = get_config('production')
    >>> app.config.from_object(config_class)
"""

import os
from typing import Any, Dict, List, Optional, Type

from dotenv import load_dotenv

# Load environment variables early
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


# Discount code table: code -> percentage, minimum order amount, cap and description
DEFAULT_DISCOUNT_CODES: Dict[str, Dict[str, Any]] = {
    'WELCOME10': {
        'percentage': 10,
        'min_order_amount': 5000,
        'max_discount': 2000,
        'description': 'Welcome discount - 10% off',
    },
    'FESTIVE20': {
        'percentage': 20,
        'min_order_amount': 10000,
        'max_discount': 5000,
        'description': 'Festival special - 20% off',
    },
    'CRAFT15': {
        'percentage': 15,
        'min_order_amount': 7500,
        'max_discount': 3000,
        'description': 'Craftsman special - 15% off',
    },
}

# Metropolitan pincodes; destinations are matched on the first three digits
DEFAULT_METRO_PINCODES: List[str] = [
    '110001', '400001', '560001', '600001', '700001', '500001'
]

# (upper weight bound in kg, base shipping cost); the last tier has no bound
DEFAULT_SHIPPING_TIERS: List[tuple] = [
    (5.0, 100),
    (20.0, 200),
    (50.0, 500),
    (None, 1000),
]


class BaseConfig:
    """
    Base configuration shared by every environment.

    Subclasses override the environment name and the handful of settings that
    differ between deployments (log verbosity, console mirroring, remote shipping).
    """

    # Application metadata
    APP_NAME = os.getenv('APP_NAME', 'Payment Resilience Service')
    APP_VERSION = os.getenv('APP_VERSION', '1.0.0')

    ENVIRONMENT = 'development'
    DEBUG = False
    TESTING = False

    # Structured logger
    LOG_LEVEL: Optional[str] = os.getenv('LOG_LEVEL')
    LOG_BUFFER_SIZE = _env_int('LOG_BUFFER_SIZE', 1000)
    LOG_CONSOLE_ENABLED = _env_bool('LOG_CONSOLE_ENABLED', False)
    LOG_REMOTE_ENABLED = _env_bool('LOG_REMOTE_ENABLED', False)
    LOG_COLLECTION_URL: Optional[str] = os.getenv('LOG_COLLECTION_URL')
    LOG_SHIPPING_TIMEOUT = _env_float('LOG_SHIPPING_TIMEOUT', 5.0)
    LOG_SHIPPING_QUEUE_SIZE = _env_int('LOG_SHIPPING_QUEUE_SIZE', 1000)
    LOG_JSON_FORMAT = _env_bool('LOG_JSON_FORMAT', True)

    # Payment gateway API
    API_BASE_URL = os.getenv('API_BASE_URL', 'http://localhost:5000')
    PAYMENT_API_TIMEOUT = _env_float('PAYMENT_API_TIMEOUT', 30.0)
    PAYMENT_RETRY_ATTEMPTS = _env_int('PAYMENT_RETRY_ATTEMPTS', 3)
    RAZORPAY_KEY_ID = os.getenv('RAZORPAY_KEY_ID', '')
    COMPANY_NAME = os.getenv('COMPANY_NAME', 'Handicraft Store')
    THEME_COLOR = os.getenv('THEME_COLOR', '#3B82F6')
    CURRENCY = os.getenv('CURRENCY', 'INR')

    # Checkout widget script
    CHECKOUT_SCRIPT_URL = os.getenv(
        'CHECKOUT_SCRIPT_URL', 'https://checkout.razorpay.com/v1/checkout.js'
    )
    CHECKOUT_GLOBAL_NAME = os.getenv('CHECKOUT_GLOBAL_NAME', 'Razorpay')
    SCRIPT_LOAD_TIMEOUT = _env_float('SCRIPT_LOAD_TIMEOUT', 10.0)

    # Retry engine and circuit breaker (seconds)
    RETRY_MAX_ATTEMPTS = _env_int('RETRY_MAX_ATTEMPTS', 3)
    RETRY_BASE_DELAY = _env_float('RETRY_BASE_DELAY', 1.0)
    RETRY_MAX_DELAY = _env_float('RETRY_MAX_DELAY', 30.0)
    RETRY_BACKOFF_MULTIPLIER = _env_float('RETRY_BACKOFF_MULTIPLIER', 2.0)
    RETRY_JITTER = _env_bool('RETRY_JITTER', True)
    CIRCUIT_BREAKER_FAILURE_THRESHOLD = _env_int('CIRCUIT_BREAKER_FAILURE_THRESHOLD', 5)
    CIRCUIT_BREAKER_RESET_TIMEOUT = _env_float('CIRCUIT_BREAKER_RESET_TIMEOUT', 60.0)

    # Error spike detection
    ERROR_SPIKE_THRESHOLD = _env_int('ERROR_SPIKE_THRESHOLD', 5)
    ERROR_SPIKE_WINDOW = _env_float('ERROR_SPIKE_WINDOW', 300.0)

    # Pricing business constants
    PRICING_LOW_STOCK_THRESHOLD = 5
    PRICING_HEAVY_ITEM_WEIGHT = 30.0
    PRICING_SPECIAL_HANDLING_WEIGHT = 100.0
    PRICING_MIN_ORDER_TOTAL = 1
    PRICING_MAX_ORDER_TOTAL = 1_000_000
    PRICING_AMOUNT_TOLERANCE = 1
    SHIPPING_TIERS = DEFAULT_SHIPPING_TIERS
    SHIPPING_NON_METRO_SURCHARGE = 100
    SHIPPING_BASE_DAYS = 7
    SHIPPING_NON_METRO_EXTRA_DAYS = 2
    METRO_PINCODES = DEFAULT_METRO_PINCODES
    DISCOUNT_CODES = DEFAULT_DISCOUNT_CODES

    @classmethod
    def to_dict(cls) -> Dict[str, Any]:
        """Return every upper-case setting as a plain dictionary."""
        return {
            name: getattr(cls, name)
            for name in dir(cls)
            if name.isupper()
        }

    @classmethod
    def validate_configuration(cls) -> List[str]:
        """
        Check the settings for values the payment layer cannot operate with.

        Returns:
            List of human-readable problems; empty when the configuration is usable
        """
        problems = []

        if cls.RETRY_MAX_ATTEMPTS < 1:
            problems.append('RETRY_MAX_ATTEMPTS must be at least 1')
        if cls.RETRY_BASE_DELAY < 0 or cls.RETRY_MAX_DELAY < 0:
            problems.append('Retry delays must not be negative')
        if cls.CIRCUIT_BREAKER_FAILURE_THRESHOLD < 1:
            problems.append('CIRCUIT_BREAKER_FAILURE_THRESHOLD must be at least 1')
        if cls.SCRIPT_LOAD_TIMEOUT <= 0:
            problems.append('SCRIPT_LOAD_TIMEOUT must be positive')
        if cls.LOG_BUFFER_SIZE < 1:
            problems.append('LOG_BUFFER_SIZE must be at least 1')
        if cls.PRICING_MIN_ORDER_TOTAL > cls.PRICING_MAX_ORDER_TOTAL:
            problems.append('PRICING_MIN_ORDER_TOTAL exceeds PRICING_MAX_ORDER_TOTAL')
        if cls.ENVIRONMENT == 'production' and not cls.RAZORPAY_KEY_ID:
            problems.append('RAZORPAY_KEY_ID is required in production')

        return problems


class DevelopmentConfig(BaseConfig):
    """Verbose logging mirrored to the console, nothing shipped remotely."""

    ENVIRONMENT = 'development'
    DEBUG = True
    LOG_CONSOLE_ENABLED = _env_bool('LOG_CONSOLE_ENABLED', True)
    LOG_JSON_FORMAT = _env_bool('LOG_JSON_FORMAT', False)


class TestingConfig(BaseConfig):
    """Deterministic settings for the test suite."""

    ENVIRONMENT = 'testing'
    TESTING = True
    LOG_LEVEL = 'DEBUG'
    LOG_CONSOLE_ENABLED = False
    LOG_REMOTE_ENABLED = False
    API_BASE_URL = 'http://payments.test'
    RAZORPAY_KEY_ID = 'rzp_test_key123456'
    RETRY_JITTER = False


class StagingConfig(BaseConfig):
    """Moderate verbosity; errors shipped so staging incidents are visible."""

    ENVIRONMENT = 'staging'
    LOG_REMOTE_ENABLED = _env_bool('LOG_REMOTE_ENABLED', False)


class ProductionConfig(BaseConfig):
    """Minimal verbosity with error entries shipped to the log collector."""

    ENVIRONMENT = 'production'
    LOG_REMOTE_ENABLED = _env_bool('LOG_REMOTE_ENABLED', True)


config_map: Dict[str, Type[BaseConfig]] = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'staging': StagingConfig,
    'production': ProductionConfig,
}


def get_config(environment: Optional[str] = None) -> Type[BaseConfig]:
    """
    Get configuration class for the specified environment.

    Args:
        environment: Target environment name (defaults to APP_ENV, then FLASK_ENV)

    Returns:
        Configuration class for the specified environment

    Raises:
        ValueError: If environment is not supported
    """
    if environment is None:
        environment = os.getenv('APP_ENV') or os.getenv('FLASK_ENV', 'development')

    environment = environment.lower()

    if environment not in config_map:
        raise ValueError(
            f"Unsupported environment '{environment}'. "
            f"Supported environments: {list(config_map.keys())}"
        )

    return config_map[environment]
