"""
Service container for the payment resilience layer.

One ``PaymentServices`` instance holds exactly one of each component per
process, wired by constructor injection:

    metrics -> structured logger -> error handler -> retry engine
            -> script loader -> catalog -> pricing validator
            -> payment client -> checkout service

Build it with ``create_payment_services(config)``; tests pass fakes for the
clock, sleep, script document and HTTP transports.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Type

import httpx
import structlog

from src.config.settings import BaseConfig
from src.integrations.error_handler import ErrorHandler
from src.integrations.payment_client import PaymentGatewayClient
from src.integrations.retry import RetryConfig, RetryMechanism
from src.integrations.script_loader import (
    CheckoutScriptLoader, HttpScriptDocument, ScriptDocument, install_checkout_widget,
)
from src.monitoring.logging import LogShipper, StructuredLogger
from src.monitoring.metrics import PaymentMetrics

from .catalog import ProductCatalog
from .checkout import CheckoutService
from .models import PaymentConfig
from .pricing import PricingRules, PricingValidator

logger = structlog.get_logger(__name__)

LOG_COLLECTION_PATH = '/api/logs'


@dataclass
class PaymentServices:
    """Per-process instances of every payment component."""

    config: Type[BaseConfig]
    metrics: PaymentMetrics
    structured_logger: StructuredLogger
    error_handler: ErrorHandler
    retry_mechanism: RetryMechanism
    script_loader: CheckoutScriptLoader
    catalog: ProductCatalog
    pricing_validator: PricingValidator
    payment_client: PaymentGatewayClient
    checkout: CheckoutService

    async def aclose(self) -> None:
        """Close the API client and wait for pending log shipments."""
        await self.payment_client.aclose()
        await self.structured_logger.aclose()

    def health_snapshot(self) -> Dict[str, Any]:
        """Breaker states, script loader status and error statistics."""
        breakers = {
            name: state.to_dict()
            for name, state in self.retry_mechanism.get_circuit_breaker_states().items()
        }
        open_breakers = [name for name, state in breakers.items() if state['is_open']]
        return {
            'status': 'degraded' if open_breakers else 'healthy',
            'environment': self.config.ENVIRONMENT,
            'session_id': self.structured_logger.get_session_id(),
            'circuit_breakers': breakers,
            'open_circuit_breakers': open_breakers,
            'script_loader': self.script_loader.get_loading_status(),
            'errors': self.error_handler.get_error_stats(),
            'payment_configured': self.payment_client.validate_config(),
        }


def build_payment_config(config: Type[BaseConfig]) -> PaymentConfig:
    return PaymentConfig(
        key_id=config.RAZORPAY_KEY_ID,
        currency=config.CURRENCY,
        company_name=config.COMPANY_NAME,
        theme_color=config.THEME_COLOR,
        timeout=config.PAYMENT_API_TIMEOUT,
        retry_attempts=config.PAYMENT_RETRY_ATTEMPTS,
    )


def build_log_shipper(
    config: Type[BaseConfig],
    transport: Optional[httpx.BaseTransport] = None
) -> Optional[LogShipper]:
    """Remote log shipper when remote logging is enabled, else None."""
    if not config.LOG_REMOTE_ENABLED:
        return None
    endpoint = config.LOG_COLLECTION_URL or f"{config.API_BASE_URL.rstrip('/')}{LOG_COLLECTION_PATH}"
    return LogShipper(
        endpoint,
        timeout=config.LOG_SHIPPING_TIMEOUT,
        transport=transport,
        max_queue_size=config.LOG_SHIPPING_QUEUE_SIZE
    )


def create_payment_services(
    config: Type[BaseConfig],
    document: Optional[ScriptDocument] = None,
    api_transport: Optional[httpx.AsyncBaseTransport] = None,
    log_transport: Optional[httpx.BaseTransport] = None,
    script_transport: Optional[httpx.AsyncBaseTransport] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
    metrics: Optional[PaymentMetrics] = None
) -> PaymentServices:
    """
    Wire the payment components for one process.

    Args:
        config: Configuration class, e.g. the result of ``get_config()``
        document: Page model for the checkout script (HTTP-backed when omitted)
        api_transport: httpx transport for the payment API
        log_transport: httpx transport for remote log shipping
        script_transport: httpx transport for fetching the checkout script
        sleep: Awaitable sleep used between retry attempts
        clock: Monotonic time source shared by the error handler and retry engine
        metrics: Metrics registry wrapper (a fresh one when omitted)

    Returns:
        PaymentServices container
    """
    metrics = metrics or PaymentMetrics()

    structured_logger = StructuredLogger(
        environment=config.ENVIRONMENT,
        level=config.LOG_LEVEL,
        buffer_size=config.LOG_BUFFER_SIZE,
        console_enabled=config.LOG_CONSOLE_ENABLED,
        shipper=build_log_shipper(config, log_transport),
        metrics=metrics,
    )

    error_handler = ErrorHandler(
        structured_logger,
        metrics=metrics,
        spike_threshold=config.ERROR_SPIKE_THRESHOLD,
        spike_window=config.ERROR_SPIKE_WINDOW,
        clock=clock,
    )

    retry_mechanism = RetryMechanism(
        structured_logger,
        error_handler,
        default_config=RetryConfig(
            max_attempts=config.RETRY_MAX_ATTEMPTS,
            base_delay=config.RETRY_BASE_DELAY,
            max_delay=config.RETRY_MAX_DELAY,
            backoff_multiplier=config.RETRY_BACKOFF_MULTIPLIER,
            jitter=config.RETRY_JITTER,
        ),
        metrics=metrics,
        sleep=sleep,
        clock=clock,
        failure_threshold=config.CIRCUIT_BREAKER_FAILURE_THRESHOLD,
        reset_timeout=config.CIRCUIT_BREAKER_RESET_TIMEOUT,
    )

    if document is None:
        document = HttpScriptDocument(
            initializers={config.CHECKOUT_SCRIPT_URL: install_checkout_widget},
            timeout=config.SCRIPT_LOAD_TIMEOUT,
            transport=script_transport,
        )
    script_loader = CheckoutScriptLoader(
        document,
        structured_logger,
        script_url=config.CHECKOUT_SCRIPT_URL,
        global_name=config.CHECKOUT_GLOBAL_NAME,
        timeout=config.SCRIPT_LOAD_TIMEOUT,
        metrics=metrics,
    )

    catalog = ProductCatalog()
    pricing_validator = PricingValidator(
        catalog,
        structured_logger,
        error_handler,
        rules=PricingRules.from_config(config),
        metrics=metrics,
    )

    payment_client = PaymentGatewayClient(
        config.API_BASE_URL,
        build_payment_config(config),
        structured_logger,
        error_handler,
        retry_mechanism,
        transport=api_transport,
    )

    checkout = CheckoutService(pricing_validator, script_loader, payment_client, structured_logger)

    logger.info(
        "Payment services initialized",
        environment=config.ENVIRONMENT,
        remote_logging=config.LOG_REMOTE_ENABLED,
        api_base_url=config.API_BASE_URL,
    )

    return PaymentServices(
        config=config,
        metrics=metrics,
        structured_logger=structured_logger,
        error_handler=error_handler,
        retry_mechanism=retry_mechanism,
        script_loader=script_loader,
        catalog=catalog,
        pricing_validator=pricing_validator,
        payment_client=payment_client,
        checkout=checkout,
    )
