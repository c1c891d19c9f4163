"""
Global pytest Configuration and Fixtures

Provides one freshly wired set of payment components per test: metrics on a
private registry, a structured logger at DEBUG, an error handler and retry
engine on a fake clock, the catalog and pricing validator, a script loader on
a scripted document and a payment API client talking to ``GatewayStub``
through ``httpx.MockTransport``. Nothing touches the network or sleeps.

Key Components:
- Component fixtures for unit tests (``structured_logger``, ``error_handler``,
  ``retry_mechanism``, ``pricing_validator``, ``script_loader``, ``payment_client``)
- ``services`` / ``app`` / ``client`` fixtures for container and Flask tests
- pytest-asyncio in auto mode, so ``async def`` tests and fixtures need no marker
"""

import pytest

from src.business.catalog import ProductCatalog
from src.business.checkout import CheckoutService
from src.business.models import PaymentConfig
from src.business.pricing import PricingRules, PricingValidator
from src.business.services import create_payment_services
from src.config.settings import TestingConfig
from src.integrations.error_handler import ErrorHandler
from src.integrations.payment_client import PaymentGatewayClient
from src.integrations.retry import RetryConfig, RetryMechanism
from src.integrations.script_loader import CheckoutScriptLoader
from src.monitoring.logging import StructuredLogger
from src.monitoring.metrics import PaymentMetrics

from tests.fixtures import (
    TEST_API_BASE_URL,
    TEST_KEY_ID,
    FakeClock,
    FakeSleep,
    GatewayStub,
    ScriptedDocument,
)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(fake_clock):
    return FakeSleep(fake_clock)


@pytest.fixture
def metrics():
    return PaymentMetrics()


@pytest.fixture
def structured_logger(metrics):
    return StructuredLogger(environment='testing', level='DEBUG', console_enabled=False, metrics=metrics)


@pytest.fixture
def error_handler(structured_logger, metrics, fake_clock):
    return ErrorHandler(structured_logger, metrics=metrics, clock=fake_clock)


@pytest.fixture
def retry_mechanism(structured_logger, error_handler, metrics, fake_sleep, fake_clock):
    return RetryMechanism(
        structured_logger,
        error_handler,
        default_config=RetryConfig(jitter=False),
        metrics=metrics,
        sleep=fake_sleep.sleep,
        clock=fake_clock,
    )


@pytest.fixture
def catalog():
    return ProductCatalog()


@pytest.fixture
def pricing_validator(catalog, structured_logger, error_handler, metrics):
    return PricingValidator(
        catalog,
        structured_logger,
        error_handler,
        rules=PricingRules.from_config(TestingConfig),
        metrics=metrics,
    )


@pytest.fixture
def script_document():
    return ScriptedDocument()


@pytest.fixture
def script_loader(script_document, structured_logger, metrics):
    return CheckoutScriptLoader(script_document, structured_logger, timeout=0.5, metrics=metrics)


@pytest.fixture
def gateway():
    return GatewayStub()


@pytest.fixture
async def payment_client(gateway, structured_logger, error_handler, retry_mechanism):
    client = PaymentGatewayClient(
        TEST_API_BASE_URL,
        PaymentConfig(key_id=TEST_KEY_ID, company_name='Handicraft Store'),
        structured_logger,
        error_handler,
        retry_mechanism,
        transport=gateway.transport,
    )
    yield client
    await client.aclose()


@pytest.fixture
def checkout_service(pricing_validator, script_loader, payment_client, structured_logger):
    return CheckoutService(pricing_validator, script_loader, payment_client, structured_logger)


@pytest.fixture
def services(gateway, fake_sleep, fake_clock):
    return create_payment_services(
        TestingConfig,
        document=ScriptedDocument(),
        api_transport=gateway.transport,
        sleep=fake_sleep.sleep,
        clock=fake_clock,
    )


@pytest.fixture
def app(services):
    from src.app import create_app

    application = create_app('testing', services=services)
    application.config['TESTING'] = True
    return application


@pytest.fixture
def client(app):
    return app.test_client()
