"""
Shared test doubles and canned payment API payloads.

Package Organization:
    Payment Fixtures (payment_fixtures.py):
        - FakeClock and FakeSleep for deterministic retry and breaker timing
        - ScriptedDocument for checkout script load outcomes
        - GatewayStub serving queued responses through httpx.MockTransport
        - Canned order and verification payloads
"""

from tests.fixtures.payment_fixtures import (
    TEST_API_BASE_URL,
    TEST_KEY_ID,
    FakeClock,
    FakeSleep,
    GatewayStub,
    ScriptedDocument,
    echo_order,
    order_data,
    payment_response,
    verification_data,
)

__all__ = [
    'TEST_API_BASE_URL',
    'TEST_KEY_ID',
    'FakeClock',
    'FakeSleep',
    'GatewayStub',
    'ScriptedDocument',
    'echo_order',
    'order_data',
    'payment_response',
    'verification_data',
]
