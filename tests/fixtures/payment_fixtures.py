"""
Test doubles for the payment resilience layer.

- FakeClock / FakeSleep: deterministic monotonic time and recorded backoff delays
- ScriptedDocument: page model that finishes appended scripts the way a test asks
- GatewayStub: httpx.MockTransport handler serving queued payment API responses
"""

import asyncio
import json
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import httpx

from src.integrations.script_loader import CheckoutWidget, ScriptDocument, ScriptElement

TEST_API_BASE_URL = 'http://payments.test'
TEST_KEY_ID = 'rzp_test_key123456'


class FakeClock:
    """Monotonic clock advanced explicitly by tests and by FakeSleep."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays instead of waiting; advances the clock if given one."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.delays: List[float] = []

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class ScriptedDocument(ScriptDocument):
    """
    Document that completes appended scripts on the next loop iteration.

    Outcomes:
        load: define the global, then fire the load event
        load_without_global: fire the load event only
        error: fire the error event with ``error_message``
        hang: never fire anything
    """

    def __init__(
        self,
        outcome: str = 'load',
        global_name: str = 'Razorpay',
        widget: Any = CheckoutWidget,
        error_message: Optional[str] = None
    ):
        super().__init__()
        self.outcome = outcome
        self.global_name = global_name
        self.widget = widget
        self.error_message = error_message
        self.append_count = 0

    def _on_append(self, element: ScriptElement) -> None:
        self.append_count += 1
        asyncio.get_running_loop().call_soon(self._finish, element)

    def _finish(self, element: ScriptElement) -> None:
        if self.outcome == 'load':
            self.set_global(self.global_name, self.widget)
            element.dispatch_load()
        elif self.outcome == 'load_without_global':
            element.dispatch_load()
        elif self.outcome == 'error':
            element.dispatch_error(self.error_message)


Reply = Union[httpx.Response, Exception, Dict[str, Any], Callable[[httpx.Request], httpx.Response]]


class GatewayStub:
    """
    Queued responses keyed by method and path.

    Each queued reply is used once, except the last one, which keeps answering.
    Replies may be an ``httpx.Response``, an exception to raise, a JSON body
    (served with HTTP 200) or a callable receiving the request.
    """

    def __init__(self):
        self.routes: Dict[Tuple[str, str], List[Reply]] = {}
        self.requests: List[httpx.Request] = []

    def queue(self, method: str, path: str, *replies: Reply) -> 'GatewayStub':
        self.routes.setdefault((method.upper(), path), []).extend(replies)
        return self

    def calls(self, method: str, path: str) -> int:
        return sum(
            1 for request in self.requests
            if request.method == method.upper() and request.url.path == path
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        replies = self.routes.get((request.method, request.url.path))
        if not replies:
            return httpx.Response(404, json={'success': False, 'error': {'message': 'Not Found'}})

        reply = replies.pop(0) if len(replies) > 1 else replies[0]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, httpx.Response):
            return reply
        if callable(reply):
            return reply(request)
        return httpx.Response(200, json=reply)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def order_data(
    amount: int = 5310000,
    receipt: str = 'order_1718000000000_abc123',
    order_id: str = 'order_NXgP1Y2Z3a4b5c',
    notes: Any = None
) -> Dict[str, Any]:
    return {
        'id': order_id,
        'entity': 'order',
        'amount': amount,
        'amount_paid': 0,
        'amount_due': amount,
        'currency': 'INR',
        'receipt': receipt,
        'offer_id': None,
        'status': 'created',
        'attempts': 0,
        'notes': [] if notes is None else notes,
        'created_at': 1718000000,
    }


def echo_order(order_id: str = 'order_NXgP1Y2Z3a4b5c') -> Callable[[httpx.Request], httpx.Response]:
    """Create-order reply that mirrors the requested amount, receipt and notes."""

    def reply(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(200, json={
            'success': True,
            'data': order_data(
                amount=body['amount'],
                receipt=body['receipt'],
                order_id=order_id,
                notes=body.get('notes') or {},
            ),
        })

    return reply


def verification_data(success: bool = True, message: str = 'Payment verified successfully') -> Dict[str, Any]:
    return {
        'success': True,
        'data': {
            'success': success,
            'message': message,
            'orderId': 'order_NXgP1Y2Z3a4b5c',
            'transactionId': 'txn_1718000000' if success else None,
        },
    }


def payment_response() -> Dict[str, str]:
    return {
        'razorpay_order_id': 'order_NXgP1Y2Z3a4b5c',
        'razorpay_payment_id': 'pay_NXgQ9R8S7T6U5V',
        'razorpay_signature': 'a3f1c2e4b5d6a7f8e9d0c1b2a3f4e5d6',
    }
