"""
Prometheus Metrics for the Payment Resilience Layer

Collects counters and gauges for every resilience decision taken on the payment
path: retry attempts and outcomes, circuit breaker transitions, classified errors,
checkout script loads, pricing validations and log volume.

Each ``PaymentMetrics`` instance owns its own ``CollectorRegistry`` so several
service containers (one per Flask app or test) never collide on metric names.
The ``/metrics`` endpoint renders that registry with ``generate_latest``.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, generate_latest


class PaymentMetrics:
    """
    Prometheus collectors for the payment resilience components.

    Args:
        registry: Registry to register collectors in; a private one is created when omitted
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()

        self.retry_attempts_total = Counter(
            'payment_retry_attempts_total',
            'Total number of retried attempts by operation',
            ['operation'],
            registry=self.registry
        )
        self.retry_outcomes_total = Counter(
            'payment_retry_outcomes_total',
            'Retry cycles by operation and final outcome',
            ['operation', 'outcome'],
            registry=self.registry
        )
        self.circuit_breaker_state = Gauge(
            'payment_circuit_breaker_open',
            'Circuit breaker state by operation (1 = open, 0 = closed)',
            ['operation'],
            registry=self.registry
        )
        self.circuit_breaker_rejections_total = Counter(
            'payment_circuit_breaker_rejections_total',
            'Calls rejected by an open circuit breaker',
            ['operation'],
            registry=self.registry
        )
        self.errors_total = Counter(
            'payment_errors_total',
            'Processed errors by category and severity',
            ['category', 'severity'],
            registry=self.registry
        )
        self.error_spikes_total = Counter(
            'payment_error_spikes_total',
            'Detected error spikes by category',
            ['category'],
            registry=self.registry
        )
        self.script_loads_total = Counter(
            'checkout_script_loads_total',
            'Checkout script load attempts by outcome',
            ['outcome'],
            registry=self.registry
        )
        self.pricing_validations_total = Counter(
            'pricing_validations_total',
            'Pricing validations by operation and outcome',
            ['operation', 'outcome'],
            registry=self.registry
        )
        self.log_entries_total = Counter(
            'structured_log_entries_total',
            'Structured log entries recorded by level',
            ['level'],
            registry=self.registry
        )

    def record_retry_attempt(self, operation: str) -> None:
        self.retry_attempts_total.labels(operation=operation).inc()

    def record_retry_outcome(self, operation: str, success: bool) -> None:
        outcome = 'success' if success else 'exhausted'
        self.retry_outcomes_total.labels(operation=operation, outcome=outcome).inc()

    def set_circuit_state(self, operation: str, is_open: bool) -> None:
        self.circuit_breaker_state.labels(operation=operation).set(1 if is_open else 0)

    def record_circuit_rejection(self, operation: str) -> None:
        self.circuit_breaker_rejections_total.labels(operation=operation).inc()

    def record_error(self, category: str, severity: str) -> None:
        self.errors_total.labels(category=category, severity=severity).inc()

    def record_error_spike(self, category: str) -> None:
        self.error_spikes_total.labels(category=category).inc()

    def record_script_load(self, outcome: str) -> None:
        self.script_loads_total.labels(outcome=outcome).inc()

    def record_pricing_validation(self, operation: str, valid: bool) -> None:
        outcome = 'valid' if valid else 'invalid'
        self.pricing_validations_total.labels(operation=operation, outcome=outcome).inc()

    def record_log_entry(self, level: str) -> None:
        self.log_entries_total.labels(level=level).inc()

    def render(self) -> bytes:
        """Render the registry in the Prometheus text exposition format."""
        return generate_latest(self.registry)
