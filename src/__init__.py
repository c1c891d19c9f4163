"""
Client-side payment resilience layer.

Structured logging, error classification, retries with circuit breaking,
checkout script loading and cart pricing reconciliation for a Razorpay-style
checkout, plus a small Flask diagnostics surface.

Package Structure:
- src.config: Environment-specific settings
- src.monitoring: Structured logger and Prometheus metrics
- src.integrations: Error handler, retry engine, script loader, payment API client
- src.business: Catalog, pricing validator, checkout service, service container
- src.blueprints: Diagnostics endpoints
"""

__version__ = "1.0.0"
__title__ = "payment-resilience"

SUPPORTED_ENVIRONMENTS = ["development", "testing", "staging", "production"]
