"""
Monitoring package: structured payment logging and Prometheus metrics.

Key Features:
- StructuredLogger with correlation fields, in-memory buffer, redaction and
  remote shipping of error and security events
- structlog configuration for the module loggers (``setup_structured_logging``)
- PaymentMetrics counters and gauges on a per-instance registry
"""

from .logging import (
    LogEntry,
    LogLevel,
    LogShipper,
    RiskLevel,
    SecurityLogEntry,
    SecurityOutcome,
    StructuredLogger,
    get_logger,
    setup_structured_logging,
)
from .metrics import PaymentMetrics

__all__ = [
    'LogEntry',
    'LogLevel',
    'LogShipper',
    'RiskLevel',
    'SecurityLogEntry',
    'SecurityOutcome',
    'StructuredLogger',
    'get_logger',
    'setup_structured_logging',
    'PaymentMetrics',
]
