"""
Structured Logging for the Payment Resilience Layer

This module implements the structured event logger every other payment component
writes through, together with the structlog configuration used for operational
console output.

Key Features:
- Ordered severity levels with an environment-driven threshold (development
  DEBUG, staging INFO, production WARN) that can be overridden at runtime
- Automatic redaction of credentials and payment secrets in every payload
- Bounded in-memory ring buffer of recent entries for inspection and export
- Console mirroring through structlog with level-appropriate methods
- Fire-and-forget shipping of error entries and all security events to a
  remote log collector over httpx
- Security audit entries carrying action, outcome and risk level
- Payment lifecycle helpers with order and payment correlation ids

Recording an entry never raises: any internal failure is reported on stderr
so logging can never break the payment path that called it.
"""

import asyncio
import atexit
import json
import logging
import logging.config
import queue
import sys
import threading
import traceback
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Any, Deque, Dict, List, Optional, Set, Union

import httpx
import structlog

from src.utils.identifiers import generate_identifier
from src.utils.sanitizers import redact_sensitive_data


class LogLevel(IntEnum):
    """Ordered log severities; an entry is recorded when ``level >= threshold``."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3
    CRITICAL = 4

    @classmethod
    def parse(cls, value: Union['LogLevel', int, str]) -> 'LogLevel':
        """
        Coerce a level name or number into a ``LogLevel``.

        Raises:
            ValueError: If the value names no known level
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, int):
            return cls(value)
        name = str(value).strip().upper()
        if name == 'WARNING':
            name = 'WARN'
        try:
            return cls[name]
        except KeyError:
            raise ValueError(f"Unknown log level: {value!r}") from None


class SecurityOutcome(str, Enum):
    SUCCESS = 'success'
    FAILURE = 'failure'
    SUSPICIOUS = 'suspicious'


class RiskLevel(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


ENVIRONMENT_LOG_LEVELS: Dict[str, LogLevel] = {
    'development': LogLevel.DEBUG,
    'testing': LogLevel.DEBUG,
    'staging': LogLevel.INFO,
    'production': LogLevel.WARN,
}

# Client address is not observable from this layer
CLIENT_IP_SENTINEL = 'client-side'
DEFAULT_USER_AGENT = 'payment-resilience/1.0'

_CORRELATION_FIELDS = ('order_id', 'payment_id', 'user_id')
_STOP_WORKER = object()

# structlog method used to mirror each level to the console
_CONSOLE_METHODS = {
    LogLevel.DEBUG: 'debug',
    LogLevel.INFO: 'info',
    LogLevel.WARN: 'warning',
    LogLevel.ERROR: 'error',
    LogLevel.CRITICAL: 'critical',
}


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


@dataclass
class LogEntry:
    """A single structured, redacted log record."""

    timestamp: str
    level: LogLevel
    category: str
    message: str
    session_id: str
    data: Optional[Any] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    stack: Optional[str] = None
    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    user_id: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Serialise in the log collector's camelCase wire format."""
        payload = {
            'timestamp': self.timestamp,
            'level': int(self.level),
            'levelName': self.level.name,
            'category': self.category,
            'message': self.message,
            'sessionId': self.session_id,
        }
        optional = {
            'data': self.data,
            'error': self.error,
            'errorType': self.error_type,
            'stack': self.stack,
            'orderId': self.order_id,
            'paymentId': self.payment_id,
            'userId': self.user_id,
        }
        payload.update({key: value for key, value in optional.items() if value is not None})
        payload.update(self.extra)
        return payload

    def to_json_safe(self) -> Dict[str, Any]:
        """Return ``to_dict`` with every value coerced to JSON-compatible types."""
        return json.loads(json.dumps(self.to_dict(), default=str))


@dataclass
class SecurityLogEntry(LogEntry):
    """Log entry for security-relevant events such as failed verifications."""

    action: str = ''
    result: str = SecurityOutcome.SUCCESS.value
    risk_level: str = RiskLevel.LOW.value
    ip_address: str = CLIENT_IP_SENTINEL
    user_agent: str = DEFAULT_USER_AGENT

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update({
            'action': self.action,
            'result': self.result,
            'riskLevel': self.risk_level,
            'ipAddress': self.ip_address,
            'userAgent': self.user_agent,
        })
        return payload


class LogShipper:
    """
    Fire-and-forget delivery of log entries to a remote collector.

    Inside a running event loop each shipment becomes a background task tracked
    until completion. Outside one the entry is queued for a daemon worker
    thread, so the caller never waits on the network; when the bounded queue is
    full the entry is dropped with a console warning. Non-2xx responses and
    delivery errors are reported to the console only and are never retried.

    Args:
        endpoint: Collector URL receiving ``POST`` requests with a JSON entry body
        timeout: Per-request timeout in seconds
        transport: Optional httpx transport (tests inject ``httpx.MockTransport``)
        max_queue_size: Entries held for the worker thread before new ones are dropped
    """

    def __init__(
        self,
        endpoint: str,
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
        max_queue_size: int = 1000
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self._transport = transport
        self._pending: Set[asyncio.Task] = set()
        self._queue: 'queue.Queue[Any]' = queue.Queue(maxsize=max_queue_size)
        self._worker: Optional[threading.Thread] = None
        self._worker_lock = threading.Lock()
        self._console = structlog.get_logger(__name__)

    @property
    def pending(self) -> int:
        return len(self._pending) + self._queue.qsize()

    def ship(self, payload: Dict[str, Any]) -> Optional[asyncio.Task]:
        """Schedule delivery of ``payload``; returns the task when one was created."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._enqueue(payload)
            return None

        task = loop.create_task(self._send(payload))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    def close(self, timeout: Optional[float] = None) -> None:
        """Deliver queued entries and stop the worker thread."""
        with self._worker_lock:
            worker, self._worker = self._worker, None
        if worker is None:
            return
        self._queue.put(_STOP_WORKER)
        worker.join(timeout)

    async def flush(self) -> None:
        """Wait for every in-flight shipment to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        if self._worker is not None:
            await asyncio.to_thread(self._queue.join)

    def _enqueue(self, payload: Dict[str, Any]) -> None:
        self._ensure_worker()
        try:
            self._queue.put_nowait(payload)
        except queue.Full:
            self._console.warning(
                "Log shipping queue full, entry dropped",
                endpoint=self.endpoint,
                max_queue_size=self._queue.maxsize
            )

    def _ensure_worker(self) -> None:
        with self._worker_lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(
                target=self._drain, name='log-shipper', daemon=True
            )
            self._worker.start()
        atexit.register(self.close, self.timeout)

    def _drain(self) -> None:
        with httpx.Client(transport=self._transport, timeout=self.timeout) as client:
            while True:
                payload = self._queue.get()
                try:
                    if payload is _STOP_WORKER:
                        return
                    self._send_sync(client, payload)
                finally:
                    self._queue.task_done()

    async def _send(self, payload: Dict[str, Any]) -> None:
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=self.timeout) as client:
                response = await client.post(self.endpoint, json=payload)
            self._report_status(response)
        except Exception as exc:
            self._report_error(exc)

    def _send_sync(self, client: httpx.Client, payload: Dict[str, Any]) -> None:
        try:
            response = client.post(self.endpoint, json=payload)
            self._report_status(response)
        except Exception as exc:
            self._report_error(exc)

    def _report_error(self, exc: Exception) -> None:
        self._console.error(
            "Error sending log to external service",
            endpoint=self.endpoint,
            error=str(exc),
            error_type=type(exc).__name__
        )

    def _report_status(self, response: httpx.Response) -> None:
        if not response.is_success:
            self._console.error(
                "Failed to send log to external service",
                endpoint=self.endpoint,
                status_code=response.status_code,
                reason=response.reason_phrase
            )


class StructuredLogger:
    """
    Categorised, severity-tagged event logger with redaction and retention.

    One instance is constructed per process by the service container and
    injected into the error handler, retry engine, script loader, pricing
    validator and payment client.

    Args:
        environment: Deployment environment selecting the default threshold
        level: Explicit threshold overriding the environment default
        buffer_size: Ring buffer capacity; the oldest entries are evicted first
        console_enabled: Mirror entries to the console (defaults to development only)
        shipper: Remote collector; when set, error entries and security events are shipped
        metrics: Optional ``PaymentMetrics`` counting recorded entries
        user_agent: Reported on security entries
    """

    def __init__(
        self,
        environment: str = 'development',
        level: Optional[Union[LogLevel, int, str]] = None,
        buffer_size: int = 1000,
        console_enabled: Optional[bool] = None,
        shipper: Optional[LogShipper] = None,
        metrics: Any = None,
        user_agent: str = DEFAULT_USER_AGENT
    ):
        self.environment = environment
        if level is not None:
            self._level = LogLevel.parse(level)
        else:
            self._level = ENVIRONMENT_LOG_LEVELS.get(environment, LogLevel.INFO)
        self._entries: Deque[LogEntry] = deque(maxlen=buffer_size)
        self._session_id = generate_identifier('session')
        self._console_enabled = (
            environment == 'development' if console_enabled is None else console_enabled
        )
        self._shipper = shipper
        self._metrics = metrics
        self._user_agent = user_agent
        self._console = structlog.get_logger('payment.events')

    # Core recording

    def log(
        self,
        level: Union[LogLevel, int, str],
        category: str,
        message: str,
        data: Any = None,
        error: Optional[BaseException] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[LogEntry]:
        """
        Record an entry if ``level`` meets the current threshold.

        Returns:
            The stored entry, or None when filtered out or recording failed
        """
        try:
            level = LogLevel.parse(level)
            if level < self._level:
                return None

            entry = self._build_entry(LogEntry, level, category, message, data, error, metadata)
            self._record(entry)
            if self._shipper is not None and level >= LogLevel.ERROR:
                self._shipper.ship(entry.to_json_safe())
            return entry
        except Exception as exc:
            print(f"Structured logger failed to record entry: {exc}", file=sys.stderr)
            return None

    def debug(self, category: str, message: str, data: Any = None,
              metadata: Optional[Dict[str, Any]] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.DEBUG, category, message, data=data, metadata=metadata)

    def info(self, category: str, message: str, data: Any = None,
             metadata: Optional[Dict[str, Any]] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.INFO, category, message, data=data, metadata=metadata)

    def warn(self, category: str, message: str, data: Any = None,
             metadata: Optional[Dict[str, Any]] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.WARN, category, message, data=data, metadata=metadata)

    def error(self, category: str, message: str, error: Optional[BaseException] = None,
              data: Any = None, metadata: Optional[Dict[str, Any]] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.ERROR, category, message, data=data, error=error, metadata=metadata)

    def critical(self, category: str, message: str, error: Optional[BaseException] = None,
                 data: Any = None, metadata: Optional[Dict[str, Any]] = None) -> Optional[LogEntry]:
        return self.log(LogLevel.CRITICAL, category, message, data=data, error=error, metadata=metadata)

    def security(
        self,
        action: str,
        result: Union[SecurityOutcome, str],
        risk_level: Union[RiskLevel, str],
        message: str,
        data: Any = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Optional[SecurityLogEntry]:
        """
        Record a security audit event.

        Security events bypass the level threshold, are recorded at WARN (low and
        medium risk) or ERROR (high and critical risk), and are always shipped when
        a remote collector is configured.
        """
        try:
            risk = RiskLevel(risk_level)
            outcome = SecurityOutcome(result)
            level = LogLevel.ERROR if risk in (RiskLevel.HIGH, RiskLevel.CRITICAL) else LogLevel.WARN

            entry = self._build_entry(SecurityLogEntry, level, 'SECURITY', message, data, None, metadata)
            entry.action = action
            entry.result = outcome.value
            entry.risk_level = risk.value
            entry.user_agent = self._user_agent
            self._record(entry)
            if self._shipper is not None:
                self._shipper.ship(entry.to_json_safe())
            return entry
        except Exception as exc:
            print(f"Structured logger failed to record security event: {exc}", file=sys.stderr)
            return None

    # Payment lifecycle helpers

    def payment_started(self, order_id: str, amount: Any, data: Optional[Dict[str, Any]] = None):
        payload = {'orderId': order_id, 'amount': amount, **(data or {})}
        return self.info('PAYMENT', 'Payment process initiated', payload, {'order_id': order_id})

    def payment_success(self, order_id: str, payment_id: str, amount: Any,
                        data: Optional[Dict[str, Any]] = None):
        payload = {'orderId': order_id, 'paymentId': payment_id, 'amount': amount, **(data or {})}
        return self.info(
            'PAYMENT', 'Payment completed successfully', payload,
            {'order_id': order_id, 'payment_id': payment_id}
        )

    def payment_failed(self, order_id: str, error: BaseException,
                       data: Optional[Dict[str, Any]] = None):
        payload = {'orderId': order_id, **(data or {})}
        return self.error('PAYMENT', 'Payment failed', error, payload, {'order_id': order_id})

    def payment_verification_started(self, order_id: str, payment_id: str):
        return self.info(
            'PAYMENT_VERIFICATION', 'Payment verification started',
            {'orderId': order_id, 'paymentId': payment_id},
            {'order_id': order_id, 'payment_id': payment_id}
        )

    def payment_verification_success(self, order_id: str, payment_id: str):
        return self.info(
            'PAYMENT_VERIFICATION', 'Payment verification successful',
            {'orderId': order_id, 'paymentId': payment_id},
            {'order_id': order_id, 'payment_id': payment_id}
        )

    def payment_verification_failed(self, order_id: str, payment_id: str, error: BaseException):
        entry = self.error(
            'PAYMENT_VERIFICATION', 'Payment verification failed', error,
            {'orderId': order_id, 'paymentId': payment_id},
            {'order_id': order_id, 'payment_id': payment_id}
        )
        self.security(
            'payment_verification',
            SecurityOutcome.FAILURE,
            RiskLevel.HIGH,
            'Payment signature verification failed',
            {'orderId': order_id, 'paymentId': payment_id}
        )
        return entry

    # Inspection

    def get_logs(
        self,
        category: Optional[str] = None,
        level: Optional[Union[LogLevel, int, str]] = None
    ) -> List[LogEntry]:
        """Return a copy of buffered entries, optionally filtered by category and minimum level."""
        entries = list(self._entries)
        if category:
            entries = [entry for entry in entries if entry.category == category]
        if level is not None:
            minimum = LogLevel.parse(level)
            entries = [entry for entry in entries if entry.level >= minimum]
        return entries

    def clear_logs(self) -> None:
        self._entries.clear()

    def export_logs(self) -> str:
        """Serialise the buffer as pretty-printed JSON."""
        return json.dumps([entry.to_dict() for entry in self._entries], indent=2, default=str)

    def set_log_level(self, level: Union[LogLevel, int, str]) -> None:
        self._level = LogLevel.parse(level)

    def get_log_level(self) -> LogLevel:
        return self._level

    def get_session_id(self) -> str:
        return self._session_id

    @property
    def buffer_size(self) -> int:
        return self._entries.maxlen

    async def aclose(self) -> None:
        """Wait for pending remote shipments and stop the shipping worker."""
        if self._shipper is not None:
            await self._shipper.flush()
            await asyncio.to_thread(self._shipper.close, self._shipper.timeout)

    def close(self) -> None:
        """Synchronous counterpart of ``aclose`` for code running outside an event loop."""
        if self._shipper is not None:
            self._shipper.close(self._shipper.timeout)

    # Internals

    def _build_entry(self, entry_class, level, category, message, data, error, metadata):
        metadata = dict(metadata or {})
        correlation = {name: metadata.pop(name, None) for name in _CORRELATION_FIELDS}

        error_text = error_type = stack = None
        if error is not None:
            error_text = str(error)
            error_type = type(error).__name__
            if getattr(error, '__traceback__', None) is not None:
                stack = ''.join(traceback.format_exception(type(error), error, error.__traceback__))

        return entry_class(
            timestamp=_utc_timestamp(),
            level=level,
            category=category,
            message=message,
            session_id=self._session_id,
            data=redact_sensitive_data(data) if data is not None else None,
            error=error_text,
            error_type=error_type,
            stack=stack,
            extra=redact_sensitive_data(metadata),
            **correlation
        )

    def _record(self, entry: LogEntry) -> None:
        self._entries.append(entry)
        if self._metrics is not None:
            self._metrics.record_log_entry(entry.level.name)
        if self._console_enabled:
            self._mirror(entry)

    def _mirror(self, entry: LogEntry) -> None:
        method = getattr(self._console, _CONSOLE_METHODS[entry.level])
        fields = {
            'category': entry.category,
            'session_id': entry.session_id,
        }
        for name in _CORRELATION_FIELDS:
            value = getattr(entry, name)
            if value is not None:
                fields[name] = value
        if entry.data is not None:
            fields['data'] = entry.data
        if entry.error is not None:
            fields['error'] = entry.error
        if entry.stack is not None:
            fields['stack'] = entry.stack
        method(entry.message, **fields)


def setup_structured_logging(
    level: str = 'INFO',
    json_format: bool = True
) -> structlog.stdlib.BoundLogger:
    """
    Configure structlog and the stdlib root logger for console output.

    Args:
        level: Minimum stdlib level for console output
        json_format: Render JSON lines instead of the human-friendly console format

    Returns:
        Configured structured logger instance
    """
    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="ISO"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    stdlib_level = 'WARNING' if level.upper() == 'WARN' else level.upper()
    logging.config.dictConfig({
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'plain': {'format': '%(message)s'},
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'formatter': 'plain',
                'stream': 'ext://sys.stdout',
            },
        },
        'loggers': {
            '': {
                'handlers': ['console'],
                'level': stdlib_level,
                'propagate': False,
            },
        },
    })

    return structlog.get_logger(__name__)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger for operational (non-domain) messages."""
    return structlog.get_logger(name)
