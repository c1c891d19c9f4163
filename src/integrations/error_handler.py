"""
Error classification and handling for payment operations.

This module turns raw failures (exceptions, error strings or API error payloads)
into immutable ``ProcessedError`` records carrying a category, a derived
severity, a user-safe message, a retryability decision and a suggested retry
delay, then logs them by severity, tracks their frequency to detect spikes and
raises security events for verification and authentication failures.

Classification is driven by ordered rule tables:
- ``SEVERITY_RULES``: priority cascade, the first matching rule wins
- ``USER_MESSAGE_RULES``: category and keyword rules mapping to customer text
- ``NON_RETRYABLE_PATTERNS``: deny-list that overrides every category default

Raw error text never reaches ``user_message``.
"""

import time
import traceback
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, FrozenSet, Mapping, Optional, Tuple, Union

import structlog

from src.monitoring.logging import DEFAULT_USER_AGENT, RiskLevel, SecurityOutcome, StructuredLogger
from src.utils.identifiers import generate_identifier

# Operational logger; classified errors go through the injected StructuredLogger
logger = structlog.get_logger(__name__)

RawError = Union[BaseException, str, Mapping[str, Any]]


class ErrorCategory(str, Enum):
    NETWORK = 'NETWORK'
    PAYMENT = 'PAYMENT'
    VALIDATION = 'VALIDATION'
    AUTHENTICATION = 'AUTHENTICATION'
    AUTHORIZATION = 'AUTHORIZATION'
    CONFIGURATION = 'CONFIGURATION'
    SYSTEM = 'SYSTEM'
    USER = 'USER'


class ErrorSeverity(str, Enum):
    LOW = 'low'
    MEDIUM = 'medium'
    HIGH = 'high'
    CRITICAL = 'critical'


@dataclass
class ErrorContext:
    """Where and for whom an error happened."""

    order_id: Optional[str] = None
    payment_id: Optional[str] = None
    user_id: Optional[str] = None
    component: Optional[str] = None
    action: Optional[str] = None
    url: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: Optional[str] = None
    additional_data: Optional[Dict[str, Any]] = None

    @classmethod
    def coerce(cls, context: Union['ErrorContext', Mapping[str, Any], None]) -> 'ErrorContext':
        """Build a context from an existing one, a keyword mapping or nothing."""
        if context is None:
            return cls()
        if isinstance(context, cls):
            return cls(**context.__dict__)
        known = {name: context[name] for name in cls.__dataclass_fields__ if name in context}
        unknown = {key: value for key, value in context.items() if key not in cls.__dataclass_fields__}
        if unknown:
            known['additional_data'] = {**(known.get('additional_data') or {}), **unknown}
        return cls(**known)

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            'orderId': self.order_id,
            'paymentId': self.payment_id,
            'userId': self.user_id,
            'component': self.component,
            'action': self.action,
            'url': self.url,
            'userAgent': self.user_agent,
            'timestamp': self.timestamp,
            'additionalData': self.additional_data,
        }
        return {key: value for key, value in payload.items() if value is not None}


@dataclass(frozen=True)
class ProcessedError:
    """Immutable classification of a single failure."""

    id: str
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    user_message: str
    original_error: Any
    context: ErrorContext
    is_retryable: bool
    timestamp: str
    retry_after: Optional[float] = None
    stack: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'category': self.category.value,
            'severity': self.severity.value,
            'message': self.message,
            'userMessage': self.user_message,
            'context': self.context.to_dict(),
            'isRetryable': self.is_retryable,
            'retryAfter': self.retry_after,
            'timestamp': self.timestamp,
        }


@dataclass(frozen=True)
class SeverityRule:
    """Assigns ``severity`` when the category matches and, if given, a pattern occurs."""

    severity: ErrorSeverity
    categories: FrozenSet[ErrorCategory]
    patterns: Tuple[str, ...] = ()

    def matches(self, category: ErrorCategory, message: str) -> bool:
        if category not in self.categories:
            return False
        return not self.patterns or any(pattern in message for pattern in self.patterns)


@dataclass(frozen=True)
class UserMessageRule:
    """Maps a category (and optionally keywords) to customer-facing text."""

    category: ErrorCategory
    message: str
    keywords: Tuple[str, ...] = ()

    def matches(self, category: ErrorCategory, message: str) -> bool:
        if category is not self.category:
            return False
        return not self.keywords or any(keyword in message for keyword in self.keywords)


CRITICAL_PAYMENT_PATTERNS = (
    'signature verification failed',
    'payment verification failed',
    'duplicate payment',
    'amount mismatch',
    'currency mismatch',
)

# Priority cascade: evaluated top to bottom, first match wins
SEVERITY_RULES: Tuple[SeverityRule, ...] = (
    SeverityRule(ErrorSeverity.CRITICAL, frozenset({ErrorCategory.PAYMENT}), CRITICAL_PAYMENT_PATTERNS),
    SeverityRule(ErrorSeverity.HIGH, frozenset({ErrorCategory.AUTHENTICATION, ErrorCategory.AUTHORIZATION})),
    SeverityRule(ErrorSeverity.HIGH, frozenset({ErrorCategory.SYSTEM, ErrorCategory.CONFIGURATION})),
    SeverityRule(ErrorSeverity.MEDIUM, frozenset({ErrorCategory.NETWORK})),
    SeverityRule(ErrorSeverity.LOW, frozenset({ErrorCategory.VALIDATION, ErrorCategory.USER})),
)
DEFAULT_SEVERITY = ErrorSeverity.MEDIUM

USER_MESSAGE_RULES: Tuple[UserMessageRule, ...] = (
    UserMessageRule(
        ErrorCategory.PAYMENT,
        'Payment processing is temporarily unavailable. '
        'Please check your internet connection and try again.',
        ('network', 'timeout'),
    ),
    UserMessageRule(
        ErrorCategory.PAYMENT,
        'Your payment was declined. Please try a different payment method or contact your bank.',
        ('declined', 'insufficient'),
    ),
    UserMessageRule(
        ErrorCategory.PAYMENT,
        'Your payment method has expired. Please use a different card or update your payment information.',
        ('expired',),
    ),
    UserMessageRule(
        ErrorCategory.PAYMENT,
        'Payment verification failed. If money was deducted, it will be refunded within 5-7 business days.',
        ('verification', 'signature'),
    ),
    UserMessageRule(
        ErrorCategory.PAYMENT,
        'Payment processing failed. Please try again or use a different payment method.',
    ),
    UserMessageRule(
        ErrorCategory.NETWORK,
        'Request timed out. Please check your internet connection and try again.',
        ('timeout',),
    ),
    UserMessageRule(
        ErrorCategory.NETWORK,
        'You appear to be offline. Please check your internet connection.',
        ('offline', 'network'),
    ),
    UserMessageRule(
        ErrorCategory.NETWORK,
        'Network error occurred. Please check your connection and try again.',
    ),
    UserMessageRule(
        ErrorCategory.VALIDATION,
        'Please check your information and try again.',
    ),
    UserMessageRule(
        ErrorCategory.CONFIGURATION,
        'Service is temporarily unavailable. Please try again later.',
    ),
)
DEFAULT_USER_MESSAGE = (
    'An unexpected error occurred. Please try again or contact support if the problem persists.'
)

NON_RETRYABLE_PATTERNS = (
    'invalid signature',
    'authentication failed',
    'unauthorized',
    'forbidden',
    'payment declined',
    'insufficient funds',
    'expired card',
    'invalid card',
    'duplicate payment',
)
RETRYABLE_CATEGORIES = frozenset({ErrorCategory.NETWORK, ErrorCategory.SYSTEM})
TRANSIENT_PAYMENT_PATTERNS = (
    'timeout',
    'network error',
    'server error',
    'gateway error',
    'temporary',
)

BASE_RETRY_DELAY = 1.0
MAX_RETRY_DELAY = 30.0
RETRY_DELAY_MULTIPLIERS: Dict[ErrorCategory, int] = {
    ErrorCategory.NETWORK: 2,
    ErrorCategory.PAYMENT: 3,
    ErrorCategory.SYSTEM: 5,
}

RECENT_ERROR_LIMIT = 20


def extract_error_message(error: RawError) -> str:
    """Return the human-readable message of an exception, string or API error payload."""
    if isinstance(error, str):
        return error
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    if isinstance(error, Mapping):
        return str(error.get('message') or error.get('description') or '')
    return str(error)


def determine_severity(category: ErrorCategory, message: str) -> ErrorSeverity:
    lowered = message.lower()
    for rule in SEVERITY_RULES:
        if rule.matches(category, lowered):
            return rule.severity
    return DEFAULT_SEVERITY


def generate_user_message(category: ErrorCategory, message: str) -> str:
    lowered = message.lower()
    for rule in USER_MESSAGE_RULES:
        if rule.matches(category, lowered):
            return rule.message
    return DEFAULT_USER_MESSAGE


def is_error_retryable(category: ErrorCategory, message: str) -> bool:
    lowered = message.lower()
    if any(pattern in lowered for pattern in NON_RETRYABLE_PATTERNS):
        return False
    if category in RETRYABLE_CATEGORIES:
        return True
    if category is ErrorCategory.PAYMENT:
        return any(pattern in lowered for pattern in TRANSIENT_PAYMENT_PATTERNS)
    return False


def calculate_retry_delay(category: ErrorCategory) -> float:
    """Suggested wait in seconds before retrying an error of ``category``."""
    multiplier = RETRY_DELAY_MULTIPLIERS.get(category, 1)
    return min(BASE_RETRY_DELAY * multiplier, MAX_RETRY_DELAY)


class ErrorHandler:
    """
    Classifies failures and routes them to logging, metrics and spike tracking.

    Args:
        structured_logger: Logger receiving classified errors and security events
        metrics: Optional ``PaymentMetrics`` counting errors and spikes
        spike_threshold: Occurrences of one key above which a spike may be reported
        spike_window: Seconds between consecutive occurrences that still count as a spike
        clock: Monotonic time source in seconds
        user_agent: Recorded on every error context
        page_url: Recorded on every error context when the caller gives none
    """

    def __init__(
        self,
        structured_logger: StructuredLogger,
        metrics: Any = None,
        spike_threshold: int = 5,
        spike_window: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        user_agent: str = DEFAULT_USER_AGENT,
        page_url: Optional[str] = None
    ):
        self.logger = structured_logger
        self.metrics = metrics
        self.spike_threshold = spike_threshold
        self.spike_window = spike_window
        self._clock = clock
        self._user_agent = user_agent
        self._page_url = page_url
        self._error_counts: Dict[str, int] = {}
        self._last_error_time: Dict[str, float] = {}
        self._category_counts: Dict[str, int] = {}
        self._severity_counts: Dict[str, int] = {}
        self._recent: Deque[ProcessedError] = deque(maxlen=RECENT_ERROR_LIMIT)

    def process_error(
        self,
        error: RawError,
        category: ErrorCategory,
        context: Union[ErrorContext, Mapping[str, Any], None] = None
    ) -> ProcessedError:
        """Classify ``error`` without any logging or tracking side effects."""
        category = ErrorCategory(category)
        message = extract_error_message(error)
        timestamp = _iso_now()

        stack = None
        if isinstance(error, BaseException) and error.__traceback__ is not None:
            stack = ''.join(traceback.format_exception(type(error), error, error.__traceback__))

        error_context = ErrorContext.coerce(context)
        error_context.timestamp = timestamp
        error_context.user_agent = error_context.user_agent or self._user_agent
        error_context.url = error_context.url or self._page_url

        retryable = is_error_retryable(category, message)
        return ProcessedError(
            id=generate_identifier('err'),
            category=category,
            severity=determine_severity(category, message),
            message=message,
            user_message=generate_user_message(category, message),
            original_error=error,
            context=error_context,
            is_retryable=retryable,
            retry_after=calculate_retry_delay(category) if retryable else None,
            timestamp=timestamp,
            stack=stack,
        )

    def handle_error(
        self,
        error: RawError,
        category: ErrorCategory,
        context: Union[ErrorContext, Mapping[str, Any], None] = None
    ) -> ProcessedError:
        """
        Classify, log and track a failure.

        Args:
            error: Exception, message string or API error payload
            category: Taxonomy bucket chosen by the caller
            context: Correlation ids and call-site details

        Returns:
            The immutable processed error
        """
        processed = self.process_error(error, category, context)

        self._log_error(processed)
        self._track_error_frequency(processed)
        self._handle_specific_error(processed)

        self._category_counts[processed.category.value] = (
            self._category_counts.get(processed.category.value, 0) + 1
        )
        self._severity_counts[processed.severity.value] = (
            self._severity_counts.get(processed.severity.value, 0) + 1
        )
        self._recent.append(processed)
        if self.metrics is not None:
            self.metrics.record_error(processed.category.value, processed.severity.value)

        return processed

    def handle_payment_error(self, error: RawError, context=None) -> ProcessedError:
        return self.handle_error(error, ErrorCategory.PAYMENT, context)

    def handle_network_error(self, error: RawError, context=None) -> ProcessedError:
        return self.handle_error(error, ErrorCategory.NETWORK, context)

    def handle_validation_error(self, error: RawError, context=None) -> ProcessedError:
        return self.handle_error(error, ErrorCategory.VALIDATION, context)

    def handle_system_error(self, error: RawError, context=None) -> ProcessedError:
        return self.handle_error(error, ErrorCategory.SYSTEM, context)

    def get_error_stats(self) -> Dict[str, Any]:
        """Totals by message key, category and severity plus the most recent errors."""
        return {
            'total_errors': sum(self._error_counts.values()),
            'errors_by_key': dict(self._error_counts),
            'errors_by_category': dict(self._category_counts),
            'errors_by_severity': dict(self._severity_counts),
            'recent_errors': [processed.to_dict() for processed in self._recent],
        }

    def clear_error_tracking(self) -> None:
        self._error_counts.clear()
        self._last_error_time.clear()
        self._category_counts.clear()
        self._severity_counts.clear()
        self._recent.clear()

    def _log_error(self, processed: ProcessedError) -> None:
        log_data = {
            'errorId': processed.id,
            'category': processed.category.value,
            'severity': processed.severity.value,
            'isRetryable': processed.is_retryable,
            'retryAfter': processed.retry_after,
            'context': processed.context.to_dict(),
        }
        correlation = {
            'order_id': processed.context.order_id,
            'payment_id': processed.context.payment_id,
            'user_id': processed.context.user_id,
        }
        original = processed.original_error if isinstance(processed.original_error, BaseException) else None
        category = processed.category.value

        if processed.severity is ErrorSeverity.CRITICAL:
            self.logger.critical(category, processed.message, original, log_data, correlation)
        elif processed.severity is ErrorSeverity.HIGH:
            self.logger.error(category, processed.message, original, log_data, correlation)
        elif processed.severity is ErrorSeverity.MEDIUM:
            self.logger.warn(category, processed.message, log_data)
        else:
            self.logger.info(category, processed.message, log_data)

    def _track_error_frequency(self, processed: ProcessedError) -> None:
        key = f"{processed.category.value}_{processed.message}"
        now = self._clock()

        count = self._error_counts.get(key, 0) + 1
        previous = self._last_error_time.get(key)
        self._error_counts[key] = count
        self._last_error_time[key] = now

        if count <= self.spike_threshold or previous is None:
            return

        elapsed = now - previous
        if elapsed < self.spike_window:
            self.logger.critical(
                'ERROR_SPIKE',
                f"Error spike detected: {processed.message}",
                data={
                    'errorCount': count,
                    'timeWindow': elapsed,
                    'category': processed.category.value,
                }
            )
            if self.metrics is not None:
                self.metrics.record_error_spike(processed.category.value)
            logger.warning(
                "Error spike detected",
                category=processed.category.value,
                error_count=count
            )

    def _handle_specific_error(self, processed: ProcessedError) -> None:
        if (processed.category is ErrorCategory.PAYMENT
                and 'verification' in processed.message.lower()):
            self.logger.security(
                'payment_verification_failure',
                SecurityOutcome.FAILURE,
                RiskLevel.HIGH,
                'Payment verification failed - potential security issue',
                {
                    'errorId': processed.id,
                    'orderId': processed.context.order_id,
                    'paymentId': processed.context.payment_id,
                }
            )

        if processed.category is ErrorCategory.AUTHENTICATION:
            self.logger.security(
                'authentication_failure',
                SecurityOutcome.FAILURE,
                RiskLevel.MEDIUM,
                'Authentication failed',
                {
                    'errorId': processed.id,
                    'userId': processed.context.user_id,
                }
            )


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')
