"""
Diagnostics Blueprint for the payment resilience layer.

Exposes read-only views of the per-process payment services held in
``current_app.extensions['payment_services']``.

Endpoint Implementation:
- /health: Liveness check
- /health/payments: Circuit breakers, checkout script status and error statistics;
  HTTP 503 while any circuit breaker is open
- /health/logs: Buffered structured log entries, filtered by ``category`` and
  minimum ``level`` and capped by ``limit``
- /metrics: Prometheus exposition of the payment metrics registry
"""

from datetime import datetime, timezone

import structlog
from flask import Blueprint, Response, current_app, jsonify, request
from prometheus_client import CONTENT_TYPE_LATEST

from src.monitoring.logging import LogLevel

logger = structlog.get_logger(__name__)

EXTENSION_KEY = 'payment_services'
DEFAULT_LOG_LIMIT = 100
MAX_LOG_LIMIT = 1000

health_bp = Blueprint('health', __name__, url_prefix='')


def get_payment_services():
    """Service container registered by the application factory."""
    return current_app.extensions[EXTENSION_KEY]


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@health_bp.route('/health', methods=['GET'])
def basic_health():
    return jsonify({
        'status': 'healthy',
        'timestamp': _timestamp(),
        'application': current_app.config.get('APP_NAME'),
    }), 200


@health_bp.route('/health/payments', methods=['GET'])
def payment_health():
    """
    Payment subsystem status.

    Returns:
        JSON snapshot; HTTP 200 when healthy, HTTP 503 when a breaker is open
    """
    snapshot = get_payment_services().health_snapshot()
    snapshot['timestamp'] = _timestamp()
    status_code = 200 if snapshot['status'] == 'healthy' else 503
    if status_code != 200:
        logger.warning(
            "Payment subsystem degraded",
            open_circuit_breakers=snapshot['open_circuit_breakers']
        )
    return jsonify(snapshot), status_code


@health_bp.route('/health/logs', methods=['GET'])
def recent_logs():
    """
    Most recent buffered log entries, newest last.

    Query Parameters:
        category: Exact category to keep
        level: Minimum level name or number (``debug``..``critical``)
        limit: Number of entries to return (1-1000, default 100)
    """
    category = request.args.get('category') or None
    level = request.args.get('level') or None

    try:
        limit = int(request.args.get('limit', DEFAULT_LOG_LIMIT))
        if not 1 <= limit <= MAX_LOG_LIMIT:
            raise ValueError(limit)
        if level is not None:
            level = LogLevel.parse(int(level) if level.isdigit() else level)
    except ValueError:
        return jsonify({
            'error': 'Invalid query parameter',
            'message': f"level must be a log level name and limit between 1 and {MAX_LOG_LIMIT}",
        }), 400

    structured_logger = get_payment_services().structured_logger
    entries = structured_logger.get_logs(category=category, level=level)[-limit:]
    return jsonify({
        'session_id': structured_logger.get_session_id(),
        'count': len(entries),
        'entries': [entry.to_json_safe() for entry in entries],
    }), 200


@health_bp.route('/metrics', methods=['GET'])
def prometheus_metrics():
    """Prometheus metrics in text exposition format."""
    return Response(get_payment_services().metrics.render(), mimetype=CONTENT_TYPE_LATEST)
