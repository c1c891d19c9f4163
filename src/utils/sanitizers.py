"""
Sensitive Field Redaction Utilities

Masks credentials and payment secrets before any structured payload reaches the
log buffer, the console or the remote log collector.

Redaction rules:
- A key is sensitive when its normalised form (lower-cased, ``_`` and ``-``
  removed) contains one of ``SENSITIVE_FIELD_PATTERNS``, so ``cardNumber``,
  ``card_number`` and ``CARD-NUMBER`` are all caught.
- A sensitive string longer than four characters keeps its first four
  characters and the remainder is replaced with ``*``.
- Shorter strings and non-string values are replaced with ``REDACTED_PLACEHOLDER``.
- Nested mappings are redacted recursively. Mappings held directly inside a
  list are redacted; primitives in lists and lists nested in lists are left
  untouched.
"""

from typing import Any, Mapping

SENSITIVE_FIELD_PATTERNS = (
    'password',
    'secret',
    'key',
    'token',
    'signature',
    'cvv',
    'cardnumber',
)

REDACTED_PLACEHOLDER = '***REDACTED***'
VISIBLE_PREFIX_LENGTH = 4


def is_sensitive_key(key: Any) -> bool:
    """Return True when ``key`` names a field that must never be logged verbatim."""
    normalised = str(key).lower().replace('_', '').replace('-', '')
    return any(pattern in normalised for pattern in SENSITIVE_FIELD_PATTERNS)


def mask_value(value: Any) -> str:
    """Partially mask long strings, fully redact everything else."""
    if isinstance(value, str) and len(value) > VISIBLE_PREFIX_LENGTH:
        hidden = len(value) - VISIBLE_PREFIX_LENGTH
        return value[:VISIBLE_PREFIX_LENGTH] + '*' * hidden
    return REDACTED_PLACEHOLDER


def _redact_mapping(data: Mapping) -> dict:
    redacted = {}
    for key, value in data.items():
        if is_sensitive_key(key):
            redacted[key] = mask_value(value)
        elif isinstance(value, Mapping):
            redacted[key] = _redact_mapping(value)
        elif isinstance(value, (list, tuple)):
            redacted[key] = [
                _redact_mapping(item) if isinstance(item, Mapping) else item
                for item in value
            ]
        else:
            redacted[key] = value
    return redacted


def redact_sensitive_data(data: Any) -> Any:
    """
    Return a redacted copy of ``data``; the input is never mutated.

    Args:
        data: Arbitrary log payload (mapping, list or primitive)

    Returns:
        Copy of the payload with every sensitive field masked
    """
    if isinstance(data, Mapping):
        return _redact_mapping(data)
    if isinstance(data, (list, tuple)):
        return [
            _redact_mapping(item) if isinstance(item, Mapping) else item
            for item in data
        ]
    return data
