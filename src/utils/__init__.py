"""
Shared utilities for the payment resilience layer.
"""

from src.utils.identifiers import generate_identifier, random_base36
from src.utils.sanitizers import (
    REDACTED_PLACEHOLDER,
    SENSITIVE_FIELD_PATTERNS,
    is_sensitive_key,
    mask_value,
    redact_sensitive_data,
)

__all__ = [
    'generate_identifier',
    'random_base36',
    'REDACTED_PLACEHOLDER',
    'SENSITIVE_FIELD_PATTERNS',
    'is_sensitive_key',
    'mask_value',
    'redact_sensitive_data',
]
