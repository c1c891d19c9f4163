"""
Time-prefixed identifiers for sessions, processed errors and payment receipts.

Identifiers look like ``<prefix>_<epoch milliseconds>_<random base36 suffix>``,
for example ``session_1718000000000_k3j9x0a``.
"""

import random
import string
import time
from typing import Optional

_BASE36_ALPHABET = string.digits + string.ascii_lowercase


def random_base36(length: int, rng: Optional[random.Random] = None) -> str:
    """Return ``length`` random lower-case base36 characters."""
    chooser = rng or random
    return ''.join(chooser.choice(_BASE36_ALPHABET) for _ in range(length))


def generate_identifier(
    prefix: str,
    suffix_length: int = 7,
    rng: Optional[random.Random] = None
) -> str:
    """
    Build a unique-enough identifier for logs and receipts.

    Args:
        prefix: Leading label such as ``session``, ``err`` or ``order``
        suffix_length: Number of random base36 characters appended
        rng: Optional random source for deterministic tests

    Returns:
        Identifier string
    """
    millis = int(time.time() * 1000)
    return f"{prefix}_{millis}_{random_base36(suffix_length, rng)}"
