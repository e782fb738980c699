"""
Shared utilities for the experimentation engine.

Provides common functions for:
- Time handling
- Guarded numeric operations
- Identifier generation and stable hashing
- Performance timing
"""

from __future__ import annotations

import hashlib
import logging
import math
import time
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator

logger = logging.getLogger(__name__)

UTC = timezone.utc


# =============================================================================
# Time Utilities
# =============================================================================


def utc_now() -> datetime:
    """Get current UTC datetime with timezone info."""
    return datetime.now(UTC)


# =============================================================================
# Numeric Utilities
# =============================================================================


def clamp(value: float, min_val: float, max_val: float) -> float:
    """Clamp value to specified range.

    Args:
        value: Value to clamp.
        min_val: Minimum allowed value.
        max_val: Maximum allowed value.

    Returns:
        Clamped value.
    """
    return max(min_val, min(max_val, value))


def safe_divide(
    numerator: float,
    denominator: float,
    default: float = 0.0,
) -> float:
    """Safely divide two numbers.

    Args:
        numerator: Numerator.
        denominator: Denominator.
        default: Value to return if denominator is zero.

    Returns:
        Division result or default.
    """
    if denominator == 0:
        return default
    return numerator / denominator


def is_finite_non_negative(value: float | int) -> bool:
    """Check that a numeric value is finite and >= 0."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    return math.isfinite(number) and number >= 0


# =============================================================================
# Identifier Utilities
# =============================================================================


def generate_id(prefix: str = "", length: int = 12) -> str:
    """Generate a unique ID string.

    Args:
        prefix: Optional prefix for the ID.
        length: Length of random portion.

    Returns:
        Generated ID string.
    """
    random_part = uuid.uuid4().hex[:length]
    if prefix:
        return f"{prefix}_{random_part}"
    return random_part


def hash_to_percent(key: str) -> float:
    """Map a string to a stable value in [0, 100).

    Uses the first 8 bytes of the SHA-256 digest as an unsigned integer,
    so the result does not depend on the interpreter's hash seed.

    Args:
        key: String to hash.

    Returns:
        Bucket value in [0, 100).
    """
    digest = hashlib.sha256(key.encode()).digest()
    return int.from_bytes(digest[:8], "big") / (2**64) * 100.0


# =============================================================================
# Performance Timing
# =============================================================================


@contextmanager
def timer(name: str = "Operation") -> Generator[dict[str, float], None, None]:
    """Context manager for timing operations.

    Args:
        name: Name of the operation being timed.

    Yields:
        Dictionary that will contain 'elapsed' time after context exits.
    """
    result: dict[str, float] = {}
    start = time.perf_counter()
    try:
        yield result
    finally:
        elapsed = time.perf_counter() - start
        result["elapsed"] = elapsed
        logger.debug(f"{name} took {elapsed:.4f}s")
