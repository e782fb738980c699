"""
Deterministic traffic allocation.

A unit (user, session, placement) is hashed together with the test id into
a stable bucket in [0, 100) and mapped onto the variants' cumulative
traffic ranges in declaration order. The same unit always lands in the
same variant for the life of a test, while the same unit can land in
different variants across tests.
"""

from __future__ import annotations

import logging

from ..core.data_types import ABTest, ABTestStatus, Variant
from ..core.exceptions import InvalidStateError
from ..core.utils import hash_to_percent

logger = logging.getLogger(__name__)


def bucket_for(test_id: str, unit_id: str) -> float:
    """Stable bucket in [0, 100) for a unit within a test."""
    return hash_to_percent(f"{test_id}:{unit_id}")


def pick_variant(variants: list[Variant], bucket: float) -> Variant:
    """Map a bucket onto cumulative traffic ranges.

    The last variant with a positive split absorbs any floating-point
    remainder left when the splits sum to slightly under 100.
    """
    cumulative = 0.0
    for variant in variants:
        cumulative += variant.traffic_split
        if bucket < cumulative:
            return variant

    for variant in reversed(variants):
        if variant.traffic_split > 0:
            return variant
    return variants[-1]


class VariantAllocator:
    """Assigns units to variants of RUNNING tests."""

    def allocate(self, test: ABTest, unit_id: str) -> Variant:
        """Allocate a unit to a variant.

        Raises:
            InvalidStateError: If the test is not RUNNING.
        """
        if test.status != ABTestStatus.RUNNING:
            raise InvalidStateError(
                f"Cannot allocate traffic for test in status {test.status.value}",
                test_id=test.id,
                current_status=test.status.value,
                operation="allocate",
            )

        variant = pick_variant(test.variants, bucket_for(test.id, unit_id))
        logger.debug(f"Allocated unit {unit_id} to {variant.id} in test {test.id}")
        return variant


__all__ = ["bucket_for", "pick_variant", "VariantAllocator"]
