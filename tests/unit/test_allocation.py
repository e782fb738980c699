"""
Unit tests for experiments/allocation.py
"""

from collections import Counter

import pytest

from campaign_experiments.core.data_types import ABTest, ABTestStatus, MetricType, Variant
from campaign_experiments.core.exceptions import InvalidStateError
from campaign_experiments.experiments.allocation import VariantAllocator, bucket_for, pick_variant


def _variants(*splits):
    return [Variant(id=chr(ord("A") + i), name=f"v{i}", traffic_split=s) for i, s in enumerate(splits)]


def _running_test(*splits, test_id="test_alloc"):
    return ABTest(
        id=test_id,
        campaign_id="camp-1",
        name="Allocation",
        status=ABTestStatus.RUNNING,
        variants=_variants(*splits),
        primary_metric=MetricType.CTR,
    )


class TestPickVariant:
    """Tests for mapping buckets onto cumulative ranges."""

    @pytest.mark.parametrize(
        "bucket,expected",
        [(0.0, "A"), (19.99, "A"), (20.0, "B"), (69.99, "B"), (70.0, "C"), (99.99, "C")],
    )
    def test_cumulative_ranges(self, bucket, expected):
        assert pick_variant(_variants(20, 50, 30), bucket).id == expected

    def test_remainder_goes_to_last_positive_split(self):
        """Splits summing to 99.95 still place every bucket."""
        assert pick_variant(_variants(49.95, 50, 0), 99.97).id == "B"

    def test_zero_split_variant_never_chosen(self):
        variants = _variants(0, 100)
        assert {pick_variant(variants, b).id for b in (0.0, 50.0, 99.9)} == {"B"}


class TestVariantAllocator:
    """Tests for deterministic allocation."""

    def test_sticky_per_unit(self):
        test = _running_test(50, 50)
        allocator = VariantAllocator()
        first = allocator.allocate(test, "user-42")
        assert all(allocator.allocate(test, "user-42").id == first.id for _ in range(20))

    def test_bucket_depends_on_test(self):
        assert bucket_for("test_1", "user-42") != bucket_for("test_2", "user-42")

    def test_distribution_follows_splits(self):
        test = _running_test(20, 80)
        allocator = VariantAllocator()
        counts = Counter(allocator.allocate(test, f"user-{i}").id for i in range(10_000))
        assert counts["A"] / 10_000 == pytest.approx(0.2, abs=0.02)
        assert counts["B"] / 10_000 == pytest.approx(0.8, abs=0.02)

    @pytest.mark.parametrize("status", [ABTestStatus.DRAFT, ABTestStatus.PAUSED, ABTestStatus.COMPLETED])
    def test_requires_running(self, status):
        test = _running_test(50, 50)
        test.status = status
        with pytest.raises(InvalidStateError) as exc_info:
            VariantAllocator().allocate(test, "user-1")
        assert exc_info.value.operation == "allocate"
