"""
Derived metrics for campaign variants.

Every derived figure is a pure function of a variant's raw counters, so
metrics can be rebuilt on any read and never drift from the counters. All
divisions are guarded: an empty variant reports zeros, never NaN.

Formulas (percentages are 0..100):
    ctr            = clicks / impressions * 100
    conversionRate = conversions / clicks * 100
    cpa            = cost / conversions
    roas           = revenue / cost
    engagementRate = (clicks + conversions) / impressions * 100
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable

from scipy import stats

from ..core.data_types import ConfidenceInterval, MetricType, VariantMetrics
from ..core.utils import clamp, safe_divide


# =============================================================================
# CONFIDENCE INTERVAL
# =============================================================================

# Conventional critical values; other levels fall back to the normal quantile
Z_CRITICAL = {
    0.90: 1.645,
    0.95: 1.96,
    0.99: 2.58,
}


def z_for_confidence(level: float) -> float:
    """Two-sided critical value for a confidence level in (0, 1)."""
    for known, z in Z_CRITICAL.items():
        if math.isclose(level, known):
            return z
    return float(stats.norm.ppf(1 - (1 - level) / 2))


def wald_interval(
    conversion_rate: float,
    sample_size: int,
    confidence_level: float = 0.95,
) -> ConfidenceInterval | None:
    """Wald interval on the conversion proportion.

    Args:
        conversion_rate: Conversion rate in percent.
        sample_size: Variant sample size.
        confidence_level: Interval level.

    Returns:
        Interval clamped to [0, 1], or None when there is no sample.
    """
    if sample_size <= 0:
        return None
    p = clamp(conversion_rate / 100.0, 0.0, 1.0)
    se = math.sqrt(p * (1 - p) / sample_size)
    z = z_for_confidence(confidence_level)
    return ConfidenceInterval(
        lower=clamp(p - z * se, 0.0, 1.0),
        upper=clamp(p + z * se, 0.0, 1.0),
    )


# =============================================================================
# DERIVED METRICS
# =============================================================================

def compute_derived(
    metrics: VariantMetrics,
    confidence: float = 0.0,
    confidence_level: float = 0.95,
) -> VariantMetrics:
    """Return a copy of ``metrics`` with every derived field rebuilt.

    Args:
        metrics: Metrics whose raw counters are authoritative.
        confidence: Latest comparison confidence for this variant.
        confidence_level: Level of the Wald interval.
    """
    ctr = safe_divide(metrics.clicks, metrics.impressions) * 100
    conversion_rate = safe_divide(metrics.conversions, metrics.clicks) * 100
    return metrics.model_copy(
        update={
            "ctr": ctr,
            "conversion_rate": conversion_rate,
            "cpa": safe_divide(metrics.cost, metrics.conversions),
            "roas": safe_divide(metrics.revenue, metrics.cost),
            "engagement_rate": safe_divide(
                metrics.clicks + metrics.conversions, metrics.impressions
            ) * 100,
            "confidence": confidence,
            "confidence_interval": wald_interval(
                conversion_rate, metrics.sample_size, confidence_level
            ),
        }
    )


# =============================================================================
# METRIC DEFINITIONS
# =============================================================================

@dataclass(frozen=True)
class MetricDefinition:
    """How a MetricType is read from a variant.

    Attributes:
        value: Reads the metric from derived metrics.
        numerator: Success count for proportion metrics, None otherwise.
            Only metrics with a numerator can drive the z-test.
        higher_is_better: Direction used when ranking variants.
    """
    value: Callable[[VariantMetrics], float]
    numerator: Callable[[VariantMetrics], int] | None
    higher_is_better: bool = True

    @property
    def is_proportion(self) -> bool:
        return self.numerator is not None


METRIC_DEFINITIONS: dict[MetricType, MetricDefinition] = {
    MetricType.CTR: MetricDefinition(lambda m: m.ctr, lambda m: m.clicks),
    MetricType.CONVERSION_RATE: MetricDefinition(lambda m: m.conversion_rate, lambda m: m.conversions),
    MetricType.CPA: MetricDefinition(lambda m: m.cpa, None, higher_is_better=False),
    MetricType.ROAS: MetricDefinition(lambda m: m.roas, None),
    MetricType.ENGAGEMENT_RATE: MetricDefinition(
        lambda m: m.engagement_rate, lambda m: m.clicks + m.conversions
    ),
    MetricType.REVENUE: MetricDefinition(lambda m: m.revenue, None),
    MetricType.CLICKS: MetricDefinition(lambda m: float(m.clicks), None),
    MetricType.CONVERSIONS: MetricDefinition(lambda m: float(m.conversions), None),
    MetricType.IMPRESSIONS: MetricDefinition(lambda m: float(m.impressions), None),
}

_missing = set(MetricType) - set(METRIC_DEFINITIONS)
if _missing:
    raise RuntimeError(f"MetricType members without a definition: {sorted(m.value for m in _missing)}")


def get_definition(metric: MetricType | str) -> MetricDefinition:
    """Look up a metric definition, rejecting unknown names.

    Raises:
        ValueError: If ``metric`` is not a MetricType value.
    """
    return METRIC_DEFINITIONS[MetricType(metric)]


def metric_value(metrics: VariantMetrics, metric: MetricType | str) -> float:
    """Read a metric from derived metrics."""
    return float(get_definition(metric).value(metrics))


def metric_numerator(metrics: VariantMetrics, metric: MetricType | str) -> int:
    """Success count of a proportion metric.

    Raises:
        ValueError: If the metric is not a proportion.
    """
    definition = get_definition(metric)
    if definition.numerator is None:
        raise ValueError(f"{MetricType(metric).value} is not a proportion metric")
    return int(definition.numerator(metrics))


def proportion_metrics() -> list[MetricType]:
    """Metrics eligible as a test's primary metric."""
    return [m for m, d in METRIC_DEFINITIONS.items() if d.is_proportion]


__all__ = [
    "Z_CRITICAL",
    "z_for_confidence",
    "wald_interval",
    "compute_derived",
    "MetricDefinition",
    "METRIC_DEFINITIONS",
    "get_definition",
    "metric_value",
    "metric_numerator",
    "proportion_metrics",
]
