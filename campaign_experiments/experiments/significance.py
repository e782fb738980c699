"""
Significance engine.

Compares every non-control variant against the control (the first
declared variant) on the test's primary metric with a two-proportion
z-test, and picks a winner.

    p_c = count_c / n_c,  p_v = count_v / n_v
    p   = (count_c + count_v) / (n_c + n_v)        pooled, clamped to [0, 1]
    se  = sqrt(p (1 - p) (1/n_c + 1/n_v))
    z   = (p_v - p_c) / se                          0 when se == 0

``count`` is the metric's success count (clicks for ctr, conversions for
conversionRate) and ``n`` is the variant's sampleSize. The two-tailed
p-value comes from the normal survival function by default; the banded
approximation is kept for compatibility with historical reports.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum

from scipy import stats

from ..core.data_types import (
    ABTest,
    MetricType,
    PerformanceSummary,
    SignificanceSummary,
    VariantComparison,
    VariantMetrics,
    VariantStatistics,
    WinnerSummary,
)
from ..core.exceptions import InvalidConfigError
from ..core.utils import clamp, safe_divide
from .metrics_model import compute_derived, metric_numerator, metric_value

logger = logging.getLogger(__name__)


# =============================================================================
# ENUMS
# =============================================================================

class PValueMethod(str, Enum):
    """How a z-score is turned into a two-tailed p-value."""
    EXACT = "exact"  # normal survival function
    BANDED = "banded"  # 0.05 / 0.01 / 0.001 buckets


# =============================================================================
# STATISTICS
# =============================================================================

def two_proportion_z(count_c: int, n_c: int, count_v: int, n_v: int) -> float:
    """Pooled two-proportion z-score of variant versus control.

    Returns 0.0 when either sample is empty or the standard error is zero.
    """
    if n_c <= 0 or n_v <= 0:
        return 0.0

    p_c = count_c / n_c
    p_v = count_v / n_v
    pooled = clamp((count_c + count_v) / (n_c + n_v), 0.0, 1.0)
    se = math.sqrt(pooled * (1 - pooled) * (1 / n_c + 1 / n_v))
    if se == 0:
        return 0.0
    return (p_v - p_c) / se


def p_value_exact(z: float) -> float:
    """Two-tailed p-value from the standard normal distribution."""
    return float(2 * stats.norm.sf(abs(z)))


def p_value_banded(z: float) -> float:
    """Banded approximation of the two-tailed p-value."""
    magnitude = abs(z)
    if magnitude < 1.96:
        return 0.05
    if magnitude < 2.58:
        return 0.01
    return 0.001


def relative_uplift(control_value: float, variant_value: float) -> float:
    """Percent change of variant over control, 0 when control is 0."""
    return safe_divide(variant_value - control_value, control_value) * 100


# =============================================================================
# ENGINE
# =============================================================================

@dataclass
class SignificanceOutcome:
    """Winner, headline significance and per-variant comparison."""
    winner: WinnerSummary
    significance: SignificanceSummary
    comparison: list[VariantComparison] = field(default_factory=list)


class SignificanceEngine:
    """Two-proportion z-test against control with winner selection."""

    def __init__(
        self,
        p_value_method: PValueMethod | str = PValueMethod.EXACT,
        confidence_level: float = 0.95,
    ):
        try:
            self.p_value_method = PValueMethod(p_value_method)
        except ValueError:
            raise InvalidConfigError(
                f"Unknown p-value method: {p_value_method}",
                config_key="p_value_method",
                value=p_value_method,
                expected=", ".join(m.value for m in PValueMethod),
            ) from None
        self.confidence_level = confidence_level

    def p_value(self, z: float) -> float:
        if self.p_value_method == PValueMethod.BANDED:
            return p_value_banded(z)
        return p_value_exact(z)

    @staticmethod
    def has_enough_data(test: ABTest) -> bool:
        """Gate for provisional results: total sample reaches the minimum."""
        return test.total_sample_size >= test.minimum_sample_size

    def compare(
        self,
        control: VariantMetrics,
        variant: VariantMetrics,
        metric: MetricType,
        significance_level: float,
    ) -> VariantStatistics:
        """Compare one variant against control on a proportion metric.

        Both metrics must already carry derived values.
        """
        z = two_proportion_z(
            metric_numerator(control, metric),
            control.sample_size,
            metric_numerator(variant, metric),
            variant.sample_size,
        )
        p = self.p_value(z)
        return VariantStatistics(
            z_score=z,
            p_value=p,
            confidence=(1 - p) * 100,
            uplift=relative_uplift(metric_value(control, metric), metric_value(variant, metric)),
            is_significant=p < significance_level,
        )

    def evaluate(self, test: ABTest) -> SignificanceOutcome:
        """Compute winner, significance and comparison for a test.

        The caller decides whether the enough-data gate applies.
        """
        metric = test.primary_metric
        derived = [
            compute_derived(v.metrics, confidence_level=self.confidence_level)
            for v in test.variants
        ]
        control = test.control
        control_metrics = derived[0]

        winner = WinnerSummary(
            variant_id=control.id,
            confidence=50.0,
            uplift=0.0,
            significance=False,
        )
        winner_p_value = 1.0

        comparison = [self._comparison_entry(test, control.id, control_metrics, None)]
        for variant, metrics in zip(test.variants[1:], derived[1:]):
            statistics = self.compare(control_metrics, metrics, metric, test.significance_level)
            comparison.append(
                self._comparison_entry(
                    test,
                    variant.id,
                    metrics.model_copy(update={"confidence": statistics.confidence}),
                    statistics,
                )
            )

            # Ties keep the earlier winner
            if statistics.confidence > winner.confidence:
                winner = WinnerSummary(
                    variant_id=variant.id,
                    confidence=statistics.confidence,
                    uplift=statistics.uplift,
                    significance=statistics.is_significant,
                )
                winner_p_value = statistics.p_value

        significance = SignificanceSummary(
            p_value=winner_p_value,
            is_significant=winner_p_value < test.significance_level,
            confidence=(1 - winner_p_value) * 100,
        )

        logger.info(
            f"Evaluated test {test.id} on {metric.value}: winner={winner.variant_id} "
            f"confidence={winner.confidence:.2f} significant={significance.is_significant}"
        )
        return SignificanceOutcome(winner=winner, significance=significance, comparison=comparison)

    @staticmethod
    def _comparison_entry(
        test: ABTest,
        variant_id: str,
        metrics: VariantMetrics,
        statistics: VariantStatistics | None,
    ) -> VariantComparison:
        secondary = {m.value: metric_value(metrics, m) for m in test.secondary_metrics}
        return VariantComparison(
            variant_id=variant_id,
            metrics=metrics,
            performance=PerformanceSummary(
                primary=metric_value(metrics, test.primary_metric),
                secondary=secondary,
            ),
            statistics=statistics,
        )


__all__ = [
    "PValueMethod",
    "two_proportion_z",
    "p_value_exact",
    "p_value_banded",
    "relative_uplift",
    "SignificanceOutcome",
    "SignificanceEngine",
]
