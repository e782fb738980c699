"""
Results reporter.

Turns a significance outcome into advisory text: recommendations about
what to do with the winner and insights drawn from the variants'
aggregate performance. Nothing downstream branches on this text.
"""

from __future__ import annotations

import numpy as np

from ..core.data_types import ABTest, MetricType, VariantComparison, WinnerSummary
from .metrics_model import get_definition, metric_value


# Averages across variants above which performance is called out as strong
STRONG_CTR_PERCENT = 5.0
STRONG_CONVERSION_RATE_PERCENT = 10.0
# Revenue spread, relative to the lowest variant, flagged as material
REVENUE_VARIANCE_RATIO = 0.5


class ResultsReporter:
    """Builds recommendations and insights for a computed result."""

    def recommendations(
        self,
        test: ABTest,
        comparison: list[VariantComparison],
        winner: WinnerSummary,
    ) -> list[str]:
        recommendations: list[str] = []

        if winner.significance:
            recommendations.append(f"Implement {self._name(test, winner.variant_id)} as the new default")
            recommendations.append(
                f"Expected uplift: {winner.uplift:.1f}% in {test.primary_metric.value}"
            )
        else:
            recommendations.append("Test needs more time or traffic to reach statistical significance")
            recommendations.append("Consider running the test longer or increasing traffic allocation")

        secondary_hint = self._secondary_recommendation(test, comparison, winner)
        if secondary_hint:
            recommendations.append(secondary_hint)

        return recommendations

    def insights(self, comparison: list[VariantComparison]) -> list[str]:
        if not comparison:
            return []

        insights: list[str] = []
        avg_ctr = float(np.mean([c.metrics.ctr for c in comparison]))
        avg_conversion_rate = float(np.mean([c.metrics.conversion_rate for c in comparison]))

        if avg_ctr > STRONG_CTR_PERCENT:
            insights.append("Strong creative performance with above-average click-through rates")
        else:
            insights.append("Consider testing new creative concepts to improve engagement")

        if avg_conversion_rate > STRONG_CONVERSION_RATE_PERCENT:
            insights.append("Excellent conversion performance indicates strong product-market fit")
        else:
            insights.append("Landing page optimization may improve conversion rates")

        revenues = np.array([c.metrics.revenue for c in comparison], dtype=float)
        spread = float(revenues.max() - revenues.min())
        if spread > revenues.min() * REVENUE_VARIANCE_RATIO:
            insights.append("Significant revenue variance between variants indicates strong test impact")

        return insights

    def _secondary_recommendation(
        self,
        test: ABTest,
        comparison: list[VariantComparison],
        winner: WinnerSummary,
    ) -> str | None:
        """Point at a different variant when it leads on the first secondary metric."""
        if len(comparison) < 2:
            return None

        metric = test.secondary_metrics[0] if test.secondary_metrics else MetricType.CTR
        definition = get_definition(metric)
        sign = 1.0 if definition.higher_is_better else -1.0

        best = max(comparison, key=lambda c: sign * metric_value(c.metrics, metric))
        if best.variant_id == winner.variant_id:
            return None

        winner_entry = next((c for c in comparison if c.variant_id == winner.variant_id), None)
        if winner_entry is not None and sign * metric_value(best.metrics, metric) <= sign * metric_value(
            winner_entry.metrics, metric
        ):
            return None

        return f"Consider {self._name(test, best.variant_id)} for {metric.value} optimization"

    @staticmethod
    def _name(test: ABTest, variant_id: str) -> str:
        variant = test.get_variant(variant_id)
        return variant.name if variant else variant_id


__all__ = ["ResultsReporter"]
