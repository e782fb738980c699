"""
Unit tests for experiments/reporting.py
"""

from campaign_experiments.core.data_types import (
    ABTest,
    MetricType,
    PerformanceSummary,
    Variant,
    VariantComparison,
    VariantMetrics,
    WinnerSummary,
)
from campaign_experiments.experiments.metrics_model import compute_derived
from campaign_experiments.experiments.reporting import ResultsReporter


def _entry(variant_id, **counters):
    return VariantComparison(
        variant_id=variant_id,
        metrics=compute_derived(VariantMetrics(**counters)),
        performance=PerformanceSummary(primary=0.0),
    )


def _test(secondary=None):
    return ABTest(
        campaign_id="camp-1",
        name="Offer test",
        variants=[
            Variant(id="A", name="Control", traffic_split=50),
            Variant(id="B", name="Free shipping", traffic_split=50),
        ],
        primary_metric=MetricType.CTR,
        secondary_metrics=secondary or [],
    )


def _winner(variant_id="B", significance=True, uplift=25.0):
    return WinnerSummary(variant_id=variant_id, confidence=97.0, uplift=uplift, significance=significance)


class TestRecommendations:
    """Tests for recommendation text."""

    def test_significant_winner(self):
        comparison = [_entry("A", impressions=100, clicks=4), _entry("B", impressions=100, clicks=5)]
        recommendations = ResultsReporter().recommendations(_test(), comparison, _winner())
        assert recommendations[0] == "Implement Free shipping as the new default"
        assert recommendations[1] == "Expected uplift: 25.0% in ctr"

    def test_not_significant(self):
        comparison = [_entry("A", impressions=100, clicks=4), _entry("B", impressions=100, clicks=4)]
        recommendations = ResultsReporter().recommendations(
            _test(), comparison, _winner("A", significance=False, uplift=0.0)
        )
        assert recommendations == [
            "Test needs more time or traffic to reach statistical significance",
            "Consider running the test longer or increasing traffic allocation",
        ]

    def test_secondary_leader_other_than_winner(self):
        comparison = [
            _entry("A", impressions=100, clicks=10, conversions=5),
            _entry("B", impressions=100, clicks=12, conversions=2),
        ]
        recommendations = ResultsReporter().recommendations(
            _test([MetricType.CONVERSION_RATE]), comparison, _winner("B")
        )
        assert recommendations[-1] == "Consider Control for conversionRate optimization"

    def test_no_secondary_hint_when_winner_leads(self):
        comparison = [
            _entry("A", impressions=100, clicks=10, conversions=1),
            _entry("B", impressions=100, clicks=12, conversions=6),
        ]
        recommendations = ResultsReporter().recommendations(
            _test([MetricType.CONVERSION_RATE]), comparison, _winner("B")
        )
        assert len(recommendations) == 2

    def test_no_secondary_hint_on_tie(self):
        comparison = [
            _entry("A", impressions=100, clicks=10, conversions=2),
            _entry("B", impressions=100, clicks=10, conversions=2),
        ]
        recommendations = ResultsReporter().recommendations(
            _test([MetricType.CONVERSION_RATE]), comparison, _winner("B")
        )
        assert len(recommendations) == 2

    def test_lower_is_better_metric(self):
        """For cpa the cheaper variant leads."""
        comparison = [
            _entry("A", impressions=100, clicks=10, conversions=5, cost=50.0),
            _entry("B", impressions=100, clicks=12, conversions=5, cost=100.0),
        ]
        recommendations = ResultsReporter().recommendations(_test([MetricType.CPA]), comparison, _winner("B"))
        assert recommendations[-1] == "Consider Control for cpa optimization"


class TestInsights:
    """Tests for aggregate insights."""

    def test_strong_performance(self):
        comparison = [
            _entry("A", impressions=100, clicks=10, conversions=2, revenue=100.0),
            _entry("B", impressions=100, clicks=8, conversions=1, revenue=40.0),
        ]
        insights = ResultsReporter().insights(comparison)
        assert insights == [
            "Strong creative performance with above-average click-through rates",
            "Excellent conversion performance indicates strong product-market fit",
            "Significant revenue variance between variants indicates strong test impact",
        ]

    def test_weak_performance(self):
        comparison = [
            _entry("A", impressions=1000, clicks=10, conversions=0, revenue=100.0),
            _entry("B", impressions=1000, clicks=20, conversions=1, revenue=110.0),
        ]
        insights = ResultsReporter().insights(comparison)
        assert insights == [
            "Consider testing new creative concepts to improve engagement",
            "Landing page optimization may improve conversion rates",
        ]

    def test_empty_comparison(self):
        assert ResultsReporter().insights([]) == []
