"""
Pydantic models and type definitions for the experimentation engine.

Defines the contracts for every entity the engine persists and returns:
tests, variants, per-variant metrics and computed results. Python
attributes are snake_case; the serialized form uses camelCase keys so a
test round-trips through JSON as the documented object graph.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .utils import generate_id, utc_now


class ABTestStatus(str, Enum):
    """Lifecycle status of a test."""

    DRAFT = "DRAFT"
    RUNNING = "RUNNING"
    PAUSED = "PAUSED"
    COMPLETED = "COMPLETED"


class VariantType(str, Enum):
    """What a variant changes relative to control."""

    CREATIVE = "CREATIVE"
    COPY = "COPY"
    OFFER = "OFFER"
    TARGETING = "TARGETING"


class EventType(str, Enum):
    """Observable event kinds the recorder accepts."""

    IMPRESSION = "impression"
    CLICK = "click"
    CONVERSION = "conversion"
    REVENUE = "revenue"
    COST = "cost"

    @property
    def requires_value(self) -> bool:
        return self in (EventType.REVENUE, EventType.COST)


# Events that may drive a test's sampleSize counter
SAMPLE_SIZE_EVENTS = (EventType.IMPRESSION, EventType.CLICK)


class MetricType(str, Enum):
    """Metrics a test can be measured on."""

    CTR = "ctr"
    CONVERSION_RATE = "conversionRate"
    CPA = "cpa"
    ROAS = "roas"
    ENGAGEMENT_RATE = "engagementRate"
    REVENUE = "revenue"
    CLICKS = "clicks"
    CONVERSIONS = "conversions"
    IMPRESSIONS = "impressions"


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-compatible dictionary with camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_dict(cls, data: dict[str, Any]):
        """Create from a dictionary with camelCase or snake_case keys."""
        return cls.model_validate(data)


# =============================================================================
# Metrics
# =============================================================================


class ConfidenceInterval(CamelModel):
    """Interval on a proportion, expressed as fractions in [0, 1]."""

    lower: float
    upper: float


class VariantMetrics(CamelModel):
    """Raw counters plus the metrics derived from them.

    Only the raw counters are authoritative. Derived fields are rebuilt
    from them on every read.
    """

    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    revenue: float = 0.0
    cost: float = 0.0
    sample_size: int = 0

    ctr: float = 0.0
    conversion_rate: float = 0.0
    cpa: float = 0.0
    roas: float = 0.0
    engagement_rate: float = 0.0
    confidence: float = 0.0
    confidence_interval: ConfidenceInterval | None = None


# =============================================================================
# Test Definition
# =============================================================================


class TargetAudience(CamelModel):
    """Opaque audience descriptor owned by the campaign."""

    size: int | None = None
    demographics: dict[str, Any] = Field(default_factory=dict)
    filters: dict[str, Any] = Field(default_factory=dict)


class Variant(CamelModel):
    """One arm of a test."""

    id: str = Field(default_factory=lambda: generate_id("var"))
    name: str
    description: str = ""
    type: VariantType = VariantType.CREATIVE
    content: dict[str, Any] = Field(default_factory=dict)
    configuration: dict[str, Any] = Field(default_factory=dict)
    traffic_split: float
    metrics: VariantMetrics = Field(default_factory=VariantMetrics)


class VariantSpec(CamelModel):
    """Variant as submitted by a caller, before validation."""

    id: str | None = None
    name: str = ""
    description: str = ""
    type: VariantType = VariantType.CREATIVE
    content: dict[str, Any] = Field(default_factory=dict)
    configuration: dict[str, Any] = Field(default_factory=dict)
    traffic_split: float = 0.0


class ABTestSpec(CamelModel):
    """Test definition as submitted by a caller.

    Types are intentionally loose so that the lifecycle manager can report
    every violated constraint at once.
    """

    campaign_id: str = ""
    name: str = ""
    description: str = ""
    variants: list[VariantSpec] = Field(default_factory=list)
    primary_metric: str = ""
    secondary_metrics: list[str] = Field(default_factory=list)
    significance_level: float | None = None
    minimum_sample_size: int | None = None
    sample_size_event: str | None = None
    target_audience: TargetAudience = Field(default_factory=TargetAudience)
    created_by: str | None = None


# =============================================================================
# Results
# =============================================================================


class WinnerSummary(CamelModel):
    variant_id: str
    confidence: float
    uplift: float
    significance: bool


class SignificanceSummary(CamelModel):
    p_value: float
    is_significant: bool
    confidence: float


class VariantStatistics(CamelModel):
    """Outcome of comparing one variant against control."""

    z_score: float
    p_value: float
    confidence: float
    uplift: float
    is_significant: bool


class PerformanceSummary(CamelModel):
    primary: float
    secondary: dict[str, float] = Field(default_factory=dict)


class VariantComparison(CamelModel):
    variant_id: str
    metrics: VariantMetrics
    performance: PerformanceSummary
    statistics: VariantStatistics | None = None


class ABTestResult(CamelModel):
    """Computed outcome of a test, provisional or final."""

    winner: WinnerSummary
    significance: SignificanceSummary
    comparison: list[VariantComparison] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)
    computed_at: datetime = Field(default_factory=utc_now)
    is_final: bool = False

    def comparison_for(self, variant_id: str) -> VariantComparison | None:
        for entry in self.comparison:
            if entry.variant_id == variant_id:
                return entry
        return None


# =============================================================================
# Test
# =============================================================================


class ABTest(CamelModel):
    """A controlled experiment over two or more variants of a campaign."""

    id: str = Field(default_factory=lambda: generate_id("test"))
    campaign_id: str
    name: str
    description: str = ""
    status: ABTestStatus = ABTestStatus.DRAFT
    variants: list[Variant]
    primary_metric: MetricType
    secondary_metrics: list[MetricType] = Field(default_factory=list)
    significance_level: float = 0.05
    minimum_sample_size: int = 1000
    sample_size_event: EventType = EventType.IMPRESSION
    target_audience: TargetAudience = Field(default_factory=TargetAudience)
    start_date: datetime | None = None
    end_date: datetime | None = None
    results: ABTestResult | None = None
    created_at: datetime = Field(default_factory=utc_now)
    created_by: str | None = None

    @property
    def control(self) -> Variant:
        """The first declared variant is the control."""
        return self.variants[0]

    @property
    def total_sample_size(self) -> int:
        return sum(v.metrics.sample_size for v in self.variants)

    def get_variant(self, variant_id: str) -> Variant | None:
        for variant in self.variants:
            if variant.id == variant_id:
                return variant
        return None


__all__ = [
    "ABTestStatus",
    "VariantType",
    "EventType",
    "SAMPLE_SIZE_EVENTS",
    "MetricType",
    "CamelModel",
    "ConfidenceInterval",
    "VariantMetrics",
    "TargetAudience",
    "Variant",
    "VariantSpec",
    "ABTestSpec",
    "WinnerSummary",
    "SignificanceSummary",
    "VariantStatistics",
    "PerformanceSummary",
    "VariantComparison",
    "ABTestResult",
    "ABTest",
]
