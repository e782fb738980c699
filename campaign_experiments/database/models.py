"""
SQLAlchemy ORM models for the experiment store.

Defines two tables:
- ab_tests: one row per test with its definition, status and results
- ab_test_variants: one row per variant holding the raw event counters

Counters live in their own columns so that events can be applied with a
single ``UPDATE ... SET x = x + :delta`` instead of read-modify-write.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

from ..core.utils import utc_now

# JSONB on PostgreSQL, plain JSON elsewhere
JsonType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )


# =============================================================================
# Experiment Models
# =============================================================================


class ABTestRecord(TimestampMixin, Base):
    """Test definition, lifecycle state and latest results."""

    __tablename__ = "ab_tests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    campaign_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    primary_metric: Mapped[str] = mapped_column(String(32), nullable=False)
    secondary_metrics: Mapped[list[str]] = mapped_column(JsonType, default=list, nullable=False)
    significance_level: Mapped[float] = mapped_column(Float, nullable=False)
    minimum_sample_size: Mapped[int] = mapped_column(Integer, nullable=False)
    sample_size_event: Mapped[str] = mapped_column(String(16), nullable=False)
    target_audience: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict, nullable=False)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    results: Mapped[dict[str, Any] | None] = mapped_column(JsonType, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(64), nullable=True)

    variants: Mapped[list["VariantRecord"]] = relationship(
        back_populates="test",
        cascade="all, delete-orphan",
        order_by="VariantRecord.position",
        lazy="selectin",
    )

    __table_args__ = (
        Index("idx_ab_tests_campaign", "campaign_id"),
        Index("idx_ab_tests_status", "status"),
    )

    def __repr__(self) -> str:
        return f"<ABTestRecord({self.id}, {self.name}, {self.status})>"


class VariantRecord(Base):
    """One variant of a test with its raw counters."""

    __tablename__ = "ab_test_variants"

    test_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("ab_tests.id", ondelete="CASCADE"),
        primary_key=True,
    )
    variant_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict, nullable=False)
    configuration: Mapped[dict[str, Any]] = mapped_column(JsonType, default=dict, nullable=False)
    traffic_split: Mapped[float] = mapped_column(Float, nullable=False)

    impressions: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    clicks: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    conversions: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    sample_size: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    revenue: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    cost: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)

    test: Mapped[ABTestRecord] = relationship(back_populates="variants")

    def __repr__(self) -> str:
        return f"<VariantRecord({self.test_id}/{self.variant_id}, imp={self.impressions})>"

    def counters(self) -> dict[str, Any]:
        """Raw counters keyed by VariantMetrics field name."""
        return {
            "impressions": self.impressions,
            "clicks": self.clicks,
            "conversions": self.conversions,
            "revenue": self.revenue,
            "cost": self.cost,
            "sample_size": self.sample_size,
        }
