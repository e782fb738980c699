"""
Test repositories.

Provides the storage interface the engine depends on and two
implementations:
- InMemoryTestRepository: process-local store used by tests and the demo
- SqlAlchemyTestRepository: SQL store backed by DatabaseManager sessions

Counter increments are the only writes that happen concurrently with
other writes to the same test, so each implementation makes them atomic
on its own: per-variant locks in memory, a relative UPDATE in SQL.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..config.settings import Settings, get_settings
from ..core.data_types import (
    ABTest,
    ABTestResult,
    TargetAudience,
    Variant,
    VariantMetrics,
)
from ..core.exceptions import InvalidConfigError, NotFoundError, ValidationError
from ..core.utils import UTC
from .connection import DatabaseManager
from .models import ABTestRecord, VariantRecord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CounterDelta:
    """Amounts added to a variant's raw counters by one event."""
    impressions: int = 0
    clicks: int = 0
    conversions: int = 0
    sample_size: int = 0
    revenue: float = 0.0
    cost: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def nonzero(self) -> dict[str, Any]:
        return {k: v for k, v in self.as_dict().items() if v}

    def apply(self, metrics: VariantMetrics) -> VariantMetrics:
        """Return ``metrics`` with this delta added to its raw counters."""
        return metrics.model_copy(
            update={k: getattr(metrics, k) + v for k, v in self.as_dict().items()}
        )


class TestRepository(ABC):
    """Storage interface for tests and their counters."""

    __test__ = False  # not a pytest test class

    @abstractmethod
    def add(self, test: ABTest) -> None:
        """Persist a new test. Raises ValidationError on a duplicate id."""

    @abstractmethod
    def get(self, test_id: str) -> ABTest | None:
        """Snapshot of a test, or None when unknown."""

    @abstractmethod
    def list(self, campaign_id: str | None = None) -> list[ABTest]:
        """Snapshots of all tests, optionally filtered by campaign."""

    @abstractmethod
    def save(self, test: ABTest) -> None:
        """Overwrite a stored test including its counters.

        Callers hold the test's exclusive lock, so no increment runs
        concurrently.
        """

    @abstractmethod
    def increment(self, test_id: str, variant_id: str, delta: CounterDelta) -> None:
        """Atomically add ``delta`` to one variant's counters."""

    @abstractmethod
    def delete(self, test_id: str) -> bool:
        """Remove a test. Returns False when it did not exist."""

    def health_check(self) -> bool:
        """Whether the backing store is reachable."""
        return True


# =============================================================================
# In-memory store
# =============================================================================


class InMemoryTestRepository(TestRepository):
    """Thread-safe process-local store.

    Stored tests are never handed out; callers always receive deep copies.
    An increment swaps in a new metrics object for the variant, so a
    concurrent snapshot sees either the old or the new counters of a
    variant and never a half-applied event.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tests: dict[str, ABTest] = {}
        self._counter_locks: dict[tuple[str, str], threading.Lock] = {}

    def add(self, test: ABTest) -> None:
        with self._lock:
            if test.id in self._tests:
                raise ValidationError(f"Test {test.id} already exists", field_name="id", invalid_value=test.id)
            self._store(test)

    def get(self, test_id: str) -> ABTest | None:
        with self._lock:
            stored = self._tests.get(test_id)
        if stored is None:
            return None
        return stored.model_copy(deep=True)

    def list(self, campaign_id: str | None = None) -> list[ABTest]:
        with self._lock:
            stored = list(self._tests.values())
        if campaign_id is not None:
            stored = [t for t in stored if t.campaign_id == campaign_id]
        stored.sort(key=lambda t: t.created_at)
        return [t.model_copy(deep=True) for t in stored]

    def save(self, test: ABTest) -> None:
        with self._lock:
            if test.id not in self._tests:
                raise NotFoundError(f"Test {test.id} not found", resource_type="test", resource_id=test.id)
            self._store(test)

    def increment(self, test_id: str, variant_id: str, delta: CounterDelta) -> None:
        with self._lock:
            stored = self._tests.get(test_id)
            if stored is None:
                raise NotFoundError(f"Test {test_id} not found", resource_type="test", resource_id=test_id)
            variant = stored.get_variant(variant_id)
            counter_lock = self._counter_locks.get((test_id, variant_id))
        if variant is None or counter_lock is None:
            raise NotFoundError(
                f"Variant {variant_id} not found in test {test_id}",
                resource_type="variant",
                resource_id=variant_id,
            )
        with counter_lock:
            variant.metrics = delta.apply(variant.metrics)

    def delete(self, test_id: str) -> bool:
        with self._lock:
            stored = self._tests.pop(test_id, None)
            if stored is None:
                return False
            for variant in stored.variants:
                self._counter_locks.pop((test_id, variant.id), None)
            return True

    def _store(self, test: ABTest) -> None:
        self._tests[test.id] = test.model_copy(deep=True)
        for variant in test.variants:
            self._counter_locks.setdefault((test.id, variant.id), threading.Lock())


# =============================================================================
# SQL store
# =============================================================================


def _aware(value: datetime | None) -> datetime | None:
    """Attach UTC to datetimes read back from backends that drop tzinfo."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class SqlAlchemyTestRepository(TestRepository):
    """SQL-backed store using the application's DatabaseManager."""

    def __init__(self, db_manager: DatabaseManager, create_tables: bool = True) -> None:
        self._db = db_manager
        if create_tables:
            self._db.create_tables()

    def add(self, test: ABTest) -> None:
        with self._db.session() as session:
            if session.get(ABTestRecord, test.id) is not None:
                raise ValidationError(f"Test {test.id} already exists", field_name="id", invalid_value=test.id)
            record = ABTestRecord(id=test.id, created_at=test.created_at)
            self._apply(record, test, session)
            session.add(record)

    def get(self, test_id: str) -> ABTest | None:
        with self._db.session() as session:
            record = session.get(ABTestRecord, test_id)
            return self._to_domain(record) if record is not None else None

    def list(self, campaign_id: str | None = None) -> list[ABTest]:
        stmt = select(ABTestRecord).order_by(ABTestRecord.created_at)
        if campaign_id is not None:
            stmt = stmt.where(ABTestRecord.campaign_id == campaign_id)
        with self._db.session() as session:
            return [self._to_domain(r) for r in session.scalars(stmt).all()]

    def save(self, test: ABTest) -> None:
        with self._db.session() as session:
            record = session.get(ABTestRecord, test.id)
            if record is None:
                raise NotFoundError(f"Test {test.id} not found", resource_type="test", resource_id=test.id)
            self._apply(record, test, session)

    def increment(self, test_id: str, variant_id: str, delta: CounterDelta) -> None:
        changes = delta.nonzero()
        if not changes:
            return
        stmt = (
            update(VariantRecord)
            .where(VariantRecord.test_id == test_id, VariantRecord.variant_id == variant_id)
            .values({name: getattr(VariantRecord, name) + amount for name, amount in changes.items()})
        )
        with self._db.session() as session:
            result = session.execute(stmt)
            if result.rowcount == 0:
                raise NotFoundError(
                    f"Variant {variant_id} not found in test {test_id}",
                    resource_type="variant",
                    resource_id=variant_id,
                )

    def delete(self, test_id: str) -> bool:
        with self._db.session() as session:
            record = session.get(ABTestRecord, test_id)
            if record is None:
                return False
            session.delete(record)
            return True

    def health_check(self) -> bool:
        return self._db.health_check()

    def _apply(self, record: ABTestRecord, test: ABTest, session: Session) -> None:
        """Copy a domain test onto its ORM record, variants included."""
        record.campaign_id = test.campaign_id
        record.name = test.name
        record.description = test.description
        record.status = test.status.value
        record.primary_metric = test.primary_metric.value
        record.secondary_metrics = [m.value for m in test.secondary_metrics]
        record.significance_level = test.significance_level
        record.minimum_sample_size = test.minimum_sample_size
        record.sample_size_event = test.sample_size_event.value
        record.target_audience = test.target_audience.to_dict()
        record.start_date = test.start_date
        record.end_date = test.end_date
        record.results = test.results.to_dict() if test.results else None
        record.created_by = test.created_by

        existing = {v.variant_id: v for v in record.variants}
        for position, variant in enumerate(test.variants):
            row = existing.get(variant.id)
            if row is None:
                row = VariantRecord(test_id=test.id, variant_id=variant.id)
                record.variants.append(row)
            row.position = position
            row.name = variant.name
            row.description = variant.description
            row.type = variant.type.value
            row.content = variant.content
            row.configuration = variant.configuration
            row.traffic_split = variant.traffic_split
            for name, value in variant.metrics.model_dump(
                include={"impressions", "clicks", "conversions", "revenue", "cost", "sample_size"}
            ).items():
                setattr(row, name, value)

    @staticmethod
    def _to_domain(record: ABTestRecord) -> ABTest:
        return ABTest(
            id=record.id,
            campaign_id=record.campaign_id,
            name=record.name,
            description=record.description,
            status=record.status,
            variants=[
                Variant(
                    id=row.variant_id,
                    name=row.name,
                    description=row.description,
                    type=row.type,
                    content=row.content or {},
                    configuration=row.configuration or {},
                    traffic_split=row.traffic_split,
                    metrics=VariantMetrics(**row.counters()),
                )
                for row in record.variants
            ],
            primary_metric=record.primary_metric,
            secondary_metrics=record.secondary_metrics or [],
            significance_level=record.significance_level,
            minimum_sample_size=record.minimum_sample_size,
            sample_size_event=record.sample_size_event,
            target_audience=TargetAudience.from_dict(record.target_audience or {}),
            start_date=_aware(record.start_date),
            end_date=_aware(record.end_date),
            results=ABTestResult.from_dict(record.results) if record.results else None,
            created_at=_aware(record.created_at),
            created_by=record.created_by,
        )


def build_repository(settings: Settings | None = None) -> TestRepository:
    """Create the store selected by ``database.backend``."""
    settings = settings or get_settings()
    backend = settings.database.backend
    if backend == "memory":
        return InMemoryTestRepository()
    if backend == "sql":
        return SqlAlchemyTestRepository(DatabaseManager(settings))
    raise InvalidConfigError(
        f"Unknown storage backend: {backend}",
        config_key="database.backend",
        value=backend,
        expected="memory, sql",
    )


__all__ = [
    "CounterDelta",
    "TestRepository",
    "InMemoryTestRepository",
    "SqlAlchemyTestRepository",
    "build_repository",
]
