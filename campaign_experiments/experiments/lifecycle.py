"""
Test lifecycle manager.

Owns every status transition of a test:

    DRAFT --start--> RUNNING --pause--> PAUSED --complete--> COMPLETED
                        |                                        ^
                        +-----------------complete---------------+

Each transition runs under the test's exclusive lock so it can never
interleave with event recording on the same test. Results are computed
here: provisionally while RUNNING once the sample gate is met, as a
snapshot on pause, and unconditionally and finally on complete.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Callable

import pydantic

from ..config.settings import ExperimentSettings
from ..core.concurrency import TestLockRegistry
from ..core.data_types import (
    SAMPLE_SIZE_EVENTS,
    ABTest,
    ABTestResult,
    ABTestSpec,
    ABTestStatus,
    EventType,
    MetricType,
    Variant,
    VariantMetrics,
)
from ..core.exceptions import InvalidStateError, NotFoundError, ValidationError
from ..core.utils import generate_id, timer, utc_now
from ..database.repository import TestRepository
from ..monitoring.logger import LogCategory, get_logger, log_lifecycle, trace_latency
from ..monitoring.metrics import MetricsCollector, get_metrics_collector
from .metrics_model import compute_derived, get_definition, proportion_metrics
from .reporting import ResultsReporter
from .significance import SignificanceEngine

logger = get_logger(__name__, LogCategory.LIFECYCLE)


def hydrate(test: ABTest, confidence_level: float = 0.95) -> ABTest:
    """Rebuild derived metrics of every variant from its raw counters.

    A variant's ``confidence`` comes from its entry in the latest result.
    """
    confidences: dict[str, float] = {}
    if test.results is not None:
        for entry in test.results.comparison:
            if entry.statistics is not None:
                confidences[entry.variant_id] = entry.statistics.confidence

    variants = [
        variant.model_copy(
            update={
                "metrics": compute_derived(
                    variant.metrics,
                    confidence=confidences.get(variant.id, 0.0),
                    confidence_level=confidence_level,
                )
            }
        )
        for variant in test.variants
    ]
    return test.model_copy(update={"variants": variants})


class TestLifecycleManager:
    """Creates tests and drives their status transitions."""

    __test__ = False  # not a pytest test class

    def __init__(
        self,
        repository: TestRepository,
        locks: TestLockRegistry,
        settings: ExperimentSettings | None = None,
        engine: SignificanceEngine | None = None,
        reporter: ResultsReporter | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], Any] = utc_now,
    ):
        self._repository = repository
        self._locks = locks
        self._settings = settings or ExperimentSettings()
        self._engine = engine or SignificanceEngine(
            p_value_method=self._settings.p_value_method,
            confidence_level=self._settings.confidence_level,
        )
        self._reporter = reporter or ResultsReporter()
        self._metrics = metrics or get_metrics_collector()
        self._clock = clock

    @property
    def engine(self) -> SignificanceEngine:
        return self._engine

    # =========================================================================
    # Creation
    # =========================================================================

    def create(self, spec: ABTestSpec | Mapping[str, Any], created_by: str | None = None) -> ABTest:
        """Validate a definition and persist it as a DRAFT test.

        Raises:
            ValidationError: Listing every violated constraint. Nothing is
                persisted.
        """
        spec = self._parse_spec(spec)
        violations = self.validate(spec)
        if violations:
            raise ValidationError(
                f"Invalid test definition: {len(violations)} violation(s)",
                violations=violations,
            )

        test = ABTest(
            campaign_id=spec.campaign_id,
            name=spec.name.strip(),
            description=spec.description,
            status=ABTestStatus.DRAFT,
            variants=[
                Variant(
                    id=v.id or generate_id("var"),
                    name=v.name.strip(),
                    description=v.description,
                    type=v.type,
                    content=v.content,
                    configuration=v.configuration,
                    traffic_split=v.traffic_split,
                )
                for v in spec.variants
            ],
            primary_metric=MetricType(spec.primary_metric),
            secondary_metrics=[MetricType(m) for m in spec.secondary_metrics],
            significance_level=self._significance_level(spec),
            minimum_sample_size=self._minimum_sample_size(spec),
            sample_size_event=EventType(self._sample_size_event(spec)),
            target_audience=spec.target_audience,
            created_at=self._clock(),
            created_by=created_by or spec.created_by,
        )
        self._repository.add(test)
        self._metrics.record_test_created()

        logger.with_context(test_id=test.id, campaign_id=test.campaign_id).info(
            f"Created test '{test.name}' with {len(test.variants)} variants"
        )
        return test

    def validate(self, spec: ABTestSpec) -> list[str]:
        """Return every constraint the definition violates."""
        violations: list[str] = []
        settings = self._settings

        if not spec.name.strip():
            violations.append("name is required")
        if not spec.campaign_id.strip():
            violations.append("campaignId is required")

        if len(spec.variants) < 2:
            violations.append(f"at least 2 variants are required, got {len(spec.variants)}")
        for i, variant in enumerate(spec.variants):
            if not variant.name.strip():
                violations.append(f"variants[{i}].name is required")
            if not 0 <= variant.traffic_split <= 100:
                violations.append(f"variants[{i}].trafficSplit must be between 0 and 100, got {variant.traffic_split}")
        if spec.variants:
            total = sum(v.traffic_split for v in spec.variants)
            if abs(total - 100) > settings.traffic_split_tolerance:
                violations.append(f"trafficSplit must sum to 100, got {total:g}")
        ids = [v.id for v in spec.variants if v.id]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            violations.append(f"variant ids must be unique, duplicated: {', '.join(duplicates)}")

        violations.extend(self._metric_violations(spec))

        level = self._significance_level(spec)
        if not settings.min_significance_level <= level <= settings.max_significance_level:
            violations.append(
                f"significanceLevel must be between {settings.min_significance_level} "
                f"and {settings.max_significance_level}, got {level}"
            )
        if self._minimum_sample_size(spec) <= 0:
            violations.append("minimumSampleSize must be a positive integer")

        event = self._sample_size_event(spec)
        if event not in {e.value for e in SAMPLE_SIZE_EVENTS}:
            violations.append(
                f"sampleSizeEvent must be one of {', '.join(e.value for e in SAMPLE_SIZE_EVENTS)}, got {event}"
            )

        return violations

    def _metric_violations(self, spec: ABTestSpec) -> list[str]:
        violations: list[str] = []
        known = {m.value for m in MetricType}

        if not spec.primary_metric:
            violations.append("primaryMetric is required")
        elif spec.primary_metric not in known:
            violations.append(f"primaryMetric '{spec.primary_metric}' is not a known metric")
        elif not get_definition(spec.primary_metric).is_proportion:
            eligible = ", ".join(m.value for m in proportion_metrics())
            violations.append(f"primaryMetric must be a proportion metric ({eligible}), got {spec.primary_metric}")

        for metric in spec.secondary_metrics:
            if metric not in known:
                violations.append(f"secondaryMetrics entry '{metric}' is not a known metric")
        return violations

    # =========================================================================
    # Transitions
    # =========================================================================

    def start(self, test_id: str) -> ABTest:
        """DRAFT -> RUNNING with all counters zeroed."""
        with self._locks.get(test_id).exclusive():
            test = self._load(test_id)
            self._require(test, (ABTestStatus.DRAFT,), "start")

            for variant in test.variants:
                variant.metrics = VariantMetrics()
            test.results = None
            test.start_date = self._clock()
            test.end_date = None
            return self._transition(test, ABTestStatus.RUNNING)

    def pause(self, test_id: str) -> ABTest:
        """RUNNING -> PAUSED, snapshotting results when enough data exists."""
        with self._locks.get(test_id).exclusive():
            test = self._load(test_id)
            self._require(test, (ABTestStatus.RUNNING,), "pause")

            if self._engine.has_enough_data(test):
                test.results = self.compute_results(test, final=False)
            test.end_date = self._clock()
            return self._transition(test, ABTestStatus.PAUSED)

    def complete(self, test_id: str) -> ABTest:
        """RUNNING/PAUSED -> COMPLETED with final results."""
        with self._locks.get(test_id).exclusive():
            test = self._load(test_id)
            self._require(test, (ABTestStatus.RUNNING, ABTestStatus.PAUSED), "complete")

            test.results = self.compute_results(test, final=True)
            if test.end_date is None:
                test.end_date = self._clock()
            return self._transition(test, ABTestStatus.COMPLETED)

    def refresh(self, test_id: str) -> ABTest:
        """Recompute provisional results of a RUNNING test.

        Leaves the test untouched while the sample gate is not met.
        """
        with self._locks.get(test_id).exclusive():
            test = self._load(test_id)
            self._require(test, (ABTestStatus.RUNNING,), "refresh")
            if self._engine.has_enough_data(test):
                test.results = self.compute_results(test, final=False)
                self._repository.save(test)
            return test

    def refresh_if_running(self, test_id: str) -> bool:
        """Refresh provisional results unless the test left RUNNING meanwhile."""
        with self._locks.get(test_id).exclusive():
            test = self._repository.get(test_id)
            if test is None or test.status != ABTestStatus.RUNNING:
                return False
            if not self._engine.has_enough_data(test):
                return False
            test.results = self.compute_results(test, final=False)
            self._repository.save(test)
            return True

    def delete(self, test_id: str) -> None:
        """Remove a test that is not RUNNING."""
        with self._locks.get(test_id).exclusive():
            test = self._load(test_id)
            self._require(
                test,
                (ABTestStatus.DRAFT, ABTestStatus.PAUSED, ABTestStatus.COMPLETED),
                "delete",
            )
            self._repository.delete(test_id)
        self._locks.discard(test_id)
        logger.with_context(test_id=test_id, campaign_id=test.campaign_id).info("Deleted test")

    # =========================================================================
    # Results
    # =========================================================================

    def compute_results(self, test: ABTest, final: bool = False) -> ABTestResult:
        """Run the significance engine and reporter over current counters."""
        with timer(f"significance {test.id}") as elapsed:
            outcome = self._engine.evaluate(test)
            result = ABTestResult(
                winner=outcome.winner,
                significance=outcome.significance,
                comparison=outcome.comparison,
                recommendations=self._reporter.recommendations(test, outcome.comparison, outcome.winner),
                insights=self._reporter.insights(outcome.comparison),
                computed_at=self._clock(),
                is_final=final,
            )
        self._metrics.record_significance_run(outcome.significance.is_significant, elapsed["elapsed"])
        trace_latency("compute_results", elapsed["elapsed"] * 1000, component="lifecycle")
        return result

    # =========================================================================
    # Helpers
    # =========================================================================

    def _load(self, test_id: str) -> ABTest:
        test = self._repository.get(test_id)
        if test is None:
            raise NotFoundError(f"Test {test_id} not found", resource_type="test", resource_id=test_id)
        return test

    @staticmethod
    def _require(test: ABTest, allowed: tuple[ABTestStatus, ...], operation: str) -> None:
        if test.status not in allowed:
            raise InvalidStateError(
                f"Cannot {operation} test in status {test.status.value}",
                test_id=test.id,
                current_status=test.status.value,
                operation=operation,
            )

    def _transition(self, test: ABTest, to_status: ABTestStatus) -> ABTest:
        from_status = test.status
        test.status = to_status
        self._repository.save(test)
        self._metrics.record_transition(from_status.value, to_status.value)
        log_lifecycle(
            f"Test transitioned {from_status.value} -> {to_status.value}",
            test.id,
            campaign_id=test.campaign_id,
        )
        return test

    @staticmethod
    def _parse_spec(spec: ABTestSpec | Mapping[str, Any]) -> ABTestSpec:
        if isinstance(spec, ABTestSpec):
            return spec
        try:
            return ABTestSpec.model_validate(dict(spec))
        except pydantic.ValidationError as e:
            violations = [
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ]
            raise ValidationError(
                f"Invalid test definition: {len(violations)} violation(s)",
                violations=violations,
            ) from e

    def _significance_level(self, spec: ABTestSpec) -> float:
        if spec.significance_level is None:
            return self._settings.default_significance_level
        return spec.significance_level

    def _minimum_sample_size(self, spec: ABTestSpec) -> int:
        if spec.minimum_sample_size is None:
            return self._settings.default_minimum_sample_size
        return spec.minimum_sample_size

    def _sample_size_event(self, spec: ABTestSpec) -> str:
        return spec.sample_size_event or self._settings.default_sample_size_event


__all__ = ["hydrate", "TestLifecycleManager"]
