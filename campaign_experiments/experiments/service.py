"""
A/B testing service.

Public entry point of the engine. Wires the repository, the per-test lock
registry, the lifecycle manager, the event recorder and the allocator
together, and returns tests with derived metrics rebuilt from their raw
counters on every read.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from collections.abc import Mapping
from typing import Any

from ..config.settings import ExperimentSettings, Settings, get_settings
from ..core.concurrency import TestLockRegistry
from ..core.data_types import ABTest, ABTestSpec, EventType, Variant
from ..core.exceptions import NotFoundError
from ..database.repository import InMemoryTestRepository, TestRepository, build_repository
from ..monitoring.logger import LogCategory, get_logger
from ..monitoring.metrics import MetricsCollector, get_metrics_collector
from .allocation import VariantAllocator
from .lifecycle import TestLifecycleManager, hydrate
from .metrics_model import compute_derived
from .recorder import EventRecorder

logger = get_logger(__name__, LogCategory.SYSTEM)


class ABTestingService:
    """Facade over the experimentation engine.

    Every collaborator is injectable; the defaults give a self-contained
    in-memory engine.
    """

    def __init__(
        self,
        repository: TestRepository | None = None,
        settings: ExperimentSettings | None = None,
        locks: TestLockRegistry | None = None,
        lifecycle: TestLifecycleManager | None = None,
        recorder: EventRecorder | None = None,
        allocator: VariantAllocator | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self._repository = repository or InMemoryTestRepository()
        self._settings = settings or ExperimentSettings()
        self._locks = locks or TestLockRegistry()
        self._metrics = metrics or get_metrics_collector()
        self._lifecycle = lifecycle or TestLifecycleManager(
            self._repository, self._locks, self._settings, metrics=self._metrics
        )
        self._recorder = recorder or EventRecorder(self._repository, self._locks, self._metrics)
        self._allocator = allocator or VariantAllocator()

        self._event_counts: dict[str, int] = defaultdict(int)
        self._event_counts_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ABTestingService":
        """Build a service whose store follows ``database.backend``."""
        settings = settings or get_settings()
        return cls(repository=build_repository(settings), settings=settings.experiments)

    @property
    def repository(self) -> TestRepository:
        return self._repository

    @property
    def settings(self) -> ExperimentSettings:
        return self._settings

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def create_test(self, spec: ABTestSpec | Mapping[str, Any], created_by: str | None = None) -> ABTest:
        return self._hydrate(self._lifecycle.create(spec, created_by=created_by))

    def start_test(self, test_id: str) -> ABTest:
        return self._hydrate(self._lifecycle.start(test_id))

    def pause_test(self, test_id: str) -> ABTest:
        test = self._lifecycle.pause(test_id)
        self._forget_event_count(test_id)
        return self._hydrate(test)

    def complete_test(self, test_id: str) -> ABTest:
        test = self._lifecycle.complete(test_id)
        self._forget_event_count(test_id)
        return self._hydrate(test)

    def refresh_results(self, test_id: str) -> ABTest:
        return self._hydrate(self._lifecycle.refresh(test_id))

    def delete_test(self, test_id: str) -> None:
        self._lifecycle.delete(test_id)
        self._forget_event_count(test_id)

    # =========================================================================
    # Traffic and events
    # =========================================================================

    def allocate(self, test_id: str, unit_id: str) -> Variant:
        """Deterministically assign a unit to a variant of a RUNNING test."""
        with self._locks.get(test_id).shared():
            test = self._get_raw(test_id)
            variant = self._allocator.allocate(test, unit_id)
        return variant.model_copy(
            update={
                "metrics": compute_derived(
                    variant.metrics, confidence_level=self._settings.confidence_level
                )
            }
        )

    def record_event(
        self,
        test_id: str,
        variant_id: str,
        event_type: EventType | str,
        value: float | None = None,
    ) -> None:
        """Record one event; see EventRecorder.record for the error contract."""
        self._recorder.record(test_id, variant_id, event_type, value)

        every = self._settings.results_refresh_every
        if every > 0:
            with self._event_counts_lock:
                self._event_counts[test_id] += 1
                due = self._event_counts[test_id] % every == 0
            if due and self._lifecycle.refresh_if_running(test_id):
                logger.with_context(test_id=test_id).debug("Refreshed provisional results")

    # =========================================================================
    # Queries
    # =========================================================================

    def get_test(self, test_id: str) -> ABTest:
        return self._hydrate(self._get_raw(test_id))

    def list_tests(self, campaign_id: str | None = None) -> list[ABTest]:
        return [self._hydrate(t) for t in self._repository.list(campaign_id)]

    # =========================================================================
    # Helpers
    # =========================================================================

    def _get_raw(self, test_id: str) -> ABTest:
        test = self._repository.get(test_id)
        if test is None:
            raise NotFoundError(f"Test {test_id} not found", resource_type="test", resource_id=test_id)
        return test

    def _hydrate(self, test: ABTest) -> ABTest:
        return hydrate(test, self._settings.confidence_level)

    def _forget_event_count(self, test_id: str) -> None:
        with self._event_counts_lock:
            self._event_counts.pop(test_id, None)


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================

_service: ABTestingService | None = None
_service_lock = threading.Lock()


def get_ab_testing_service() -> ABTestingService:
    """Get the process-wide service built from application settings."""
    global _service
    with _service_lock:
        if _service is None:
            _service = ABTestingService.from_settings()
        return _service


def reset_ab_testing_service() -> None:
    """Drop the process-wide service (for testing)."""
    global _service
    with _service_lock:
        _service = None


__all__ = ["ABTestingService", "get_ab_testing_service", "reset_ab_testing_service"]
