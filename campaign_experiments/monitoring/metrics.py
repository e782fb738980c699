"""
Prometheus metrics collection for the experimentation engine.

Provides metrics for:
- Service information and uptime
- Event ingestion (accepted and rejected events)
- Test lifecycle transitions
- Significance computations
- API requests
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from typing import Generator

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)


# Create a custom registry to avoid conflicts
REGISTRY = CollectorRegistry(auto_describe=True)


# =============================================================================
# System Metrics
# =============================================================================

SYSTEM_INFO = Info(
    "campaign_experiments",
    "Experimentation engine information",
    registry=REGISTRY,
)

SYSTEM_UPTIME = Gauge(
    "experiments_uptime_seconds",
    "Service uptime in seconds",
    registry=REGISTRY,
)


# =============================================================================
# Request Metrics
# =============================================================================

REQUESTS_TOTAL = Counter(
    "experiments_requests_total",
    "Total number of API requests",
    ["endpoint", "method", "status"],
    registry=REGISTRY,
)

REQUEST_LATENCY = Histogram(
    "experiments_request_latency_seconds",
    "API request latency in seconds",
    ["endpoint"],
    buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5),
    registry=REGISTRY,
)


# =============================================================================
# Engine Metrics
# =============================================================================

EVENTS_RECORDED = Counter(
    "experiments_events_recorded_total",
    "Events accepted by the recorder",
    ["event_type"],
    registry=REGISTRY,
)

EVENTS_REJECTED = Counter(
    "experiments_events_rejected_total",
    "Events refused by the recorder",
    ["reason"],  # validation, state, not_found
    registry=REGISTRY,
)

TRANSITIONS_TOTAL = Counter(
    "experiments_transitions_total",
    "Test status transitions",
    ["from_status", "to_status"],
    registry=REGISTRY,
)

TESTS_CREATED = Counter(
    "experiments_tests_created_total",
    "Tests created",
    registry=REGISTRY,
)

RUNNING_TESTS = Gauge(
    "experiments_running_tests",
    "Tests currently accepting events",
    registry=REGISTRY,
)

SIGNIFICANCE_RUNS = Counter(
    "experiments_significance_runs_total",
    "Significance computations",
    ["outcome"],  # significant, not_significant
    registry=REGISTRY,
)

SIGNIFICANCE_LATENCY = Histogram(
    "experiments_significance_latency_seconds",
    "Time spent computing results",
    buckets=(0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25),
    registry=REGISTRY,
)


# =============================================================================
# Metrics Collector Class
# =============================================================================

class MetricsCollector:
    """Central metrics collector for the experimentation engine.

    Provides convenient methods for updating metrics and generating
    Prometheus-compatible output.
    """

    _instance: "MetricsCollector | None" = None
    _start_time: float = 0.0

    def __new__(cls) -> "MetricsCollector":
        """Singleton pattern for metrics collector."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._start_time = time.time()
        return cls._instance

    def set_system_info(self, version: str, environment: str) -> None:
        SYSTEM_INFO.info({"version": version, "environment": environment})

    def update_uptime(self) -> None:
        SYSTEM_UPTIME.set(time.time() - self._start_time)

    def record_request(
        self,
        endpoint: str,
        method: str,
        status: int,
        latency: float,
    ) -> None:
        """Record an API request.

        Args:
            endpoint: Route template, not the concrete path.
            method: HTTP method.
            status: Response status code.
            latency: Request latency in seconds.
        """
        REQUESTS_TOTAL.labels(
            endpoint=endpoint,
            method=method,
            status=str(status),
        ).inc()
        REQUEST_LATENCY.labels(endpoint=endpoint).observe(latency)

    def record_event(self, event_type: str) -> None:
        EVENTS_RECORDED.labels(event_type=event_type).inc()

    def record_event_rejected(self, reason: str) -> None:
        EVENTS_REJECTED.labels(reason=reason).inc()

    def record_test_created(self) -> None:
        TESTS_CREATED.inc()

    def record_transition(self, from_status: str, to_status: str) -> None:
        """Record a status transition and keep the running gauge in step."""
        TRANSITIONS_TOTAL.labels(from_status=from_status, to_status=to_status).inc()
        if to_status == "RUNNING":
            RUNNING_TESTS.inc()
        elif from_status == "RUNNING":
            RUNNING_TESTS.dec()

    def record_significance_run(self, significant: bool, duration: float) -> None:
        outcome = "significant" if significant else "not_significant"
        SIGNIFICANCE_RUNS.labels(outcome=outcome).inc()
        SIGNIFICANCE_LATENCY.observe(duration)

    @contextmanager
    def time_request(
        self,
        endpoint: str,
        method: str,
    ) -> Generator[dict[str, int], None, None]:
        """Time a request; the caller sets ``status`` on the yielded dict."""
        state = {"status": 200}
        start = time.time()
        try:
            yield state
        finally:
            self.record_request(endpoint, method, state["status"], time.time() - start)

    def get_metrics(self) -> bytes:
        """Get Prometheus metrics output.

        Returns:
            Prometheus metrics in text format.
        """
        self.update_uptime()
        return generate_latest(REGISTRY)

    def get_content_type(self) -> str:
        """Get the content type for metrics output.

        Returns:
            Content type string.
        """
        return CONTENT_TYPE_LATEST


def get_metrics_collector() -> MetricsCollector:
    """Get the singleton metrics collector instance.

    Returns:
        MetricsCollector instance.
    """
    return MetricsCollector()
