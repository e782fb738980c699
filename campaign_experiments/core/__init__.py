"""
Core infrastructure layer for the experimentation engine.

Contains type definitions, exceptions, per-test locking and shared
utilities used across all modules.
"""

from .concurrency import SharedExclusiveLock, TestLockRegistry
from .data_types import (
    ABTest,
    ABTestResult,
    ABTestSpec,
    ABTestStatus,
    EventType,
    MetricType,
    Variant,
    VariantMetrics,
    VariantSpec,
    VariantType,
)
from .exceptions import (
    ConfigurationError,
    ExperimentError,
    InvalidConfigError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)

__all__ = [
    "SharedExclusiveLock",
    "TestLockRegistry",
    "ABTest",
    "ABTestResult",
    "ABTestSpec",
    "ABTestStatus",
    "EventType",
    "MetricType",
    "Variant",
    "VariantMetrics",
    "VariantSpec",
    "VariantType",
    "ConfigurationError",
    "ExperimentError",
    "InvalidConfigError",
    "InvalidStateError",
    "NotFoundError",
    "ValidationError",
]
