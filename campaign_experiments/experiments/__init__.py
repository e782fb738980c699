"""
Experimentation engine.

Contains traffic allocation, event recording, derived metrics, the
significance engine, result reporting and the test lifecycle, plus the
ABTestingService facade that ties them together.
"""

from .allocation import VariantAllocator
from .lifecycle import TestLifecycleManager, hydrate
from .recorder import EventRecorder
from .reporting import ResultsReporter
from .service import ABTestingService, get_ab_testing_service, reset_ab_testing_service
from .significance import PValueMethod, SignificanceEngine

__all__ = [
    "VariantAllocator",
    "TestLifecycleManager",
    "hydrate",
    "EventRecorder",
    "ResultsReporter",
    "ABTestingService",
    "get_ab_testing_service",
    "reset_ab_testing_service",
    "PValueMethod",
    "SignificanceEngine",
]
