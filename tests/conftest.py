"""
Pytest fixtures for the Campaign Experiments tests.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))


@pytest.fixture
def test_definition():
    """Factory for a valid two-variant test definition in camelCase."""

    def _make(**overrides):
        definition = {
            "campaignId": "camp-spring",
            "name": "Spring headline",
            "description": "Headline copy test",
            "primaryMetric": "ctr",
            "secondaryMetrics": ["conversionRate"],
            "significanceLevel": 0.05,
            "minimumSampleSize": 100,
            "variants": [
                {"id": "A", "name": "Control", "type": "COPY", "trafficSplit": 50},
                {"id": "B", "name": "Bold headline", "type": "COPY", "trafficSplit": 50},
            ],
        }
        definition.update(overrides)
        return definition

    return _make


@pytest.fixture
def experiment_settings():
    """Engine settings with built-in defaults."""
    from campaign_experiments.config.settings import ExperimentSettings

    return ExperimentSettings()


@pytest.fixture
def repository():
    """Fresh in-memory test store."""
    from campaign_experiments.database.repository import InMemoryTestRepository

    return InMemoryTestRepository()


@pytest.fixture
def clock():
    """Deterministic clock advancing one minute per call."""
    state = {"now": datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)}

    def _now():
        state["now"] += timedelta(minutes=1)
        return state["now"]

    return _now


@pytest.fixture
def lifecycle(repository, experiment_settings, clock):
    """Lifecycle manager over the in-memory store."""
    from campaign_experiments.core.concurrency import TestLockRegistry
    from campaign_experiments.experiments.lifecycle import TestLifecycleManager

    return TestLifecycleManager(repository, TestLockRegistry(), experiment_settings, clock=clock)


@pytest.fixture
def service(repository, experiment_settings):
    """Service over the in-memory store."""
    from campaign_experiments.experiments.service import ABTestingService

    return ABTestingService(repository=repository, settings=experiment_settings)


@pytest.fixture
def feed():
    """Record a batch of impressions, clicks and conversions on a variant."""

    def _feed(target, test_id, variant_id, impressions=0, clicks=0, conversions=0, value=None):
        record = getattr(target, "record_event", None) or target.record
        for _ in range(impressions):
            record(test_id, variant_id, "impression")
        for _ in range(clicks):
            record(test_id, variant_id, "click")
        for _ in range(conversions):
            record(test_id, variant_id, "conversion", value)

    return _feed


@pytest.fixture
def sqlite_settings():
    """Application settings pointing the SQL store at in-memory SQLite."""
    from campaign_experiments.config.settings import DatabaseSettings, Settings

    return Settings(database=DatabaseSettings(backend="sql", dsn="sqlite://"))
