"""
Unit tests for experiments/recorder.py
"""

import math
from unittest.mock import MagicMock

import pytest

from campaign_experiments.core.concurrency import TestLockRegistry
from campaign_experiments.core.data_types import EventType
from campaign_experiments.core.exceptions import InvalidStateError, NotFoundError, ValidationError
from campaign_experiments.database.repository import CounterDelta
from campaign_experiments.experiments.recorder import EventRecorder, build_delta, parse_event_type


class TestBuildDelta:
    """Tests for translating events into counter increments."""

    def test_impression_drives_sample_size(self):
        assert build_delta(EventType.IMPRESSION, None, EventType.IMPRESSION) == CounterDelta(
            impressions=1, sample_size=1
        )

    def test_click_with_impression_sampling(self):
        assert build_delta(EventType.CLICK, None, EventType.IMPRESSION) == CounterDelta(clicks=1)

    def test_click_sampling(self):
        assert build_delta(EventType.CLICK, None, EventType.CLICK) == CounterDelta(clicks=1, sample_size=1)
        assert build_delta(EventType.IMPRESSION, None, EventType.CLICK) == CounterDelta(impressions=1)

    def test_conversion_with_and_without_value(self):
        assert build_delta(EventType.CONVERSION, 19.5, EventType.IMPRESSION) == CounterDelta(
            conversions=1, revenue=19.5
        )
        assert build_delta(EventType.CONVERSION, None, EventType.IMPRESSION) == CounterDelta(conversions=1)

    def test_revenue_and_cost(self):
        assert build_delta(EventType.REVENUE, 12.0, EventType.IMPRESSION) == CounterDelta(revenue=12.0)
        assert build_delta(EventType.COST, 3.0, EventType.IMPRESSION) == CounterDelta(cost=3.0)

    @pytest.mark.parametrize("event_type", [EventType.REVENUE, EventType.COST])
    def test_money_events_require_value(self, event_type):
        with pytest.raises(ValidationError):
            build_delta(event_type, None, EventType.IMPRESSION)

    @pytest.mark.parametrize("value", [-1.0, math.nan, math.inf])
    def test_bad_values_rejected(self, value):
        with pytest.raises(ValidationError) as exc_info:
            build_delta(EventType.REVENUE, value, EventType.IMPRESSION)
        assert exc_info.value.field_name == "value"

    def test_parse_event_type(self):
        assert parse_event_type("click") == EventType.CLICK
        with pytest.raises(ValidationError) as exc_info:
            parse_event_type("hover")
        assert exc_info.value.field_name == "eventType"


class TestEventRecorder:
    """Tests for EventRecorder against the in-memory store."""

    @pytest.fixture
    def running_test(self, lifecycle, test_definition):
        test = lifecycle.create(test_definition())
        return lifecycle.start(test.id)

    @pytest.fixture
    def metrics(self):
        return MagicMock()

    @pytest.fixture
    def recorder(self, repository, lifecycle, metrics):
        # Share the lifecycle's lock registry
        return EventRecorder(repository, lifecycle._locks, metrics)

    def test_records_counters(self, recorder, repository, running_test):
        recorder.record(running_test.id, "A", "impression")
        recorder.record(running_test.id, "A", "click")
        recorder.record(running_test.id, "A", EventType.CONVERSION, 30.0)
        recorder.record(running_test.id, "B", "cost", 4.5)

        stored = repository.get(running_test.id)
        a, b = stored.variants
        assert (a.metrics.impressions, a.metrics.clicks, a.metrics.conversions) == (1, 1, 1)
        assert a.metrics.revenue == 30.0
        assert a.metrics.sample_size == 1
        assert b.metrics.cost == 4.5
        assert b.metrics.sample_size == 0

    def test_counts_accepted_events(self, recorder, metrics, running_test):
        recorder.record(running_test.id, "A", "click")
        metrics.record_event.assert_called_once_with("click")

    def test_unknown_test(self, recorder, metrics):
        with pytest.raises(NotFoundError) as exc_info:
            recorder.record("missing", "A", "impression")
        assert exc_info.value.resource_type == "test"
        metrics.record_event_rejected.assert_called_once_with("not_found")

    def test_unknown_variant(self, recorder, repository, running_test):
        with pytest.raises(NotFoundError) as exc_info:
            recorder.record(running_test.id, "Z", "impression")
        assert exc_info.value.resource_type == "variant"
        assert repository.get(running_test.id).total_sample_size == 0

    def test_rejected_when_not_running(self, recorder, lifecycle, repository, test_definition, metrics):
        draft = lifecycle.create(test_definition())
        with pytest.raises(InvalidStateError):
            recorder.record(draft.id, "A", "impression")
        assert repository.get(draft.id).total_sample_size == 0
        metrics.record_event_rejected.assert_called_once_with("state")

    def test_state_checked_before_value(self, recorder, lifecycle, test_definition):
        """A bad value on a draft test reports the state problem."""
        draft = lifecycle.create(test_definition())
        with pytest.raises(InvalidStateError):
            recorder.record(draft.id, "A", "revenue", -5.0)

    def test_invalid_value_leaves_counters(self, recorder, repository, running_test, metrics):
        with pytest.raises(ValidationError):
            recorder.record(running_test.id, "A", "revenue", -5.0)
        assert repository.get(running_test.id).variants[0].metrics.revenue == 0.0
        metrics.record_event_rejected.assert_called_once_with("validation")

    def test_holds_shared_lock_while_recording(self, repository, running_test):
        locks = TestLockRegistry()
        seen = []
        original = repository.increment

        def _increment(test_id, variant_id, delta):
            seen.append(locks.get(test_id).readers)
            original(test_id, variant_id, delta)

        repository.increment = _increment
        EventRecorder(repository, locks, MagicMock()).record(running_test.id, "A", "impression")
        assert seen == [1]
        assert locks.get(running_test.id).readers == 0
