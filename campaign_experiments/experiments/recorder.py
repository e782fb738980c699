"""
Event recorder.

Validates incoming events and applies them to a variant's raw counters.
The status check runs under the test's shared lock, the same lock object
lifecycle transitions take exclusively, so an event is either applied
entirely before a pause/complete or rejected after it.
"""

from __future__ import annotations

from ..core.concurrency import TestLockRegistry
from ..core.data_types import ABTestStatus, EventType
from ..core.exceptions import InvalidStateError, NotFoundError, ValidationError
from ..core.utils import is_finite_non_negative
from ..database.repository import CounterDelta, TestRepository
from ..monitoring.logger import trace_event
from ..monitoring.metrics import MetricsCollector, get_metrics_collector


def parse_event_type(event_type: EventType | str) -> EventType:
    """Resolve an event type, rejecting unknown names."""
    try:
        return EventType(event_type)
    except ValueError:
        allowed = ", ".join(e.value for e in EventType)
        raise ValidationError(
            f"Unknown event type: {event_type}",
            violations=[f"eventType must be one of: {allowed}"],
            field_name="eventType",
            invalid_value=event_type,
        ) from None


def build_delta(
    event_type: EventType,
    value: float | None,
    sample_size_event: EventType,
) -> CounterDelta:
    """Translate one event into counter increments.

    Raises:
        ValidationError: If a value is missing where required, negative or
            not finite.
    """
    if value is not None and not is_finite_non_negative(value):
        raise ValidationError(
            f"Event value must be a finite number >= 0, got {value}",
            field_name="value",
            invalid_value=value,
        )
    if event_type.requires_value and value is None:
        raise ValidationError(
            f"Event type {event_type.value} requires a value",
            field_name="value",
        )

    amount = float(value) if value is not None else 0.0
    sample = 1 if event_type == sample_size_event else 0

    if event_type == EventType.IMPRESSION:
        return CounterDelta(impressions=1, sample_size=sample)
    if event_type == EventType.CLICK:
        return CounterDelta(clicks=1, sample_size=sample)
    if event_type == EventType.CONVERSION:
        return CounterDelta(conversions=1, revenue=amount, sample_size=sample)
    if event_type == EventType.REVENUE:
        return CounterDelta(revenue=amount, sample_size=sample)
    if event_type == EventType.COST:
        return CounterDelta(cost=amount, sample_size=sample)
    raise ValidationError(f"Unhandled event type: {event_type}", field_name="eventType")


class EventRecorder:
    """Applies validated events to RUNNING tests."""

    def __init__(
        self,
        repository: TestRepository,
        locks: TestLockRegistry,
        metrics: MetricsCollector | None = None,
    ):
        self._repository = repository
        self._locks = locks
        self._metrics = metrics or get_metrics_collector()

    def record(
        self,
        test_id: str,
        variant_id: str,
        event_type: EventType | str,
        value: float | None = None,
    ) -> None:
        """Record one event against a variant.

        Raises:
            ValidationError: Bad event type or value. No counter changes.
            NotFoundError: Unknown test or variant.
            InvalidStateError: Test is not RUNNING.
        """
        try:
            parsed = parse_event_type(event_type)
            with self._locks.get(test_id).shared():
                test = self._repository.get(test_id)
                if test is None:
                    raise NotFoundError(f"Test {test_id} not found", resource_type="test", resource_id=test_id)
                if test.status != ABTestStatus.RUNNING:
                    raise InvalidStateError(
                        f"Cannot record events on test in status {test.status.value}",
                        test_id=test_id,
                        current_status=test.status.value,
                        operation="record_event",
                    )
                if test.get_variant(variant_id) is None:
                    raise NotFoundError(
                        f"Variant {variant_id} not found in test {test_id}",
                        resource_type="variant",
                        resource_id=variant_id,
                    )

                delta = build_delta(parsed, value, test.sample_size_event)
                self._repository.increment(test_id, variant_id, delta)
        except ValidationError:
            self._metrics.record_event_rejected("validation")
            raise
        except InvalidStateError:
            self._metrics.record_event_rejected("state")
            raise
        except NotFoundError:
            self._metrics.record_event_rejected("not_found")
            raise

        self._metrics.record_event(parsed.value)
        trace_event(test_id, variant_id, parsed.value, value)


__all__ = ["parse_event_type", "build_delta", "EventRecorder"]
