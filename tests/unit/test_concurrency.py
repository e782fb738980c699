"""
Unit tests for core/concurrency.py and concurrent event recording
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from campaign_experiments.core.concurrency import SharedExclusiveLock, TestLockRegistry
from campaign_experiments.core.data_types import ABTestStatus
from campaign_experiments.core.exceptions import InvalidStateError


class TestSharedExclusiveLock:
    """Tests for SharedExclusiveLock."""

    def test_multiple_readers(self):
        lock = SharedExclusiveLock()
        lock.acquire_shared()
        lock.acquire_shared()
        assert lock.readers == 2
        lock.release_shared()
        lock.release_shared()
        assert lock.readers == 0

    def test_writer_waits_for_readers(self):
        lock = SharedExclusiveLock()
        acquired = threading.Event()

        def writer():
            with lock.exclusive():
                acquired.set()

        lock.acquire_shared()
        thread = threading.Thread(target=writer)
        thread.start()
        assert not acquired.wait(0.1)
        lock.release_shared()
        assert acquired.wait(2.0)
        thread.join()

    def test_waiting_writer_blocks_new_readers(self):
        lock = SharedExclusiveLock()
        order = []

        def exclusive_writer():
            with lock.exclusive():
                order.append("writer")

        lock.acquire_shared()
        writer = threading.Thread(target=exclusive_writer)
        writer.start()
        time.sleep(0.05)

        def reader():
            with lock.shared():
                order.append("reader")

        late_reader = threading.Thread(target=reader)
        late_reader.start()
        time.sleep(0.05)
        assert order == []

        lock.release_shared()
        writer.join(2.0)
        late_reader.join(2.0)
        assert order == ["writer", "reader"]

    def test_exclusive_flag(self):
        lock = SharedExclusiveLock()
        with lock.exclusive():
            assert lock.is_exclusively_held
        assert not lock.is_exclusively_held

    def test_release_without_hold(self):
        lock = SharedExclusiveLock()
        with pytest.raises(RuntimeError):
            lock.release_shared()
        with pytest.raises(RuntimeError):
            lock.release_exclusive()


class TestTestLockRegistry:
    """Tests for TestLockRegistry."""

    def test_same_lock_per_test(self):
        registry = TestLockRegistry()
        assert registry.get("t1") is registry.get("t1")
        assert registry.get("t1") is not registry.get("t2")
        assert len(registry) == 2

    def test_discard(self):
        registry = TestLockRegistry()
        first = registry.get("t1")
        registry.discard("t1")
        assert len(registry) == 0
        assert registry.get("t1") is not first


@pytest.mark.slow
class TestConcurrentRecording:
    """Event recording under contention."""

    def test_no_lost_impressions(self, service, test_definition):
        test = service.create_test(test_definition(minimumSampleSize=1000))
        service.start_test(test.id)

        def record(i):
            service.record_event(test.id, "A" if i % 2 else "B", "impression")

        with ThreadPoolExecutor(max_workers=16) as pool:
            list(pool.map(record, range(4000)))

        loaded = service.get_test(test.id)
        assert loaded.variants[0].metrics.impressions == 2000
        assert loaded.variants[1].metrics.impressions == 2000
        assert loaded.total_sample_size == 4000

    def test_pause_is_atomic_against_recording(self, service, test_definition):
        """Every event is either counted before the pause or rejected."""
        test = service.create_test(test_definition())
        service.start_test(test.id)

        accepted = []
        rejected = []
        start = threading.Barrier(9)

        def writer():
            start.wait()
            for _ in range(300):
                try:
                    service.record_event(test.id, "A", "impression")
                    accepted.append(1)
                except InvalidStateError:
                    rejected.append(1)

        threads = [threading.Thread(target=writer) for _ in range(8)]
        for thread in threads:
            thread.start()
        start.wait()
        time.sleep(0.01)
        paused = service.pause_test(test.id)
        for thread in threads:
            thread.join()

        assert paused.status == ABTestStatus.PAUSED
        final = service.get_test(test.id)
        assert final.variants[0].metrics.impressions == len(accepted)
        assert paused.variants[0].metrics.impressions == len(accepted)
        assert len(accepted) + len(rejected) == 8 * 300
