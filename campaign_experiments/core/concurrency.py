"""
Per-test locking.

Lifecycle transitions of a test must never interleave with event recording
on the same test, while events for one test should not serialize against
each other and different tests should never contend. Each test therefore
gets its own shared/exclusive lock: recorders and allocators take it
shared, transitions take it exclusive.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Generator


class SharedExclusiveLock:
    """Writer-preferring shared/exclusive lock.

    Once a writer is waiting, new readers queue behind it so a steady
    stream of events cannot starve a pause or complete. Not reentrant.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    def acquire_shared(self) -> None:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1

    def release_shared(self) -> None:
        with self._cond:
            if self._readers <= 0:
                raise RuntimeError("release_shared called without a shared hold")
            self._readers -= 1
            if self._readers == 0:
                self._cond.notify_all()

    def acquire_exclusive(self) -> None:
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True

    def release_exclusive(self) -> None:
        with self._cond:
            if not self._writer:
                raise RuntimeError("release_exclusive called without an exclusive hold")
            self._writer = False
            self._cond.notify_all()

    @contextmanager
    def shared(self) -> Generator[None, None, None]:
        self.acquire_shared()
        try:
            yield
        finally:
            self.release_shared()

    @contextmanager
    def exclusive(self) -> Generator[None, None, None]:
        self.acquire_exclusive()
        try:
            yield
        finally:
            self.release_exclusive()

    @property
    def readers(self) -> int:
        with self._cond:
            return self._readers

    @property
    def is_exclusively_held(self) -> bool:
        with self._cond:
            return self._writer


class TestLockRegistry:
    """Hands out one SharedExclusiveLock per test id.

    Injected into the recorder and the lifecycle manager so both contend
    on the same lock object for a given test.
    """

    __test__ = False  # not a pytest test class

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._locks: dict[str, SharedExclusiveLock] = {}

    def get(self, test_id: str) -> SharedExclusiveLock:
        with self._lock:
            lock = self._locks.get(test_id)
            if lock is None:
                lock = SharedExclusiveLock()
                self._locks[test_id] = lock
            return lock

    def discard(self, test_id: str) -> None:
        """Forget the lock of a deleted test."""
        with self._lock:
            self._locks.pop(test_id, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._locks)


__all__ = ["SharedExclusiveLock", "TestLockRegistry"]
