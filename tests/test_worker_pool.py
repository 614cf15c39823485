"""Tests for the bounded worker pool and retry scheduler"""

import threading

import pytest

from src.workers.pool import BoundedWorkerPool, RetryScheduler


@pytest.fixture
def small_pool():
    pool = BoundedWorkerPool(core_size=1, max_workers=1, queue_capacity=1)
    yield pool
    pool.shutdown(wait=True)


class TestBoundedWorkerPool:
    """Backlog bounds and caller-runs overflow"""

    def test_runs_tasks(self, small_pool):
        """Test submitted tasks return their results"""
        assert small_pool.submit(lambda a, b: a + b, 2, 3).result(timeout=5) == 5

    def test_exception_is_kept_on_future(self, small_pool):
        """Test task errors surface through the future"""
        def fail():
            raise ValueError("bad photo")

        with pytest.raises(ValueError, match="bad photo"):
            small_pool.submit(fail).result(timeout=5)

    def test_caller_runs_when_saturated(self, small_pool):
        """Test the third task runs on the submitting thread once worker and backlog are full"""
        release = threading.Event()
        started = threading.Event()

        def blocking():
            started.set()
            release.wait(5)
            return threading.get_ident()

        first = small_pool.submit(blocking)
        assert started.wait(5)
        second = small_pool.submit(threading.get_ident)
        assert small_pool.active_count() == 2

        third = small_pool.submit(threading.get_ident)

        assert third.done()
        assert third.result() == threading.get_ident()

        release.set()
        assert first.result(timeout=5) != threading.get_ident()
        assert second.result(timeout=5) != threading.get_ident()
        assert small_pool.active_count() == 0

    def test_core_larger_than_max(self):
        """Test invalid sizing is rejected"""
        with pytest.raises(ValueError):
            BoundedWorkerPool(core_size=5, max_workers=2)

    def test_cancelled_backlog_task_frees_its_slot(self, small_pool):
        """Test cancelling a queued task returns its backlog slot"""
        release = threading.Event()
        started = threading.Event()

        def blocking():
            started.set()
            release.wait(5)

        first = small_pool.submit(blocking)
        assert started.wait(5)
        queued = small_pool.submit(threading.get_ident)
        assert small_pool.active_count() == 2

        assert queued.cancel() is True
        assert small_pool.active_count() == 1

        # The freed slot queues the next task instead of running it here
        refill = small_pool.submit(threading.get_ident)
        assert not refill.done()

        release.set()
        first.result(timeout=5)
        assert refill.result(timeout=5) != threading.get_ident()
        assert small_pool.active_count() == 0

    def test_core_size_is_informational(self):
        """Test core_size is kept without sizing the executor"""
        pool = BoundedWorkerPool(core_size=2, max_workers=4, queue_capacity=1)
        try:
            assert pool.core_size == 2
            assert pool.max_workers == 4
            assert pool._executor._max_workers == 4
        finally:
            pool.shutdown()

    def test_submit_after_shutdown(self):
        """Test a shut down pool rejects work"""
        pool = BoundedWorkerPool(core_size=1, max_workers=1, queue_capacity=1)
        pool.shutdown()

        with pytest.raises(RuntimeError):
            pool.submit(lambda: None)


class TestRetryScheduler:
    """Delayed submission with per-key cancellation"""

    def test_fires_after_delay(self, small_pool):
        """Test the task runs on the pool and the key is cleared"""
        scheduler = RetryScheduler(small_pool)
        done = threading.Event()

        scheduler.schedule(0.01, done.set, key="photo-1")

        assert done.wait(5)
        assert scheduler.pending("photo-1") is False

    def test_arguments_are_passed(self, small_pool):
        """Test positional arguments reach the task"""
        scheduler = RetryScheduler(small_pool)
        received = []
        done = threading.Event()

        def task(photo_id, correlation_id):
            received.append((photo_id, correlation_id))
            done.set()

        scheduler.schedule(0.01, task, "photo-1", "corr-1", key="photo-1")

        assert done.wait(5)
        assert received == [("photo-1", "corr-1")]

    def test_cancel(self, small_pool):
        """Test cancelling a pending retry"""
        scheduler = RetryScheduler(small_pool)
        timer = scheduler.schedule(30, lambda: None, key="photo-1")

        assert scheduler.pending("photo-1") is True
        assert scheduler.cancel("photo-1") is True
        assert timer.finished.is_set()
        assert scheduler.pending("photo-1") is False
        assert scheduler.cancel("photo-1") is False

    def test_rescheduling_replaces_timer(self, small_pool):
        """Test a new retry under the same key cancels the previous one"""
        scheduler = RetryScheduler(small_pool)

        first = scheduler.schedule(30, lambda: None, key="photo-1")
        second = scheduler.schedule(30, lambda: None, key="photo-1")

        assert first.finished.is_set()
        assert not second.finished.is_set()
        scheduler.shutdown()
        assert second.finished.is_set()
