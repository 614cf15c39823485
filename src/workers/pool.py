"""
Bounded worker pool and delayed retry scheduling for processing sagas.

The pool runs at most `max_workers` tasks at once and buffers up to
`queue_capacity` more. Past that, the submitting thread runs the task
itself (caller-runs), which slows producers down instead of dropping work.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Dict, Hashable, Optional

from src.monitoring.metrics import metrics_collector

logger = logging.getLogger(__name__)


class BoundedWorkerPool:
    """
    ThreadPoolExecutor with a bounded backlog and caller-runs overflow.

    The executor starts threads on demand up to `max_workers` and never
    retires them, so `core_size` is informational: it is validated against
    `max_workers` and reported, but does not size the executor.
    """

    def __init__(
        self,
        core_size: int = 10,
        max_workers: int = 50,
        queue_capacity: int = 100,
        thread_name_prefix: str = "saga-worker",
    ):
        if core_size > max_workers:
            raise ValueError("core_size cannot exceed max_workers")

        self.core_size = core_size
        self.max_workers = max_workers
        self.queue_capacity = queue_capacity
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix=thread_name_prefix
        )
        # One slot per running or queued task
        self._slots = threading.BoundedSemaphore(max_workers + queue_capacity)
        self._lock = threading.Lock()
        self._in_flight = 0
        self._shutdown = False

        logger.info(
            f"Worker pool started: core={core_size}, max={max_workers}, queue={queue_capacity}"
        )

    def submit(self, func: Callable[..., Any], *args, **kwargs) -> Future:
        """
        Schedule func on the pool.

        Returns:
            Future for the task. When the pool is saturated the task has
            already run on the calling thread and the future is done.

        Raises:
            RuntimeError: If the pool has been shut down
        """
        if self._shutdown:
            raise RuntimeError("Worker pool is shut down")

        if not self._slots.acquire(blocking=False):
            return self._run_in_caller(func, *args, **kwargs)

        self._adjust_in_flight(1)
        try:
            future = self._executor.submit(self._run_slot, func, *args, **kwargs)
        except RuntimeError:
            self._release_slot()
            raise
        future.add_done_callback(self._release_if_cancelled)
        return future

    def active_count(self) -> int:
        """Tasks currently running or waiting in the backlog"""
        with self._lock:
            return self._in_flight

    def shutdown(self, wait: bool = True) -> None:
        self._shutdown = True
        self._executor.shutdown(wait=wait)
        logger.info("Worker pool shut down")

    def _run_slot(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        try:
            return func(*args, **kwargs)
        finally:
            self._release_slot()

    def _release_if_cancelled(self, future: Future) -> None:
        # A task cancelled while queued never reaches _run_slot
        if future.cancelled():
            self._release_slot()

    def _release_slot(self) -> None:
        self._adjust_in_flight(-1)
        self._slots.release()

    def _adjust_in_flight(self, delta: int) -> None:
        with self._lock:
            self._in_flight += delta
            metrics_collector.set_pool_in_flight(self._in_flight)

    def _run_in_caller(self, func: Callable[..., Any], *args, **kwargs) -> Future:
        logger.warning("Worker pool saturated, running task on submitting thread")
        metrics_collector.record_caller_runs()

        future: Future = Future()
        future.set_running_or_notify_cancel()
        try:
            future.set_result(func(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future


class RetryScheduler:
    """
    Runs a task on the worker pool after a delay.

    Pending retries are tracked by key (the photo id) so that deleting a
    photo can cancel its backoff timer.
    """

    def __init__(self, pool: BoundedWorkerPool):
        self.pool = pool
        self._timers: Dict[Hashable, threading.Timer] = {}
        self._lock = threading.Lock()

    def schedule(
        self,
        delay_seconds: float,
        func: Callable[..., Any],
        *args,
        key: Optional[Hashable] = None,
    ) -> threading.Timer:
        """
        Submit func(*args) to the pool once delay_seconds have passed.

        Args:
            delay_seconds: Backoff delay
            func: Task to run
            key: Identifier for later cancellation; replaces any pending
                timer under the same key

        Returns:
            The started timer
        """
        timer = threading.Timer(delay_seconds, self._fire, args=(key, func, args))
        timer.daemon = True

        with self._lock:
            if key is not None:
                previous = self._timers.pop(key, None)
                if previous is not None:
                    previous.cancel()
                self._timers[key] = timer
        timer.start()

        logger.info(f"Retry scheduled in {delay_seconds:.1f}s for {key}")
        return timer

    def cancel(self, key: Hashable) -> bool:
        """Cancel the pending retry registered under key, if any"""
        with self._lock:
            timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        logger.info(f"Cancelled pending retry for {key}")
        return True

    def pending(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._timers

    def shutdown(self) -> None:
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for timer in timers:
            timer.cancel()

    def _fire(self, key: Optional[Hashable], func: Callable[..., Any], args: tuple) -> None:
        with self._lock:
            if key is not None and self._timers.get(key) is threading.current_thread():
                del self._timers[key]
        try:
            self.pool.submit(func, *args)
        except RuntimeError as e:
            logger.error(f"Could not submit scheduled retry for {key}: {e}")
