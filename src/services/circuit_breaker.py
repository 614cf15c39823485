"""
Sliding-window circuit breaker.

State transitions: CLOSED -> OPEN -> HALF_OPEN -> CLOSED (or back to OPEN).
One instance guards one backend and is shared by every thread that calls it.
"""

import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

from src.config import CircuitBreakerConfig
from src.exceptions import CircuitOpen
from src.monitoring.metrics import metrics_collector

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker state"""
    CLOSED = "closed"  # calls flow, outcomes recorded in the window
    OPEN = "open"  # calls rejected until the wait duration elapses
    HALF_OPEN = "half_open"  # a bounded number of probe calls allowed


# (failed, slow) for one completed call
_Outcome = Tuple[bool, bool]


class CircuitBreaker:
    """
    Count-based sliding window circuit breaker.

    Usage:
        breaker = CircuitBreaker("storage-s3", settings.circuit_breaker_config("storage-s3"))
        url = breaker.call(provider.upload, key, data, content_type, size)

    The window keeps the last `sliding_window_size` outcomes. Once it holds at
    least `minimum_calls` outcomes, the breaker opens when the failure rate or
    the slow-call rate reaches its threshold.
    """

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._lock = threading.Lock()

        self._window: Deque[_Outcome] = deque(maxlen=int(self.config.sliding_window_size))
        self._state = CircuitState.CLOSED
        self._opened_at: Optional[float] = None
        self._half_open_permits = 0
        self._half_open_results: List[_Outcome] = []

        metrics_collector.record_circuit_breaker_state(self.name, self._state.value)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._check_wait_elapsed()
            return self._state

    def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Invoke func through the breaker.

        Raises:
            CircuitOpen: If the breaker is open or all half-open probes are taken.
                func is not invoked.
            Any exception raised by func, after it is recorded as a failure.
        """
        self._acquire_permission()

        start = self._clock()
        try:
            result = func(*args, **kwargs)
        except Exception:
            self._record(failed=True, duration=self._clock() - start)
            raise
        self._record(failed=False, duration=self._clock() - start)
        return result

    def failure_rate(self) -> float:
        """Failure percentage over the current window (0.0 when empty)"""
        with self._lock:
            return self._rates(list(self._window))[0]

    def reset(self) -> None:
        """Force the breaker back to CLOSED with an empty window"""
        with self._lock:
            self._transition(CircuitState.CLOSED)

    def snapshot(self) -> Dict[str, Any]:
        """Current state for health reporting"""
        with self._lock:
            self._check_wait_elapsed()
            failure_rate, slow_rate = self._rates(list(self._window))
            return {
                "name": self.name,
                "state": self._state.value,
                "buffered_calls": len(self._window),
                "failure_rate": failure_rate,
                "slow_call_rate": slow_rate,
            }

    def _acquire_permission(self) -> None:
        with self._lock:
            self._check_wait_elapsed()

            if self._state == CircuitState.OPEN:
                metrics_collector.record_circuit_breaker_call(self.name, "rejected")
                logger.warning(
                    f"Circuit breaker OPEN for {self.name}, call rejected",
                    extra={"event": "circuit_breaker", "breaker": self.name},
                )
                raise CircuitOpen(self.name)

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_permits >= self.config.half_open_calls:
                    metrics_collector.record_circuit_breaker_call(self.name, "rejected")
                    raise CircuitOpen(self.name)
                self._half_open_permits += 1

    def _record(self, failed: bool, duration: float) -> None:
        slow = duration > self.config.slow_call_duration_seconds
        metrics_collector.record_circuit_breaker_call(
            self.name, "failure" if failed else ("slow" if slow else "success")
        )

        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_results.append((failed, slow))
                if len(self._half_open_results) >= self.config.half_open_calls:
                    if self._should_trip(self._half_open_results):
                        logger.warning(f"Circuit breaker {self.name} probe calls failed, reopening")
                        self._transition(CircuitState.OPEN)
                    else:
                        logger.info(f"Circuit breaker {self.name} recovered, closing")
                        self._transition(CircuitState.CLOSED)
                return

            if self._state == CircuitState.OPEN:
                # Call was admitted before another thread opened the breaker
                return

            self._window.append((failed, slow))
            if len(self._window) >= self.config.minimum_calls and self._should_trip(list(self._window)):
                failure_rate, slow_rate = self._rates(list(self._window))
                logger.warning(
                    f"Circuit breaker {self.name} opening: failure_rate={failure_rate:.0f}% "
                    f"slow_call_rate={slow_rate:.0f}% over {len(self._window)} calls",
                    extra={"event": "circuit_breaker", "breaker": self.name},
                )
                self._transition(CircuitState.OPEN)

    def _check_wait_elapsed(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.config.wait_duration_open_seconds
        ):
            logger.info(f"Circuit breaker {self.name} wait elapsed, entering HALF_OPEN")
            self._transition(CircuitState.HALF_OPEN)

    def _should_trip(self, outcomes: List[_Outcome]) -> bool:
        failure_rate, slow_rate = self._rates(outcomes)
        return (
            failure_rate >= self.config.failure_rate_threshold
            or slow_rate >= self.config.slow_call_rate_threshold
        )

    @staticmethod
    def _rates(outcomes: List[_Outcome]) -> Tuple[float, float]:
        if not outcomes:
            return 0.0, 0.0
        total = len(outcomes)
        failures = sum(1 for failed, _ in outcomes if failed)
        slow = sum(1 for _, is_slow in outcomes if is_slow)
        return failures * 100.0 / total, slow * 100.0 / total

    def _transition(self, target: CircuitState) -> None:
        previous = self._state
        self._state = target
        self._window.clear()
        self._half_open_permits = 0
        self._half_open_results = []
        self._opened_at = self._clock() if target == CircuitState.OPEN else None

        if previous != target:
            metrics_collector.record_circuit_breaker_transition(self.name, previous.value, target.value)
