"""Shared exponential backoff policy and retry manager"""

import logging
import time
from typing import Callable, Any, Optional

from src.exceptions import CircuitOpen

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base_delay: float = 1.0) -> float:
    """
    Delay before the next attempt after `attempt` failures.

    Formula: delay = base_delay * 2 ^ (attempt - 1)
    - attempt 1: 1 second
    - attempt 2: 2 seconds
    - attempt 3: 4 seconds

    Used by storage retries, orchestrator retry scheduling and fallback queue items.

    Args:
        attempt: Number of the attempt that just failed (1-indexed)
        base_delay: Delay for the first retry in seconds

    Returns:
        Delay in seconds
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    return base_delay * (2 ** (attempt - 1))


class RetryManager:
    """
    Bounded retry with exponential backoff for one backend.

    Retry strategy with defaults:
    - Attempt 1: Immediate
    - Attempt 2: Retry after 1 second
    - Attempt 3: Retry after 2 seconds
    - After 3 attempts: re-raise the last error

    CircuitOpen is a policy short-circuit, not a backend failure, so it is not
    retried unless retry_on_circuit_open is set.
    """

    # Retry configuration
    MAX_ATTEMPTS = 3
    BASE_DELAY = 1.0

    def __init__(
        self,
        name: str = "default",
        max_attempts: int = MAX_ATTEMPTS,
        base_delay: float = BASE_DELAY,
        retry_on_circuit_open: bool = False,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize retry manager.

        Args:
            name: Backend name used in logs and metrics
            max_attempts: Total attempts including the first one (default: 3)
            base_delay: Base delay in seconds for exponential backoff (default: 1.0)
            retry_on_circuit_open: Retry CircuitOpen errors as well
            sleep: Sleep function, replaceable in tests
        """
        self.name = name
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.retry_on_circuit_open = retry_on_circuit_open
        self._sleep = sleep

    def calculate_delay(self, attempt: int) -> float:
        """Delay to wait after the given failed attempt"""
        return backoff_delay(attempt, self.base_delay)

    def should_retry(self, attempt: int, error: Exception) -> bool:
        """
        Determine if operation should be retried.

        Args:
            attempt: Attempt number that just failed (1-indexed)
            error: Exception that occurred

        Returns:
            True if should retry, False otherwise
        """
        if attempt >= self.max_attempts:
            logger.warning(f"[{self.name}] Max attempts ({self.max_attempts}) reached, will not retry")
            return False

        if isinstance(error, CircuitOpen) and not self.retry_on_circuit_open:
            logger.info(f"[{self.name}] Circuit open, failing fast without retry")
            return False

        return True

    def retry_with_backoff(
        self,
        func: Callable,
        *args,
        on_retry: Optional[Callable[[int, Exception], None]] = None,
        **kwargs
    ) -> Any:
        """
        Execute function with retry and exponential backoff.

        Args:
            func: Function to execute
            *args: Positional arguments for func
            on_retry: Optional callback called on each retry with (attempt, error)
            **kwargs: Keyword arguments for func

        Returns:
            Result of successful function execution

        Raises:
            Last exception if all attempts are exhausted or the error is not retryable
        """
        func_name = getattr(func, "__name__", "unknown")

        for attempt in range(1, self.max_attempts + 1):
            try:
                result = func(*args, **kwargs)
                if attempt > 1:
                    logger.info(f"[{self.name}] Success on attempt {attempt} for {func_name}")
                return result

            except Exception as e:
                if not self.should_retry(attempt, e):
                    if attempt > 1 or not isinstance(e, CircuitOpen):
                        logger.error(
                            f"[{self.name}] Giving up on {func_name} after {attempt} attempt(s): {e}"
                        )
                    raise

                delay = self.calculate_delay(attempt)
                logger.warning(
                    f"[{self.name}] Attempt {attempt}/{self.max_attempts} failed for {func_name}: {e}; "
                    f"retrying in {delay:.1f}s"
                )

                if on_retry:
                    try:
                        on_retry(attempt, e)
                    except Exception as callback_error:
                        logger.error(f"Error in retry callback: {callback_error}")

                self._sleep(delay)
