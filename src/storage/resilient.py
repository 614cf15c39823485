"""Circuit breaker + retry decorator around any storage backend"""

import logging
from typing import Any, BinaryIO, Callable, Optional, Union

from src.exceptions import CircuitOpen
from src.monitoring.metrics import MetricsTimer, metrics_collector
from src.services.circuit_breaker import CircuitBreaker
from src.storage.base import StorageMetadata, StorageProvider
from src.workers.retry_manager import RetryManager

logger = logging.getLogger(__name__)


class ResilientStorageProvider(StorageProvider):
    """
    Decorates a StorageProvider with its own circuit breaker and retry budget.

    Retry wraps the breaker-guarded call, so a breaker that opens mid-retry
    stops the remaining attempts. exists() is breaker-guarded but never retried.
    """

    def __init__(
        self,
        delegate: StorageProvider,
        circuit_breaker: CircuitBreaker,
        retry_manager: RetryManager,
    ):
        self.delegate = delegate
        self.circuit_breaker = circuit_breaker
        self.retry_manager = retry_manager
        self.provider_name = delegate.provider_name

    def _guarded(self, operation: str, func: Callable[..., Any], *args) -> Any:
        def record(duration: float, exc_type) -> None:
            if exc_type is CircuitOpen:
                status = "rejected"
            else:
                status = "failure" if exc_type else "success"
            metrics_collector.record_storage_operation(self.provider_name, operation, status, duration)

        with MetricsTimer(record):
            return self.circuit_breaker.call(func, *args)

    def _execute(self, operation: str, func: Callable[..., Any], *args) -> Any:
        return self.retry_manager.retry_with_backoff(
            self._guarded,
            operation,
            func,
            *args,
            on_retry=lambda attempt, error: metrics_collector.record_storage_retry(
                self.provider_name, operation
            ),
        )

    def upload(
        self,
        key: str,
        data: Union[bytes, BinaryIO],
        content_type: str,
        size: Optional[int] = None,
    ) -> str:
        return self._execute("upload", self.delegate.upload, key, data, content_type, size)

    def download(self, key: str) -> BinaryIO:
        return self._execute("download", self.delegate.download, key)

    def download_bytes(self, key: str) -> bytes:
        # The read happens inside the guarded call so a broken stream is retried too
        return self._execute("download", self.delegate.download_bytes, key)

    def delete(self, key: str) -> bool:
        return self._execute("delete", self.delegate.delete, key)

    def exists(self, key: str) -> bool:
        return self._guarded("exists", self.delegate.exists, key)

    def presign(self, key: str, ttl_seconds: int) -> str:
        return self._execute("presign", self.delegate.presign, key, ttl_seconds)

    def metadata(self, key: str) -> StorageMetadata:
        return self._execute("metadata", self.delegate.metadata, key)

    def url_for(self, key: str) -> str:
        return self.delegate.url_for(key)

    def is_available(self) -> bool:
        return self.delegate.is_available()
