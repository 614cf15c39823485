"""Resolves storage backends by name and wraps each one in its own resilience layer"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional

from src.config import Settings, settings as default_settings
from src.services.circuit_breaker import CircuitBreaker
from src.storage.base import StorageProvider
from src.storage.local import LocalFileStorageProvider
from src.storage.resilient import ResilientStorageProvider
from src.storage.s3 import S3StorageProvider
from src.workers.retry_manager import RetryManager

logger = logging.getLogger(__name__)


class UnknownStorageProvider(ValueError):
    """No backend registered under the requested name"""
    pass


class StorageProviderFactory:
    """
    Registry of storage backends.

    Each backend is built once and gets its own circuit breaker
    ("storage-<name>") and retry manager, so one degraded backend never
    throttles another.
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        constructors: Optional[Dict[str, Callable[[], StorageProvider]]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or default_settings
        self._constructors: Dict[str, Callable[[], StorageProvider]] = {
            "s3": S3StorageProvider,
            "local": LocalFileStorageProvider,
        }
        if constructors:
            self._constructors.update(constructors)
        self._sleep = sleep
        self._clock = clock
        self._providers: Dict[str, StorageProvider] = {}
        self._resilient: Dict[str, ResilientStorageProvider] = {}
        self._lock = threading.Lock()

    def register(self, name: str, constructor: Callable[[], StorageProvider]) -> None:
        """Register (or replace) a backend constructor"""
        with self._lock:
            key = name.lower()
            self._constructors[key] = constructor
            self._providers.pop(key, None)
            self._resilient.pop(key, None)

    def registered_providers(self) -> List[str]:
        return sorted(self._constructors)

    def get_provider(self, name: str) -> StorageProvider:
        """
        Get the raw backend for a name.

        Raises:
            UnknownStorageProvider: If no backend is registered under name
        """
        key = name.lower()
        with self._lock:
            if key not in self._providers:
                constructor = self._constructors.get(key)
                if constructor is None:
                    raise UnknownStorageProvider(
                        f"Unknown storage provider '{name}'. Registered: {self.registered_providers()}"
                    )
                self._providers[key] = constructor()
                logger.info(f"Created storage provider storage-{key}")
            return self._providers[key]

    def get_resilient_provider(self, name: Optional[str] = None) -> ResilientStorageProvider:
        """Backend wrapped with circuit breaker and retry (default: configured provider)"""
        key = (name or self.config.storage_provider).lower()
        provider = self.get_provider(key)
        with self._lock:
            if key not in self._resilient:
                breaker_name = f"storage-{key}"
                self._resilient[key] = ResilientStorageProvider(
                    provider,
                    CircuitBreaker(
                        breaker_name,
                        self.config.circuit_breaker_config(breaker_name),
                        clock=self._clock,
                    ),
                    RetryManager(
                        name=breaker_name,
                        max_attempts=self.config.retry_max_attempts,
                        base_delay=self.config.retry_base_delay_seconds,
                        sleep=self._sleep,
                    ),
                )
            return self._resilient[key]

    def is_provider_available(self, name: str) -> bool:
        try:
            return self.get_provider(name).is_available()
        except Exception as e:
            logger.warning(f"Storage provider {name} unavailable: {e}")
            return False

    def get_available_providers(self) -> List[str]:
        return [name for name in self.registered_providers() if self.is_provider_available(name)]
