"""Application configuration using Pydantic Settings"""

from dataclasses import dataclass, replace
from typing import Dict, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class CircuitBreakerConfig:
    """Thresholds for one circuit breaker instance"""

    failure_rate_threshold: float = 50.0
    slow_call_rate_threshold: float = 50.0
    slow_call_duration_seconds: float = 2.0
    sliding_window_size: int = 10
    minimum_calls: int = 5
    wait_duration_open_seconds: float = 30.0
    half_open_calls: int = 5


# Backends that ship with thresholds different from the storage defaults
BUILTIN_CIRCUIT_BREAKER_OVERRIDES: Dict[str, Dict[str, float]] = {
    "event-publisher": {
        "failure_rate_threshold": 70.0,
        "slow_call_duration_seconds": 3.0,
        "half_open_calls": 3,
    },
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    environment: str = "development"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Database
    database_url: str
    database_pool_size: int = 5
    database_max_overflow: int = 10

    # Redis
    redis_url: str = "redis://localhost:6379/0"

    # AWS / S3
    aws_region: str = "us-east-1"
    aws_access_key_id: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_endpoint_url: Optional[str] = None
    s3_bucket: str = "photo-pipeline-photos"

    # Storage
    storage_provider: str = "s3"
    local_storage_path: str = "./storage"
    local_storage_base_url: Optional[str] = None
    presigned_url_expiration_seconds: int = 900

    # Upload
    max_upload_size_bytes: int = 50 * 1024 * 1024

    # Thumbnails
    thumbnail_width: int = 300
    thumbnail_height: int = 300

    # Processing
    max_processing_retries: int = 3
    max_manual_retries: int = 5

    # Storage retry
    retry_max_attempts: int = 3
    retry_base_delay_seconds: float = 1.0

    # Circuit breaker defaults (storage backends)
    circuit_breaker_failure_rate_threshold: float = 50.0
    circuit_breaker_slow_call_rate_threshold: float = 50.0
    circuit_breaker_slow_call_duration_seconds: float = 2.0
    circuit_breaker_sliding_window_size: int = 10
    circuit_breaker_minimum_calls: int = 5
    circuit_breaker_wait_duration_open_seconds: float = 30.0
    circuit_breaker_half_open_calls: int = 5
    # JSON mapping, e.g. {"storage-local": {"failure_rate_threshold": 80}}
    circuit_breaker_overrides: Dict[str, Dict[str, float]] = {}

    # Event publication
    event_publisher: str = "database"
    event_fallback_enabled: bool = True
    sqs_event_queue_name: str = "photo-events"
    redis_event_channel_prefix: str = "photo-events"

    # Worker pool
    worker_pool_core_size: int = 10
    worker_pool_max_size: int = 50
    worker_pool_queue_capacity: int = 100

    # Fallback queue poller
    queue_poll_interval_seconds: float = 5.0
    queue_poll_batch_size: int = 10
    queue_item_max_retries: int = 3
    queue_completed_retention_days: int = 7

    # CORS
    cors_origins: str = "http://localhost:5173,http://localhost:3000"

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS origins into a list"""
        return [origin.strip() for origin in self.cors_origins.split(",")]

    def circuit_breaker_config(self, name: str) -> CircuitBreakerConfig:
        """
        Resolve circuit breaker thresholds for a named backend.

        Defaults come from the circuit_breaker_* fields, then built-in
        overrides, then anything configured in circuit_breaker_overrides.

        Args:
            name: Breaker name, e.g. "storage-s3" or "event-publisher"

        Returns:
            CircuitBreakerConfig for that backend
        """
        config = CircuitBreakerConfig(
            failure_rate_threshold=self.circuit_breaker_failure_rate_threshold,
            slow_call_rate_threshold=self.circuit_breaker_slow_call_rate_threshold,
            slow_call_duration_seconds=self.circuit_breaker_slow_call_duration_seconds,
            sliding_window_size=self.circuit_breaker_sliding_window_size,
            minimum_calls=self.circuit_breaker_minimum_calls,
            wait_duration_open_seconds=self.circuit_breaker_wait_duration_open_seconds,
            half_open_calls=self.circuit_breaker_half_open_calls,
        )
        for overrides in (
            BUILTIN_CIRCUIT_BREAKER_OVERRIDES.get(name),
            self.circuit_breaker_overrides.get(name),
        ):
            if overrides:
                config = replace(config, **overrides)
        return config


# Global settings instance
settings = Settings()
