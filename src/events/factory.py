"""Selects the event publication strategy from configuration"""

import logging
import time
from typing import Callable, Optional

from sqlalchemy.orm import sessionmaker

from src.config import Settings, settings as default_settings
from src.database import SessionLocal
from src.events.base import EventPublisher
from src.events.failover import FailoverEventPublisher
from src.events.fallback_publisher import DatabaseFallbackPublisher
from src.events.redis_publisher import RedisEventPublisher
from src.events.sqs_publisher import SqsEventPublisher
from src.services.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

EVENT_PUBLISHER_BREAKER = "event-publisher"


def create_primary_publisher(config: Optional[Settings] = None) -> Optional[EventPublisher]:
    """
    Build the broker transport named by event_publisher.

    Returns:
        SqsEventPublisher or RedisEventPublisher, or None for "database"

    Raises:
        ValueError: If event_publisher names an unknown transport
    """
    config = config or default_settings
    choice = config.event_publisher.lower()

    if choice == "database":
        return None
    if choice == "sqs":
        return SqsEventPublisher(config.sqs_event_queue_name)
    if choice == "redis":
        return RedisEventPublisher(channel_prefix=config.redis_event_channel_prefix)
    raise ValueError(f"Unknown event publisher '{config.event_publisher}'")


def create_event_publisher(
    config: Optional[Settings] = None,
    session_factory: sessionmaker = SessionLocal,
    clock: Callable[[], float] = time.monotonic,
    primary: Optional[EventPublisher] = None,
) -> EventPublisher:
    """
    Build exactly one publisher for the configured transport.

    Args:
        config: Settings to read (default: global settings)
        session_factory: Session factory for the database fallback
        clock: Monotonic clock for the publisher circuit breaker
        primary: Pre-built broker transport (default: built from config)

    Returns:
        Configured EventPublisher

    Raises:
        ValueError: If event_publisher names an unknown transport
    """
    config = config or default_settings
    fallback = DatabaseFallbackPublisher(session_factory, config.queue_item_max_retries)

    primary = primary or create_primary_publisher(config)
    if primary is None:
        logger.info("Event publisher: DatabaseFallback")
        return fallback

    if not config.event_fallback_enabled:
        logger.info(f"Event publisher: {primary.provider_type()} (no fallback)")
        return primary

    breaker = CircuitBreaker(
        EVENT_PUBLISHER_BREAKER,
        config.circuit_breaker_config(EVENT_PUBLISHER_BREAKER),
        clock=clock,
    )
    publisher = FailoverEventPublisher(primary, fallback, breaker)
    logger.info(f"Event publisher: {publisher.provider_type()}")
    return publisher
