"""Event publication transports"""

from src.events.base import EventPublisher, publish_quietly
from src.events.failover import FailoverEventPublisher
from src.events.fallback_publisher import DatabaseFallbackPublisher, command_type_for
from src.events.redis_publisher import RedisEventPublisher
from src.events.sqs_publisher import SqsEventPublisher
from src.events.factory import create_event_publisher, create_primary_publisher

__all__ = [
    "EventPublisher",
    "publish_quietly",
    "FailoverEventPublisher",
    "DatabaseFallbackPublisher",
    "command_type_for",
    "RedisEventPublisher",
    "SqsEventPublisher",
    "create_event_publisher",
    "create_primary_publisher",
]
