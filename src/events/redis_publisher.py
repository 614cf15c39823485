"""Redis pub/sub event publisher"""

import json
import logging
from typing import Optional
import redis
from redis.exceptions import ConnectionError as RedisConnectionError, RedisError, TimeoutError as RedisTimeoutError
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
)

from src.config import settings
from src.events.base import EventPublisher
from src.exceptions import EventPublishFailure
from src.monitoring.metrics import metrics_collector
from src.schemas.events import PhotoEventMessage

logger = logging.getLogger(__name__)


class RedisEventPublisher(EventPublisher):
    """Publishes events on Redis channels named '<prefix>.<topic>'"""

    PROVIDER_TYPE = "Redis"

    def __init__(self, client: Optional[redis.Redis] = None, channel_prefix: Optional[str] = None):
        self.channel_prefix = channel_prefix or settings.redis_event_channel_prefix
        self._client = client or redis.Redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )

    def channel_for(self, topic: str) -> str:
        return f"{self.channel_prefix}.{topic}"

    @retry(
        retry=retry_if_exception_type((RedisConnectionError, RedisTimeoutError)),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    def _send(self, channel: str, message: str) -> int:
        return self._client.publish(channel, message)

    def publish_with_correlation(
        self, topic: str, event: PhotoEventMessage, correlation_id: Optional[str]
    ) -> None:
        """
        Publish an envelope carrying the event and its correlation id.

        Raises:
            EventPublishFailure: On any Redis error
        """
        channel = self.channel_for(topic)
        message = json.dumps({
            "event_type": event.event_type,
            "topic": topic,
            "correlation_id": correlation_id,
            "payload": event.model_dump(mode="json"),
        })

        try:
            receivers = self._send(channel, message)
        except RedisError as e:
            logger.error(f"Failed to publish {event.event_type} to {channel}: {e}")
            metrics_collector.record_event_published(self.PROVIDER_TYPE, event.event_type, "failure")
            raise EventPublishFailure(event.event_type, topic, e)

        metrics_collector.record_event_published(self.PROVIDER_TYPE, event.event_type, "success")
        logger.info(
            f"Published {event.event_type} for photo {event.photo_id} to {channel} "
            f"({receivers} subscribers), correlation_id={correlation_id}"
        )

    def is_available(self) -> bool:
        try:
            return bool(self._client.ping())
        except RedisError as e:
            logger.warning(f"Redis not reachable: {e}")
            return False

    def provider_type(self) -> str:
        return self.PROVIDER_TYPE
