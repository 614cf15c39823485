"""Event publication strategy interface"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from src.exceptions import EventPublishFailure
from src.schemas.events import PhotoEventMessage

logger = logging.getLogger(__name__)


class EventPublisher(ABC):
    """
    Publishes lifecycle events to one transport.

    Primary transports raise EventPublishFailure on transport errors. The
    database fallback never raises.
    """

    def publish(self, event: PhotoEventMessage) -> None:
        """Publish to the event's default topic (its class name)"""
        self.publish_to(event.default_topic, event)

    def publish_to(self, topic: str, event: PhotoEventMessage) -> None:
        self.publish_with_correlation(topic, event, event.correlation_id)

    @abstractmethod
    def publish_with_correlation(
        self, topic: str, event: PhotoEventMessage, correlation_id: Optional[str]
    ) -> None:
        """Publish with an explicit correlation id"""

    @abstractmethod
    def is_available(self) -> bool:
        """Whether the transport currently accepts messages"""

    @abstractmethod
    def provider_type(self) -> str:
        """Human readable transport name"""


def publish_quietly(
    publisher: EventPublisher,
    event: PhotoEventMessage,
    correlation_id: Optional[str],
    topic: Optional[str] = None,
) -> bool:
    """
    Publish an event from inside a saga.

    EventPublishFailure is logged and absorbed so a transport outage never
    aborts the caller.

    Returns:
        True if the publisher accepted the event
    """
    topic = topic or event.default_topic
    try:
        publisher.publish_with_correlation(topic, event, correlation_id)
        return True
    except EventPublishFailure as e:
        logger.warning(
            f"Event {event.event_type} for photo {event.photo_id} not published "
            f"(correlation_id={correlation_id}): {e}"
        )
        return False
