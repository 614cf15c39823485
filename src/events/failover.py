"""Primary transport with automatic database fallback"""

import logging
from typing import Optional

from src.events.base import EventPublisher
from src.exceptions import CircuitOpen, EventPublishFailure
from src.services.circuit_breaker import CircuitBreaker, CircuitState
from src.schemas.events import PhotoEventMessage

logger = logging.getLogger(__name__)


class FailoverEventPublisher(EventPublisher):
    """
    Sends events to a primary transport guarded by its own circuit breaker.

    Events go to the fallback publisher when the primary reports itself
    unavailable, when its breaker is open, or when it raises
    EventPublishFailure.
    """

    def __init__(
        self,
        primary: EventPublisher,
        fallback: EventPublisher,
        circuit_breaker: CircuitBreaker,
    ):
        self.primary = primary
        self.fallback = fallback
        self.circuit_breaker = circuit_breaker

    def publish_with_correlation(
        self, topic: str, event: PhotoEventMessage, correlation_id: Optional[str]
    ) -> None:
        if self.circuit_breaker.state == CircuitState.OPEN:
            logger.warning(
                f"{self.primary.provider_type()} breaker open, routing {event.event_type} "
                f"to {self.fallback.provider_type()}, correlation_id={correlation_id}"
            )
            self.fallback.publish_with_correlation(topic, event, correlation_id)
            return

        if not self.primary.is_available():
            logger.warning(
                f"{self.primary.provider_type()} unavailable, routing {event.event_type} "
                f"to {self.fallback.provider_type()}, correlation_id={correlation_id}"
            )
            self.fallback.publish_with_correlation(topic, event, correlation_id)
            return

        try:
            self.circuit_breaker.call(
                self.primary.publish_with_correlation, topic, event, correlation_id
            )
        except (EventPublishFailure, CircuitOpen) as e:
            logger.warning(
                f"Primary publish failed for {event.event_type}, using fallback "
                f"(correlation_id={correlation_id}): {e}"
            )
            self.fallback.publish_with_correlation(topic, event, correlation_id)

    def is_available(self) -> bool:
        return self.primary.is_available() or self.fallback.is_available()

    def provider_type(self) -> str:
        return f"{self.primary.provider_type()}+{self.fallback.provider_type()}"
