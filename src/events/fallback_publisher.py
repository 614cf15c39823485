"""Database fallback publisher: events become processing_queue rows"""

import logging
from typing import Optional

from sqlalchemy.orm import sessionmaker

from src.config import settings
from src.database import SessionLocal, session_scope
from src.events.base import EventPublisher
from src.models.processing_queue import CommandType
from src.monitoring.metrics import metrics_collector
from src.schemas.events import PhotoDeletedEvent, PhotoEventMessage
from src.services.processing_queue_service import ProcessingQueueService

logger = logging.getLogger(__name__)


def command_type_for(event: PhotoEventMessage) -> CommandType:
    """Queue command an event is replayed as"""
    if isinstance(event, PhotoDeletedEvent):
        return CommandType.DELETE_PHOTO
    return CommandType.PROCESS_PHOTO


class DatabaseFallbackPublisher(EventPublisher):
    """
    Stores events in the processing_queue table for later replay.

    Always reports itself available and never raises: a failed insert is
    logged and dropped.
    """

    PROVIDER_TYPE = "DatabaseFallback"

    def __init__(self, session_factory: sessionmaker = SessionLocal, max_retries: Optional[int] = None):
        self.session_factory = session_factory
        self.max_retries = max_retries if max_retries is not None else settings.queue_item_max_retries

    def publish_with_correlation(
        self, topic: str, event: PhotoEventMessage, correlation_id: Optional[str]
    ) -> None:
        try:
            with session_scope(self.session_factory) as db:
                item = ProcessingQueueService.enqueue(
                    db,
                    command_type=command_type_for(event),
                    photo_id=event.photo_id,
                    payload=event.model_dump_json(),
                    topic=topic,
                    event_type=event.event_type,
                    correlation_id=correlation_id,
                    max_retries=self.max_retries,
                )
            metrics_collector.record_event_published(self.PROVIDER_TYPE, event.event_type, "queued")
            logger.warning(
                f"Event stored in fallback queue: topic={topic}, event_type={event.event_type}, "
                f"item={item.id}, correlation_id={correlation_id}"
            )
        except Exception as e:
            metrics_collector.record_event_published(self.PROVIDER_TYPE, event.event_type, "dropped")
            logger.error(
                f"Failed to store event in fallback queue: topic={topic}, "
                f"event_type={event.event_type}: {e}",
                exc_info=True,
            )

    def is_available(self) -> bool:
        return True

    def provider_type(self) -> str:
        return self.PROVIDER_TYPE
