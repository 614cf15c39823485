"""Wire events published for photo lifecycle changes"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict, Field


class PhotoEventMessage(BaseModel):
    """Base for immutable wire events"""

    model_config = ConfigDict(frozen=True)

    photo_id: UUID = Field(..., description="Photo ID")
    user_id: str = Field(..., description="Owning user ID")
    correlation_id: Optional[str] = Field(None, description="Groups messages of one saga run")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Event creation time")

    @property
    def event_type(self) -> str:
        return type(self).__name__

    @property
    def default_topic(self) -> str:
        return type(self).__name__


class PhotoUploadedEvent(PhotoEventMessage):
    storage_key: str
    filename: str
    content_type: str
    size: int


class PhotoProcessingStartedEvent(PhotoEventMessage):
    pass


class PhotoProcessingCompletedEvent(PhotoEventMessage):
    thumbnail_url: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class PhotoProcessingFailedEvent(PhotoEventMessage):
    error_message: str
    error_type: str
    retry_count: int
    will_retry: bool


class PhotoDeletedEvent(PhotoEventMessage):
    storage_key: Optional[str] = None


EVENT_TYPES = {
    cls.__name__: cls
    for cls in (
        PhotoUploadedEvent,
        PhotoProcessingStartedEvent,
        PhotoProcessingCompletedEvent,
        PhotoProcessingFailedEvent,
        PhotoDeletedEvent,
    )
}


def photo_uploaded(photo, correlation_id: Optional[str]) -> PhotoUploadedEvent:
    return PhotoUploadedEvent(
        photo_id=photo.id,
        user_id=photo.user_id,
        storage_key=photo.storage_key,
        filename=photo.original_filename,
        content_type=photo.content_type,
        size=photo.file_size,
        correlation_id=correlation_id,
    )


def processing_started(photo, correlation_id: Optional[str]) -> PhotoProcessingStartedEvent:
    return PhotoProcessingStartedEvent(
        photo_id=photo.id,
        user_id=photo.user_id,
        correlation_id=correlation_id,
    )


def processing_completed(photo, correlation_id: Optional[str]) -> PhotoProcessingCompletedEvent:
    return PhotoProcessingCompletedEvent(
        photo_id=photo.id,
        user_id=photo.user_id,
        thumbnail_url=photo.thumbnail_url,
        width=photo.width,
        height=photo.height,
        metadata=photo.photo_metadata or {},
        correlation_id=correlation_id,
    )


def processing_failed(
    photo,
    error: BaseException,
    will_retry: bool,
    correlation_id: Optional[str],
) -> PhotoProcessingFailedEvent:
    return PhotoProcessingFailedEvent(
        photo_id=photo.id,
        user_id=photo.user_id,
        error_message=str(error),
        error_type=type(error).__name__,
        retry_count=photo.retry_count or 0,
        will_retry=will_retry,
        correlation_id=correlation_id,
    )


def photo_deleted(photo, correlation_id: Optional[str]) -> PhotoDeletedEvent:
    return PhotoDeletedEvent(
        photo_id=photo.id,
        user_id=photo.user_id,
        storage_key=photo.storage_key,
        correlation_id=correlation_id,
    )


def parse_event(event_type: str, payload: str) -> PhotoEventMessage:
    """Rebuild an event from its stored JSON payload"""
    try:
        cls = EVENT_TYPES[event_type]
    except KeyError:
        raise ValueError(f"Unknown event type: {event_type}")
    return cls.model_validate_json(payload)
