"""Photo event audit log model"""

from datetime import datetime
from sqlalchemy import Column, String, Text, Boolean, DateTime, Enum, Uuid
from src.models.base import BaseModel
import enum


class PhotoEventType(str, enum.Enum):
    """Audit event types recorded for a photo"""
    PHOTO_UPLOAD_STARTED = "PHOTO_UPLOAD_STARTED"
    PHOTO_UPLOADED = "PHOTO_UPLOADED"
    PHOTO_PROCESSING_STARTED = "PHOTO_PROCESSING_STARTED"
    PHOTO_VALIDATION_COMPLETED = "PHOTO_VALIDATION_COMPLETED"
    PHOTO_THUMBNAIL_GENERATED = "PHOTO_THUMBNAIL_GENERATED"
    PHOTO_METADATA_EXTRACTED = "PHOTO_METADATA_EXTRACTED"
    PHOTO_PROCESSING_COMPLETED = "PHOTO_PROCESSING_COMPLETED"
    PHOTO_PROCESSING_FAILED = "PHOTO_PROCESSING_FAILED"
    PHOTO_RETRY_SCHEDULED = "PHOTO_RETRY_SCHEDULED"
    PHOTO_DELETED = "PHOTO_DELETED"
    PHOTO_CACHE_INVALIDATED = "PHOTO_CACHE_INVALIDATED"


class PhotoEvent(BaseModel):
    """
    Append-only audit entry for one step of a photo's lifecycle.
    Rows are never updated or deleted, including when the photo is deleted.
    """

    __tablename__ = "photo_events"

    photo_id = Column(Uuid(as_uuid=True), nullable=False, index=True)
    event_type = Column(Enum(PhotoEventType, name="photo_event_type"), nullable=False)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    success = Column(Boolean, nullable=False, default=True)
    details = Column(Text, nullable=True)
    error_message = Column(Text, nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)
    user_id = Column(String(255), nullable=True)
    source = Column(String(100), nullable=True)

    def __repr__(self):
        return f"<PhotoEvent(photo_id={self.photo_id}, type={self.event_type}, success={self.success})>"
