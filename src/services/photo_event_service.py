"""Append-only photo event log"""

import logging
from typing import Optional
from uuid import UUID
from sqlalchemy.orm import Session

from src.models.photo_event import PhotoEvent, PhotoEventType

logger = logging.getLogger(__name__)


class PhotoEventService:
    """Records and reads audit entries; entries are never updated"""

    @staticmethod
    def record(
        db: Session,
        photo_id: UUID,
        event_type: PhotoEventType,
        success: bool = True,
        details: Optional[str] = None,
        error_message: Optional[str] = None,
        correlation_id: Optional[str] = None,
        user_id: Optional[str] = None,
        source: Optional[str] = None,
    ) -> PhotoEvent:
        """
        Append one audit entry.

        Args:
            db: Database session
            photo_id: Photo the entry belongs to
            event_type: Lifecycle step
            success: Whether the step succeeded
            details: Free-form detail text
            error_message: Error text for failed steps
            correlation_id: Saga run the entry belongs to
            user_id: Owning user
            source: Component that wrote the entry

        Returns:
            Created PhotoEvent
        """
        event = PhotoEvent(
            photo_id=photo_id,
            event_type=event_type,
            success=success,
            details=details,
            error_message=error_message,
            correlation_id=correlation_id,
            user_id=user_id,
            source=source,
        )
        db.add(event)
        db.flush()

        logger.debug(
            f"Recorded {event_type.value} (success={success}) for photo {photo_id}, "
            f"correlation_id={correlation_id}"
        )
        return event

    @staticmethod
    def list_for_photo(db: Session, photo_id: UUID) -> list[PhotoEvent]:
        """All entries for a photo, oldest first"""
        return (
            db.query(PhotoEvent)
            .filter(PhotoEvent.photo_id == photo_id)
            .order_by(PhotoEvent.timestamp.asc())
            .all()
        )

    @staticmethod
    def list_for_photo_paginated(
        db: Session, photo_id: UUID, page: int = 0, size: int = 20
    ) -> list[PhotoEvent]:
        """One page of entries for a photo, newest first"""
        return (
            db.query(PhotoEvent)
            .filter(PhotoEvent.photo_id == photo_id)
            .order_by(PhotoEvent.timestamp.desc())
            .offset(page * size)
            .limit(size)
            .all()
        )

    @staticmethod
    def count_for_photo(db: Session, photo_id: UUID) -> int:
        return db.query(PhotoEvent).filter(PhotoEvent.photo_id == photo_id).count()

    @staticmethod
    def list_by_correlation(db: Session, correlation_id: str) -> list[PhotoEvent]:
        return (
            db.query(PhotoEvent)
            .filter(PhotoEvent.correlation_id == correlation_id)
            .order_by(PhotoEvent.timestamp.asc())
            .all()
        )
