"""Read-side photo operations"""

import logging
from typing import Dict, Optional
from uuid import UUID

from sqlalchemy.orm import sessionmaker

from src.config import settings
from src.database import SessionLocal, session_scope
from src.exceptions import ConflictError, PhotoNotFound, ValidationError
from src.models.photo import Photo, PhotoStatus
from src.models.photo_event import PhotoEvent
from src.services.photo_event_service import PhotoEventService
from src.services.photo_repository import PhotoRepository
from src.storage.base import StorageProvider

logger = logging.getLogger(__name__)


class PhotoService:
    """Queries over photos and their audit log"""

    def __init__(self, storage: StorageProvider, session_factory: sessionmaker = SessionLocal):
        self.storage = storage
        self.session_factory = session_factory

    def get_photo(self, photo_id: UUID) -> Photo:
        """
        Raises:
            PhotoNotFound: If the photo does not exist
        """
        with session_scope(self.session_factory) as db:
            photo = PhotoRepository.get(db, photo_id)
        if photo is None:
            raise PhotoNotFound(photo_id)
        return photo

    def list_photos(self, user_id: Optional[str] = None, status: Optional[PhotoStatus] = None) -> list[Photo]:
        """
        List photos by owner, status or both.

        Raises:
            ValidationError: If neither filter is given
        """
        if not user_id and status is None:
            raise ValidationError(
                "Either user_id or status is required",
                [{"field": "user_id", "message": "Either user_id or status is required"}],
            )

        with session_scope(self.session_factory) as db:
            if user_id and status is not None:
                return PhotoRepository.list_by_user_and_status(db, user_id, status)
            if user_id:
                return PhotoRepository.list_by_user(db, user_id)
            return PhotoRepository.list_by_status(db, status)

    def get_events(self, photo_id: UUID) -> list[PhotoEvent]:
        """Audit trail, oldest first"""
        with session_scope(self.session_factory) as db:
            return PhotoEventService.list_for_photo(db, photo_id)

    def get_events_paginated(self, photo_id: UUID, page: int = 0, size: int = 20) -> tuple[list[PhotoEvent], int]:
        """One page of the audit trail, newest first, plus the total count"""
        if page < 0 or size < 1:
            raise ValidationError("page must be >= 0 and size >= 1")
        with session_scope(self.session_factory) as db:
            events = PhotoEventService.list_for_photo_paginated(db, photo_id, page, size)
            total = PhotoEventService.count_for_photo(db, photo_id)
        return events, total

    def count_by_status(self, status: PhotoStatus) -> int:
        with session_scope(self.session_factory) as db:
            return PhotoRepository.count_by_status(db, status)

    def get_stats(self) -> Dict[str, int]:
        """Photo count per status plus a total"""
        with session_scope(self.session_factory) as db:
            counts = PhotoRepository.count_all_by_status(db)
        return {**counts, "total": sum(counts.values())}

    def presigned_url(self, photo_id: UUID, ttl_seconds: Optional[int] = None) -> str:
        """
        Time-limited download URL for the original.

        Raises:
            PhotoNotFound: If the photo does not exist
            ConflictError: If the photo has no stored original
        """
        photo = self.get_photo(photo_id)
        if not photo.storage_key:
            raise ConflictError(f"Photo {photo_id} has no stored original")

        ttl_seconds = ttl_seconds or settings.presigned_url_expiration_seconds
        return self.storage.presign(photo.storage_key, ttl_seconds)
